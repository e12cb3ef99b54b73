"""Read-only query surface over finalized runs.

Every lookup that can miss returns :class:`NotFound` (with the valid index
range when there is one) instead of raising, so callers render it directly.
Nothing here mutates a run; report generation only writes files.
"""

import base64
import json
import os
import pathlib
from typing import Any, Literal, Optional, Union

import structlog
from pydantic import BaseModel, Field

from pwcapture.errors import ActionIndexOutOfRange, UnknownRunOrTest
from pwcapture.models import (
    ActionCapture,
    Attachment,
    ConsoleMessage,
    NetworkRequestCapture,
    Run,
    SnapshotDiff,
    TestEntry,
)
from pwcapture.parsers import find_test_bounds
from pwcapture.query import dom
from pwcapture.runner.store import RunStore

logger = structlog.get_logger(__name__)

SnapshotWhich = Literal["before", "after", "both"]
ReportFormat = Literal["html", "json"]
DEFAULT_SOURCE_CONTEXT = 60


# ── Result models ────────────────────────────────────────────────────


class NotFound(BaseModel):
    """A lookup miss, phrased for direct display."""

    message: str
    valid_range: Optional[tuple[int, int]] = None

    def __str__(self) -> str:
        return self.message


class NetworkFilter(BaseModel):
    url_pattern: Optional[str] = Field(default=None, description="URL substring")
    method: Optional[str] = Field(default=None, description="HTTP method, case-insensitive")
    status_min: Optional[int] = Field(default=None, description="Minimum status code")
    include_body: bool = Field(default=False, description="Keep request/response bodies")


class FailureReportOptions(BaseModel):
    include_dom: bool = False
    include_network_bodies: bool = False


class TimelineEntry(BaseModel):
    """One action in a timeline, without its evidence payloads."""

    index: int
    name: str
    title: Optional[str] = None
    failed: bool = False
    request_count: int = 0
    duration_ms: Optional[float] = None
    error_message: Optional[str] = None


class FailureReport(BaseModel):
    test: TestEntry = Field(description="Test entry without actions")
    failing_index: Optional[int] = None
    failing_action: Optional[ActionCapture] = None
    page_url: Optional[str] = None
    dom_available: bool = False
    failed_requests: list[NetworkRequestCapture] = Field(default_factory=list)
    console_errors: list[ConsoleMessage] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    action_count: int = 0
    options: FailureReportOptions = Field(default_factory=FailureReportOptions)


class Screenshot(BaseModel):
    name: str
    path: str
    content_type: str
    data: bytes

    @property
    def image_format(self) -> str:
        return self.content_type.split("/", 1)[-1]

    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class EvidenceBundle(BaseModel):
    report: FailureReport
    markdown: str
    screenshots: list[Screenshot] = Field(default_factory=list)
    output_path: Optional[str] = None


class DomSnapshotView(BaseModel):
    action_index: int
    which: SnapshotWhich
    depth: Optional[int] = None
    interactive_only: bool = False
    before: Optional[str] = None
    after: Optional[str] = None

    @property
    def empty(self) -> bool:
        return self.before is None and self.after is None


class DomDiffView(BaseModel):
    action_index: int
    action_name: str
    diff: Optional[SnapshotDiff] = None


class ElementMatches(BaseModel):
    action_index: int
    which: str
    role: Optional[str] = None
    text: Optional[str] = None
    snapshot_available: bool = True
    matches: list[str] = Field(default_factory=list)


class TestSource(BaseModel):
    __test__ = False

    file_path: str
    start_line: int = Field(description="1-based first line shown")
    end_line: int = Field(description="1-based last line shown")
    test_line: Optional[int] = None
    test_start: Optional[int] = Field(default=None, description="1-based declaration line")
    test_end: Optional[int] = Field(default=None, description="1-based last line of the test")
    lines: list[str] = Field(default_factory=list)


class RunSummary(BaseModel):
    run: Run = Field(description="Run with tests stripped of actions")
    counts: dict[str, Any] = Field(default_factory=dict)


class GeneratedReport(BaseModel):
    path: str
    format: ReportFormat
    total: int
    passed: int
    failed: int


# ── Engine ───────────────────────────────────────────────────────────


def _timeline(actions: list[ActionCapture]) -> list[TimelineEntry]:
    return [
        TimelineEntry(
            index=index,
            name=action.name,
            title=action.title,
            failed=action.failed,
            request_count=len(action.network.requests),
            duration_ms=action.timing.duration_ms,
            error_message=action.error.message if action.error else None,
        )
        for index, action in enumerate(actions)
    ]


def _strip_action(action: ActionCapture, include_dom: bool, include_bodies: bool) -> ActionCapture:
    update: dict[str, Any] = {}
    if not include_dom:
        update["snapshot"] = action.snapshot.model_copy(update={"before": None, "after": None})
    if not include_bodies:
        requests = [r.without_bodies() for r in action.network.requests]
        update["network"] = action.network.model_copy(update={"requests": requests})
    return action.model_copy(update=update)


class QueryEngine:
    """Queries over the runs held by a :class:`RunStore`.

    Args:
        store: Run registry shared with the orchestrator.
        cwd: Project directory; reports are written below it and source
            lookups are confined to it.
        reports_dir: Report directory relative to ``cwd``.
    """

    def __init__(self, store: RunStore, cwd: str, reports_dir: str = "test-reports") -> None:
        self.store = store
        self.cwd = os.path.abspath(cwd)
        self.reports_dir = reports_dir

    # ── Lookups ──────────────────────────────────────────────────────

    def get_run(self, run_id: str) -> Union[Run, NotFound]:
        try:
            return self.store.require(run_id)
        except UnknownRunOrTest as e:
            return NotFound(message=str(e))

    def get_test(self, run_id: str, test_index: int = 0) -> Union[TestEntry, NotFound]:
        try:
            return self.store.require_test(run_id, test_index)
        except UnknownRunOrTest as e:
            return NotFound(message=str(e), valid_range=e.valid_range)

    def get_action(self, run_id: str, test_index: int, action_index: int) -> Union[ActionCapture, NotFound]:
        test = self.get_test(run_id, test_index)
        if isinstance(test, NotFound):
            return test
        if not 0 <= action_index < len(test.actions):
            e = ActionIndexOutOfRange(action_index, len(test.actions))
            return NotFound(message=str(e), valid_range=e.valid_range)
        return test.actions[action_index]

    def get_run_summary(self, run_id: str) -> Union[RunSummary, NotFound]:
        run = self.get_run(run_id)
        if isinstance(run, NotFound):
            return run
        light = run.model_copy(update={"tests": [t.model_copy(update={"actions": []}) for t in run.tests]})
        counts = run.summary()
        counts["actions"] = [len(t.actions) for t in run.tests]
        return RunSummary(run=light, counts=counts)

    def get_actions(self, run_id: str, test_index: int = 0) -> Union[list[ActionCapture], NotFound]:
        test = self.get_test(run_id, test_index)
        if isinstance(test, NotFound):
            return test
        return list(test.actions)

    def get_timeline(self, run_id: str, test_index: int = 0) -> Union[list[TimelineEntry], NotFound]:
        test = self.get_test(run_id, test_index)
        if isinstance(test, NotFound):
            return test
        return _timeline(test.actions)

    def get_network(
        self,
        run_id: str,
        test_index: int = 0,
        filters: Optional[NetworkFilter] = None,
    ) -> Union[list[NetworkRequestCapture], NotFound]:
        """Requests across all actions of a test, filtered, in observed order."""
        test = self.get_test(run_id, test_index)
        if isinstance(test, NotFound):
            return test
        filters = filters or NetworkFilter()
        method = filters.method.upper() if filters.method else None

        requests = []
        for request in test.network_requests():
            if filters.url_pattern and filters.url_pattern not in request.url:
                continue
            if method and request.method.upper() != method:
                continue
            if filters.status_min is not None and (request.status is None or request.status < filters.status_min):
                continue
            requests.append(request if filters.include_body else request.without_bodies())
        return requests

    def get_console(
        self,
        run_id: str,
        test_index: int = 0,
        type_filter: Optional[str] = None,
    ) -> Union[list[ConsoleMessage], NotFound]:
        test = self.get_test(run_id, test_index)
        if isinstance(test, NotFound):
            return test
        messages = test.console_messages()
        if type_filter:
            wanted = "warn" if type_filter == "warning" else type_filter
            messages = [m for m in messages if m.type == wanted]
        return messages

    def get_screenshot(
        self,
        run_id: str,
        test_index: int = 0,
        screenshot_index: int = 0,
    ) -> Union[Screenshot, NotFound]:
        test = self.get_test(run_id, test_index)
        if isinstance(test, NotFound):
            return test
        screenshots = test.screenshots()
        if not screenshots:
            return NotFound(message="No screenshots captured.")
        if not 0 <= screenshot_index < len(screenshots):
            return NotFound(
                message=f"Screenshot index {screenshot_index} out of range ({len(screenshots)} available).",
                valid_range=(0, len(screenshots) - 1),
            )
        attachment = screenshots[screenshot_index]
        try:
            return self._read_screenshot(attachment)
        except OSError as e:
            return NotFound(message=f"Failed to read screenshot: {e}")

    def get_dom_snapshot(
        self,
        run_id: str,
        test_index: int,
        action_index: int,
        which: SnapshotWhich = "after",
        depth: Optional[int] = None,
        interactive_only: bool = False,
    ) -> Union[DomSnapshotView, NotFound]:
        action = self.get_action(run_id, test_index, action_index)
        if isinstance(action, NotFound):
            return action
        view = DomSnapshotView(
            action_index=action_index, which=which, depth=depth, interactive_only=interactive_only
        )
        snapshot = action.snapshot
        if which in ("before", "both") and snapshot.before is not None:
            view.before = dom.project_snapshot(snapshot.before, depth, interactive_only)
        if which in ("after", "both") and snapshot.after is not None:
            view.after = dom.project_snapshot(snapshot.after, depth, interactive_only)
        return view

    def get_dom_diff(self, run_id: str, test_index: int, action_index: int) -> Union[DomDiffView, NotFound]:
        action = self.get_action(run_id, test_index, action_index)
        if isinstance(action, NotFound):
            return action
        return DomDiffView(action_index=action_index, action_name=action.name, diff=action.snapshot.diff)

    def find_elements(
        self,
        run_id: str,
        test_index: int,
        action_index: int,
        which: str = "after",
        role: Optional[str] = None,
        text: Optional[str] = None,
    ) -> Union[ElementMatches, NotFound]:
        action = self.get_action(run_id, test_index, action_index)
        if isinstance(action, NotFound):
            return action
        snapshot = action.snapshot.before if which == "before" else action.snapshot.after
        result = ElementMatches(action_index=action_index, which=which, role=role, text=text)
        if snapshot is None:
            result.snapshot_available = False
            return result
        result.matches = dom.find_element_lines(snapshot, role, text)
        return result

    # ── Reports ──────────────────────────────────────────────────────

    def get_failure_report(
        self,
        run_id: str,
        test_index: int = 0,
        options: Optional[FailureReportOptions] = None,
    ) -> Union[FailureReport, NotFound]:
        """Error, first failing action with its context, and the timeline.

        DOM snapshots and network bodies are left out unless requested.
        """
        test = self.get_test(run_id, test_index)
        if isinstance(test, NotFound):
            return test
        return self._failure_report(test, options or FailureReportOptions())

    def get_evidence_bundle(
        self,
        run_id: str,
        test_index: int = 0,
        output_file: bool = False,
    ) -> Union[EvidenceBundle, NotFound]:
        """Full failure report plus every readable screenshot.

        With ``output_file`` the markdown is also written to
        ``<reports_dir>/evidence-<run_id>.md``.
        """
        from pwcapture.query.markdown import render_evidence_markdown

        test = self.get_test(run_id, test_index)
        if isinstance(test, NotFound):
            return test
        report = self._failure_report(
            test, FailureReportOptions(include_dom=True, include_network_bodies=True)
        )
        bundle = EvidenceBundle(report=report, markdown=render_evidence_markdown(report))
        for attachment in test.screenshots():
            try:
                bundle.screenshots.append(self._read_screenshot(attachment))
            except OSError as e:
                logger.warning("screenshot_unreadable", path=attachment.path, error=str(e))

        if output_file:
            out_path = self._reports_path(f"evidence-{run_id}.md")
            out_path.write_text(bundle.markdown, encoding="utf-8")
            bundle.output_path = str(out_path)
            logger.info("evidence_written", path=bundle.output_path)
        return bundle

    def generate_report(self, run_id: str, format: ReportFormat = "html") -> Union[GeneratedReport, NotFound]:
        """Write ``report-<run_id>.<format>`` under the reports directory."""
        from pwcapture.query.reports import build_html_report, build_json_report

        run = self.get_run(run_id)
        if isinstance(run, NotFound):
            return run
        if format == "json":
            content = json.dumps(build_json_report(run), indent=2)
        else:
            content = build_html_report(run)
        out_path = self._reports_path(f"report-{run_id}.{format}")
        out_path.write_text(content, encoding="utf-8")
        logger.info("report_written", path=str(out_path), format=format)
        return GeneratedReport(
            path=str(out_path),
            format=format,
            total=len(run.tests),
            passed=run.passed_count,
            failed=run.failed_count,
        )

    # ── Source ───────────────────────────────────────────────────────

    def get_test_source(
        self,
        file_path: str,
        test_line: Optional[int] = None,
        context: Optional[int] = None,
    ) -> Union[TestSource, NotFound]:
        """Numbered source window around a test, confined to the project root.

        The window spans ``context`` lines either side of ``test_line`` and
        is widened to cover the whole test block when it is longer.
        """
        if not file_path:
            return NotFound(message="Missing required parameter: filePath")
        resolved = pathlib.Path(file_path)
        if not resolved.is_absolute():
            resolved = pathlib.Path(self.cwd) / resolved
        resolved = resolved.resolve()
        root = pathlib.Path(self.cwd).resolve()
        if resolved != root and root not in resolved.parents:
            return NotFound(message="Path outside project root.")
        try:
            lines = resolved.read_text(encoding="utf-8").split("\n")
        except (OSError, UnicodeDecodeError) as e:
            return NotFound(message=f"Failed to read file: {e}")

        source = TestSource(file_path=file_path, start_line=1, end_line=len(lines), test_line=test_line)
        if test_line:
            span = DEFAULT_SOURCE_CONTEXT if context is None else context
            start = max(0, test_line - 1 - span)
            end = min(len(lines), test_line - 1 + span)
            bounds = find_test_bounds(lines, test_line)
            if bounds is not None:
                source.test_start, source.test_end = bounds[0] + 1, bounds[1] + 1
                start = min(start, bounds[0])
                end = max(end, bounds[1] + 1)
            source.start_line, source.end_line = start + 1, end
            source.lines = lines[start:end]
        else:
            source.lines = lines
        return source

    # ── Helpers ──────────────────────────────────────────────────────

    def _failure_report(self, test: TestEntry, options: FailureReportOptions) -> FailureReport:
        report = FailureReport(
            test=test.model_copy(update={"actions": []}),
            action_count=len(test.actions),
            timeline=_timeline(test.actions),
            options=options,
        )
        failing = test.failing_action()
        if failing is not None:
            index, action = failing
            report.failing_index = index
            report.dom_available = action.snapshot.after is not None
            report.failing_action = _strip_action(action, options.include_dom, options.include_network_bodies)

        urls = [a.page_url for a in test.actions if a.page_url]
        if report.failing_action is not None and report.failing_action.page_url:
            report.page_url = report.failing_action.page_url
        elif urls:
            report.page_url = urls[-1]

        for request in test.network_requests():
            if request.failed:
                report.failed_requests.append(
                    request if options.include_network_bodies else request.without_bodies()
                )
        report.console_errors = [m for m in test.console_messages() if m.type == "error"]
        return report

    def _read_screenshot(self, attachment: Attachment) -> Screenshot:
        data = pathlib.Path(attachment.path).read_bytes()
        return Screenshot(
            name=attachment.name,
            path=attachment.path,
            content_type=attachment.content_type,
            data=data,
        )

    def _reports_path(self, file_name: str) -> pathlib.Path:
        directory = pathlib.Path(self.cwd) / self.reports_dir
        directory.mkdir(parents=True, exist_ok=True)
        return directory / file_name
