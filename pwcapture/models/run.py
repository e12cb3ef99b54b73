"""Run / test / action result tree assembled from capture events.

A :class:`Run` owns its :class:`TestEntry` records, which own their
:class:`ActionCapture` records. Field names are snake_case in Python and
camelCase on the wire (``durationMs``, ``pageUrl``), matching the events the
instrumented test workers post.
"""

from enum import Enum
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from pwcapture.models.snapshot_diff import diff_snapshots, summarize_diff


class CaptureModel(BaseModel):
    """Base model: camelCase aliases, snake_case access, unknown keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-compatible dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TestStatus(str, Enum):
    """Lifecycle status of a test entry.

    Attributes:
        RUNNING: The owning subprocess has not exited yet.
        PASSED: The subprocess exited with code 0 (or the reporter said so).
        FAILED: Nonzero exit, timeout, stop request or spawn failure.
    """

    __test__ = False

    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class FlakyVerdict(str, Enum):
    """Classification of repeated attempts of the same test."""

    CONSISTENT_PASS = "CONSISTENT PASS"
    CONSISTENT_FAIL = "CONSISTENT FAIL"
    FLAKY = "FLAKY"

    @classmethod
    def from_statuses(cls, statuses: Iterable["TestStatus"]) -> Optional["FlakyVerdict"]:
        """Derive the verdict from attempt statuses; ``None`` for no attempts."""
        seen = set(statuses)
        if not seen:
            return None
        if seen == {TestStatus.PASSED}:
            return cls.CONSISTENT_PASS
        if seen == {TestStatus.FAILED}:
            return cls.CONSISTENT_FAIL
        return cls.FLAKY


class RunMode(str, Enum):
    """How the orchestrator produced a run."""

    SINGLE = "single"
    SEQUENCE = "sequence"
    BATCH = "batch"
    FLAKY = "flaky"
    REPEAT = "repeat"


# ── Captured evidence ────────────────────────────────────────────────


class NetworkRequestCapture(CaptureModel):
    """One network request observed while an action was active."""

    method: str = Field(description="HTTP method")
    url: str = Field(description="Request URL")
    status: Optional[int] = Field(default=None, description="Response status, None while pending")
    status_text: Optional[str] = Field(default=None)
    start_time: Optional[float] = Field(default=None)
    end_time: Optional[float] = Field(default=None)
    duration_ms: Optional[float] = Field(default=None)
    resource_type: Optional[str] = Field(default=None)
    response_headers: Optional[dict[str, str]] = Field(default=None)
    request_post_data: Optional[str] = Field(default=None)
    response_body: Optional[str] = Field(default=None)

    @property
    def failed(self) -> bool:
        return self.status is not None and self.status >= 400

    def without_bodies(self) -> "NetworkRequestCapture":
        return self.model_copy(update={"request_post_data": None, "response_body": None})


class ConsoleLocation(CaptureModel):
    url: str = ""
    line_number: int = 0
    column_number: int = 0

    def __str__(self) -> str:
        return f"{self.url}:{self.line_number}:{self.column_number}"


class ConsoleMessage(CaptureModel):
    """One console message observed while an action was active."""

    type: str = Field(default="log", description="log, warn, error or info")
    text: str = Field(default="")
    timestamp: Optional[float] = Field(default=None)
    location: Optional[ConsoleLocation] = Field(default=None)

    @model_validator(mode="before")
    @classmethod
    def _normalize_type(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("type") == "warning":
            data = {**data, "type": "warn"}
        return data


class SnapshotDiff(CaptureModel):
    """Elements added, removed or changed between two snapshots."""

    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    changed: list[str] = Field(default_factory=list)
    summary: str = Field(default="no changes")

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.changed)

    @classmethod
    def compute(cls, before: str, after: str) -> "SnapshotDiff":
        added, removed, changed = diff_snapshots(before, after)
        return cls(
            added=added,
            removed=removed,
            changed=changed,
            summary=summarize_diff(added, removed, changed),
        )


class SnapshotCapture(CaptureModel):
    """Aria snapshots around one action; the diff is derived once on load."""

    before: Optional[str] = None
    after: Optional[str] = None
    diff: Optional[SnapshotDiff] = None

    @model_validator(mode="after")
    def _derive_diff(self) -> "SnapshotCapture":
        if self.diff is None and self.before is not None and self.after is not None:
            self.diff = SnapshotDiff.compute(self.before, self.after)
        return self


class ActionTiming(CaptureModel):
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    duration_ms: Optional[float] = None


class ActionError(CaptureModel):
    message: str = ""
    stack: Optional[str] = None


class NetworkActivity(CaptureModel):
    requests: list[NetworkRequestCapture] = Field(default_factory=list)
    summary: str = ""


class ActionCapture(CaptureModel):
    """One recorded interaction step with its network/console/DOM evidence."""

    call_id: Optional[str] = Field(default=None)
    type: str = Field(description="Receiver type, e.g. Page, Locator, Frame")
    method: str = Field(description="Method name, e.g. click, goto, fill")
    title: Optional[str] = Field(default=None)
    params: Any = Field(default=None)
    timing: ActionTiming = Field(default_factory=ActionTiming)
    network: NetworkActivity = Field(default_factory=NetworkActivity)
    console: list[ConsoleMessage] = Field(default_factory=list)
    snapshot: SnapshotCapture = Field(default_factory=SnapshotCapture)
    error: Optional[ActionError] = Field(default=None)
    result: Any = Field(default=None)
    page_id: Optional[str] = Field(default=None)
    page_url: Optional[str] = Field(default=None)

    @property
    def name(self) -> str:
        return f"{self.type}.{self.method}"

    @property
    def label(self) -> str:
        return self.title or self.name

    @property
    def failed(self) -> bool:
        return self.error is not None


class Attachment(CaptureModel):
    """A file collected for a test, typically a screenshot."""

    name: str
    path: str
    content_type: str = "image/png"

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


# ── Result tree ──────────────────────────────────────────────────────


class TestEntry(CaptureModel):
    """Result record for one test location within a run.

    Attributes:
        file: Test file path relative to the project root.
        test_title: Human-readable test title (or the location in single mode).
        location: ``file:line`` location string.
        status: running until the owning subprocess exits.
        duration: Wall-clock duration in milliseconds.
        error: Error text for failed tests.
        actions: Captured actions in arrival order.
        attachments: Screenshots collected for this test.
    """

    __test__ = False

    file: str
    test_title: str
    location: str = ""
    status: TestStatus = TestStatus.RUNNING
    duration: int = 0
    error: Optional[str] = None
    actions: list[ActionCapture] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.status == TestStatus.RUNNING

    @property
    def passed(self) -> bool:
        return self.status == TestStatus.PASSED

    def finalize(self, *, passed: bool, duration_ms: int, error: Optional[str] = None) -> None:
        """Move out of ``running``; only the orchestrator calls this."""
        self.status = TestStatus.PASSED if passed else TestStatus.FAILED
        self.duration = max(0, int(duration_ms))
        self.error = None if passed else (error or "Test failed")

    def failing_action(self) -> Optional[tuple[int, ActionCapture]]:
        """Return ``(index, action)`` of the first action carrying an error."""
        for index, action in enumerate(self.actions):
            if action.error is not None:
                return index, action
        return None

    def network_requests(self) -> list[NetworkRequestCapture]:
        """All requests across actions, in observation order."""
        return [request for action in self.actions for request in action.network.requests]

    def console_messages(self) -> list[ConsoleMessage]:
        """All console messages across actions, in observation order."""
        return [message for action in self.actions for message in action.console]

    def screenshots(self) -> list[Attachment]:
        return [a for a in self.attachments if a.is_image]


class Run(CaptureModel):
    """One orchestrator invocation and the tests it produced."""

    run_id: str
    timestamp: int = Field(description="Start time, epoch milliseconds")
    mode: RunMode = RunMode.SINGLE
    tests: list[TestEntry] = Field(default_factory=list)
    verdict: Optional[FlakyVerdict] = None
    project: Optional[str] = None
    stopped: bool = False
    skipped: int = 0

    @property
    def passed_count(self) -> int:
        return sum(1 for t in self.tests if t.status == TestStatus.PASSED)

    @property
    def failed_count(self) -> int:
        return sum(1 for t in self.tests if t.status == TestStatus.FAILED)

    @property
    def running_count(self) -> int:
        return sum(1 for t in self.tests if t.status == TestStatus.RUNNING)

    @property
    def total_duration(self) -> int:
        return sum(t.duration for t in self.tests)

    @property
    def is_finalized(self) -> bool:
        return self.running_count == 0

    @property
    def all_passed(self) -> bool:
        return bool(self.tests) and self.failed_count == 0 and self.running_count == 0

    def summary(self) -> dict[str, Any]:
        """Return a JSON-serializable summary of the run."""
        return {
            "runId": self.run_id,
            "mode": self.mode.value,
            "total": len(self.tests),
            "passed": self.passed_count,
            "failed": self.failed_count,
            "durationMs": self.total_duration,
            "verdict": self.verdict.value if self.verdict else None,
            "stopped": self.stopped,
            "skipped": self.skipped,
        }
