"""Markdown renderers for query results.

Each renderer takes a model from :mod:`pwcapture.query.engine` (or a run)
and returns display-ready markdown. The tool server and any terminal front
end share these so both surfaces read identically.
"""

from typing import Optional

from pwcapture.models import (
    ActionCapture,
    ConsoleMessage,
    FlakyVerdict,
    NetworkRequestCapture,
    Run,
    RunMode,
    SnapshotDiff,
    TestStatus,
)
from pwcapture.query.engine import (
    DomDiffView,
    DomSnapshotView,
    ElementMatches,
    FailureReport,
    GeneratedReport,
    RunSummary,
    TestSource,
    TimelineEntry,
)
from pwcapture.query.formatting import (
    first_line,
    format_body,
    format_duration,
    format_params,
    truncate,
)

BODIES_OMITTED = "_Bodies omitted. Pass includeBody=true to include request/response payloads._"
NETWORK_BODIES_OMITTED = "_Bodies omitted. Pass includeNetworkBodies=true to include response payloads._"

_VERDICT_ICONS = {
    FlakyVerdict.CONSISTENT_PASS: "✅",
    FlakyVerdict.CONSISTENT_FAIL: "❌",
    FlakyVerdict.FLAKY: "⚠️",
}


def _status_icon(status: TestStatus) -> str:
    return "✅" if status == TestStatus.PASSED else "❌"


def _request_line(request: NetworkRequestCapture) -> str:
    icon = "✗" if request.failed else "✓"
    status = request.status if request.status is not None else "pending"
    return f"- {icon} `{request.method}` {request.url} → {status} ({format_duration(request.duration_ms)})"


def _timeline_lines(timeline: list[TimelineEntry], marker: str, with_errors: bool) -> list[str]:
    width = len(str(len(timeline) - 1))
    lines = []
    for entry in timeline:
        icon = "✗" if entry.failed else "✓"
        net = f" [{entry.request_count} req]" if entry.request_count else ""
        mark = f"  {marker}" if entry.failed else ""
        lines.append(f"{str(entry.index).rjust(width)}. {icon} {entry.name}{net}  {format_duration(entry.duration_ms)}{mark}")
        if with_errors and entry.error_message:
            lines.append(f"    {entry.error_message}")
    return lines


def _diff_lines(diff: Optional[SnapshotDiff], prefixed: bool) -> list[str]:
    if diff is None or diff.is_empty:
        return []
    labels = ("+ Added", "- Removed", "~ Changed") if prefixed else ("Added", "Removed", "Changed")
    lines = ["", "### DOM Changes"]
    for label, items in zip(labels, (diff.added, diff.removed, diff.changed)):
        if items:
            lines.append(f"{label}: {', '.join(items)}")
    return lines


# ── Runs ─────────────────────────────────────────────────────────────


def render_run_result(run: Run) -> str:
    """Outcome of ``e2e_run_test`` for any run mode."""
    if run.mode in (RunMode.BATCH, RunMode.REPEAT):
        return render_batch_result(run)
    if run.mode == RunMode.FLAKY:
        return render_flaky_result(run)

    lines = [f"**Run ID:** `{run.run_id}`", ""]
    for test in run.tests:
        count = len(test.actions)
        indices = f" (indices 0–{count - 1})" if count else ""
        lines.append(
            f"{_status_icon(test.status)} **{test.status.value.upper()}** · `{test.file}` · "
            f"{format_duration(test.duration)} · {count} actions{indices}"
        )
        if test.error:
            lines.append(f"> {test.error[:300]}")
        if test.attachments:
            lines.append(f"📷 {len(test.attachments)} screenshot(s)")
        lines.append("")
    if run.stopped:
        lines.append(f"_Stopped by user; {run.skipped} location(s) skipped._")
    if not run.all_passed:
        lines.append(f"Use `e2e_get_failure_report` with runId `{run.run_id}` for detailed analysis.")
    return "\n".join(lines)


def render_flaky_result(run: Run) -> str:
    verdict = run.verdict or FlakyVerdict.from_statuses(t.status for t in run.tests)
    verdict_text = f"{_VERDICT_ICONS[verdict]} {verdict.value}" if verdict else "?"
    lines = [
        f"**Run ID:** `{run.run_id}`",
        "",
        f"## Flaky Detection: {len(run.tests)} runs",
        "",
        f"**Verdict:** {verdict_text}",
        "",
        "| Run | Status | Duration | Run ID |",
        "|-----|--------|----------|--------|",
    ]
    for index, test in enumerate(run.tests):
        lines.append(
            f"| {index + 1} | {_status_icon(test.status)} {test.status.value} | "
            f"{format_duration(test.duration)} | `{run.run_id}` [{index}] |"
        )
    lines.append("")
    failed = [i for i, t in enumerate(run.tests) if t.status == TestStatus.FAILED]
    if failed:
        lines.append(
            f"Use `e2e_get_failure_report` with runId `{run.run_id}` and testIndex {failed[0]} "
            "to investigate the failure."
        )
    return "\n".join(lines)


def render_batch_result(run: Run) -> str:
    failed = [(i, t) for i, t in enumerate(run.tests) if t.status == TestStatus.FAILED]
    project_note = f" (project: {run.project})" if run.project else ""
    lines = [
        f"**Run ID:** `{run.run_id}`",
        "",
        f"## Results: {run.passed_count} passed, {len(failed)} failed{project_note} · "
        f"{format_duration(run.total_duration)}",
        "",
    ]
    if run.verdict:
        lines += [f"**Verdict:** {_VERDICT_ICONS[run.verdict]} {run.verdict.value}", ""]
    if run.skipped:
        lines += [f"_{run.skipped} skipped._", ""]

    if failed:
        lines += [f"### Failed ({len(failed)})", ""]
        for index, test in failed:
            lines.append(f"❌ [{index}] `{test.location}` — {test.test_title} · {format_duration(test.duration)}")
            if test.error:
                lines.append(f"> {first_line(test.error)[:200]}")
            lines.append("")
        lines.append(f"_Use `e2e_get_failure_report` with runId `{run.run_id}` and testIndex [N] to investigate._")
        lines.append("_To debug with action capture, re-run the specific test: `e2e_run_test` with the file:line location._")
    else:
        lines.append("All tests passed!")
    return "\n".join(lines)


def render_run_summary(summary: RunSummary) -> str:
    run = summary.run
    counts = summary.counts
    lines = [
        f"## Run `{run.run_id}` ({run.mode.value})",
        f"- **Tests:** {counts['total']} · **Passed:** {counts['passed']} · **Failed:** {counts['failed']}",
        f"- **Duration:** {format_duration(counts['durationMs'])}",
    ]
    if run.verdict:
        lines.append(f"- **Verdict:** {run.verdict.value}")
    if run.stopped or run.skipped:
        lines.append(f"- **Stopped:** {'yes' if run.stopped else 'no'} · **Skipped:** {run.skipped}")
    lines.append("")
    for index, (test, actions) in enumerate(zip(run.tests, counts["actions"])):
        lines.append(
            f"{index}. {_status_icon(test.status)} `{test.location or test.file}` · "
            f"{format_duration(test.duration)} · {actions} actions"
        )
    return "\n".join(lines)


def render_run_list(runs: list[Run]) -> str:
    if not runs:
        return "No runs recorded yet."
    lines = [f"## Runs ({len(runs)})", ""]
    for run in runs:
        lines.append(
            f"- `{run.run_id}` · {run.mode.value} · {run.passed_count} passed, {run.failed_count} failed"
        )
    return "\n".join(lines)


# ── Actions ──────────────────────────────────────────────────────────


def render_timeline(timeline: list[TimelineEntry]) -> str:
    if not timeline:
        return "No actions captured."
    lines = [f"## Action Timeline ({len(timeline)} actions)", ""]
    lines += _timeline_lines(timeline, "← FAILED", with_errors=True)
    return "\n".join(lines)


def render_action_detail(action: ActionCapture, index: int) -> str:
    parts = [f"## {'❌' if action.failed else '✓'} Action {index}: `{action.name}`"]
    if action.title:
        parts.append(f"**Title:** {action.title}")
    if action.page_url:
        parts.append(f"**URL:** {action.page_url}")
    parts.append(f"**Duration:** {format_duration(action.timing.duration_ms)}")

    if action.params:
        parts.append(f"\n**Params:**\n```json\n{format_params(action.params)}\n```")
    if action.error:
        parts.append(f"\n❌ **Error:** {action.error.message}")
        if action.error.stack:
            parts.append(f"```\n{action.error.stack}\n```")

    parts += _diff_lines(action.snapshot.diff, prefixed=True)

    requests = action.network.requests
    if requests:
        parts.append(f"\n### Network ({len(requests)} requests)")
        parts += [_request_line(r) for r in requests]

    errors = [c for c in action.console if c.type == "error"]
    if errors:
        parts.append(f"\n### Console Errors ({len(errors)})")
        parts += [f"- ⚠ {e.text}" for e in errors[:5]]
    return "\n".join(parts)


# ── Evidence views ───────────────────────────────────────────────────


def render_network(requests: list[NetworkRequestCapture], include_body: bool = False) -> str:
    if not requests:
        return "No matching network requests."
    parts = [f"## Network Requests ({len(requests)})", ""]
    for request in requests:
        icon = "✗" if request.failed else "✓"
        status = request.status if request.status is not None else "pending"
        parts.append(f"### {icon} `{request.method}` {request.url}")
        parts.append(
            f"**Status:** {status} · **Duration:** {format_duration(request.duration_ms)} · "
            f"**Type:** {request.resource_type or '?'}"
        )
        if include_body:
            if request.request_post_data:
                parts.append(f"\nRequest body:\n```json\n{truncate(request.request_post_data, 5000)}\n```")
            if request.response_body:
                body = format_body(request.response_body, 10000)
                parts.append(f"\nResponse body:\n```{body.lang}\n{body.text}\n```")
        parts.append("")
    if not include_body:
        parts.append(BODIES_OMITTED)
    return "\n".join(parts)


def render_console(messages: list[ConsoleMessage]) -> str:
    if not messages:
        return "No console messages."
    lines = [f"## Console Output ({len(messages)})", ""]
    for message in messages:
        location = f" ({message.location})" if message.location else ""
        lines.append(f"[{message.type.upper()}] {message.text}{location}")
    return "\n".join(lines)


def render_dom_snapshot(view: DomSnapshotView) -> str:
    if view.interactive_only:
        note = " (interactive elements only)"
    elif view.depth is not None:
        note = f" (depth≤{view.depth})"
    else:
        note = ""
    parts = []
    for label, snapshot in (("Before", view.before), ("After", view.after)):
        if snapshot is not None:
            parts.append(f"## DOM {label} Action {view.action_index}{note}\n```\n{snapshot}\n```")
    if not parts:
        return "No DOM snapshot available for this action."
    return "\n\n".join(parts)


def render_dom_diff(view: DomDiffView) -> str:
    diff = view.diff
    if diff is None:
        return "No DOM diff available for this action."
    parts = [f"## DOM Diff for Action {view.action_index}: {view.action_name}", ""]
    for title, prefix, items in (
        ("Added", "+", diff.added),
        ("Removed", "-", diff.removed),
        ("Changed", "~", diff.changed),
    ):
        if items:
            parts.append(f"### {title} Elements ({len(items)})")
            parts += [f"{prefix} {item}" for item in items]
            parts.append("")
    if diff.is_empty:
        parts.append("No DOM changes detected.")
    return "\n".join(parts)


def render_elements(result: ElementMatches) -> str:
    if not result.snapshot_available:
        return "No DOM snapshot available for this action."
    if not result.matches:
        filters = []
        if result.role:
            filters.append(f'role="{result.role.lower()}"')
        if result.text:
            filters.append(f'text="{result.text}"')
        return f"No elements found matching {', '.join(filters)}."
    lines = [f"## Found {len(result.matches)} element(s) (action {result.action_index} {result.which})", ""]
    lines += result.matches
    return "\n".join(lines)


def render_test_source(source: TestSource) -> str:
    numbered = []
    for offset, line in enumerate(source.lines):
        number = source.start_line + offset
        marker = " >>>" if source.test_line and number == source.test_line else "    "
        numbered.append(f"{marker} {number:>4}| {line}")
    range_note = f" (lines {source.start_line}–{source.end_line})" if source.test_line else ""
    body = "\n".join(numbered)
    return f"## {source.file_path}{range_note}\n```typescript\n{body}\n```"


def render_generated_report(report: GeneratedReport) -> str:
    if report.format == "json":
        return f"JSON report written to `{report.path}` ({report.total} tests)."
    return f"HTML report written to `{report.path}` ({report.passed} passed, {report.failed} failed)."


# ── Failure report & evidence ────────────────────────────────────────


def render_failure_report(report: FailureReport) -> str:
    """Render the token-conscious failure report.

    DOM and bodies appear only when the report was built with them; otherwise
    a hint names the follow-up query.
    """
    test = report.test
    options = report.options
    parts = [
        f"# {_status_icon(test.status)} Failure Report",
        f"- **File:** `{test.file}`",
        f"- **Status:** {test.status.value}",
        f"- **Duration:** {format_duration(test.duration)}",
    ]
    if test.error:
        parts.append(f"- **Error:**\n```\n{test.error}\n```")
    parts.append("")

    action = report.failing_action
    if action is not None:
        index = report.failing_index
        parts.append(f"## ❌ Failing Action (step {index + 1} of {report.action_count})")
        parts.append(f"- **Action:** `{action.name}`")
        if action.title:
            parts.append(f"- **Title:** {action.title}")
        if action.params:
            parts.append(f"- **Params:** `{format_params(action.params)}`")
        if action.page_url:
            parts.append(f"- **Page URL:** {action.page_url}")
        parts.append(f"- **Duration:** {format_duration(action.timing.duration_ms)}")
        if action.error:
            parts.append(f"- **Error:** {action.error.message}")
            if action.error.stack:
                parts.append(f"```\n{action.error.stack}\n```")

        if options.include_dom and action.snapshot.after:
            parts.append(f"\n### DOM at Failure\n```\n{action.snapshot.after[:5000]}\n```")
        elif report.dom_available:
            parts.append(
                f"\n_DOM snapshot available. Use `e2e_get_dom_snapshot` (actionIndex={index}) "
                "or re-request with includeDom=true._"
            )

        parts += _diff_lines(action.snapshot.diff, prefixed=False)

        requests = action.network.requests
        if requests:
            parts.append(f"\n### Network During Failure ({len(requests)})")
            for request in requests:
                parts.append(_request_line(request))
                if options.include_network_bodies and request.response_body:
                    body = format_body(request.response_body, 3000)
                    parts.append(f"  ```{body.lang}\n{body.text}\n```")

        errors = [c for c in action.console if c.type == "error"]
        if errors:
            parts.append("\n### Console Errors")
            parts += [f"- {e.text}" for e in errors]
        parts.append("")

    if test.attachments:
        parts.append(f"## Screenshots ({len(test.attachments)})")
        parts += [f"- {a.name}: `{a.path}`" for a in test.attachments]
        parts.append("Use `e2e_get_screenshot` to view them.")
        parts.append("")

    if report.failed_requests:
        parts.append(f"## ✗ Failed Network Requests ({len(report.failed_requests)})")
        for request in report.failed_requests[:10]:
            parts.append(f"- `{request.method}` {request.url} → **{request.status}**")
            if options.include_network_bodies and request.response_body:
                parts.append(f"  {truncate(request.response_body, 500)}")
        if not options.include_network_bodies:
            parts.append(NETWORK_BODIES_OMITTED)
        parts.append("")

    if report.console_errors:
        parts.append(f"## Console Errors ({len(report.console_errors)})")
        parts += [f"- {e.text}" for e in report.console_errors[:10]]
        parts.append("")

    if report.timeline:
        parts.append(f"## Action Timeline ({len(report.timeline)})")
        parts += _timeline_lines(report.timeline, "← FAILING", with_errors=False)
    return "\n".join(parts)


def render_evidence_markdown(report: FailureReport) -> str:
    """Markdown body of an evidence bundle; screenshots travel separately."""
    test = report.test
    action = report.failing_action
    parts = [
        f"# Evidence Bundle — `{test.file}`",
        "",
        f"- **Status:** {test.status.value}",
        f"- **Duration:** {format_duration(test.duration)}",
        f"- **Location:** `{test.location}`",
    ]
    if action is not None:
        parts.append(f"- **Page URL:** {report.page_url or 'unknown'}")
    parts.append("")

    if test.error:
        parts += ["## Error", f"```\n{test.error}\n```", ""]

    if report.timeline:
        parts.append("## Steps to Reproduce")
        for entry in report.timeline:
            title = f" — {entry.title}" if entry.title else ""
            marker = " **← FAILED HERE**" if entry.failed else ""
            parts.append(f"{entry.index + 1}. `{entry.name}`{title}{marker}")
        parts.append("")
        parts.append(f"## Action Timeline ({len(report.timeline)} actions)")
        parts += _timeline_lines(report.timeline, "← FAILING", with_errors=True)
        parts.append("")

    if action is not None:
        parts.append(f"## Failing Action Detail (step {report.failing_index})")
        parts.append(f"- **Action:** `{action.name}`")
        if action.params:
            parts.append(f"- **Params:** `{format_params(action.params)}`")
        if action.error:
            parts.append(f"- **Error:** {action.error.message}")
            if action.error.stack:
                parts.append(f"```\n{action.error.stack}\n```")
        parts.append("")

    if report.failed_requests:
        parts.append(f"## Failed Network Requests ({len(report.failed_requests)})")
        for request in report.failed_requests[:15]:
            parts.append(f"### `{request.method}` {request.url} → **{request.status}**")
            parts.append(f"Duration: {format_duration(request.duration_ms)}")
            if request.request_post_data:
                parts.append(f"\nRequest body:\n```json\n{truncate(request.request_post_data, 3000)}\n```")
            if request.response_body:
                body = format_body(request.response_body, 5000)
                parts.append(f"\nResponse body:\n```{body.lang}\n{body.text}\n```")
            parts.append("")

    if report.console_errors:
        parts.append(f"## Console Errors ({len(report.console_errors)})")
        parts += [f"- {e.text}" for e in report.console_errors[:20]]
        parts.append("")

    if action is not None and action.snapshot.after:
        parts += ["## DOM at Failure Point", f"```\n{truncate(action.snapshot.after, 5000)}\n```", ""]
    return "\n".join(parts)
