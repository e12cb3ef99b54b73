"""Exportable run reports: self-contained HTML and machine-readable JSON."""

import base64
import html
import pathlib
from datetime import datetime
from typing import Any

import structlog

from pwcapture.models import Run, TestEntry, TestStatus
from pwcapture.query.formatting import format_duration

logger = structlog.get_logger(__name__)

MAX_HTML_ROWS = 20
MAX_DOM_CHARS = 5000

REPORT_CSS = """\
  * { box-sizing: border-box; margin: 0; padding: 0; }
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f5f5; color: #333; padding: 20px; max-width: 1200px; margin: 0 auto; }
  h1 { margin-bottom: 8px; }
  .summary { background: #fff; padding: 16px 20px; border-radius: 8px; margin-bottom: 16px; box-shadow: 0 1px 3px rgba(0,0,0,.1); display: flex; gap: 24px; flex-wrap: wrap; align-items: center; }
  .summary .stat { text-align: center; }
  .summary .stat .num { font-size: 28px; font-weight: 700; }
  .summary .stat .label { font-size: 12px; color: #888; text-transform: uppercase; }
  .pass-num { color: #22863a; }
  .fail-num { color: #cb2431; }
  .badge { display: inline-block; padding: 2px 8px; border-radius: 4px; font-size: 11px; font-weight: 700; text-transform: uppercase; }
  .badge.pass { background: #dcffe4; color: #22863a; }
  .badge.fail { background: #ffdce0; color: #cb2431; }
  details.test { background: #fff; border-radius: 8px; margin-bottom: 8px; box-shadow: 0 1px 3px rgba(0,0,0,.1); }
  details.test summary { padding: 12px 16px; cursor: pointer; list-style: none; display: flex; align-items: center; gap: 8px; }
  details.test summary::-webkit-details-marker { display: none; }
  details.test summary::before { content: '\\25B6'; font-size: 10px; transition: transform .2s; }
  details.test[open] summary::before { transform: rotate(90deg); }
  .dur { color: #888; font-size: 13px; margin-left: auto; }
  .section { padding: 12px 16px; border-top: 1px solid #eee; }
  .section h4 { margin-bottom: 8px; font-size: 14px; }
  pre { background: #f6f8fa; padding: 12px; border-radius: 4px; overflow-x: auto; font-size: 12px; line-height: 1.5; white-space: pre-wrap; word-break: break-word; }
  table { width: 100%; border-collapse: collapse; font-size: 13px; }
  th, td { text-align: left; padding: 6px 10px; border-bottom: 1px solid #eee; }
  th { font-weight: 600; background: #f9f9f9; }
  .fail-row { background: #fff5f5; }
  ul { padding-left: 20px; font-size: 13px; }
  li { margin-bottom: 4px; }
  .screenshot img { max-width: 100%; border: 1px solid #ddd; border-radius: 4px; margin-top: 4px; }
  .screenshot p { font-size: 12px; color: #666; }
  .meta { font-size: 13px; color: #888; margin-bottom: 16px; }
"""


def _esc(value: Any) -> str:
    return html.escape(str(value), quote=True)


# ── JSON ─────────────────────────────────────────────────────────────


def build_json_report(run: Run) -> dict[str, Any]:
    """Full run tree in wire (camelCase) naming, attachments as metadata only."""
    return {
        "runId": run.run_id,
        "timestamp": run.timestamp,
        "mode": run.mode.value,
        "verdict": run.verdict.value if run.verdict else None,
        "tests": [
            {
                "file": test.file,
                "test": test.test_title,
                "location": test.location,
                "status": test.status.value,
                "duration": test.duration,
                "error": test.error,
                "actions": [action.to_wire() for action in test.actions],
                "attachments": [
                    {"name": a.name, "path": a.path, "contentType": a.content_type}
                    for a in test.attachments
                ],
            }
            for test in run.tests
        ],
    }


# ── HTML ─────────────────────────────────────────────────────────────


def _timeline_section(test: TestEntry) -> str:
    failing = test.failing_action()
    failing_index = failing[0] if failing else None
    rows = []
    for index, action in enumerate(test.actions):
        row_class = ' class="fail-row"' if index == failing_index else ""
        icon = "&#10007;" if action.failed else "&#10003;"
        rows.append(
            f"<tr{row_class}><td>{index}</td><td>{icon}</td>"
            f"<td>{_esc(action.type)}.{_esc(action.method)}</td>"
            f"<td>{len(action.network.requests)}</td>"
            f"<td>{format_duration(action.timing.duration_ms)}</td></tr>"
        )
    return (
        f'<div class="section"><h4>Action Timeline ({len(test.actions)})</h4>'
        "<table><tr><th>#</th><th></th><th>Action</th><th>Net</th><th>Duration</th></tr>"
        f"{''.join(rows)}</table></div>"
    )


def _screenshot_section(test: TestEntry) -> str:
    images = []
    for shot in test.screenshots():
        try:
            data = base64.b64encode(pathlib.Path(shot.path).read_bytes()).decode("ascii")
        except OSError:
            images.append(f'<div class="screenshot"><p>{_esc(shot.name)} (file not found)</p></div>')
            continue
        images.append(
            f'<div class="screenshot"><p>{_esc(shot.name)}</p>'
            f'<img src="data:{shot.content_type};base64,{data}" alt="{_esc(shot.name)}"/></div>'
        )
    return f'<div class="section"><h4>Screenshots</h4>{"".join(images)}</div>'


def _test_section(test: TestEntry) -> str:
    details = []
    if test.error:
        details.append(f'<div class="section"><h4>Error</h4><pre>{_esc(test.error)}</pre></div>')
    if test.actions:
        details.append(_timeline_section(test))

    failed_requests = [r for r in test.network_requests() if r.failed]
    if failed_requests:
        rows = "".join(
            f'<tr class="fail-row"><td>{_esc(r.method)}</td><td>{_esc(r.url)}</td>'
            f"<td>{r.status}</td><td>{format_duration(r.duration_ms)}</td></tr>"
            for r in failed_requests[:MAX_HTML_ROWS]
        )
        details.append(
            f'<div class="section"><h4>Failed Network Requests ({len(failed_requests)})</h4>'
            "<table><tr><th>Method</th><th>URL</th><th>Status</th><th>Duration</th></tr>"
            f"{rows}</table></div>"
        )

    console_errors = [m for m in test.console_messages() if m.type == "error"]
    if console_errors:
        items = "".join(f"<li>{_esc(m.text)}</li>" for m in console_errors[:MAX_HTML_ROWS])
        details.append(
            f'<div class="section"><h4>Console Errors ({len(console_errors)})</h4><ul>{items}</ul></div>'
        )

    failing = test.failing_action()
    if failing is not None and failing[1].snapshot.after:
        dom = failing[1].snapshot.after[:MAX_DOM_CHARS]
        details.append(f'<div class="section"><h4>DOM at Failure</h4><pre>{_esc(dom)}</pre></div>')

    if test.screenshots():
        details.append(_screenshot_section(test))

    passed = test.status == TestStatus.PASSED
    status_class = "pass" if passed else "fail"
    badge = '<span class="badge pass">PASS</span>' if passed else '<span class="badge fail">FAIL</span>'
    open_attr = " open" if test.status == TestStatus.FAILED else ""
    return (
        f'<details{open_attr} class="test {status_class}"><summary>{badge} '
        f"<strong>{_esc(test.test_title or test.file)}</strong> "
        f'<span class="dur">{format_duration(test.duration)}</span></summary>'
        f"{''.join(details)}</details>"
    )


def build_html_report(run: Run) -> str:
    """Single self-contained HTML page for a run.

    Failed tests are expanded; screenshots are inlined as base64 so the file
    can be shared on its own.
    """
    timestamp = datetime.fromtimestamp(run.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
    sections = "".join(_test_section(test) for test in run.tests)
    logger.debug("html_report_built", run_id=run.run_id, tests=len(run.tests))
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Test Report &mdash; {_esc(run.run_id)}</title>
<style>
{REPORT_CSS}</style>
</head>
<body>
<h1>Test Report</h1>
<p class="meta">Run ID: {_esc(run.run_id)} &middot; {_esc(timestamp)}</p>
<div class="summary">
  <div class="stat"><div class="num">{len(run.tests)}</div><div class="label">Total</div></div>
  <div class="stat"><div class="num pass-num">{run.passed_count}</div><div class="label">Passed</div></div>
  <div class="stat"><div class="num fail-num">{run.failed_count}</div><div class="label">Failed</div></div>
  <div class="stat"><div class="num">{format_duration(run.total_duration)}</div><div class="label">Duration</div></div>
</div>
{sections}
</body>
</html>"""
