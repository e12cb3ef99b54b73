"""Flattening of Playwright JSON-reporter output into test entries.

The reporter emits a nested ``suites -> specs -> tests -> results`` tree.
Each non-skipped test becomes one :class:`TestEntry` whose title joins the
suite/spec titles with ``" > "`` and carries a ``[project]`` suffix.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from pwcapture.errors import ReporterParseFailure
from pwcapture.models import TestEntry, TestStatus
from pwcapture.parsers.text import strip_ansi

logger = structlog.get_logger(__name__)

RAW_PREVIEW_CHARS = 500
PASSING_STATUSES = ("expected", "flaky")


@dataclass
class BatchParseResult:
    """Entries parsed from one reporter payload.

    Attributes:
        entries: Finalized entries, in report order.
        skipped: Number of skipped tests that were dropped.
        parse_error: Set when the payload could not be parsed and ``entries``
            holds the single synthetic failure entry.
    """

    entries: list[TestEntry] = field(default_factory=list)
    skipped: int = 0
    parse_error: Optional[str] = None


def load_report(raw: str) -> dict[str, Any]:
    """Decode a reporter payload, tolerating text around the JSON object.

    Raises:
        ReporterParseFailure: If no JSON object can be decoded.
    """
    try:
        data = json.loads(raw.strip())
    except json.JSONDecodeError:
        start = raw.find("{")
        end = raw.rfind("}")
        if start < 0 or end <= start:
            raise ReporterParseFailure("No JSON output from test run", raw=raw)
        try:
            data = json.loads(raw[start : end + 1])
        except json.JSONDecodeError as e:
            raise ReporterParseFailure(f"Failed to parse test output: {e}", raw=raw) from e
    if not isinstance(data, dict):
        raise ReporterParseFailure("Failed to parse test output: not a JSON object", raw=raw)
    return data


def synthetic_failure(reason: str, raw: str) -> TestEntry:
    """The single failed entry standing in for an unparseable batch."""
    return TestEntry(
        file="unknown",
        test_title="all",
        location="",
        status=TestStatus.FAILED,
        duration=0,
        error=f"{reason}. Raw:\n{raw[:RAW_PREVIEW_CHARS]}",
    )


def _join_title(parent: str, title: Optional[str]) -> str:
    if parent and title:
        return f"{parent} > {title}"
    return title or parent


def _relative_file(spec_file: str, root_dir: str, cwd: str) -> str:
    if not spec_file:
        return "unknown"
    absolute = spec_file if os.path.isabs(spec_file) else os.path.join(root_dir, spec_file)
    return os.path.relpath(os.path.normpath(absolute), cwd)


def _result_error(result: dict[str, Any]) -> Optional[str]:
    errors = result.get("errors") or []
    messages = [strip_ansi(e.get("message") or "") for e in errors if isinstance(e, dict)]
    joined = "\n".join(m for m in messages if m)
    if not joined and isinstance(result.get("error"), dict):
        joined = strip_ansi(result["error"].get("message") or "")
    return joined or None


def _dicts(value: Any) -> list[dict[str, Any]]:
    """The dict items of a reporter list; anything else is skipped."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _flatten(data: dict[str, Any], cwd: str) -> BatchParseResult:
    config = data.get("config")
    root_dir = (config.get("rootDir") if isinstance(config, dict) else None) or cwd
    result = BatchParseResult()

    def walk(suite: dict[str, Any], parent_title: str) -> None:
        current_title = _join_title(parent_title, suite.get("title"))

        for spec in _dicts(suite.get("specs")):
            rel_file = _relative_file(spec.get("file") or suite.get("file") or "", root_dir, cwd)
            full_title = _join_title(current_title, spec.get("title"))

            for test in _dicts(spec.get("tests")):
                if test.get("status") == "skipped":
                    result.skipped += 1
                    continue
                results = _dicts(test.get("results"))
                last = results[-1] if results else {}
                passed = test.get("status") in PASSING_STATUSES
                project = test.get("projectName")
                suffix = f" [{project}]" if project else ""

                result.entries.append(
                    TestEntry(
                        file=rel_file,
                        test_title=f"{full_title}{suffix}",
                        location=f"{rel_file}:{spec.get('line') or 0}",
                        status=TestStatus.PASSED if passed else TestStatus.FAILED,
                        duration=int(last.get("duration") or 0),
                        error=None if passed else (_result_error(last) or "Test failed"),
                    )
                )

        for nested in _dicts(suite.get("suites")):
            walk(nested, current_title)

    for suite in _dicts(data.get("suites")):
        walk(suite, "")
    return result


def parse_batch_report(raw: str, cwd: str) -> BatchParseResult:
    """Parse JSON-reporter stdout into entries; never raises.

    Suites, specs, tests and results that are not objects are skipped.

    Args:
        raw: Reporter stdout.
        cwd: Project directory; entry files are made relative to it.

    Returns:
        Parsed entries, or a single synthetic failed entry with a truncated
        raw-output preview when the payload is unparseable.
    """
    try:
        data = load_report(raw)
        try:
            result = _flatten(data, cwd)
        except (AttributeError, TypeError, ValueError) as e:
            raise ReporterParseFailure(f"Unexpected report structure: {e}", raw=raw) from e
    except ReporterParseFailure as e:
        reason = e.reason.split(":")[0]
        logger.warning("batch_report_unparseable", reason=e.reason, raw_chars=len(raw))
        return BatchParseResult(entries=[synthetic_failure(reason, raw)], parse_error=e.reason)

    logger.debug(
        "batch_report_parsed",
        entries=len(result.entries),
        skipped=result.skipped,
    )
    return result
