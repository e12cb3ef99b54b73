"""Query & report engine over finalized runs."""

from pwcapture.query.dom import filter_interactive_only, find_element_lines, limit_depth, project_snapshot
from pwcapture.query.engine import (
    DomDiffView,
    DomSnapshotView,
    ElementMatches,
    EvidenceBundle,
    FailureReport,
    FailureReportOptions,
    GeneratedReport,
    NetworkFilter,
    NotFound,
    QueryEngine,
    RunSummary,
    Screenshot,
    TestSource,
    TimelineEntry,
)
from pwcapture.query.formatting import format_body, format_duration, truncate
from pwcapture.query.reports import build_html_report, build_json_report

__all__ = [
    "DomDiffView",
    "DomSnapshotView",
    "ElementMatches",
    "EvidenceBundle",
    "FailureReport",
    "FailureReportOptions",
    "GeneratedReport",
    "NetworkFilter",
    "NotFound",
    "QueryEngine",
    "RunSummary",
    "Screenshot",
    "TestSource",
    "TimelineEntry",
    "build_html_report",
    "build_json_report",
    "filter_interactive_only",
    "find_element_lines",
    "format_body",
    "format_duration",
    "limit_depth",
    "project_snapshot",
    "truncate",
]
