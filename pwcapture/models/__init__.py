"""Data models for runs, tests and captured actions."""

from pwcapture.models.run import (
    ActionCapture,
    ActionError,
    ActionTiming,
    Attachment,
    CaptureModel,
    ConsoleLocation,
    ConsoleMessage,
    FlakyVerdict,
    NetworkActivity,
    NetworkRequestCapture,
    Run,
    RunMode,
    SnapshotCapture,
    SnapshotDiff,
    TestEntry,
    TestStatus,
)
from pwcapture.models.snapshot_diff import (
    SnapshotElement,
    diff_snapshots,
    parse_snapshot,
    summarize_diff,
)

__all__ = [
    "ActionCapture",
    "ActionError",
    "ActionTiming",
    "Attachment",
    "CaptureModel",
    "ConsoleLocation",
    "ConsoleMessage",
    "FlakyVerdict",
    "NetworkActivity",
    "NetworkRequestCapture",
    "Run",
    "RunMode",
    "SnapshotCapture",
    "SnapshotDiff",
    "SnapshotElement",
    "TestEntry",
    "TestStatus",
    "diff_snapshots",
    "parse_snapshot",
    "summarize_diff",
]
