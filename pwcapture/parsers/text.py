"""Terminal-output cleanup and reporter progress parsing."""

import re
from typing import Optional

ANSI_RE = re.compile(r"\x1B\[[0-9;]*[a-zA-Z]")
CURSOR_CONTROL_RE = re.compile(r"\[1A|\[2K")

_RUNNING_RE = re.compile(r"Running (\d+) test")
_PASSED_RE = re.compile(r"(\d+) passed")
_FAILED_RE = re.compile(r"(\d+) failed")


def strip_ansi(text: str) -> str:
    """Remove SGR/cursor escape sequences."""
    return ANSI_RE.sub("", text)


def clean_output(text: str) -> str:
    """Strip ANSI sequences and the bare cursor-up/erase-line remnants."""
    return CURSOR_CONTROL_RE.sub("", strip_ansi(text))


class ProgressTally:
    """Turns reporter output into human-readable progress messages.

    Batch runs feed the JSON reporter's stderr summary lines
    (``Running 12 tests``, ``10 passed``, ``2 failed``); sequential runs
    record each finished test directly.
    """

    def __init__(self, total: int = 0) -> None:
        self.total = total
        self.passed = 0
        self.failed = 0

    def message(self) -> str:
        return (
            f"{self.passed + self.failed}/{self.total} · "
            f"✅ {self.passed} passed, ❌ {self.failed} failed"
        )

    def feed_summary_line(self, line: str) -> Optional[str]:
        """Parse a batch-mode stderr line; returns a message when one is due."""
        trimmed = strip_ansi(line).strip()
        running = _RUNNING_RE.search(trimmed)
        if running:
            self.total = int(running.group(1))
            return f"Running {self.total} tests..."
        passed = _PASSED_RE.search(trimmed)
        failed = _FAILED_RE.search(trimmed)
        if passed:
            self.passed = int(passed.group(1))
        if failed:
            self.failed = int(failed.group(1))
        if (passed or failed) and self.total > 0:
            return self.message()
        return None

    def record(self, passed: bool) -> str:
        """Count one finished test and return the updated message."""
        if passed:
            self.passed += 1
        else:
            self.failed += 1
        return self.message()
