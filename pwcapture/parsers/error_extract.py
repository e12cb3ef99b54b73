"""Best-effort extraction of an error span from raw test-runner output.

Used in single-location mode, where the line reporter's human-readable
output is the only failure description available. The markers and noise
patterns below are tuned to Playwright's line reporter; other reporters
degrade to the last meaningful lines.
"""

import re
import textwrap
from typing import Optional

from pwcapture.parsers.scanner import BraceScanner
from pwcapture.parsers.text import clean_output

MAX_ERROR_LINES = 50
FALLBACK_LINES = 8

START_MARKER_RE = re.compile(
    r"^(\w*Error:|expect\(|Expected:|Received:|Timeout \d+ms exceeded|waiting for|Call log:)"
)
CONTINUATION_RE = re.compile(r"^(Expected|Received|Call log|at |waiting for|- )")
NOISE_RE = re.compile(r"^\d+ (passed|failed|skipped)|^Running \d|^npx |^\[.+\] ›|^reports/|^\s*$")


def find_error_span(lines: list[str]) -> list[str]:
    """Return the lines of the first recognized error block, or ``[]``.

    Capture starts at the first line matching a start marker and runs until
    :data:`MAX_ERROR_LINES`, a stack frame (``at ...``) not followed by a
    continuation line, or a ``===`` separator after the first few lines.
    Stop rules are held off while a printed object's braces are open.
    """
    captured: list[str] = []
    braces: Optional[BraceScanner] = None

    for index, line in enumerate(lines):
        trimmed = line.strip()
        if braces is None:
            if not START_MARKER_RE.search(trimmed):
                continue
            braces = BraceScanner(skip_comments=False)

        captured.append(line)
        depth = braces.feed(trimmed)
        if len(captured) >= MAX_ERROR_LINES:
            break
        if depth > 0:
            continue

        if trimmed.startswith("at "):
            following = lines[index + 1].strip() if index + 1 < len(lines) else ""
            if not CONTINUATION_RE.search(following):
                break
        if trimmed.startswith("=") and len(captured) > 2:
            break

    return captured


def meaningful_tail(lines: list[str], count: int = FALLBACK_LINES) -> list[str]:
    """Last ``count`` non-empty lines that are not reporter noise."""
    meaningful = [line.strip() for line in lines if line.strip() and not NOISE_RE.search(line.strip())]
    return meaningful[-count:]


def extract_error(stdout: str, stderr: str = "", exit_code: Optional[int] = None) -> str:
    """Extract a bounded error description from a failed run's output.

    Args:
        stdout: Captured standard output.
        stderr: Captured standard error.
        exit_code: Process exit code, used in the last-resort message.

    Returns:
        The error span, else the last meaningful lines, else a generic
        message naming the exit code. Never empty.
    """
    combined = clean_output(f"{stdout}\n{stderr}")
    lines = combined.split("\n")

    span = find_error_span(lines)
    if span:
        return textwrap.dedent("\n".join(span)).strip("\n")

    tail = meaningful_tail(lines)
    if tail:
        return "\n".join(tail)
    return f"Test failed with exit code {exit_code}"
