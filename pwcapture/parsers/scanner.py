"""Brace/quote/comment-aware scanning of JavaScript-like text.

:class:`BraceScanner` counts ``{``/``}`` across lines while ignoring
braces inside string literals, template literals (including nested
``${...}`` expressions with their own quoted strings) and comments. String
state is tracked per line; block comments may span lines.

It backs two call sites: locating a test's source block
(:func:`find_test_bounds`) and keeping printed objects intact while
extracting error spans from reporter output.
"""

import re
from typing import Optional

TEST_START_PATTERN = re.compile(r"^\s*(test|setup|it)\s*(\.\w+\s*)?\(")
_CLOSING_CALL_RE = re.compile(r"^\s*\);")

_QUOTES = ("'", '"', "`")


class BraceScanner:
    """Incremental brace counter.

    Args:
        skip_comments: Treat ``//`` and ``/* */`` as comments. Disable for
            plain text where ``//`` appears in URLs.

    Attributes:
        depth: Current brace depth.
        opened: Whether at least one ``{`` has been seen.
    """

    def __init__(self, skip_comments: bool = True) -> None:
        self.skip_comments = skip_comments
        self.depth = 0
        self.opened = False
        self.in_block_comment = False

    @property
    def closed(self) -> bool:
        """True once the counter returned to zero after its first opening."""
        return self.opened and self.depth == 0

    def feed(self, line: str) -> int:
        """Consume one line and return the brace depth after it."""
        i = 0
        n = len(line)
        while i < n:
            ch = line[i]
            nxt = line[i + 1] if i + 1 < n else ""

            if self.in_block_comment:
                if ch == "*" and nxt == "/":
                    self.in_block_comment = False
                    i += 2
                else:
                    i += 1
                continue

            if self.skip_comments:
                if ch == "/" and nxt == "*":
                    self.in_block_comment = True
                    i += 2
                    continue
                if ch == "/" and nxt == "/":
                    break

            if ch in _QUOTES:
                i = _skip_string(line, i)
                continue

            if ch == "{":
                self.depth += 1
                self.opened = True
            elif ch == "}":
                self.depth -= 1
            i += 1
        return self.depth


def _skip_string(line: str, start: int) -> int:
    """Return the index just past the literal opened at ``start``."""
    quote = line[start]
    n = len(line)
    i = start + 1
    while i < n:
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        if quote == "`" and ch == "$" and i + 1 < n and line[i + 1] == "{":
            i = _skip_interpolation(line, i + 2)
            continue
        i += 1
    return n


def _skip_interpolation(line: str, start: int) -> int:
    """Skip a ``${...}`` body starting after ``${``; returns index past ``}``."""
    depth = 1
    n = len(line)
    i = start
    while i < n and depth > 0:
        ch = line[i]
        if ch in ("'", '"'):
            i += 1
            while i < n and line[i] != ch:
                if line[i] == "\\":
                    i += 1
                i += 1
            i += 1
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        i += 1
    return i


def find_test_start(lines: list[str], test_line: int) -> Optional[int]:
    """Search backwards from 1-based ``test_line`` for a test declaration.

    Returns:
        The 0-based index of the declaration line, or ``None``.
    """
    if not lines:
        return None
    index = min(max(test_line - 1, 0), len(lines) - 1)
    while index > 0 and not TEST_START_PATTERN.search(lines[index]):
        index -= 1
    if not TEST_START_PATTERN.search(lines[index]):
        return None
    return index


def find_test_bounds(lines: list[str], test_line: int) -> Optional[tuple[int, int]]:
    """Locate the source block of the test declared at or above ``test_line``.

    Args:
        lines: File content split into lines.
        test_line: 1-based line number reported for the test.

    Returns:
        ``(start, end)`` 0-based inclusive line indices, or ``None`` when no
        declaration is found. A trailing ``);`` line is included.
    """
    start = find_test_start(lines, test_line)
    if start is None:
        return None

    scanner = BraceScanner()
    end = start
    for index in range(start, len(lines)):
        scanner.feed(lines[index])
        if scanner.closed:
            end = index
            break

    if end < len(lines) - 1 and _CLOSING_CALL_RE.search(lines[end + 1]):
        end += 1
    return start, end
