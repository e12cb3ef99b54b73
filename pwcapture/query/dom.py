"""Projections over aria snapshots (two-space indented ``- role "name"`` trees)."""

import re
from typing import Optional

INTERACTIVE_ROLES = (
    "button",
    "link",
    "textbox",
    "combobox",
    "checkbox",
    "radio",
    "option",
    "menuitem",
    "menuitemcheckbox",
    "menuitemradio",
    "spinbutton",
    "searchbox",
    "switch",
    "slider",
    "tab",
    "treeitem",
    "listbox",
    "tree",
)

INTERACTIVE_RE = re.compile(r"^\s*- (" + "|".join(INTERACTIVE_ROLES) + r")\b(?!-)")
ELEMENT_LINE_RE = re.compile(r"^\s*- \w")
INDENT_WIDTH = 2


def line_depth(line: str) -> int:
    indent = len(line) - len(line.lstrip(" "))
    return indent // INDENT_WIDTH


def limit_depth(snapshot: str, max_depth: int) -> str:
    """Keep lines nested at most ``max_depth`` levels (0 = root lines only)."""
    return "\n".join(line for line in snapshot.split("\n") if line_depth(line) <= max_depth)


def filter_interactive_only(snapshot: str) -> str:
    """Keep only lines whose role is in :data:`INTERACTIVE_ROLES`."""
    return "\n".join(line for line in snapshot.split("\n") if INTERACTIVE_RE.search(line))


def project_snapshot(snapshot: str, depth: Optional[int] = None, interactive_only: bool = False) -> str:
    result = snapshot
    if depth is not None:
        result = limit_depth(result, depth)
    if interactive_only:
        result = filter_interactive_only(result)
    return result


def find_element_lines(snapshot: str, role: Optional[str] = None, text: Optional[str] = None) -> list[str]:
    """Case-insensitive search for element lines by role and/or text."""
    role = role.lower() if role else None
    text = text.lower() if text else None
    matches = []
    for line in snapshot.split("\n"):
        if not ELEMENT_LINE_RE.search(line):
            continue
        lowered = line.lower()
        if role and f"- {role}" not in lowered:
            continue
        if text and text not in lowered:
            continue
        matches.append(line.lstrip())
    return matches
