"""Element-level diffing of aria snapshots.

Snapshots are YAML-like aria trees where addressable elements carry a ref::

    - button "Submit" [ref=e12]
    - textbox "Email" [ref=e7]: jane@example.com

Two snapshots are compared by ref: refs only in ``before`` were removed, refs
only in ``after`` were added, and refs present in both whose accessible name
or trailing content differs were changed.
"""

import re
from dataclasses import dataclass

_REF_RE = re.compile(r"\[ref=([^\]]+)\]")
_ROLE_RE = re.compile(r'-\s*(\w+)\s*"([^"]*)"')


@dataclass(frozen=True)
class SnapshotElement:
    """One ref-addressable element parsed from a snapshot line."""

    ref: str
    role: str
    name: str
    content: str

    def describe(self) -> str:
        name = f' "{self.name}"' if self.name else ""
        return f"{self.role}{name} [ref={self.ref}]"


def parse_snapshot(snapshot: str) -> dict[str, SnapshotElement]:
    """Index the ref-carrying elements of a snapshot by ref, in document order."""
    elements: dict[str, SnapshotElement] = {}
    for line in snapshot.split("\n"):
        match = _REF_RE.search(line)
        if not match:
            continue
        role_match = _ROLE_RE.search(line[: match.start()])
        if not role_match:
            continue
        ref = match.group(1)
        content = re.sub(r"^:\s*", "", line[match.end():]).strip()
        elements[ref] = SnapshotElement(
            ref=ref,
            role=role_match.group(1),
            name=role_match.group(2),
            content=content,
        )
    return elements


def diff_snapshots(before: str, after: str) -> tuple[list[str], list[str], list[str]]:
    """Return ``(added, removed, changed)`` element descriptors."""
    before_elements = parse_snapshot(before)
    after_elements = parse_snapshot(after)

    added: list[str] = []
    removed: list[str] = []
    changed: list[str] = []

    for ref, before_el in before_elements.items():
        after_el = after_elements.get(ref)
        if after_el is None:
            removed.append(before_el.describe())
        elif before_el.content != after_el.content or before_el.name != after_el.name:
            changed.append(after_el.describe())

    for ref, after_el in after_elements.items():
        if ref not in before_elements:
            added.append(after_el.describe())

    return added, removed, changed


def summarize_diff(added: list[str], removed: list[str], changed: list[str]) -> str:
    parts = []
    if added:
        parts.append(f"{len(added)} added")
    if removed:
        parts.append(f"{len(removed)} removed")
    if changed:
        parts.append(f"{len(changed)} changed")
    return ", ".join(parts) if parts else "no changes"
