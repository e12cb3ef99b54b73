"""Collection of screenshot attachments after a test finishes."""

import fnmatch
import os
import pathlib
from typing import Iterable

import structlog

from pwcapture.models import ActionCapture, Attachment

logger = structlog.get_logger(__name__)

SKIP_DIRS = frozenset({"node_modules", ".git"})


def collect_failure_screenshots(
    cwd: str,
    since: float,
    pattern: str = "test-failed*.png",
    max_depth: int = 4,
) -> list[Attachment]:
    """Find failure screenshots written at or after ``since``.

    Args:
        cwd: Directory to search.
        since: Epoch seconds; older files belong to earlier runs.
        pattern: File-name glob.
        max_depth: Directory levels below ``cwd`` to descend.

    Returns:
        Attachments sorted by path.
    """
    found: list[Attachment] = []
    seen: set[str] = set()

    def walk(directory: str, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = list(os.scandir(directory))
        except OSError:
            return
        for entry in entries:
            if entry.name in SKIP_DIRS:
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    walk(entry.path, depth + 1)
                    continue
                if not fnmatch.fnmatch(entry.name, pattern):
                    continue
                if entry.stat().st_mtime < since:
                    continue
            except OSError:
                continue
            resolved = str(pathlib.Path(entry.path).resolve())
            if resolved not in seen:
                seen.add(resolved)
                found.append(Attachment(name=entry.name, path=resolved, content_type="image/png"))

    walk(cwd, 0)
    found.sort(key=lambda a: a.path)
    return found


def collect_action_screenshots(
    actions: Iterable[ActionCapture],
    cwd: str,
    attachments: list[Attachment],
) -> list[Attachment]:
    """Append files saved by ``screenshot`` actions that still exist."""
    known = {a.path for a in attachments}
    for action in actions:
        if action.method != "screenshot" or not isinstance(action.params, dict):
            continue
        file_path = action.params.get("path")
        if not file_path or not isinstance(file_path, str):
            continue
        resolved = pathlib.Path(file_path)
        if not resolved.is_absolute():
            resolved = pathlib.Path(cwd) / resolved
        if not resolved.exists():
            continue
        key = str(resolved.resolve())
        if key in known:
            continue
        known.add(key)
        attachments.append(Attachment(name=resolved.name, path=key, content_type="image/png"))
    return attachments


def collect_attachments(
    cwd: str,
    since: float,
    actions: Iterable[ActionCapture],
    pattern: str = "test-failed*.png",
    max_depth: int = 4,
) -> list[Attachment]:
    attachments = collect_failure_screenshots(cwd, since, pattern, max_depth)
    collect_action_screenshots(actions, cwd, attachments)
    if attachments:
        logger.debug("screenshots_collected", count=len(attachments))
    return attachments
