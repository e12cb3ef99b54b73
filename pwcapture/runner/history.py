"""Per-location pass/fail history kept inside the project directory.

Stored as ``<cwd>/<state_dir>/history.json``::

    {"tests/login.spec.ts:12": [{"ts": 1718000000, "s": "passed", "d": 2310}, ...]}

Entries are newest first and capped per location.
"""

import json
import os
import pathlib
import time
from typing import Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

HISTORY_FILE = "history.json"


class HistoryEntry(BaseModel):
    """One recorded result (short keys keep the file compact)."""

    ts: int = Field(description="Unix timestamp in seconds")
    s: str = Field(description="passed or failed")
    d: int = Field(description="Duration in milliseconds")


class RunHistory:
    """Reads and appends the history file of one project."""

    def __init__(self, cwd: str, state_dir: str = ".pwcapture", max_entries: int = 20) -> None:
        self.cwd = pathlib.Path(cwd)
        self.state_dir = state_dir
        self.max_entries = max_entries

    @property
    def path(self) -> pathlib.Path:
        return self.cwd / self.state_dir / HISTORY_FILE

    def load(self) -> dict[str, list[HistoryEntry]]:
        """Return the whole history; a missing or corrupt file reads as empty."""
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}
        if not isinstance(raw, dict):
            return {}
        history: dict[str, list[HistoryEntry]] = {}
        for key, entries in raw.items():
            if isinstance(entries, list):
                history[key] = [HistoryEntry.model_validate(e) for e in entries if isinstance(e, dict)]
        return history

    def entries_for(self, rel_path: str, line: int) -> list[HistoryEntry]:
        return self.load().get(f"{rel_path}:{line}", [])

    def record(
        self,
        rel_path: str,
        line: int,
        status: str,
        duration_ms: int,
        now: Optional[float] = None,
    ) -> None:
        """Prepend a result for ``rel_path:line`` and rewrite the file atomically."""
        key = f"{rel_path}:{line}"
        history = self.load()
        entry = HistoryEntry(ts=int(now if now is not None else time.time()), s=status, d=duration_ms)
        history[key] = ([entry] + history.get(key, []))[: self.max_entries]

        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {k: [e.model_dump() for e in v] for k, v in history.items()}
        tmp = self.path.with_name(HISTORY_FILE + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

        self.ensure_gitignore()

    def ensure_gitignore(self) -> None:
        """Add the state directory to ``.gitignore``; failures are only logged."""
        gitignore = self.cwd / ".gitignore"
        entry = f"{self.state_dir}/"
        try:
            if gitignore.exists():
                content = gitignore.read_text(encoding="utf-8")
                if entry in content:
                    return
                newline = "" if content.endswith("\n") or not content else "\n"
                with open(gitignore, "a", encoding="utf-8") as f:
                    f.write(f"{newline}{entry}\n")
            else:
                gitignore.write_text(f"{entry}\n", encoding="utf-8")
        except OSError as e:
            logger.warning("gitignore_update_failed", path=str(gitignore), error=str(e))
