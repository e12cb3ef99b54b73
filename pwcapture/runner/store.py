"""In-process registry of runs, owned by the orchestrator."""

import secrets
import time
from collections import OrderedDict
from typing import Optional

from pwcapture.errors import UnknownRunOrTest
from pwcapture.models import Run, TestEntry


class RunStore:
    """Runs keyed by id, in creation order.

    Args:
        max_runs: Oldest runs are evicted beyond this many; ``None`` keeps all.
    """

    def __init__(self, max_runs: Optional[int] = None) -> None:
        self.max_runs = max_runs
        self._runs: "OrderedDict[str, Run]" = OrderedDict()
        self._issued: set[str] = set()

    def create_id(self) -> str:
        """Return a fresh ``run-<ms>-<6 hex>`` id, unique in this process."""
        while True:
            run_id = f"run-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
            if run_id not in self._issued:
                self._issued.add(run_id)
                return run_id

    def create(self, **fields) -> Run:
        """Create, register and return an empty run."""
        run = Run(run_id=self.create_id(), timestamp=int(time.time() * 1000), **fields)
        self.add(run)
        return run

    def add(self, run: Run) -> None:
        self._issued.add(run.run_id)
        self._runs[run.run_id] = run
        self._runs.move_to_end(run.run_id)
        if self.max_runs is not None:
            while len(self._runs) > self.max_runs:
                self._runs.popitem(last=False)

    def get(self, run_id: str) -> Optional[Run]:
        return self._runs.get(run_id)

    def require(self, run_id: str) -> Run:
        run = self._runs.get(run_id)
        if run is None:
            raise UnknownRunOrTest(run_id)
        return run

    def require_test(self, run_id: str, test_index: int) -> TestEntry:
        run = self.require(run_id)
        if not 0 <= test_index < len(run.tests):
            raise UnknownRunOrTest(run_id, test_index, len(run.tests))
        return run.tests[test_index]

    def list(self) -> list[Run]:
        """Runs newest first."""
        return list(reversed(self._runs.values()))

    def latest(self) -> Optional[Run]:
        if not self._runs:
            return None
        return next(reversed(self._runs.values()))

    def __len__(self) -> int:
        return len(self._runs)

    def __contains__(self, run_id: object) -> bool:
        return run_id in self._runs
