"""Error taxonomy for the capture engine.

Process-level errors are recorded on the affected test entry by the
orchestrator; capture-ingestion errors reject one batch; query-layer errors
are converted into structured not-found results by the query engine.
"""

from typing import Any, Optional


class PwCaptureError(Exception):
    """Base class for all pwcapture errors."""


class ProcessSpawnError(PwCaptureError):
    """The test subprocess could not be started."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start `{command}`: {reason}")


class ProcessTimeout(PwCaptureError):
    """The test subprocess exceeded its configured timeout and was terminated.

    Attributes:
        timeout_seconds: The configured timeout that was exceeded.
        outcome: Partial process outcome collected before termination.
    """

    def __init__(self, timeout_seconds: float, outcome: Any = None) -> None:
        self.timeout_seconds = timeout_seconds
        self.outcome = outcome
        super().__init__(f"Test timeout ({_format_seconds(timeout_seconds)})")


class MalformedCaptureEvent(PwCaptureError):
    """A capture batch failed validation and was rejected as a whole."""

    def __init__(self, reason: str, index: Optional[int] = None) -> None:
        self.reason = reason
        self.index = index
        where = f" (event {index})" if index is not None else ""
        super().__init__(f"Malformed capture batch{where}: {reason}")


class ReporterParseFailure(PwCaptureError):
    """The structured reporter output could not be parsed."""

    def __init__(self, reason: str, raw: str = "") -> None:
        self.reason = reason
        self.raw = raw
        super().__init__(reason)


class UnknownRunOrTest(PwCaptureError):
    """A query referenced a run id or test index that does not exist."""

    def __init__(self, run_id: str, test_index: Optional[int] = None, test_count: int = 0) -> None:
        self.run_id = run_id
        self.test_index = test_index
        self.test_count = test_count
        if test_index is None:
            message = f'Run "{run_id}" not found.'
        elif test_count == 0:
            message = f'Run "{run_id}" has no tests.'
        else:
            message = (
                f'Test index {test_index} out of range for run "{run_id}". '
                f"Valid indices: 0–{test_count - 1}."
            )
        super().__init__(message)

    @property
    def valid_range(self) -> Optional[tuple[int, int]]:
        if self.test_index is None or self.test_count == 0:
            return None
        return (0, self.test_count - 1)


class ActionIndexOutOfRange(PwCaptureError):
    """A query referenced an action index outside a test's timeline."""

    def __init__(self, action_index: int, action_count: int) -> None:
        self.action_index = action_index
        self.action_count = action_count
        if action_count == 0:
            message = f"Action {action_index} not found. This run captured 0 actions."
        else:
            message = (
                f"Action {action_index} not found. This run has {action_count} action(s), "
                f"valid indices: 0–{action_count - 1}."
            )
        super().__init__(message)

    @property
    def valid_range(self) -> Optional[tuple[int, int]]:
        if self.action_count == 0:
            return None
        return (0, self.action_count - 1)


def _format_seconds(seconds: float) -> str:
    if float(seconds).is_integer():
        return f"{int(seconds)}s"
    return f"{seconds:g}s"
