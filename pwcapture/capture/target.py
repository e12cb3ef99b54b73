"""Capture targets: sinks that channel events are forwarded into.

The channel only depends on :class:`CaptureTarget`. Two required operations
(append an action, set the current action label) are abstract; the step,
timer and status hooks default to no-ops so a plain accumulator only has to
implement what it stores.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pwcapture.models import ActionCapture, TestStatus

STEP_STATUSES = ("pending", "running", "done", "error")


class CaptureTarget(ABC):
    """Interface the capture channel forwards events into."""

    @abstractmethod
    def add_action_capture(self, capture: ActionCapture) -> None:
        """Append a completed action to the current test."""

    @abstractmethod
    def set_current_action(self, name: Optional[str]) -> None:
        """Set (or clear with ``None``) the label of the in-flight action."""

    # ── Optional hooks ───────────────────────────────────────────────

    @property
    def supports_steps(self) -> bool:
        """Whether :meth:`add_step` returns real step ids."""
        return False

    def set_waiting_for(self, waiting: Optional[str]) -> None:
        pass

    def add_step(self, action: str) -> Optional[int]:
        return None

    def update_step(self, step_id: int, status: str, details: Optional[str] = None) -> None:
        pass

    def reset_test(self) -> None:
        """Drop per-test accumulation; called when a test (or a retry of it) starts."""

    def set_test_running(self, test_key: str, file: str, test: str) -> None:
        pass

    def finish_test(self, status: TestStatus, duration_ms: int, error: Optional[str] = None) -> None:
        """The owning subprocess exited and the running test was finalized."""

    def start_test_timer(self) -> None:
        pass

    def clear_test_timer(self) -> None:
        pass

    def set_status(self, status: str) -> None:
        pass


class MemoryTarget(CaptureTarget):
    """In-memory accumulator for the actions of the test currently running.

    Attributes:
        actions: Actions received since the last :meth:`reset`, in arrival order.
        current_action: Label of the action in flight, if any.
        last_status: Most recent status message (capture errors land here).
    """

    def __init__(self) -> None:
        self.actions: list[ActionCapture] = []
        self.current_action: Optional[str] = None
        self.waiting_for: Optional[str] = None
        self.last_status: Optional[str] = None

    def add_action_capture(self, capture: ActionCapture) -> None:
        self.actions.append(capture)

    def set_current_action(self, name: Optional[str]) -> None:
        self.current_action = name
        if name is None:
            self.waiting_for = None

    def set_waiting_for(self, waiting: Optional[str]) -> None:
        self.waiting_for = waiting

    def set_status(self, status: str) -> None:
        self.last_status = status

    def reset_test(self) -> None:
        self.reset()

    def drain(self) -> list[ActionCapture]:
        """Return the accumulated actions and reset for the next test."""
        actions = self.actions
        self.reset()
        return actions

    def reset(self) -> None:
        self.actions = []
        self.current_action = None
        self.waiting_for = None


class TeeTarget(CaptureTarget):
    """Forwards every call to several targets, in order.

    Step ids come from the first target that supports steps; the id is
    translated for the others so each keeps its own numbering.
    """

    def __init__(self, *targets: CaptureTarget) -> None:
        if not targets:
            raise ValueError("TeeTarget needs at least one target")
        self._targets = targets
        self._next_step = 0
        self._step_ids: dict[int, list[Optional[int]]] = {}

    @property
    def supports_steps(self) -> bool:
        return any(t.supports_steps for t in self._targets)

    def add_action_capture(self, capture: ActionCapture) -> None:
        for target in self._targets:
            target.add_action_capture(capture)

    def set_current_action(self, name: Optional[str]) -> None:
        for target in self._targets:
            target.set_current_action(name)

    def set_waiting_for(self, waiting: Optional[str]) -> None:
        for target in self._targets:
            target.set_waiting_for(waiting)

    def add_step(self, action: str) -> Optional[int]:
        if not self.supports_steps:
            return None
        step_id = self._next_step
        self._next_step += 1
        self._step_ids[step_id] = [t.add_step(action) for t in self._targets]
        return step_id

    def update_step(self, step_id: int, status: str, details: Optional[str] = None) -> None:
        for target, inner_id in zip(self._targets, self._step_ids.get(step_id, [])):
            if inner_id is not None:
                target.update_step(inner_id, status, details)

    def reset_test(self) -> None:
        for target in self._targets:
            target.reset_test()

    def set_test_running(self, test_key: str, file: str, test: str) -> None:
        for target in self._targets:
            target.set_test_running(test_key, file, test)

    def finish_test(self, status: TestStatus, duration_ms: int, error: Optional[str] = None) -> None:
        for target in self._targets:
            target.finish_test(status, duration_ms, error)

    def start_test_timer(self) -> None:
        for target in self._targets:
            target.start_test_timer()

    def clear_test_timer(self) -> None:
        for target in self._targets:
            target.clear_test_timer()

    def set_status(self, status: str) -> None:
        for target in self._targets:
            target.set_status(status)
