"""Live run state read by an interactive dashboard.

:class:`LiveStore` holds what a terminal UI renders while tests execute:
step list, progress of the current action, per-test results with their
live actions, and bounded network/console feeds. Subscribers are called
synchronously after every change. :class:`LiveStoreTarget` adapts the store
to the :class:`~pwcapture.capture.target.CaptureTarget` interface.
"""

import itertools
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog

from pwcapture.capture.target import STEP_STATUSES, CaptureTarget
from pwcapture.models import ActionCapture, ConsoleMessage, NetworkRequestCapture, TestStatus

logger = structlog.get_logger(__name__)

NETWORK_FEED_LIMIT = 50
CONSOLE_FEED_LIMIT = 100

Listener = Callable[[], None]


@dataclass
class Step:
    id: int
    action: str
    status: str = "pending"
    details: Optional[str] = None


@dataclass
class Progress:
    """Progress of the test and action currently in flight.

    Times are ``time.time()`` seconds; the timeout is in milliseconds.
    """

    current_action: Optional[str] = None
    action_start_time: Optional[float] = None
    test_start_time: Optional[float] = None
    test_timeout_ms: int = 120_000
    waiting_for: Optional[str] = None


@dataclass
class LiveTestResult:
    test_key: str
    file: str
    test: str
    status: TestStatus = TestStatus.RUNNING
    duration: int = 0
    actions: list[ActionCapture] = field(default_factory=list)
    error: Optional[str] = None


class LiveStore:
    """Mutable state container with change notification."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._listeners: list[Listener] = []
        self._step_ids = itertools.count(1)
        self.status = "Ready"
        self.steps: list[Step] = []
        self.progress = Progress()
        self.test_results: list[LiveTestResult] = []
        self.current_test_actions: list[ActionCapture] = []
        self.network_requests: list[NetworkRequestCapture] = []
        self.console_messages: list[ConsoleMessage] = []

    # ── Subscription ─────────────────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.warning("live_store_listener_failed", error=str(e))

    # ── Status and steps ─────────────────────────────────────────────

    def set_status(self, status: str) -> None:
        self.status = status
        self._notify()

    def add_step(self, action: str) -> int:
        step = Step(id=next(self._step_ids), action=action)
        self.steps.append(step)
        self._notify()
        return step.id

    def update_step(self, step_id: int, status: str, details: Optional[str] = None) -> None:
        if status not in STEP_STATUSES:
            raise ValueError(f"Unknown step status: {status}")
        for step in self.steps:
            if step.id == step_id:
                step.status = status
                step.details = details
        self._notify()

    # ── Test results ─────────────────────────────────────────────────

    def get_test_result(self, test_key: str) -> Optional[LiveTestResult]:
        for result in self.test_results:
            if result.test_key == test_key:
                return result
        return None

    def set_test_running(self, test_key: str, file: str, test: str) -> None:
        """Insert or replace the result for ``test_key`` as running."""
        result = LiveTestResult(test_key=test_key, file=file, test=test)
        for index, existing in enumerate(self.test_results):
            if existing.test_key == test_key:
                self.test_results[index] = result
                break
        else:
            self.test_results.append(result)
        self.current_test_actions = []
        self._notify()

    def finish_test(
        self,
        test_key: Optional[str],
        status: TestStatus,
        duration: int,
        error: Optional[str] = None,
    ) -> None:
        """Finalize one result, or every still-running one when ``test_key`` is ``None``."""
        if test_key is None:
            results = [r for r in self.test_results if r.status == TestStatus.RUNNING]
        else:
            result = self.get_test_result(test_key)
            results = [result] if result is not None else []
        if not results:
            return
        for result in results:
            result.status = status
            result.duration = duration
            result.error = error
        self._notify()

    def add_action_capture(self, capture: ActionCapture) -> None:
        """Append to the running test and to the flat network/console feeds."""
        self.current_test_actions.append(capture)
        for result in self.test_results:
            if result.status == TestStatus.RUNNING:
                result.actions = list(self.current_test_actions)
                break

        for request in capture.network.requests:
            self.network_requests.append(request.without_bodies())
        self.network_requests = self.network_requests[-NETWORK_FEED_LIMIT:]
        self.console_messages.extend(capture.console)
        self.console_messages = self.console_messages[-CONSOLE_FEED_LIMIT:]
        self._notify()

    # ── Progress ─────────────────────────────────────────────────────

    def set_current_action(self, action: Optional[str]) -> None:
        self.progress.current_action = action
        self.progress.action_start_time = self._clock() if action else None
        self.progress.waiting_for = None
        self._notify()

    def set_waiting_for(self, waiting: Optional[str]) -> None:
        self.progress.waiting_for = waiting
        self._notify()

    def start_test_timer(self, timeout_ms: Optional[int] = None) -> None:
        self.progress = Progress(
            test_start_time=self._clock(),
            test_timeout_ms=timeout_ms or self.progress.test_timeout_ms,
        )
        self._notify()

    def clear_test_timer(self) -> None:
        self.progress = Progress(test_timeout_ms=self.progress.test_timeout_ms)
        self._notify()

    def elapsed_test_ms(self) -> int:
        if self.progress.test_start_time is None:
            return 0
        return int((self._clock() - self.progress.test_start_time) * 1000)

    def remaining_test_ms(self) -> int:
        if self.progress.test_start_time is None:
            return self.progress.test_timeout_ms
        return max(0, self.progress.test_timeout_ms - self.elapsed_test_ms())

    def elapsed_action_ms(self) -> int:
        if self.progress.action_start_time is None:
            return 0
        return int((self._clock() - self.progress.action_start_time) * 1000)


class LiveStoreTarget(CaptureTarget):
    """Capture target that writes into a :class:`LiveStore`."""

    def __init__(self, store: LiveStore) -> None:
        self.store = store

    @property
    def supports_steps(self) -> bool:
        return True

    def add_action_capture(self, capture: ActionCapture) -> None:
        self.store.add_action_capture(capture)

    def set_current_action(self, name: Optional[str]) -> None:
        self.store.set_current_action(name)

    def set_waiting_for(self, waiting: Optional[str]) -> None:
        self.store.set_waiting_for(waiting)

    def add_step(self, action: str) -> Optional[int]:
        return self.store.add_step(action)

    def update_step(self, step_id: int, status: str, details: Optional[str] = None) -> None:
        self.store.update_step(step_id, status, details)

    def set_test_running(self, test_key: str, file: str, test: str) -> None:
        self.store.set_test_running(test_key, file, test)

    def finish_test(self, status: TestStatus, duration_ms: int, error: Optional[str] = None) -> None:
        self.store.finish_test(None, status, duration_ms, error)

    def start_test_timer(self) -> None:
        self.store.start_test_timer()

    def clear_test_timer(self) -> None:
        self.store.clear_test_timer()

    def set_status(self, status: str) -> None:
        self.store.set_status(status)
