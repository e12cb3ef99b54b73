"""Process orchestrator: runs tests as subprocesses and assembles runs.

Exactly one test subprocess is active per orchestrator at a time. Live
capture runs (single location, location list, flaky retries) open a
capture channel whose endpoint is injected into the child environment;
batch and repeat runs use the JSON reporter and no channel. ``execute``
always returns a run whose tests are all ``passed`` or ``failed``.
"""

import asyncio
import os
import time
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, Field, model_validator

from pwcapture.capture import CaptureChannel, CaptureTarget, MemoryTarget, TeeTarget
from pwcapture.config import CaptureSettings
from pwcapture.errors import ProcessSpawnError, ProcessTimeout
from pwcapture.models import FlakyVerdict, Run, RunMode, TestEntry, TestStatus
from pwcapture.parsers import ProgressTally, extract_error, parse_batch_report
from pwcapture.runner.commands import PlaywrightCommand, build_env, new_session_id
from pwcapture.runner.history import RunHistory
from pwcapture.runner.process import ManagedProcess, ProcessOutcome
from pwcapture.runner.screenshots import collect_attachments
from pwcapture.runner.store import RunStore

logger = structlog.get_logger(__name__)

STOPPED_MESSAGE = "Stopped by user"

ProgressCallback = Callable[[str], None]


def split_location(location: str) -> tuple[str, Optional[int]]:
    """Split ``file:line`` into its parts; the line is ``None`` when absent."""
    file, sep, line = location.rpartition(":")
    if sep and file and line.isdigit():
        return file, int(line)
    return location, None


class RunTarget(BaseModel):
    """What to run.

    Exactly one shape applies:

    * ``location`` alone: single-location run with live capture.
    * ``location`` + ``retries > 0``: ``retries + 1`` separate attempts.
    * ``locations``: several locations, one after another, with capture.
    * ``repeat_each > 1``: one subprocess repeating the location (or the
      whole project when no location is given).
    * nothing: the whole project (filtered by ``project``/``grep``).
    """

    location: Optional[str] = Field(default=None, description="file:line test location")
    locations: Optional[list[str]] = Field(default=None, description="Locations run in order")
    project: Optional[str] = Field(default=None, description="Playwright project filter")
    grep: Optional[str] = Field(default=None, description="Title filter")
    retries: int = Field(default=0, ge=0, description="Extra attempts for flake detection")
    repeat_each: int = Field(default=1, ge=1, description="In-process repeat count")

    @model_validator(mode="after")
    def _check_shape(self) -> "RunTarget":
        if self.location and self.locations:
            raise ValueError("give either location or locations, not both")
        if self.locations is not None and not self.locations:
            raise ValueError("locations must not be empty")
        if self.retries and self.repeat_each > 1:
            raise ValueError("retries and repeat_each are mutually exclusive")
        if self.retries and not self.location:
            raise ValueError("retries require a single location")
        if self.locations and (self.retries or self.repeat_each > 1):
            raise ValueError("locations cannot be combined with retries or repeat_each")
        return self

    @property
    def mode(self) -> RunMode:
        if self.repeat_each > 1:
            return RunMode.REPEAT
        if self.retries:
            return RunMode.FLAKY
        if self.locations:
            return RunMode.SEQUENCE
        if self.location:
            return RunMode.SINGLE
        return RunMode.BATCH


class ExecuteOptions(BaseModel):
    """How to run it."""

    timeout_seconds: Optional[float] = Field(
        default=None, gt=0, description="Per-process timeout; defaults by mode"
    )
    on_progress: Optional[ProgressCallback] = Field(default=None, exclude=True)
    collect_screenshots: bool = Field(default=True)
    record_history: Optional[bool] = Field(
        default=None, description="Override the settings' history flag"
    )


class Orchestrator:
    """Runs tests for one project directory and keeps the resulting runs.

    Args:
        cwd: Project directory the subprocesses run in.
        settings: Timeouts and capture settings.
        command: Command builder; defaults to the project's Playwright.
        store: Run registry; a fresh one by default.
        live_target: Extra capture target (e.g. a dashboard store) that
            receives every event alongside the run accumulator.
    """

    def __init__(
        self,
        cwd: str,
        settings: Optional[CaptureSettings] = None,
        command: Optional[PlaywrightCommand] = None,
        store: Optional[RunStore] = None,
        live_target: Optional[CaptureTarget] = None,
    ) -> None:
        self.cwd = os.path.abspath(cwd)
        self.settings = settings or CaptureSettings()
        self.command = command or PlaywrightCommand(self.cwd)
        self.store = store or RunStore()
        self.live_target = live_target
        self.history = RunHistory(
            self.cwd, self.settings.state_dir, self.settings.history_max_entries
        )
        self.current_test: Optional[TestEntry] = None
        self._lock = asyncio.Lock()
        self._stop_requested = False
        self._active: Optional[ManagedProcess] = None

    # ── Public surface ───────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def stop(self) -> None:
        """Cancel the queue and terminate the active subprocess, if any."""
        self._stop_requested = True
        if self._active is not None:
            self._active.request_stop()
        logger.info("orchestrator_stop_requested", active=self._active is not None)

    def get_run(self, run_id: str) -> Optional[Run]:
        return self.store.get(run_id)

    def list_runs(self) -> list[Run]:
        return self.store.list()

    async def execute(self, target: RunTarget, options: Optional[ExecuteOptions] = None) -> Run:
        """Run ``target`` to completion and return the finalized run.

        Calls are serialized; a second caller waits for the first run.
        """
        options = options or ExecuteOptions()
        async with self._lock:
            self._stop_requested = False
            mode = target.mode
            run = self.store.create(mode=mode, project=target.project)
            logger.info("run_started", run_id=run.run_id, mode=mode.value, cwd=self.cwd)

            try:
                if mode == RunMode.BATCH or mode == RunMode.REPEAT:
                    await self._run_reporter(run, target, options)
                elif mode == RunMode.FLAKY:
                    await self._run_attempts(run, target, options)
                else:
                    locations = target.locations or [target.location]
                    await self._run_locations(run, locations, target, options)
            finally:
                self.current_test = None
                self._active = None
                for entry in run.tests:
                    if entry.is_running:
                        entry.finalize(passed=False, duration_ms=entry.duration, error="Run aborted")
                        self._announce_finished(entry)

            if self._stop_requested:
                run.stopped = True
            if mode in (RunMode.FLAKY, RunMode.REPEAT):
                # Attempts cut short by stop() say nothing about flakiness.
                run.verdict = FlakyVerdict.from_statuses(
                    t.status for t in run.tests if t.error != STOPPED_MESSAGE
                )

            logger.info("run_finished", **run.summary())
            return run

    # ── Live-capture modes ───────────────────────────────────────────

    def _capture_target(self, memory: MemoryTarget) -> CaptureTarget:
        if self.live_target is None:
            return memory
        return TeeTarget(memory, self.live_target)

    def _announce_finished(self, entry: TestEntry) -> None:
        if self.live_target is None:
            return
        try:
            self.live_target.finish_test(entry.status, entry.duration, entry.error)
        except Exception as e:
            logger.warning("live_target_finish_failed", error=str(e))

    async def _open_channel(self, memory: MemoryTarget) -> Optional[CaptureChannel]:
        channel = CaptureChannel(self._capture_target(memory))
        try:
            await channel.start()
        except (OSError, RuntimeError) as e:
            logger.warning("capture_channel_unavailable", error=str(e))
            return None
        return channel

    async def _run_locations(
        self,
        run: Run,
        locations: list[str],
        target: RunTarget,
        options: ExecuteOptions,
    ) -> None:
        memory = MemoryTarget()
        channel = await self._open_channel(memory)
        tally = ProgressTally(total=len(locations))
        try:
            for index, location in enumerate(locations):
                if self._stop_requested:
                    run.stopped = True
                    run.skipped = len(locations) - index
                    logger.info("run_queue_cancelled", run_id=run.run_id, skipped=run.skipped)
                    break
                if len(locations) > 1:
                    _notify(options, f"Running {index + 1}/{len(locations)}: {location}")
                entry = await self._run_location(run, location, target, options, memory, channel)
                if len(locations) > 1:
                    _notify(options, tally.record(entry.passed))
        finally:
            if channel is not None:
                await channel.stop()

    async def _run_attempts(self, run: Run, target: RunTarget, options: ExecuteOptions) -> None:
        attempts = target.retries + 1
        tally = ProgressTally(total=attempts)
        for attempt in range(attempts):
            if self._stop_requested:
                run.stopped = True
                run.skipped = attempts - attempt
                break
            _notify(options, f"Attempt {attempt + 1}/{attempts}: {target.location}")
            memory = MemoryTarget()
            channel = await self._open_channel(memory)
            try:
                entry = await self._run_location(run, target.location, target, options, memory, channel)
            finally:
                if channel is not None:
                    await channel.stop()
            _notify(options, tally.record(entry.passed))

    async def _run_location(
        self,
        run: Run,
        location: str,
        target: RunTarget,
        options: ExecuteOptions,
        memory: MemoryTarget,
        channel: Optional[CaptureChannel],
    ) -> TestEntry:
        file, line = split_location(location)
        rel_file = os.path.relpath(os.path.join(self.cwd, file), self.cwd)
        entry = TestEntry(file=rel_file, test_title=location, location=location)
        run.tests.append(entry)
        self.current_test = entry
        memory.reset()

        endpoint = channel.endpoint if channel is not None else None
        env = build_env(self.settings, self.cwd, endpoint, new_session_id())
        command = self.command.test_location(
            location, grep=target.grep, project=target.project, reporter="line"
        )
        timeout = options.timeout_seconds or self.settings.single_timeout_seconds
        started_wall = time.time()
        started = time.monotonic()

        error: Optional[str] = None
        passed = False
        process = ManagedProcess(
            command,
            cwd=self.cwd,
            env=env,
            timeout=timeout,
            kill_grace=self.settings.kill_grace_seconds,
        )
        self._active = process
        if self._stop_requested:
            process.request_stop()
        try:
            outcome = await process.run()
            passed = outcome.succeeded
            if outcome.stopped:
                error = STOPPED_MESSAGE
            elif not passed:
                error = extract_error(outcome.stdout, outcome.stderr, outcome.exit_code)
        except ProcessTimeout as e:
            error = str(e)
        except ProcessSpawnError as e:
            error = str(e)
        finally:
            self._active = None

        entry.actions = memory.drain()
        entry.finalize(
            passed=passed,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=error,
        )
        self.current_test = None
        self._announce_finished(entry)

        if options.collect_screenshots:
            entry.attachments = collect_attachments(
                self.cwd,
                started_wall,
                entry.actions,
                self.settings.screenshot_glob,
                self.settings.screenshot_max_depth,
            )
        self._record_history(entry, line, options)

        logger.info(
            "test_finished",
            run_id=run.run_id,
            location=location,
            status=entry.status.value,
            duration_ms=entry.duration,
            actions=len(entry.actions),
        )
        return entry

    def _record_history(self, entry: TestEntry, line: Optional[int], options: ExecuteOptions) -> None:
        enabled = self.settings.record_history if options.record_history is None else options.record_history
        if not enabled or line is None:
            return
        try:
            self.history.record(entry.file, line, entry.status.value, entry.duration)
        except OSError as e:
            logger.warning("history_write_failed", error=str(e))

    # ── Reporter modes ───────────────────────────────────────────────

    async def _run_reporter(self, run: Run, target: RunTarget, options: ExecuteOptions) -> None:
        """Batch or repeat run: one JSON-reporter subprocess, no live capture."""
        if target.location:
            command = self.command.test_location(
                target.location,
                grep=target.grep,
                project=target.project,
                repeat_each=target.repeat_each,
                reporter="json",
            )
        else:
            command = self.command.test_project(
                grep=target.grep, project=target.project, repeat_each=target.repeat_each
            )

        tally = ProgressTally()

        def on_stderr(line: str) -> None:
            message = tally.feed_summary_line(line)
            if message:
                _notify(options, message)

        timeout = options.timeout_seconds or self.settings.batch_timeout_seconds
        process = ManagedProcess(
            command,
            cwd=self.cwd,
            env=build_env(self.settings, self.cwd),
            timeout=timeout,
            kill_grace=self.settings.kill_grace_seconds,
            on_stderr_line=on_stderr,
        )
        self._active = process
        if self._stop_requested:
            process.request_stop()

        outcome: Optional[ProcessOutcome] = None
        failure: Optional[str] = None
        try:
            outcome = await process.run()
            if outcome.stopped:
                failure = STOPPED_MESSAGE
                run.stopped = True
        except ProcessTimeout as e:
            outcome = e.outcome
            failure = str(e)
        except ProcessSpawnError as e:
            failure = str(e)
        finally:
            self._active = None

        parsed = parse_batch_report(outcome.stdout if outcome else "", self.cwd)
        if failure and (parsed.parse_error or not parsed.entries):
            run.tests = [
                TestEntry(
                    file="unknown",
                    test_title="all",
                    status=TestStatus.FAILED,
                    duration=outcome.duration_ms if outcome else 0,
                    error=failure,
                )
            ]
            return
        run.tests = parsed.entries
        run.skipped = parsed.skipped
        _notify(options, f"Done: {run.passed_count} passed, {run.failed_count} failed")


def _notify(options: ExecuteOptions, message: str) -> None:
    if options.on_progress is None:
        return
    try:
        options.on_progress(message)
    except Exception as e:
        logger.warning("progress_callback_failed", error=str(e))
