"""Managed test subprocess with timeout, stop and kill escalation.

The child is started in its own session on POSIX so that terminate/kill
reach the whole process group (``npx`` spawns node, node spawns workers).
Waiting is event-driven: the run awaits process exit, a stop request, or
the timeout, whichever comes first.
"""

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import structlog

from pwcapture.errors import ProcessSpawnError, ProcessTimeout

logger = structlog.get_logger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024
_POSIX = os.name == "posix"

LineCallback = Callable[[str], None]


@dataclass
class ProcessOutcome:
    """What a finished subprocess left behind.

    Attributes:
        exit_code: Return code; negative for signal deaths on POSIX.
        stdout: Full captured standard output.
        stderr: Full captured standard error.
        duration_ms: Wall-clock time from spawn to confirmed exit.
        timed_out: The timeout expired and the process was terminated.
        stopped: A stop request terminated the process.
        killed: Graceful termination was not enough and SIGKILL was sent.
    """

    exit_code: Optional[int]
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    stopped: bool = False
    killed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.stopped


class ManagedProcess:
    """One subprocess invocation.

    Args:
        command: Program and arguments.
        cwd: Working directory.
        env: Full environment for the child.
        timeout: Seconds before the child is terminated.
        kill_grace: Seconds between terminate and kill.
        on_stdout_line: Called with each stdout line (without newline).
        on_stderr_line: Called with each stderr line (without newline).
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: str,
        env: Optional[dict[str, str]] = None,
        timeout: float = 120.0,
        kill_grace: float = 5.0,
        on_stdout_line: Optional[LineCallback] = None,
        on_stderr_line: Optional[LineCallback] = None,
    ) -> None:
        self.command = list(command)
        self.cwd = cwd
        self.env = env
        self.timeout = timeout
        self.kill_grace = kill_grace
        self.on_stdout_line = on_stdout_line
        self.on_stderr_line = on_stderr_line
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._stop_event = asyncio.Event()

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    @property
    def command_line(self) -> str:
        return " ".join(self.command)

    def request_stop(self) -> None:
        """Ask the running process to terminate (graceful, then forced)."""
        self._stop_event.set()

    async def run(self) -> ProcessOutcome:
        """Spawn, wait and collect output.

        Returns:
            The outcome of a process that exited on its own or was stopped.

        Raises:
            ProcessSpawnError: If the program could not be started.
            ProcessTimeout: If the timeout expired; the process is confirmed
                dead and the partial outcome is attached.
        """
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.cwd,
                env=self.env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=_POSIX,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            logger.error("process_spawn_failed", command=self.command_line, error=str(e))
            raise ProcessSpawnError(self.command_line, str(e)) from e

        self._proc = proc
        logger.debug("process_started", pid=proc.pid, command=self.command_line)

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        pumps = asyncio.gather(
            _pump(proc.stdout, stdout_lines, self.on_stdout_line),
            _pump(proc.stderr, stderr_lines, self.on_stderr_line),
        )
        wait_task = asyncio.ensure_future(proc.wait())
        stop_task = asyncio.ensure_future(self._stop_event.wait())

        timed_out = stopped = killed = False
        try:
            done, _ = await asyncio.wait(
                {wait_task, stop_task},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if wait_task not in done:
                stopped = stop_task in done
                timed_out = not stopped
                logger.info(
                    "process_terminating",
                    pid=proc.pid,
                    reason="stop" if stopped else "timeout",
                    timeout=self.timeout,
                )
                killed = await self._terminate(proc, wait_task)
        finally:
            stop_task.cancel()
            if proc.returncode is None:
                _send_signal(proc, force=True)
                await wait_task

        try:
            await asyncio.wait_for(pumps, timeout=max(self.kill_grace, 1.0))
        except asyncio.TimeoutError:
            logger.warning("process_output_unclosed", pid=proc.pid)

        outcome = ProcessOutcome(
            exit_code=proc.returncode,
            stdout="".join(stdout_lines),
            stderr="".join(stderr_lines),
            duration_ms=int((time.monotonic() - started) * 1000),
            timed_out=timed_out,
            stopped=stopped,
            killed=killed,
        )
        logger.debug(
            "process_exited",
            pid=proc.pid,
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
        )
        if timed_out:
            raise ProcessTimeout(self.timeout, outcome)
        return outcome

    async def _terminate(self, proc: asyncio.subprocess.Process, wait_task: asyncio.Future) -> bool:
        """Terminate, escalate to kill after the grace period; True if killed."""
        _send_signal(proc, force=False)
        try:
            await asyncio.wait_for(asyncio.shield(wait_task), timeout=self.kill_grace)
            return False
        except asyncio.TimeoutError:
            logger.warning("process_kill_escalated", pid=proc.pid, grace=self.kill_grace)
            _send_signal(proc, force=True)
            await wait_task
            return True


def _send_signal(proc: asyncio.subprocess.Process, force: bool) -> None:
    try:
        if _POSIX:
            os.killpg(proc.pid, signal.SIGKILL if force else signal.SIGTERM)
        elif force:
            proc.kill()
        else:
            proc.terminate()
    except (ProcessLookupError, PermissionError):
        pass


async def _pump(
    stream: Optional[asyncio.StreamReader],
    sink: list[str],
    callback: Optional[LineCallback],
) -> None:
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            break
        text = line.decode("utf-8", errors="replace")
        sink.append(text)
        if callback is not None:
            try:
                callback(text.rstrip("\r\n"))
            except Exception as e:
                logger.warning("process_line_callback_failed", error=str(e))
