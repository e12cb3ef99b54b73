"""Capture channel: the loopback HTTP endpoint test workers post events to.

One channel is opened per run (or per retry attempt). It binds an
ephemeral port on ``127.0.0.1`` before the subprocess is spawned, accepts
``POST /capture`` batches, validates each batch in full and then applies it
to the active :class:`~pwcapture.capture.target.CaptureTarget` under a lock,
so batches from one run are applied strictly one at a time in arrival order.
"""

import asyncio
import contextlib
import socket
from typing import Any, Optional

import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from pwcapture.capture.events import StreamEvent, StreamEventType, parse_batch
from pwcapture.capture.target import CaptureTarget
from pwcapture.errors import MalformedCaptureEvent
from pwcapture.models import ActionCapture

logger = structlog.get_logger(__name__)

CAPTURE_PATH = "/capture"
LOOPBACK_HOST = "127.0.0.1"

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}
_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the host."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


def summarize_capture(capture: ActionCapture) -> Optional[str]:
    """One-line step detail: duration, request summary and console error count."""
    parts: list[str] = []
    if capture.timing.duration_ms:
        parts.append(f"{capture.timing.duration_ms:g}ms")
    requests = capture.network.requests
    if requests:
        methods = ", ".join(f"{r.method} {r.status or '…'}" for r in requests[:2])
        parts.append(f"{len(requests)} req ({methods})")
    errors = sum(1 for message in capture.console if message.type == "error")
    if errors:
        parts.append(f"{errors} err")
    return "  │  ".join(parts) or None


class CaptureChannel:
    """Ephemeral event-ingestion endpoint bound to one capture target.

    Usage::

        async with CaptureChannel(target) as channel:
            env[endpoint_env] = channel.endpoint
            ...

    Attributes:
        target: Sink receiving the applied events.
        batches_applied: Number of batches accepted so far.
        batches_rejected: Number of malformed batches rejected so far.
    """

    def __init__(self, target: CaptureTarget, host: str = LOOPBACK_HOST) -> None:
        self.target = target
        self.host = host
        self.batches_applied = 0
        self.batches_rejected = 0
        self._lock = asyncio.Lock()
        self._step_id: Optional[int] = None
        self._port: Optional[int] = None
        self._socket: Optional[socket.socket] = None
        self._server: Optional[_EmbeddedServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self.app = Starlette(
            routes=[Route("/{path:path}", self._dispatch, methods=_ALL_METHODS)],
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def endpoint(self) -> Optional[str]:
        """``http://127.0.0.1:<port>/capture`` while started, else ``None``."""
        if self._port is None:
            return None
        return f"http://{self.host}:{self._port}{CAPTURE_PATH}"

    @property
    def is_running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    async def start(self, startup_timeout: float = 5.0) -> int:
        """Bind the ephemeral port and start serving; returns the port.

        Calling ``start`` on a running channel returns the existing port.
        """
        if self.is_running and self._port is not None:
            return self._port

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, 0))
        sock.listen(128)
        sock.setblocking(False)

        config = uvicorn.Config(
            app=self.app,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        server = _EmbeddedServer(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + startup_timeout
        while not server.started:
            if task.done():
                sock.close()
                await task
                raise RuntimeError("Capture channel exited during startup")
            if loop.time() > deadline:
                server.should_exit = True
                sock.close()
                raise RuntimeError("Capture channel did not start in time")
            await asyncio.sleep(0.01)

        self._socket = sock
        self._server = server
        self._serve_task = task
        self._port = sock.getsockname()[1]
        self._step_id = None
        logger.info("capture_channel_started", endpoint=self.endpoint)
        return self._port

    async def stop(self, shutdown_timeout: float = 5.0) -> None:
        """Stop serving and release the port. Safe to call more than once."""
        server, task = self._server, self._serve_task
        self._server = None
        self._serve_task = None
        if server is not None and task is not None:
            server.should_exit = True
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=shutdown_timeout)
            except asyncio.TimeoutError:
                server.force_exit = True
                await task
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self._port is not None:
            logger.info(
                "capture_channel_stopped",
                port=self._port,
                batches_applied=self.batches_applied,
                batches_rejected=self.batches_rejected,
            )
        self._port = None

    async def __aenter__(self) -> "CaptureChannel":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # ── HTTP ─────────────────────────────────────────────────────────

    async def _dispatch(self, request: Request) -> Response:
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=_CORS_HEADERS)
        if request.method != "POST" or request.url.path != CAPTURE_PATH:
            return PlainTextResponse("Not found", status_code=404, headers=_CORS_HEADERS)

        body = await request.body()
        try:
            await self.ingest(body)
        except MalformedCaptureEvent as e:
            return PlainTextResponse(str(e), status_code=400, headers=_CORS_HEADERS)
        return JSONResponse({"ok": True}, headers=_CORS_HEADERS)

    # ── Ingestion ────────────────────────────────────────────────────

    async def ingest(self, body: Any) -> list[StreamEvent]:
        """Validate one POST body and apply it as a single batch.

        Raises:
            MalformedCaptureEvent: If any part of the batch is invalid; nothing
                is applied in that case.
        """
        try:
            events = parse_batch(body)
        except MalformedCaptureEvent as e:
            self.batches_rejected += 1
            logger.warning("capture_batch_rejected", reason=e.reason, index=e.index)
            raise
        await self.apply_batch(events)
        return events

    async def apply_batch(self, events: list[StreamEvent]) -> None:
        """Apply already-validated events in order, one batch at a time."""
        async with self._lock:
            for event in events:
                self._apply_event(event)
            self.batches_applied += 1

    def _apply_event(self, event: StreamEvent) -> None:
        target = self.target

        if event.type == StreamEventType.ACTION_START:
            label = event.action_label
            target.set_current_action(label)
            if target.supports_steps:
                self._step_id = target.add_step(label)
                if self._step_id is not None:
                    target.update_step(self._step_id, "running")

        elif event.type == StreamEventType.ACTION_WAITING:
            waiting = event.get_data("waitingFor")
            if waiting:
                target.set_waiting_for(str(waiting))
                if self._step_id is not None:
                    target.update_step(self._step_id, "running", f"waiting for {waiting}…")

        elif event.type == StreamEventType.ACTION_CAPTURE:
            capture = event.capture
            if capture is None:
                return
            target.set_current_action(None)
            target.add_action_capture(capture)
            self._close_step(capture)

        elif event.type == StreamEventType.TEST_START:
            target.reset_test()
            test_key = event.get_data("testKey")
            if test_key:
                target.set_test_running(
                    str(test_key),
                    str(event.get_data("file") or ""),
                    str(event.get_data("test") or ""),
                )
            self._step_id = None
            target.start_test_timer()

        elif event.type == StreamEventType.TEST_END:
            self._step_id = None
            target.clear_test_timer()

        elif event.type == StreamEventType.ERROR:
            message = event.get_data("message") or "Unknown error"
            logger.warning("capture_error_event", message=message, session_id=event.session_id)
            target.set_status(f"Capture error: {message}")

    def _close_step(self, capture: ActionCapture) -> None:
        target = self.target
        status = "error" if capture.error is not None else "done"
        details = capture.error.message if capture.error is not None else summarize_capture(capture)

        if self._step_id is not None:
            target.update_step(self._step_id, status, details)
            self._step_id = None
        elif target.supports_steps:
            step_id = target.add_step(capture.label)
            if step_id is not None:
                target.update_step(step_id, status, details)
