"""HTTP client for posting capture events to a channel.

Used by Python-side instrumentation: the endpoint and session id are read
from the environment variables the orchestrator injects into the subprocess.
"""

import os
import time
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class CaptureClient:
    """Posts ``{"events": [...]}`` batches to a capture endpoint.

    Args:
        endpoint: Channel URL; ``None`` disables posting.
        session_id: Session id stamped on every event.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        endpoint: Optional[str],
        session_id: Optional[str] = None,
        timeout: float = 5.0,
    ) -> None:
        self.endpoint = endpoint
        self.session_id = session_id or f"py-{int(time.time() * 1000)}"
        self._client = httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_env(
        cls,
        endpoint_env: str = "PW_CAPTURE_ENDPOINT",
        session_env: str = "PW_CAPTURE_SESSION",
    ) -> "CaptureClient":
        return cls(os.environ.get(endpoint_env), os.environ.get(session_env))

    @property
    def enabled(self) -> bool:
        return bool(self.endpoint)

    def event(self, event_type: str, data: Any = None) -> dict[str, Any]:
        """Build one wire event."""
        return {
            "type": event_type,
            "sessionId": self.session_id,
            "timestamp": time.time() * 1000,
            "data": data,
        }

    async def send(self, *events: dict[str, Any]) -> bool:
        """Post events as one batch; returns whether the channel accepted it."""
        if not self.enabled or not events:
            return False
        try:
            response = await self._client.post(self.endpoint, json={"events": list(events)})
        except httpx.HTTPError as e:
            logger.warning("capture_post_failed", endpoint=self.endpoint, error=str(e))
            return False
        if response.status_code != 200:
            logger.warning(
                "capture_post_rejected",
                status_code=response.status_code,
                body=response.text[:200],
            )
            return False
        return True

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CaptureClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
