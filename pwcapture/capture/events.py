"""Capture event vocabulary and batch validation.

A POST body is either ``{"events": [...]}`` or one bare event object. The
whole batch is validated before anything is applied, so a malformed event
anywhere rejects the batch without side effects.
"""

import json
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pwcapture.errors import MalformedCaptureEvent
from pwcapture.models import ActionCapture


class StreamEventType(str, Enum):
    """Event types posted by instrumented test workers."""

    SESSION_START = "session:start"
    SESSION_END = "session:end"
    TEST_START = "test:start"
    TEST_END = "test:end"
    ACTION_START = "action:start"
    ACTION_WAITING = "action:waiting"
    ACTION_CAPTURE = "action:capture"
    ERROR = "error"


class StreamEvent(BaseModel):
    """One capture event.

    ``action:capture`` events carry a fully-formed action, which is parsed
    into :class:`ActionCapture` during validation and exposed as ``capture``.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: StreamEventType
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    timestamp: Optional[float] = Field(default=None)
    data: Any = Field(default=None)
    capture: Optional[ActionCapture] = Field(default=None, exclude=True)

    def get_data(self, name: str) -> Any:
        """Read a key from ``data`` when it is a mapping."""
        if isinstance(self.data, dict):
            return self.data.get(name)
        return None

    @property
    def action_label(self) -> str:
        """Label for an ``action:start`` event: title, else ``type.method``."""
        title = self.get_data("title")
        if title:
            return str(title)
        return f"{self.get_data('type') or 'action'}.{self.get_data('method') or 'unknown'}"


def _validate_event(raw: Any, index: int) -> StreamEvent:
    if not isinstance(raw, dict):
        raise MalformedCaptureEvent("event must be a JSON object", index=index)
    try:
        event = StreamEvent.model_validate(raw)
        if event.type == StreamEventType.ACTION_CAPTURE:
            if not isinstance(event.data, dict):
                raise MalformedCaptureEvent("action:capture requires an object payload", index=index)
            event.capture = ActionCapture.model_validate(event.data)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(part) for part in first.get("loc", ()))
        reason = f"{where}: {first.get('msg')}" if where else str(first.get("msg"))
        raise MalformedCaptureEvent(reason, index=index) from e
    return event


def parse_batch(body: Union[bytes, str, dict[str, Any]]) -> list[StreamEvent]:
    """Decode and validate one POST body into a list of events.

    Args:
        body: Raw request bytes/text, or an already-decoded mapping.

    Returns:
        The validated events, in posted order.

    Raises:
        MalformedCaptureEvent: When the body is not JSON, has the wrong shape,
            or any event fails validation.
    """
    if isinstance(body, (bytes, str)):
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedCaptureEvent(f"Invalid JSON: {e}") from e
    else:
        payload = body

    if not isinstance(payload, dict):
        raise MalformedCaptureEvent("body must be a JSON object")

    if "events" in payload:
        raw_events = payload["events"]
        if not isinstance(raw_events, list):
            raise MalformedCaptureEvent("'events' must be a list")
    else:
        raw_events = [payload]

    return [_validate_event(raw, index) for index, raw in enumerate(raw_events)]
