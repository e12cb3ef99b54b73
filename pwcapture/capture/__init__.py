"""Capture targets, the loopback capture channel and its event vocabulary."""

from pwcapture.capture.channel import CaptureChannel, summarize_capture
from pwcapture.capture.client import CaptureClient
from pwcapture.capture.events import StreamEvent, StreamEventType, parse_batch
from pwcapture.capture.live_store import LiveStore, LiveStoreTarget
from pwcapture.capture.target import CaptureTarget, MemoryTarget, TeeTarget

__all__ = [
    "CaptureChannel",
    "CaptureClient",
    "CaptureTarget",
    "LiveStore",
    "LiveStoreTarget",
    "MemoryTarget",
    "StreamEvent",
    "StreamEventType",
    "TeeTarget",
    "parse_batch",
    "summarize_capture",
]
