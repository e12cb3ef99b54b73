"""Unit tests for capture events, targets and the capture channel."""

import json
from typing import Any

import httpx
import pytest

from pwcapture.capture import (
    CaptureChannel,
    CaptureClient,
    LiveStore,
    LiveStoreTarget,
    MemoryTarget,
    StreamEventType,
    TeeTarget,
    parse_batch,
    summarize_capture,
)
from pwcapture.errors import MalformedCaptureEvent
from pwcapture.models import TestStatus

from conftest import make_action, request


def capture_event(**action: Any) -> dict[str, Any]:
    data = {"type": "Locator", "method": "click", **action}
    return {"type": "action:capture", "sessionId": "s1", "timestamp": 1.0, "data": data}


def client_for(channel: CaptureChannel) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=channel.app), base_url="http://capture.test")


class TestParseBatch:
    """Test batch decoding and validation."""

    def test_events_envelope(self) -> None:
        """Test the {events: [...]} form."""
        events = parse_batch(json.dumps({"events": [{"type": "session:start"}, capture_event()]}))
        assert [e.type for e in events] == [StreamEventType.SESSION_START, StreamEventType.ACTION_CAPTURE]
        assert events[1].capture is not None
        assert events[1].capture.name == "Locator.click"

    def test_bare_event(self) -> None:
        """Test a single event object is accepted as a batch of one."""
        events = parse_batch({"type": "action:start", "data": {"title": "Click"}})
        assert len(events) == 1
        assert events[0].action_label == "Click"

    def test_action_label_fallback(self) -> None:
        """Test the label falls back to type.method."""
        events = parse_batch({"type": "action:start", "data": {"type": "Page", "method": "goto"}})
        assert events[0].action_label == "Page.goto"

    def test_invalid_json(self) -> None:
        """Test non-JSON bodies are rejected."""
        with pytest.raises(MalformedCaptureEvent, match="Invalid JSON"):
            parse_batch(b"{not json")

    def test_unknown_type_rejected(self) -> None:
        """Test an unknown event type rejects the batch."""
        with pytest.raises(MalformedCaptureEvent) as exc_info:
            parse_batch({"events": [{"type": "session:start"}, {"type": "bogus"}]})
        assert exc_info.value.index == 1

    def test_capture_payload_validated(self) -> None:
        """Test an action:capture without method/type is rejected."""
        with pytest.raises(MalformedCaptureEvent):
            parse_batch({"type": "action:capture", "data": {"method": "click"}})

    def test_capture_requires_object(self) -> None:
        """Test an action:capture payload must be an object."""
        with pytest.raises(MalformedCaptureEvent, match="object payload"):
            parse_batch({"type": "action:capture", "data": "click"})

    def test_events_must_be_list(self) -> None:
        """Test the events key must hold a list."""
        with pytest.raises(MalformedCaptureEvent, match="must be a list"):
            parse_batch({"events": {"type": "session:start"}})


class TestTargets:
    """Test capture targets."""

    def test_memory_target_drain(self) -> None:
        """Test drain returns actions and resets state."""
        target = MemoryTarget()
        target.set_current_action("Click")
        target.set_waiting_for("button")
        target.add_action_capture(make_action("click"))
        assert target.current_action == "Click"

        actions = target.drain()
        assert len(actions) == 1
        assert target.actions == []
        assert target.current_action is None
        assert target.waiting_for is None

    def test_tee_forwards_to_all(self) -> None:
        """Test tee target forwards actions and translates step ids."""
        memory = MemoryTarget()
        store = LiveStore()
        tee = TeeTarget(memory, LiveStoreTarget(store))
        assert tee.supports_steps

        step = tee.add_step("Click")
        tee.update_step(step, "done", "12ms")
        tee.add_action_capture(make_action("click"))

        assert len(memory.actions) == 1
        assert len(store.current_test_actions) == 1
        assert store.steps[0].status == "done"
        assert store.steps[0].details == "12ms"

    def test_tee_forwards_test_lifecycle(self) -> None:
        """Test tee target forwards test resets and finalization."""
        memory = MemoryTarget()
        store = LiveStore()
        tee = TeeTarget(memory, LiveStoreTarget(store))
        tee.add_action_capture(make_action("click"))
        tee.set_test_running("k", "a.spec.ts", "t")

        tee.reset_test()
        tee.finish_test(TestStatus.FAILED, 40, "Error: boom")

        assert memory.actions == []
        result = store.get_test_result("k")
        assert (result.status, result.duration, result.error) == (TestStatus.FAILED, 40, "Error: boom")

    def test_tee_requires_target(self) -> None:
        """Test an empty tee is refused."""
        with pytest.raises(ValueError):
            TeeTarget()


class TestCaptureChannelApp:
    """Test the channel's HTTP surface in-process."""

    @pytest.fixture
    def target(self) -> MemoryTarget:
        return MemoryTarget()

    @pytest.fixture
    def channel(self, target: MemoryTarget) -> CaptureChannel:
        return CaptureChannel(target)

    @pytest.mark.asyncio
    async def test_post_batch(self, channel: CaptureChannel, target: MemoryTarget) -> None:
        """Test a valid batch is applied and acknowledged."""
        body = {"events": [{"type": "action:start", "data": {"title": "Click"}}, capture_event(title="Click")]}
        async with client_for(channel) as client:
            response = await client.post("/capture", json=body)
        assert response.status_code == 200
        assert response.json() == {"ok": True}
        assert len(target.actions) == 1
        assert target.current_action is None
        assert channel.batches_applied == 1

    @pytest.mark.asyncio
    async def test_malformed_batch_applies_nothing(self, channel: CaptureChannel, target: MemoryTarget) -> None:
        """Test a batch with one bad event is rejected as a whole."""
        body = {"events": [capture_event(title="ok"), {"type": "action:capture", "data": {"method": "x"}}]}
        async with client_for(channel) as client:
            response = await client.post("/capture", json=body)
        assert response.status_code == 400
        assert "Malformed capture batch" in response.text
        assert target.actions == []
        assert channel.batches_rejected == 1
        assert channel.batches_applied == 0

    @pytest.mark.asyncio
    async def test_wrong_path_and_method(self, channel: CaptureChannel) -> None:
        """Test anything but POST /capture is 404."""
        async with client_for(channel) as client:
            assert (await client.get("/capture")).status_code == 404
            assert (await client.post("/other", json={})).status_code == 404

    @pytest.mark.asyncio
    async def test_options_preflight(self, channel: CaptureChannel) -> None:
        """Test CORS preflight is answered."""
        async with client_for(channel) as client:
            response = await client.options("/capture")
        assert response.status_code == 204
        assert response.headers["access-control-allow-origin"] == "*"

    @pytest.mark.asyncio
    async def test_error_event_sets_status(self, channel: CaptureChannel, target: MemoryTarget) -> None:
        """Test error events surface as a status message."""
        await channel.ingest({"type": "error", "data": {"message": "hook crashed"}})
        assert target.last_status == "Capture error: hook crashed"

    @pytest.mark.asyncio
    async def test_waiting_event(self, channel: CaptureChannel, target: MemoryTarget) -> None:
        """Test action:waiting records what the action waits for."""
        await channel.ingest({"type": "action:start", "data": {"title": "Click"}})
        await channel.ingest({"type": "action:waiting", "data": {"waitingFor": "role=button"}})
        assert target.waiting_for == "role=button"

    @pytest.mark.asyncio
    async def test_test_start_drops_previous_attempt(self, channel: CaptureChannel, target: MemoryTarget) -> None:
        """Test a second test:start in one session discards the earlier attempt's actions."""
        start = {"type": "test:start", "data": {"testKey": "k", "file": "a.spec.ts", "test": "t"}}
        await channel.ingest(start)
        await channel.ingest(capture_event(title="first_attempt"))
        await channel.ingest({"type": "test:end", "data": {"testKey": "k"}})
        await channel.ingest(start)
        await channel.ingest(capture_event(title="retry"))
        assert [a.title for a in target.actions] == ["retry"]


class TestCaptureChannelSteps:
    """Test step bookkeeping against a live store."""

    @pytest.mark.asyncio
    async def test_step_lifecycle(self) -> None:
        """Test action:start opens a step that action:capture closes."""
        store = LiveStore()
        channel = CaptureChannel(LiveStoreTarget(store))
        await channel.ingest({"type": "test:start", "data": {"testKey": "k", "file": "a.spec.ts", "test": "t"}})
        await channel.ingest({"type": "action:start", "data": {"title": "Click"}})
        assert store.steps[0].status == "running"

        await channel.ingest(capture_event(title="Click", error={"message": "Timeout"}))
        assert store.steps[0].status == "error"
        assert store.steps[0].details == "Timeout"
        assert len(store.get_test_result("k").actions) == 1

    @pytest.mark.asyncio
    async def test_capture_without_start_adds_step(self) -> None:
        """Test a capture with no preceding start still records a step."""
        store = LiveStore()
        channel = CaptureChannel(LiveStoreTarget(store))
        await channel.ingest(capture_event(title="Fill"))
        assert [s.action for s in store.steps] == ["Fill"]
        assert store.steps[0].status == "done"


class TestCaptureChannelServer:
    """Test the channel on a real loopback socket."""

    @pytest.mark.asyncio
    async def test_client_round_trip(self) -> None:
        """Test a client posting to a started channel."""
        target = MemoryTarget()
        async with CaptureChannel(target) as channel:
            assert channel.port
            assert channel.endpoint == f"http://127.0.0.1:{channel.port}/capture"
            async with CaptureClient(channel.endpoint, session_id="s1") as client:
                accepted = await client.send(
                    client.event("action:start", {"title": "Click"}),
                    client.event("action:capture", {"type": "Locator", "method": "click"}),
                )
                rejected = await client.send(client.event("action:capture", {"method": "click"}))
        assert accepted
        assert not rejected
        assert len(target.actions) == 1
        assert channel.endpoint is None

    @pytest.mark.asyncio
    async def test_disabled_client(self) -> None:
        """Test a client without endpoint sends nothing."""
        async with CaptureClient(None) as client:
            assert not client.enabled
            assert not await client.send(client.event("session:start"))


class TestSummarizeCapture:
    """Test step detail summaries."""

    def test_summary_parts(self) -> None:
        """Test duration, requests and console errors are summarized."""
        action = make_action(
            "click",
            duration_ms=12,
            requests=[request("/a", 200), request("/b", 500, method="POST")],
            console=[{"type": "error", "text": "x"}],
        )
        assert summarize_capture(action) == "12ms  │  2 req (GET 200, POST 500)  │  1 err"

    def test_empty_summary(self) -> None:
        """Test an action without evidence has no summary."""
        assert summarize_capture(make_action("click", duration_ms=0)) is None
