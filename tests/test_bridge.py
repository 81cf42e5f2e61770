"""Tests for the bridge gateway handle."""

import asyncio
import json

import pytest

from relaybot.bus.events import EventTag
from relaybot.errors import GatewayError, NotConnectedError
from relaybot.gateway.base import ConnectionState
from relaybot.gateway.bridge import BridgeHandle


class FakeWebSocket:
    """Queue-backed stand-in for a websockets client connection."""

    def __init__(self):
        self.frames: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.frames.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True
        self.frames.put_nowait(None)

    def push(self, frame: dict) -> None:
        self.frames.put_nowait(json.dumps(frame))

    def drop(self) -> None:
        self.frames.put_nowait(None)


async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def ws():
    return FakeWebSocket()


def reading_handle(ws, call_timeout: float = 1.0) -> BridgeHandle:
    handle = BridgeHandle(ws, call_timeout=call_timeout)
    handle.start_reading()
    return handle


def record(handle, tag):
    events = []
    handle.on(tag, events.append)
    return events


class TestFrames:
    @pytest.mark.asyncio
    async def test_event_frame_is_emitted(self, ws):
        handle = reading_handle(ws)
        events = record(handle, EventTag.MESSAGES_UPSERT)

        ws.push({"type": "event", "event": "messages.upsert", "data": {"messages": [], "type": "notify"}})
        await settle()

        assert len(events) == 1
        assert events[0].generation == handle.generation
        assert events[0].payload["type"] == "notify"
        await handle.close()

    @pytest.mark.asyncio
    async def test_open_sets_user_id(self, ws):
        handle = reading_handle(ws)
        events = record(handle, EventTag.CONNECTION_UPDATE)

        ws.push({"type": "event", "event": "connection.update",
                 "data": {"connection": "open", "user": {"id": "254700000001:3@s.whatsapp.net"}}})
        await settle()

        assert handle.state == ConnectionState.OPEN
        assert handle.user_id == "254700000001:3@s.whatsapp.net"
        assert events[0].payload["connection"] == "open"
        await handle.close()

    @pytest.mark.asyncio
    async def test_unknown_event_and_bad_json_are_ignored(self, ws):
        handle = reading_handle(ws)
        events = record(handle, EventTag.CONNECTION_UPDATE)

        ws.push({"type": "event", "event": "presence.update", "data": {}})
        ws.frames.put_nowait("{not json")
        ws.push({"type": "event", "event": "connection.update", "data": {"connection": "connecting"}})
        await settle()

        assert [e.payload["connection"] for e in events] == ["connecting"]
        await handle.close()

    @pytest.mark.asyncio
    async def test_qr_frame(self, ws):
        handle = reading_handle(ws)
        events = record(handle, EventTag.CONNECTION_UPDATE)

        ws.push({"type": "qr", "qr": "2@abc"})
        await settle()

        assert events[0].payload["qr"] == "2@abc"
        await handle.close()


class TestCalls:
    @pytest.mark.asyncio
    async def test_results_are_matched_by_id(self, ws):
        handle = reading_handle(ws)
        first = asyncio.create_task(handle.send_message("111@s.whatsapp.net", {"text": "a"}))
        second = asyncio.create_task(handle.decode_identity("111:2@s.whatsapp.net"))
        await settle()

        call_a, call_b = ws.sent
        assert call_a["type"] == "call" and call_a["method"] == "sendMessage"
        assert call_a["params"] == {"jid": "111@s.whatsapp.net", "content": {"text": "a"}, "options": {}}
        assert call_b["method"] == "decodeJid"
        assert call_a["id"] != call_b["id"]

        ws.push({"type": "result", "id": call_b["id"], "ok": True, "result": "111@s.whatsapp.net"})
        ws.push({"type": "result", "id": call_a["id"], "ok": True, "result": {"key": {"id": "M1"}}})

        assert await second == "111@s.whatsapp.net"
        assert await first == {"key": {"id": "M1"}}
        await handle.close()

    @pytest.mark.asyncio
    async def test_failed_result_raises(self, ws):
        handle = reading_handle(ws)
        task = asyncio.create_task(handle.join_group("AbCdEf"))
        await settle()

        ws.push({"type": "result", "id": ws.sent[0]["id"], "ok": False, "error": "not-authorized"})

        with pytest.raises(GatewayError) as exc_info:
            await task
        assert exc_info.value.detail == "not-authorized"
        await handle.close()

    @pytest.mark.asyncio
    async def test_unanswered_call_times_out(self, ws):
        handle = reading_handle(ws, call_timeout=0.01)

        with pytest.raises(GatewayError) as exc_info:
            await handle.update_profile_status("hi")

        assert exc_info.value.method == "updateProfileStatus"
        assert "timed out" in str(exc_info.value)
        assert handle._pending == {}
        await handle.close()


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_socket_drop_emits_connection_lost(self, ws):
        handle = reading_handle(ws)
        events = record(handle, EventTag.CONNECTION_UPDATE)
        pending = asyncio.create_task(handle.follow_channel("120363@newsletter"))
        await settle()

        ws.drop()
        await settle()

        assert handle.state == ConnectionState.CLOSED_RECOVERABLE
        assert events[-1].payload["connection"] == "close"
        assert events[-1].payload["statusCode"] == 408
        with pytest.raises(NotConnectedError):
            await pending

    @pytest.mark.asyncio
    async def test_close_does_not_emit_connection_lost(self, ws):
        handle = reading_handle(ws)
        events = record(handle, EventTag.CONNECTION_UPDATE)

        await handle.close()
        await settle()

        assert ws.closed
        assert events == []
        with pytest.raises(NotConnectedError):
            await handle.send_message("111@s.whatsapp.net", {"text": "late"})
