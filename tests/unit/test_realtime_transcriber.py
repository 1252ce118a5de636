# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any, Awaitable, Callable

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.protocol import State

from adapters.asr.realtime import RealtimeTranscriber
from config import TranscriberConfig
from observability import logger
from orchestrator.cancellation import CancellationToken
from orchestrator.enums.state import ConnectionState
from orchestrator.errors import TranscriberDisposedError
from orchestrator.events import (
    Event,
    StreamConnected,
    StreamDisconnected,
    StreamError,
    Transcription,
)
from protocol.transcription import encode_stop_frame


_CLOSE = object()


class FakeWebSocket:
    """In-memory stand-in for websockets.asyncio.client.ClientConnection."""

    def __init__(self) -> None:
        self.state = State.OPEN
        self.sent: list[Any] = []
        self.close_calls: list[tuple[int, str]] = []
        self.fail_next_send = False
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()

    # -- client side --------------------------------------------------

    async def send(self, message: Any) -> None:
        if self.state is not State.OPEN:
            raise ConnectionClosedOK(None, None)
        if self.fail_next_send:
            self.fail_next_send = False
            raise RuntimeError("send glitch")
        self.sent.append(message)

    async def recv_streaming(self):
        item = await self._inbox.get()
        if item is _CLOSE:
            self.state = State.CLOSED
            raise ConnectionClosedOK(None, None)
        if isinstance(item, BaseException):
            self.state = State.CLOSED
            raise item
        for fragment in item:
            yield fragment

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self.state = State.CLOSED
        self._inbox.put_nowait(_CLOSE)

    # -- server side --------------------------------------------------

    def server_send(self, *fragments: Any) -> None:
        self._inbox.put_nowait(list(fragments))

    def server_close(self) -> None:
        self._inbox.put_nowait(_CLOSE)

    def server_fail(self, exc: BaseException) -> None:
        self._inbox.put_nowait(exc)


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logger, "_print", lambda line: None)


def make_transcriber(
    ws: FakeWebSocket | None = None,
    *,
    api_key: str | None = None,
    connect_error: Exception | None = None,
    listener: Callable[[Event], Awaitable[None]] | None = None,
    queue_capacity: int = 100,
) -> tuple[RealtimeTranscriber, list[Event], list[tuple[str, dict[str, Any]]]]:
    events: list[Event] = []
    connect_calls: list[tuple[str, dict[str, Any]]] = []

    async def sink(event: Event) -> None:
        events.append(event)
        if listener is not None:
            await listener(event)

    async def fake_connect(url: str, **kwargs: Any) -> FakeWebSocket:
        connect_calls.append((url, kwargs))
        if connect_error is not None:
            raise connect_error
        assert ws is not None
        return ws

    transcriber = RealtimeTranscriber(
        TranscriberConfig(websocket_url="ws://asr.test/stream", api_key=api_key),
        emit_event=sink,
        connect=fake_connect,
        queue_capacity=queue_capacity,
    )
    return transcriber, events, connect_calls


async def wait_until(predicate: Callable[[], bool], timeout_s: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(poll(), timeout=timeout_s)


def of_type(events: list[Event], cls: type) -> list[Any]:
    return [e for e in events if isinstance(e, cls)]


# ---------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------

def test_connect_opens_session_with_bearer_header():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, calls = make_transcriber(ws, api_key="secret")
        await transcriber.connect()
        connected = transcriber.is_connected
        state = transcriber.state
        await transcriber.disconnect()
        return events, calls, connected, state

    events, calls, connected, state = asyncio.run(scenario())

    assert connected is True
    assert state is ConnectionState.OPEN
    url, kwargs = calls[0]
    assert url == "ws://asr.test/stream"
    assert kwargs["additional_headers"] == {"Authorization": "Bearer secret"}
    assert isinstance(events[0], StreamConnected)
    assert events[0].url == "ws://asr.test/stream"


def test_connect_without_api_key_sends_no_headers():
    async def scenario():
        transcriber, _, calls = make_transcriber(FakeWebSocket())
        await transcriber.connect()
        await transcriber.disconnect()
        return calls

    calls = asyncio.run(scenario())

    assert calls[0][1]["additional_headers"] is None


def test_connect_while_open_is_noop():
    async def scenario():
        transcriber, events, calls = make_transcriber(FakeWebSocket())
        await transcriber.connect()
        await transcriber.connect()
        await transcriber.disconnect()
        return events, calls

    events, calls = asyncio.run(scenario())

    assert len(calls) == 1
    assert len(of_type(events, StreamConnected)) == 1


def test_connect_failure_emits_error_and_reraises():
    async def scenario():
        transcriber, events, _ = make_transcriber(connect_error=OSError("refused"))
        with pytest.raises(OSError):
            await transcriber.connect()
        return transcriber, events

    transcriber, events = asyncio.run(scenario())

    assert transcriber.state is ConnectionState.DISCONNECTED
    assert transcriber.is_connected is False
    assert len(events) == 1
    assert isinstance(events[0], StreamError)
    assert events[0].reason == "Connection failed: refused"


# ---------------------------------------------------------------------
# Send path
# ---------------------------------------------------------------------

def test_stop_sends_silence_then_stop_frame_after_queued_audio():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, _ = make_transcriber(ws)
        await transcriber.connect()

        transcriber.send_audio_chunk(b"\x01\x00" * 4)
        transcriber.send_audio_chunk(b"\x02\x00" * 4)
        await transcriber.stop()

        # Nothing is accepted behind the stop signal
        transcriber.send_audio_chunk(b"\x03\x00" * 4)

        await wait_until(lambda: encode_stop_frame() in ws.sent)
        sent = list(ws.sent)
        chunks_sent = transcriber.chunks_sent
        await transcriber.disconnect()
        return sent, chunks_sent, events

    sent, chunks_sent, events = asyncio.run(scenario())

    assert sent == [
        b"\x01\x00" * 4,
        b"\x02\x00" * 4,
        bytes(32000),
        '{"action":"stop"}',
    ]
    assert chunks_sent == 3
    assert of_type(events, StreamDisconnected)[0].chunks_sent == 3


def test_send_audio_chunk_copies_buffer():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, _, _ = make_transcriber(ws)
        await transcriber.connect()

        buffer = bytearray(b"\x10\x00\x20\x00")
        transcriber.send_audio_chunk(buffer)
        buffer[:] = b"\x00\x00\x00\x00"

        await wait_until(lambda: len(ws.sent) == 1)
        await transcriber.disconnect()
        return ws.sent

    assert asyncio.run(scenario()) == [b"\x10\x00\x20\x00"]


def test_overflow_drops_oldest_chunks():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, _ = make_transcriber(ws, queue_capacity=100)
        await transcriber.connect()

        # No await between calls: the send loop cannot run yet
        for i in range(150):
            transcriber.send_audio_chunk(i.to_bytes(2, "little"))

        skipped = transcriber.chunks_skipped
        await wait_until(lambda: len(ws.sent) == 100)
        first_sent = ws.sent[0]
        await transcriber.disconnect()
        return skipped, first_sent, events

    skipped, first_sent, events = asyncio.run(scenario())

    assert skipped == 50
    assert first_sent == (50).to_bytes(2, "little")
    assert of_type(events, StreamDisconnected)[0].chunks_skipped == 50


def test_send_failure_is_logged_and_loop_continues():
    async def scenario():
        ws = FakeWebSocket()
        ws.fail_next_send = True
        transcriber, _, _ = make_transcriber(ws)
        await transcriber.connect()

        transcriber.send_audio_chunk(b"\x01\x00")
        await asyncio.sleep(0.01)
        transcriber.send_audio_chunk(b"\x02\x00")

        await wait_until(lambda: len(ws.sent) == 1)
        await transcriber.disconnect()
        return ws.sent, transcriber.chunks_sent

    sent, chunks_sent = asyncio.run(scenario())

    assert sent == [b"\x02\x00"]
    assert chunks_sent == 1


def test_send_audio_chunk_when_not_connected_is_noop():
    transcriber, events, _ = make_transcriber(FakeWebSocket())

    transcriber.send_audio_chunk(b"\x00\x00")

    assert events == []
    assert transcriber.chunks_sent == 0


# ---------------------------------------------------------------------
# Receive path
# ---------------------------------------------------------------------

def test_receive_emits_transcripts_errors_and_skips_garbage():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, _ = make_transcriber(ws)
        await transcriber.connect()

        ws.server_send('{"text": "hel', 'lo", "final": false}')
        ws.server_send(b"\x00\x01")
        ws.server_send('{"error": "model overloaded"}')
        ws.server_send("not json")
        ws.server_send('{"text": "hello world", "final": true}')
        ws.server_close()

        await wait_until(lambda: bool(of_type(events, StreamDisconnected)))
        await transcriber.disconnect()
        return events

    events = asyncio.run(scenario())

    assert [type(e) for e in events] == [
        StreamConnected,
        Transcription,
        StreamError,
        Transcription,
        StreamDisconnected,
    ]
    assert (events[1].text, events[1].is_final) == ("hello", False)
    assert events[2].reason == "model overloaded"
    assert (events[3].text, events[3].is_final) == ("hello world", True)


def test_transport_error_emits_stream_error_and_ends():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, _ = make_transcriber(ws)
        await transcriber.connect()

        ws.server_fail(ConnectionClosedError(None, None))
        await wait_until(lambda: bool(of_type(events, StreamDisconnected)))
        connected = transcriber.is_connected
        await transcriber.disconnect()
        return events, connected

    events, connected = asyncio.run(scenario())

    assert connected is False
    errors = of_type(events, StreamError)
    assert len(errors) == 1
    assert errors[0].reason.startswith("Connection error:")
    assert len(of_type(events, StreamDisconnected)) == 1


def test_listener_failure_does_not_kill_receive_loop():
    async def flaky(event: Event) -> None:
        if isinstance(event, Transcription) and event.text == "first":
            raise RuntimeError("listener bug")

    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, _ = make_transcriber(ws, listener=flaky)
        await transcriber.connect()

        ws.server_send('{"text": "first"}')
        ws.server_send('{"text": "second"}')
        await wait_until(lambda: len(of_type(events, Transcription)) == 2)
        await transcriber.disconnect()
        return events

    events = asyncio.run(scenario())

    assert [e.text for e in of_type(events, Transcription)] == ["first", "second"]


# ---------------------------------------------------------------------
# Disconnect / dispose
# ---------------------------------------------------------------------

def test_disconnect_twice_emits_one_disconnected_event():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, _ = make_transcriber(ws)
        await transcriber.connect()
        await transcriber.disconnect()
        await transcriber.disconnect()
        return ws, events, transcriber.state

    ws, events, state = asyncio.run(scenario())

    assert len(of_type(events, StreamDisconnected)) == 1
    assert ws.close_calls == [(1000, "Done")]
    assert state is ConnectionState.DISCONNECTED


def test_reconnect_after_disconnect_starts_fresh_session():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, calls = make_transcriber(ws)
        await transcriber.connect()
        await transcriber.disconnect()

        ws.state = State.OPEN
        await transcriber.connect()
        await transcriber.disconnect()
        return events, calls

    events, calls = asyncio.run(scenario())

    assert len(calls) == 2
    assert len(of_type(events, StreamConnected)) == 2
    assert len(of_type(events, StreamDisconnected)) == 2


def test_dispose_is_idempotent_and_blocks_further_use():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, _, _ = make_transcriber(ws)
        await transcriber.connect()

        transcriber.dispose()
        transcriber.dispose()

        # Silent no-op
        transcriber.send_audio_chunk(b"\x00\x00")

        for call in (transcriber.connect, transcriber.stop, transcriber.disconnect):
            with pytest.raises(TranscriberDisposedError):
                await call()

        await asyncio.sleep(0)
        return transcriber, ws

    transcriber, ws = asyncio.run(scenario())

    assert transcriber.state is ConnectionState.DISCONNECTED
    assert transcriber.is_connected is False
    assert ws.state is State.CLOSED


def test_async_context_manager_disconnects_and_disposes():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, _ = make_transcriber(ws)
        async with transcriber:
            await transcriber.connect()
        with pytest.raises(TranscriberDisposedError):
            await transcriber.connect()
        return events

    events = asyncio.run(scenario())

    assert len(of_type(events, StreamDisconnected)) == 1


# ---------------------------------------------------------------------
# Caller token
# ---------------------------------------------------------------------

def test_cancelled_caller_token_ends_the_session():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, events, _ = make_transcriber(ws)
        caller = CancellationToken()
        await transcriber.connect(caller)

        caller.cancel()
        await wait_until(lambda: transcriber.state is ConnectionState.DISCONNECTED)
        connected = transcriber.is_connected

        # Nothing may be queued for a session that is gone
        transcriber.send_audio_chunk(b"\x01\x00")
        await asyncio.sleep(0.01)
        await transcriber.disconnect()
        return ws, events, connected

    ws, events, connected = asyncio.run(scenario())

    assert connected is False
    assert ws.sent == []
    assert ws.close_calls == [(1000, "Done")]
    assert len(of_type(events, StreamDisconnected)) == 1


def test_server_close_moves_state_out_of_open():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, _, _ = make_transcriber(ws)
        await transcriber.connect()

        ws.server_close()
        await wait_until(lambda: transcriber.state is ConnectionState.DISCONNECTED)
        await transcriber.disconnect()
        return transcriber

    transcriber = asyncio.run(scenario())

    assert transcriber.state is ConnectionState.DISCONNECTED


def test_session_tokens_are_released_from_caller_token():
    async def scenario():
        ws = FakeWebSocket()
        transcriber, _, _ = make_transcriber(ws)
        caller = CancellationToken()

        for _ in range(5):
            ws.state = State.OPEN
            await transcriber.connect(caller)
            await transcriber.disconnect()
        after_disconnects = list(caller._children)  # pylint: disable=protected-access

        ws.state = State.OPEN
        await transcriber.connect(caller)
        transcriber.dispose()
        after_dispose = list(caller._children)  # pylint: disable=protected-access
        await asyncio.sleep(0)
        return after_disconnects, after_dispose

    after_disconnects, after_dispose = asyncio.run(scenario())

    assert after_disconnects == []
    assert after_dispose == []
