"""
Realtime streaming transcription client (WebSocket).

Core model:
- One WebSocket connection per recording session (connect -> disconnect).
- Capture callbacks hand PCM16 chunks to send_audio_chunk(), which only
  enqueues into a BoundedAudioQueue (drop-oldest, never blocks).
- A send loop drains the queue: audio goes out as binary frames, the stop
  signal as the text frame {"action":"stop"}.
- A receive loop assembles inbound text messages and emits Transcription
  or StreamError events until close, error, or cancellation.

Lifecycle:
    DISCONNECTED -connect-> CONNECTING -ok-> OPEN -stop-> CLOSING
    OPEN / CLOSING -disconnect-> DISCONNECTED
    receive loop ends on its own (server close, transport error, caller
    token cancelled) -> CLOSING -> DISCONNECTED
    connect failure -> DISCONNECTED (StreamError emitted, exception re-raised)

Design constraints:
- Loops never raise to callers; failures become events and log lines.
- Listener exceptions are logged and never kill a loop.
- No automatic reconnect.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.protocol import State

from adapters.asr.base import StreamingTranscriber
from audio.frames import AudioChunk, StopSignal
from audio.pcm import silence_pcm16le
from audio.queues import BoundedAudioQueue
from config import TranscriberConfig
from constants import (
    SEND_QUEUE_CAPACITY,
    STOP_SILENCE_BYTES,
    TRANSCRIPT_LOG_PREVIEW_CHARS,
    WS_CLOSE_CODE_NORMAL,
    WS_CLOSE_REASON,
    WS_MAX_MESSAGE_BYTES,
)
from observability.logger import ComponentLogger, now_ms
from orchestrator.cancellation import CancellationToken, OperationCancelled
from orchestrator.enums.state import ConnectionState
from orchestrator.errors import TranscriberDisposedError
from orchestrator.events import (
    Event,
    EventSink,
    EventType,
    StreamConnected,
    StreamDisconnected,
    StreamError,
    Transcription,
)
from protocol.transcription import (
    InboundMessage,
    ProtocolDecodeError,
    ServerErrorMessage,
    TextMessageAssembler,
    encode_audio_frame,
    encode_stop_frame,
)


_log = ComponentLogger("realtime_transcriber")

ConnectFn = Callable[..., Awaitable[Any]]


@dataclass
class _Session:
    """
    Mutable per-connection bookkeeping.

    Created on connect, dropped on disconnect / dispose.
    """
    ws: Any
    queue: BoundedAudioQueue
    token: CancellationToken
    send_task: Optional[asyncio.Task[None]] = None
    recv_task: Optional[asyncio.Task[None]] = None
    close_task: Optional[asyncio.Task[None]] = None
    chunks_sent: int = 0
    closing: bool = False
    disconnect_emitted: bool = False


class RealtimeTranscriber(StreamingTranscriber):
    """
    Duplex WebSocket transcription client.

    Args:
        config:
            Endpoint URL, optional bearer api key, handshake timeout.
        emit_event:
            Async listener; receives StreamConnected, Transcription,
            StreamError, StreamDisconnected in order.
        connect:
            Transport factory with the websockets.asyncio.client.connect
            signature (injectable for tests).
    """

    def __init__(
        self,
        config: TranscriberConfig,
        *,
        emit_event: Optional[EventSink] = None,
        connect: ConnectFn = ws_connect,
        queue_capacity: int = SEND_QUEUE_CAPACITY,
    ) -> None:
        self._config = config
        self._emit_event = emit_event
        self._connect_fn = connect
        self._queue_capacity = queue_capacity

        self._state = ConnectionState.DISCONNECTED
        self._session: Optional[_Session] = None
        self._disposed = False

        # Stats of the last finished session
        self._chunks_sent = 0
        self._chunks_skipped = 0

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        session = self._session
        return (
            self._state is ConnectionState.OPEN
            and session is not None
            and _transport_open(session.ws)
        )

    @property
    def chunks_sent(self) -> int:
        session = self._session
        return session.chunks_sent if session is not None else self._chunks_sent

    @property
    def chunks_skipped(self) -> int:
        session = self._session
        return session.queue.skipped if session is not None else self._chunks_skipped

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def connect(self, token: Optional[CancellationToken] = None) -> None:
        self._ensure_not_disposed()

        if self.is_connected:
            _log("STREAM_ALREADY_CONNECTED")
            return

        prior = self._session
        if prior is not None:
            await self._release(prior)

        self._state = ConnectionState.CONNECTING
        url = self._config.websocket_url
        _log("STREAM_CONNECTING", url=url, has_api_key=bool(self._config.api_key))

        try:
            if token is not None:
                ws = await token.run(self._open_transport())
            else:
                ws = await self._open_transport()
        except (OperationCancelled, asyncio.CancelledError):
            self._state = ConnectionState.DISCONNECTED
            raise
        except Exception as exc:
            self._state = ConnectionState.DISCONNECTED
            _log("STREAM_CONNECT_FAILED", url=url, error=f"{type(exc).__name__}: {exc}")
            await self._emit(
                StreamError(
                    event_type=EventType.STREAM_ERROR,
                    ts_ms=now_ms(),
                    reason=f"Connection failed: {exc}",
                )
            )
            raise

        if self._disposed:
            _close_in_background(ws)
            raise TranscriberDisposedError("transcriber disposed during connect")

        session = _Session(
            ws=ws,
            queue=BoundedAudioQueue(capacity=self._queue_capacity),
            token=CancellationToken(parent=token),
        )
        self._session = session
        self._state = ConnectionState.OPEN
        _log("STREAM_CONNECTED", url=url)

        # Connected strictly precedes anything the loops emit
        await self._emit(
            StreamConnected(
                event_type=EventType.STREAM_CONNECTED,
                ts_ms=now_ms(),
                url=url,
            )
        )

        if self._session is not session:
            return
        if session.token.cancelled:
            await self._close_session(session)
            return

        session.send_task = asyncio.create_task(self._send_loop(session))
        session.recv_task = asyncio.create_task(self._receive_loop(session))

    def send_audio_chunk(self, data: Union[bytes, bytearray, memoryview]) -> None:
        if self._disposed:
            return

        session = self._session
        if self._state is not ConnectionState.OPEN or session is None:
            _log("STREAM_SEND_IGNORED", reason="not_connected", state=self._state.value)
            return

        session.queue.try_enqueue(AudioChunk(pcm_bytes=bytes(data)))

    async def stop(self) -> None:
        self._ensure_not_disposed()

        session = self._session
        if (
            self._state is not ConnectionState.OPEN
            or session is None
            or not _transport_open(session.ws)
        ):
            _log("STREAM_STOP_IGNORED", reason="not_connected", state=self._state.value)
            return

        # Nothing is accepted behind the stop signal
        self._state = ConnectionState.CLOSING
        _log("STREAM_STOP_REQUESTED", queue=session.queue.snapshot())

        silence = AudioChunk(pcm_bytes=silence_pcm16le(STOP_SILENCE_BYTES))
        if not await session.queue.enqueue_blocking(silence):
            return
        await session.queue.enqueue_blocking(StopSignal())

    async def disconnect(self) -> None:
        self._ensure_not_disposed()

        session = self._session
        if session is None:
            self._state = ConnectionState.DISCONNECTED
            return

        await self._release(session)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True

        session = self._session
        self._session = None
        self._state = ConnectionState.DISCONNECTED
        _log("STREAM_DISPOSED", had_session=session is not None)

        if session is None:
            return

        session.token.cancel()
        session.token.detach()
        session.queue.close()
        for task in (session.send_task, session.recv_task, session.close_task):
            if task is not None and not task.done():
                task.cancel()

        self._chunks_sent = session.chunks_sent
        self._chunks_skipped = session.queue.skipped

        if _transport_open(session.ws):
            _close_in_background(session.ws)

    async def __aenter__(self) -> RealtimeTranscriber:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if not self._disposed:
            await self.disconnect()
        self.dispose()

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    async def _open_transport(self) -> Any:
        headers = None
        if self._config.api_key:
            headers = {"Authorization": f"Bearer {self._config.api_key}"}

        return await self._connect_fn(
            self._config.websocket_url,
            additional_headers=headers,
            max_size=WS_MAX_MESSAGE_BYTES,
            ping_interval=None,
            open_timeout=self._config.timeout_s,
        )

    async def _release(self, session: _Session) -> None:
        """Close the session, or join a close the loops already started."""
        close_task = session.close_task
        if close_task is not None and close_task is not asyncio.current_task():
            await close_task
            return
        await self._close_session(session)

    def _end_ended_session(self, session: _Session) -> None:
        # Server close, transport error or a cancelled caller token:
        # the session is over, so it must not keep reporting OPEN
        if session.closing or self._disposed or self._session is not session:
            return
        session.closing = True
        self._state = ConnectionState.CLOSING
        _log("STREAM_SESSION_ENDED", cancelled=session.token.cancelled)
        session.close_task = asyncio.get_running_loop().create_task(
            self._close_session(session)
        )

    async def _close_session(self, session: _Session) -> None:
        """
        Cancel the session, close the transport, then (always) wait for
        both loops and emit StreamDisconnected once.
        """
        session.closing = True
        self._state = ConnectionState.CLOSING
        session.token.cancel()

        try:
            if _transport_open(session.ws):
                _log("STREAM_CLOSING")
                await session.ws.close(code=WS_CLOSE_CODE_NORMAL, reason=WS_CLOSE_REASON)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log("STREAM_CLOSE_FAILED", error=f"{type(exc).__name__}: {exc}")
        finally:
            session.queue.close()

            # A listener may call disconnect() from inside a loop
            current = asyncio.current_task()
            tasks = [
                t for t in (session.send_task, session.recv_task)
                if t is not None and t is not current
            ]
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)

            await self._emit_disconnected(session)
            session.token.detach()

            self._chunks_sent = session.chunks_sent
            self._chunks_skipped = session.queue.skipped
            if self._session is session:
                self._session = None
                self._state = ConnectionState.DISCONNECTED

    # -------------------------------------------------------------------------
    # Background loops
    # -------------------------------------------------------------------------

    async def _send_loop(self, session: _Session) -> None:
        """
        Drain the queue onto the socket in order.

        A failed send is logged and the loop continues; only cancellation
        or end-of-stream ends it.
        """
        queue = session.queue
        token = session.token
        ws = session.ws

        try:
            while not token.cancelled:
                if not await token.run(queue.wait_to_read()):
                    break

                for item in queue.drain():
                    if not _transport_open(ws):
                        continue
                    try:
                        if isinstance(item, StopSignal):
                            await token.run(ws.send(encode_stop_frame()))
                            _log("STREAM_STOP_SENT", chunks_sent=session.chunks_sent)
                        else:
                            await token.run(ws.send(encode_audio_frame(item)))
                            session.chunks_sent += 1
                    except OperationCancelled:
                        raise
                    except Exception as exc:  # pylint: disable=broad-exception-caught
                        _log("STREAM_SEND_FAILED", error=f"{type(exc).__name__}: {exc}")
        except OperationCancelled:
            pass
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log("STREAM_SEND_LOOP_ERROR", error=f"{type(exc).__name__}: {exc}")
        finally:
            _log("STREAM_SEND_LOOP_ENDED", chunks_sent=session.chunks_sent)

    async def _receive_loop(self, session: _Session) -> None:
        """
        Read inbound messages until close, transport error, or cancellation.

        RULES:
        - close frame / cancellation: end quietly
        - transport error: emit StreamError, end
        - {"error": ...}: emit StreamError, continue
        - {"text": ..., "final": ...}: emit Transcription, continue
        - undecodable message: log, continue
        - always: emit StreamDisconnected once on exit
        """
        token = session.token
        ws = session.ws

        try:
            while not token.cancelled and _transport_open(ws):
                try:
                    message = await token.run(_receive_message(ws))
                except OperationCancelled:
                    break
                except ConnectionClosedOK:
                    _log("STREAM_SERVER_CLOSED")
                    break
                except ProtocolDecodeError as exc:
                    _log("STREAM_DECODE_FAILED", error=str(exc))
                    continue
                except (ConnectionClosed, OSError) as exc:
                    if token.cancelled:
                        break
                    _log("STREAM_RECEIVE_FAILED", error=f"{type(exc).__name__}: {exc}")
                    await self._emit(
                        StreamError(
                            event_type=EventType.STREAM_ERROR,
                            ts_ms=now_ms(),
                            reason=f"Connection error: {exc}",
                        )
                    )
                    break

                if message is None:
                    continue

                await self._dispatch(message)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log("STREAM_RECEIVE_LOOP_ERROR", error=f"{type(exc).__name__}: {exc}")
        finally:
            _log(
                "STREAM_RECEIVE_LOOP_ENDED",
                chunks_sent=session.chunks_sent,
                chunks_skipped=session.queue.skipped,
            )
            await self._emit_disconnected(session)
            self._end_ended_session(session)

    async def _dispatch(self, message: InboundMessage) -> None:
        if isinstance(message, ServerErrorMessage):
            _log("STREAM_SERVER_ERROR", error=message.error)
            await self._emit(
                StreamError(
                    event_type=EventType.STREAM_ERROR,
                    ts_ms=now_ms(),
                    reason=message.error,
                )
            )
            return

        _log(
            "STREAM_TRANSCRIPT",
            is_final=message.is_final,
            chars=len(message.text),
            preview=message.text[:TRANSCRIPT_LOG_PREVIEW_CHARS],
        )
        await self._emit(
            Transcription(
                event_type=EventType.TRANSCRIPTION,
                ts_ms=now_ms(),
                text=message.text,
                is_final=message.is_final,
            )
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _emit_disconnected(self, session: _Session) -> None:
        if session.disconnect_emitted or self._disposed:
            return
        session.disconnect_emitted = True
        await self._emit(
            StreamDisconnected(
                event_type=EventType.STREAM_DISCONNECTED,
                ts_ms=now_ms(),
                chunks_sent=session.chunks_sent,
                chunks_skipped=session.queue.skipped,
            )
        )

    async def _emit(self, event: Event) -> None:
        if self._emit_event is None:
            return
        try:
            await self._emit_event(event)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log(
                "LISTENER_ERROR",
                listener_event=event.event_type.value,
                error=f"{type(exc).__name__}: {exc}",
            )

    def _ensure_not_disposed(self) -> None:
        if self._disposed:
            raise TranscriberDisposedError("RealtimeTranscriber has been disposed")


def _transport_open(ws: Any) -> bool:
    return ws is not None and getattr(ws, "state", None) is State.OPEN


async def _receive_message(ws: Any) -> Optional[InboundMessage]:
    """Read one complete (possibly fragmented) message."""
    assembler = TextMessageAssembler()
    async for fragment in ws.recv_streaming():
        assembler.feed(fragment)
    return assembler.finish()


def _close_in_background(ws: Any) -> None:
    try:
        asyncio.get_running_loop().create_task(ws.close())
    except RuntimeError:
        # No running loop; the transport is dropped with the session
        pass
