"""
Streaming dictation session.

Toggle-driven: the first toggle connects a transcriber and starts
forwarding captured audio, the second flushes, sends the stop control,
waits briefly for the final transcript, then delivers the text.

- Owns exactly one StreamingTranscriber per recording
- Buffers capture chunks into DICTATION_SEND_BUFFER_BYTES blocks
- Accumulates finals plus the trailing partial
- NOT responsible for audio capture, hotkeys, or notifications

All methods must be called on the event loop thread.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from adapters.asr.base import StreamingTranscriber
from adapters.asr.realtime import RealtimeTranscriber
from adapters.clipboard.base import ClipboardAdapter
from adapters.history.base import HistoryAdapter
from config import AppConfig, TranscriberConfig
from constants import (
    DICTATION_NO_SPEECH_TIMEOUT_S,
    DICTATION_PASTE_DELAY_MS,
    DICTATION_SEND_BUFFER_BYTES,
    DICTATION_STOP_WAIT_S,
)
from observability import metrics
from observability.fingerprint import fingerprint
from observability.logger import ComponentLogger, now_ms
from orchestrator.enums.state import DictationState
from orchestrator.events import (
    DictationStarted,
    DictationStopped,
    Event,
    EventSink,
    EventType,
    StreamDisconnected,
    StreamError,
    Transcription,
)


COMPONENT = "dictation"
_log = ComponentLogger(COMPONENT)

TranscriberFactory = Callable[[TranscriberConfig, EventSink], StreamingTranscriber]


def _default_transcriber_factory(
    config: TranscriberConfig, emit_event: EventSink
) -> StreamingTranscriber:
    return RealtimeTranscriber(config, emit_event=emit_event)


# ---------------------------------------------------------------------
# DictationSession
# ---------------------------------------------------------------------


class DictationSession:
    """Toggle state machine over one streaming transcriber."""

    def __init__(
        self,
        *,
        config: AppConfig,
        clipboard: ClipboardAdapter,
        history: Optional[HistoryAdapter] = None,
        transcriber_factory: TranscriberFactory = _default_transcriber_factory,
        emit_event: Optional[EventSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._clipboard = clipboard
        self._history = history
        self._factory = transcriber_factory
        self._emit_event = emit_event
        self._clock = clock

        self._state = DictationState.IDLE
        self._transcriber: Optional[StreamingTranscriber] = None
        self._started_at: Optional[float] = None

        self._buffer = bytearray()
        self._final_parts: list[str] = []
        self._partial = ""
        self._heard_speech = False

        self._stop_waiter: Optional[asyncio.Event] = None
        self._stop_task: Optional[asyncio.Task[None]] = None
        self._cleanup_in_progress = False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> DictationState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._state is DictationState.STREAMING

    @property
    def transcript(self) -> str:
        """Text accumulated so far (finals plus the current partial)."""
        return self._collect_text()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def toggle(self) -> None:
        """Start when idle, stop when streaming, ignore mid-transition."""
        if not self._config.transcriber.enabled:
            _log("DICTATION_DISABLED")
            return

        if self._state in (DictationState.STARTING, DictationState.STOPPING):
            _log("DICTATION_TOGGLE_IGNORED", state=self._state.value)
            return

        if self._state is DictationState.STREAMING:
            self._state = DictationState.STOPPING
            await self._stop()
        else:
            self._state = DictationState.STARTING
            await self._start()

    async def stop(self) -> None:
        """Stop a streaming session, or wait for a stop already under way."""
        if self._state is DictationState.STREAMING:
            self._state = DictationState.STOPPING
            await self._stop()
            return

        task = self._stop_task
        if task is not None and not task.done():
            await task

    def on_silence_detected(self) -> None:
        """Stop hook for a capture-side voice activity detector."""
        _log("DICTATION_SILENCE_DETECTED", state=self._state.value)
        self._request_stop("silence")

    def push_audio(self, chunk: bytes) -> None:
        """
        Accept one capture chunk.

        Chunks are forwarded in DICTATION_SEND_BUFFER_BYTES blocks. With
        no transcript after DICTATION_NO_SPEECH_TIMEOUT_S the session
        stops itself.
        """
        if self._state is not DictationState.STREAMING:
            return

        if (
            not self._heard_speech
            and self._started_at is not None
            and self._clock() - self._started_at >= DICTATION_NO_SPEECH_TIMEOUT_S
        ):
            _log("DICTATION_NO_SPEECH_TIMEOUT", timeout_s=DICTATION_NO_SPEECH_TIMEOUT_S)
            self._request_stop("no_speech")
            return

        transcriber = self._transcriber
        if transcriber is None or not transcriber.is_connected:
            return

        self._buffer.extend(chunk)
        if len(self._buffer) >= DICTATION_SEND_BUFFER_BYTES:
            data = bytes(self._buffer)
            self._buffer.clear()
            transcriber.send_audio_chunk(data)

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    async def _start(self) -> None:
        self._buffer.clear()
        self._final_parts = []
        self._partial = ""
        self._heard_speech = False

        transcriber = self._factory(self._config.transcriber, self._on_transcriber_event)
        self._transcriber = transcriber
        _log("DICTATION_STARTING")

        try:
            await transcriber.connect()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log("DICTATION_START_FAILED", error=f"{type(exc).__name__}: {exc}")
            await self._cleanup()
            return

        self._started_at = self._clock()
        self._state = DictationState.STREAMING
        _log("DICTATION_STREAMING")
        await self._emit(
            DictationStarted(event_type=EventType.DICTATION_STARTED, ts_ms=now_ms())
        )

    async def _stop(self) -> None:
        with metrics.timed("dictation_stop_latency", component=COMPONENT) as details:
            transcriber = self._transcriber
            details["was_connected"] = bool(transcriber and transcriber.is_connected)

            if transcriber is not None and transcriber.is_connected:
                waiter = asyncio.Event()
                self._stop_waiter = waiter
                try:
                    if self._buffer:
                        data = bytes(self._buffer)
                        self._buffer.clear()
                        transcriber.send_audio_chunk(data)

                    await transcriber.stop()

                    _log("DICTATION_AWAITING_FINAL", timeout_s=DICTATION_STOP_WAIT_S)
                    try:
                        await asyncio.wait_for(waiter.wait(), timeout=DICTATION_STOP_WAIT_S)
                        details["final_received"] = True
                    except asyncio.TimeoutError:
                        _log("DICTATION_FINAL_TIMEOUT")
                        details["final_received"] = False
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    _log("DICTATION_STOP_FAILED", error=f"{type(exc).__name__}: {exc}")
                finally:
                    self._stop_waiter = None

            await self._cleanup()

    def _request_stop(self, reason: str) -> None:
        """Schedule a stop from a callback that must not block."""
        if self._state is not DictationState.STREAMING:
            _log("DICTATION_STOP_REQUEST_IGNORED", reason=reason, state=self._state.value)
            return
        self._state = DictationState.STOPPING
        _log("DICTATION_STOP_REQUESTED", reason=reason)
        self._stop_task = asyncio.create_task(self._stop())

    # ------------------------------------------------------------------
    # Transcriber events
    # ------------------------------------------------------------------

    async def _on_transcriber_event(self, event: Event) -> None:
        if isinstance(event, Transcription):
            self._on_transcription(event)
        elif isinstance(event, StreamError):
            _log("DICTATION_STREAM_ERROR", reason=event.reason)
            self._request_stop("stream_error")
        elif isinstance(event, StreamDisconnected):
            if self._stop_waiter is not None:
                self._stop_waiter.set()
            if self._state is DictationState.STREAMING:
                self._request_stop("server_disconnected")

    def _on_transcription(self, event: Transcription) -> None:
        # Cleanup already took its snapshot
        if self._transcriber is None:
            return

        if event.text:
            self._heard_speech = True

        if event.is_final:
            if event.text:
                self._final_parts.append(event.text)
            self._partial = ""
            if self._stop_waiter is not None:
                self._stop_waiter.set()
        else:
            self._partial = event.text

    # ------------------------------------------------------------------
    # Cleanup / delivery
    # ------------------------------------------------------------------

    async def _cleanup(self) -> None:
        if self._cleanup_in_progress:
            _log("DICTATION_CLEANUP_SKIPPED")
            return
        self._cleanup_in_progress = True

        try:
            text = self._collect_text()
            self._final_parts = []
            self._partial = ""
            self._buffer.clear()

            transcriber = self._transcriber
            self._transcriber = None

            started_at = self._started_at
            self._started_at = None
            duration_ms = (
                int((self._clock() - started_at) * 1000) if started_at is not None else 0
            )

            if transcriber is not None:
                try:
                    await transcriber.disconnect()
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    _log("DICTATION_DISCONNECT_FAILED", error=f"{type(exc).__name__}: {exc}")
                transcriber.dispose()

            if text:
                await self._deliver(text)
                self._append_history(text, duration_ms)

            _log(
                "DICTATION_STOPPED",
                duration_ms=duration_ms,
                text=fingerprint(text),
            )
            await self._emit(
                DictationStopped(
                    event_type=EventType.DICTATION_STOPPED,
                    ts_ms=now_ms(),
                    text=text,
                    duration_ms=duration_ms,
                )
            )
        finally:
            self._state = DictationState.IDLE
            self._cleanup_in_progress = False

    async def _deliver(self, text: str) -> None:
        try:
            placed = self._clipboard.set_text(text)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log("DICTATION_CLIPBOARD_FAILED", error=f"{type(exc).__name__}: {exc}")
            return
        if not placed:
            _log("DICTATION_CLIPBOARD_FAILED", error="set_text returned False")
            return

        if not self._config.transcriber.auto_paste:
            _log("DICTATION_TEXT_READY")
            return

        await asyncio.sleep(DICTATION_PASTE_DELAY_MS / 1000)
        try:
            pasted = await self._clipboard.paste()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log("DICTATION_PASTE_FAILED", error=f"{type(exc).__name__}: {exc}")
            return
        _log("DICTATION_AUTO_PASTE", pasted=bool(pasted))

    def _append_history(self, text: str, duration_ms: int) -> None:
        if self._history is None:
            return
        try:
            self._history.append_transcription(text, duration_ms)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log("DICTATION_HISTORY_APPEND_FAILED", error=f"{type(exc).__name__}: {exc}")

    def _collect_text(self) -> str:
        parts = [p.strip() for p in self._final_parts if p.strip()]
        if self._partial.strip():
            parts.append(self._partial.strip())
        return " ".join(parts)

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
