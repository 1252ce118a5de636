"""
Transcriber contracts (streaming and one-shot file upload).

This module defines the *interface only*; no queues, sockets, timers, or
retries live here.

Key invariants:
- One transport connection per recording session; no automatic reconnect.
- Audio submission never blocks the capture callback.
- The transcriber emits events (connected / transcription / error /
  disconnected) through an async callback; it never drives UI or
  clipboard work itself.
- StreamDisconnected is emitted at most once per connected session.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Union

from orchestrator.cancellation import CancellationToken
from orchestrator.enums.state import ConnectionState


class StreamingTranscriber(ABC):
    """
    Abstract interface for a duplex streaming transcription client.

    Note: emit_event callback must be async.

    Implementations are responsible for:
    - Opening and closing the transport
    - Forwarding PCM16 chunks in order, dropping the oldest on overflow
    - Delivering the end-of-utterance stop control after trailing silence
    - Decoding results into Transcription / StreamError events

    Non-responsibilities:
    - No dictation toggle logic
    - No transcript accumulation or delivery
    - No audio capture
    """

    @property
    @abstractmethod
    def state(self) -> ConnectionState:
        raise NotImplementedError

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True while the session is OPEN and the transport reports open."""
        raise NotImplementedError

    @abstractmethod
    async def connect(self, token: Optional[CancellationToken] = None) -> None:
        """
        Open a session. No-op when already OPEN.

        Contract:
        - On failure: emit StreamError, return to DISCONNECTED, re-raise.
        - The session token is linked to `token`; cancelling it ends the
          session's loops.
        """
        raise NotImplementedError

    @abstractmethod
    def send_audio_chunk(self, data: Union[bytes, bytearray, memoryview]) -> None:
        """
        Queue one PCM16 chunk for sending.

        Contract:
        - Synchronous and non-blocking; safe to call from a capture callback.
        - The buffer is copied; callers may reuse it immediately.
        - No-op when not connected.
        """
        raise NotImplementedError

    @abstractmethod
    async def stop(self) -> None:
        """
        Request end of utterance.

        Trailing silence and the stop control are queued behind every
        chunk already accepted.
        """
        raise NotImplementedError

    @abstractmethod
    async def disconnect(self) -> None:
        """
        End the session: cancel loops, close the transport, emit
        StreamDisconnected (once per session). Safe to call twice.
        """
        raise NotImplementedError

    @abstractmethod
    def dispose(self) -> None:
        """
        Release everything without awaiting. Idempotent.

        After dispose, connect / stop / disconnect raise
        TranscriberDisposedError and send_audio_chunk is a silent no-op.
        """
        raise NotImplementedError


class FileTranscriber(ABC):
    """
    Abstract interface for one-shot transcription of recorded audio.

    Implementations own retries (shared retry policy) and map transport
    failures into the error taxonomy.
    """

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str = "audio.wav",
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Transcribe a complete WAV payload."""
        raise NotImplementedError

    @abstractmethod
    async def test_connection(self, *, token: Optional[CancellationToken] = None) -> str:
        """Single attempt with a short silent clip; returns the endpoint's text."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release HTTP resources. Default: nothing to release."""
        return None
