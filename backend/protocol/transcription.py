# backend/protocol/transcription.py
"""
Wire format for the streaming transcription socket.

Client -> Server:
    binary frame   raw PCM16 little-endian mono chunk (one chunk per frame,
                   no fragmentation at this layer)
    text frame     {"action":"stop"}  end of utterance

Server -> Client:
    text frame     {"text": "...", "final": true|false}
    text frame     {"error": "..."}
    binary frames are not part of the protocol and are ignored

Usage example:

    assembler = TextMessageAssembler()
    async for fragment in ws.recv_streaming():
        assembler.feed(fragment)
    message = assembler.finish()   # None for ignored binary messages

    if isinstance(message, TranscriptMessage):
        ...
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional, Union

from audio.frames import AudioChunk
from constants import STOP_CONTROL_MESSAGE


# -------------------------
# Exceptions
# -------------------------

class ProtocolDecodeError(Exception):
    """
    Raised when an inbound text message is not a valid result message.

    Non-fatal: the receive loop logs it and keeps reading.
    """


# -------------------------
# Inbound messages
# -------------------------

@dataclass(frozen=True)
class TranscriptMessage:
    """Partial or final transcript for the current utterance."""
    text: str
    is_final: bool


@dataclass(frozen=True)
class ServerErrorMessage:
    """Error reported by the transcription service."""
    error: str


InboundMessage = Union[TranscriptMessage, ServerErrorMessage]


# -------------------------
# Encode (client -> server)
# -------------------------

def encode_audio_frame(chunk: AudioChunk) -> bytes:
    """Binary frame payload for one audio chunk."""
    return chunk.pcm_bytes


def encode_stop_frame() -> str:
    """Text frame payload for the stop control message."""
    return _dumps(STOP_CONTROL_MESSAGE)


# -------------------------
# Encode (server -> client)
# -------------------------

def encode_transcript_message(text: str, *, is_final: bool) -> str:
    """Server-side result payload (used by test servers and tools)."""
    return _dumps({"text": text, "final": is_final})


def encode_error_message(error: str) -> str:
    """Server-side error payload (used by test servers and tools)."""
    return _dumps({"error": error})


# -------------------------
# Decode (server -> client)
# -------------------------

def decode_message(raw: Union[str, bytes]) -> InboundMessage:
    """
    Parse one complete inbound text message.

    Raises:
        ProtocolDecodeError if the payload is not a JSON object with the
        expected fields.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolDecodeError(f"invalid utf-8: {e}") from e

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolDecodeError(f"invalid json: {e.msg}") from e

    if not isinstance(payload, dict):
        raise ProtocolDecodeError(
            f"expected json object, got {type(payload).__name__}"
        )

    error = payload.get("error")
    if error:
        return ServerErrorMessage(error=str(error))

    text = payload.get("text")
    if text is None:
        text = ""
    if not isinstance(text, str):
        raise ProtocolDecodeError(f"'text' must be a string, got {type(text).__name__}")

    final = payload.get("final", False)
    if not isinstance(final, bool):
        raise ProtocolDecodeError(f"'final' must be a bool, got {type(final).__name__}")

    return TranscriptMessage(text=text, is_final=final)


class TextMessageAssembler:
    """
    Accumulates the fragments of one inbound message.

    The first fragment decides the message kind: str fragments form a
    text message, bytes fragments a binary message (ignored).
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._binary = False
        self._started = False

    def feed(self, fragment: Union[str, bytes]) -> None:
        if not self._started:
            self._started = True
            self._binary = isinstance(fragment, (bytes, bytearray, memoryview))

        if self._binary:
            return

        if not isinstance(fragment, str):
            raise ProtocolDecodeError("binary fragment inside a text message")

        self._parts.append(fragment)

    def finish(self) -> Optional[InboundMessage]:
        """
        Decode the accumulated message and reset for the next one.

        Returns None for binary messages.
        """
        binary = self._binary
        raw = "".join(self._parts)
        self._parts = []
        self._binary = False
        self._started = False

        if binary:
            return None
        return decode_message(raw)


# -------------------------
# Low-level helpers
# -------------------------

def _dumps(payload: Any) -> str:
    return json.dumps(dict(payload), ensure_ascii=False, separators=(",", ":"))
