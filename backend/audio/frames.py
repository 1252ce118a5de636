"""
Outbound audio queue items.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class AudioChunk:
    """
    One chunk of raw PCM16 little-endian mono audio.

    pcm_bytes:
        Owned copy of the captured buffer. Producers may reuse their own
        buffer as soon as the chunk is constructed.
    """
    pcm_bytes: bytes


@dataclass(frozen=True)
class StopSignal:
    """End-of-utterance marker; sent as the stop control frame."""


QueueItem = Union[AudioChunk, StopSignal]
