"""PCM16 helpers."""
from __future__ import annotations

import io
import wave

import numpy as np

from constants import (
    AUDIO_BYTES_PER_SECOND,
    AUDIO_CHANNELS,
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLE_WIDTH_BYTES,
)


def silence_pcm16le(num_bytes: int) -> bytes:
    """
    Zero-valued PCM16 little-endian audio of exactly num_bytes.

    num_bytes must be a whole number of samples.
    """
    if num_bytes < 0 or num_bytes % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise ValueError(f"num_bytes must be a non-negative multiple of "
                         f"{AUDIO_SAMPLE_WIDTH_BYTES}, got {num_bytes}")
    return np.zeros(num_bytes // AUDIO_SAMPLE_WIDTH_BYTES, dtype="<i2").tobytes()


def pcm16le_duration_s(num_bytes: int) -> float:
    """Duration in seconds of num_bytes of 16kHz mono PCM16."""
    return num_bytes / AUDIO_BYTES_PER_SECOND


def pcm16le_peak(pcm_bytes: bytes) -> float:
    """
    Peak absolute amplitude in [0.0, 1.0].

    Used by tools to report whether a streamed file contains anything
    but silence. A trailing odd byte is ignored.
    """
    usable = len(pcm_bytes) - (len(pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES)
    if usable == 0:
        return 0.0
    samples = np.frombuffer(pcm_bytes[:usable], dtype="<i2").astype(np.int32)
    return float(np.abs(samples).max()) / 32768.0


def pcm16le_to_wav(pcm_bytes: bytes) -> bytes:
    """Wrap 16kHz mono PCM16 in a RIFF/WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(AUDIO_CHANNELS)
        wav.setsampwidth(AUDIO_SAMPLE_WIDTH_BYTES)
        wav.setframerate(AUDIO_SAMPLE_RATE_HZ)
        wav.writeframes(pcm_bytes)
    return buffer.getvalue()
