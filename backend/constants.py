"""
CONSTANTS
---------
Single source of truth for behavioral values in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Mapping

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, little-endian)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_BYTES_PER_SECOND: Final[int] = (
    AUDIO_SAMPLE_RATE_HZ * AUDIO_CHANNELS * AUDIO_SAMPLE_WIDTH_BYTES
)

# =============================================================================
# Streaming transcription client
# =============================================================================

# Outbound queue between audio capture and the send loop
SEND_QUEUE_CAPACITY: Final[int] = 100

# Trailing silence sent before the stop control frame so the remote
# endpoint can finalize its last partial transcript
STOP_SILENCE_DURATION_S: Final[float] = 1.0
STOP_SILENCE_BYTES: Final[int] = int(AUDIO_BYTES_PER_SECOND * STOP_SILENCE_DURATION_S)

# Text control payload for end of utterance
STOP_CONTROL_MESSAGE: Final[Mapping[str, str]] = {"action": "stop"}

WS_MAX_MESSAGE_BYTES: Final[int] = 2**22
WS_CLOSE_CODE_NORMAL: Final[int] = 1000
WS_CLOSE_REASON: Final[str] = "Done"

# Log at most this many characters of a received transcript
TRANSCRIPT_LOG_PREVIEW_CHARS: Final[int] = 50

# =============================================================================
# Refinement (chat completion) requests
# =============================================================================

REFINE_MAX_ATTEMPTS: Final[int] = 2  # total attempts, initial included
REFINE_RETRY_DELAY_MS: Final[int] = 1_000
REFINE_REQUEST_TIMEOUT_S: Final[float] = 30.0

# Clipboard settle time between set_text and auto-paste
REFINE_PASTE_DELAY_MS: Final[int] = 100

# The SDK requires a non-empty key; the Authorization header it would
# produce is omitted for keyless endpoints
LLM_KEYLESS_API_KEY: Final[str] = "no-key"

# =============================================================================
# Remote (HTTP upload) transcription
# =============================================================================

REMOTE_AUDIO_CONTENT_TYPE: Final[str] = "audio/wav"
REMOTE_TEST_SILENCE_S: Final[float] = 0.6
# Error bodies are truncated to this many characters
REMOTE_ERROR_BODY_MAX_CHARS: Final[int] = 500

# =============================================================================
# Dictation session
# =============================================================================

DICTATION_SEND_BUFFER_BYTES: Final[int] = 16_000  # 0.5s of audio
DICTATION_STOP_WAIT_S: Final[float] = 10.0
DICTATION_NO_SPEECH_TIMEOUT_S: Final[float] = 30.0
DICTATION_PASTE_DELAY_MS: Final[int] = 100

# =============================================================================
# Configuration bounds
# =============================================================================

TEMPERATURE_MIN: Final[float] = 0.0
TEMPERATURE_MAX: Final[float] = 2.0
MAX_TOKENS_LIMIT: Final[int] = 32_768
TIMEOUT_S_MAX: Final[int] = 300
