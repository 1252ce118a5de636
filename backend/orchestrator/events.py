"""
Event definitions emitted to listeners.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- Listeners receive events through an async emit_event callback; events
  for one session are emitted in order, one at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from orchestrator.enums.outcome import RefineOutcome


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types.
    """

    # ------------------------------------------------------------------
    # Streaming transcription
    # ------------------------------------------------------------------
    STREAM_CONNECTED = "STREAM_CONNECTED"
    STREAM_DISCONNECTED = "STREAM_DISCONNECTED"
    TRANSCRIPTION = "TRANSCRIPTION"
    STREAM_ERROR = "STREAM_ERROR"

    # ------------------------------------------------------------------
    # Refinement
    # ------------------------------------------------------------------
    REFINE_STARTED = "REFINE_STARTED"
    REFINE_COMPLETED = "REFINE_COMPLETED"

    # ------------------------------------------------------------------
    # Dictation
    # ------------------------------------------------------------------
    DICTATION_STARTED = "DICTATION_STARTED"
    DICTATION_STOPPED = "DICTATION_STOPPED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


EventSink = Callable[[Event], Awaitable[None]]


# =============================================================================
# Streaming Transcription Events
# =============================================================================

@dataclass(frozen=True)
class StreamConnected(Event):
    """Transcription socket opened; loops are about to start."""
    url: str


@dataclass(frozen=True)
class StreamDisconnected(Event):
    """Session ended. Emitted exactly once per connected session."""
    chunks_sent: int
    chunks_skipped: int


@dataclass(frozen=True)
class Transcription(Event):
    """Partial or final transcript received from the service."""
    text: str
    is_final: bool


@dataclass(frozen=True)
class StreamError(Event):
    """Connection failure, transport error or server-reported error."""
    reason: str


# =============================================================================
# Refinement Events
# =============================================================================

@dataclass(frozen=True)
class RefineStarted(Event):
    """A refine operation began."""
    operation_id: int


@dataclass(frozen=True)
class RefineCompleted(Event):
    """
    Terminal event for a refine operation.

    Exactly one per RefineStarted, whatever the exit path.
    """
    operation_id: int
    outcome: RefineOutcome
    message: str | None = None
    result: str | None = None


# =============================================================================
# Dictation Events
# =============================================================================

@dataclass(frozen=True)
class DictationStarted(Event):
    """Streaming dictation is live; audio is being forwarded."""


@dataclass(frozen=True)
class DictationStopped(Event):
    """Dictation cleaned up; text is the delivered transcript (may be empty)."""
    text: str
    duration_ms: int
