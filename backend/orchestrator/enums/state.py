"""
Lifecycle state enumerations.

Rules:
- Enums define states only.
- No behavior, no helper methods, no side effects.
- Transitions are owned by the component named in each docstring.
"""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """
    Streaming transcription connection lifecycle.

    Owned by RealtimeTranscriber; changed only by connect / stop /
    disconnect / dispose, never by the send or receive loops.
    """

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"


class RefineState(str, Enum):
    """
    RefinementSupervisor single-flight state.

    RUNNING means exactly one refine operation is live.
    """

    IDLE = "IDLE"
    RUNNING = "RUNNING"


class DictationState(str, Enum):
    """
    DictationSession toggle state.

    STARTING and STOPPING are transitions; toggles during them are ignored.
    """

    IDLE = "IDLE"
    STARTING = "STARTING"
    STREAMING = "STREAMING"
    STOPPING = "STOPPING"
