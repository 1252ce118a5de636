"""
History store contract.

Storage (and its encryption) is owned by the desktop shell. Callers
treat every append as best-effort: failures are logged and swallowed
by the caller, never surfaced as an operation failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class HistoryAdapter(ABC):
    """Abstract base class for history stores."""

    @abstractmethod
    def append_refinement(self, original: str, refined: str, model: str) -> None:
        """Record one successful refinement."""
        raise NotImplementedError

    @abstractmethod
    def append_transcription(self, text: str, duration_ms: int) -> None:
        """Record one delivered dictation transcript."""
        raise NotImplementedError
