"""
Clipboard / selection adapter contract.

The desktop shell owns the platform implementation (selection capture,
clipboard write, simulated paste). Refinement and dictation only see
this interface.

Rules:
- This file contains NO logic.
- No retries.
- Must NOT raise for "nothing selected"; return an empty string instead.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class ClipboardAdapter(ABC):
    """Abstract base class for clipboard adapters."""

    @abstractmethod
    async def capture_selection(self, use_fallback: bool) -> str:
        """
        Capture the current text selection.

        Args:
            use_fallback:
                When True and nothing is selected, return the current
                clipboard contents instead.

        Returns:
            Captured text ("" when nothing is available).
        """
        raise NotImplementedError

    @abstractmethod
    def set_text(self, text: str) -> bool:
        """Place text on the clipboard. Returns False on failure."""
        raise NotImplementedError

    @abstractmethod
    async def paste(self) -> bool:
        """Paste the clipboard into the focused window. Returns False on failure."""
        raise NotImplementedError
