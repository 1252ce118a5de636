"""
Text fingerprints for logs.

User text is never written to logs. Components log its length and a
SHA-256 digest so runs can be correlated without exposing content.
"""

from __future__ import annotations

import hashlib
from typing import Any


def sha256_hex(text: str | None) -> str:
    """Uppercase hex SHA-256 of the UTF-8 text; empty string for empty input."""
    if not text:
        return ""
    return hashlib.sha256(text.encode("utf-8")).hexdigest().upper()


def fingerprint(text: str | None) -> dict[str, Any]:
    """Log fields describing a piece of text."""
    return {"len": len(text or ""), "sha256": sha256_hex(text)}
