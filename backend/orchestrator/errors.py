"""
Error taxonomy.

ValidationError         empty input, disabled feature. Terminal, no retry.
NetworkTransientError   5xx, 429, timeout, connection drop. Retried.
NetworkTerminalError    other 4xx, malformed response. Terminal.
RetriesExhaustedError   transient failures outlasted the retry budget.
SinkError               applying the result downstream failed. Terminal.

Cancellation is NOT an error here; see orchestrator.cancellation.
Malformed inbound socket frames raise protocol.transcription.ProtocolDecodeError.
"""

from __future__ import annotations


class RefinementError(Exception):
    """Base class for failures surfaced by a refine operation."""


class ValidationError(RefinementError):
    """Input or configuration rejected before any network call."""


class NetworkTransientError(RefinementError):
    """Failure that may succeed on a later attempt."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkTerminalError(RefinementError):
    """Failure that retrying cannot fix."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class MalformedResponseError(NetworkTerminalError):
    """Response parsed but lacks the expected choices/message."""


class EmptyResultError(NetworkTerminalError):
    """Provider answered with an empty completion."""


class RetriesExhaustedError(RefinementError):
    """Every attempt failed with a retryable outcome."""


class SinkError(RefinementError):
    """The refined text could not be applied downstream."""


class TranscriberDisposedError(RuntimeError):
    """Operation attempted on a disposed streaming transcriber."""
