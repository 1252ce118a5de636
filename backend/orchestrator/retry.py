"""
Retry policy helpers.

Purpose:
- Centralize retry rules for refinement requests
- Classify outcomes (HTTP status or exception) as retryable or terminal
- Let the supervisor make deterministic retry decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Union

from constants import REFINE_MAX_ATTEMPTS, REFINE_RETRY_DELAY_MS
from orchestrator.cancellation import OperationCancelled
from orchestrator.errors import (
    NetworkTerminalError,
    NetworkTransientError,
    RefinementError,
)


RETRIES_EXHAUSTED_MESSAGE = (
    "LLM service unavailable after multiple attempts. "
    "Please check your connection and settings."
)


# =============================================================================
# Classification
# =============================================================================

class Classification(str, Enum):
    """
    Retry eligibility of a failed attempt.

    RETRYABLE:
        Server error class (5xx), rate limit (429), timeouts, transport
        and parse exceptions. Eligible for the bounded retry schedule.

    TERMINAL:
        Any other 4xx client error, malformed response, validation and
        sink failures. Surfaced immediately.

    Notes:
    - Cancellation is NOT a failure and is never classified; callers
      must handle OperationCancelled before asking.
    """

    RETRYABLE = "retryable"
    TERMINAL = "terminal"


Outcome = Union[int, BaseException]


def classify_status(status_code: int) -> Classification:
    """Classify a non-success HTTP status code."""
    if status_code >= 500 or status_code == 429:
        return Classification.RETRYABLE
    return Classification.TERMINAL


def classify(outcome: Outcome) -> Classification:
    """
    Classify a failed attempt.

    Args:
        outcome: HTTP status code of a non-success response, or the
            exception raised by the attempt.

    Raises:
        ValueError for cancellation, which is not a failure.
    """
    if isinstance(outcome, bool):
        raise TypeError("outcome must be a status code or an exception")

    if isinstance(outcome, int):
        return classify_status(outcome)

    if isinstance(outcome, (OperationCancelled, asyncio.CancelledError)):
        raise ValueError("cancellation is not a classifiable failure")

    if isinstance(outcome, NetworkTransientError):
        return Classification.RETRYABLE

    if isinstance(outcome, NetworkTerminalError):
        return Classification.TERMINAL

    if isinstance(outcome, RefinementError):
        # ValidationError, SinkError, RetriesExhaustedError
        return Classification.TERMINAL

    # Timeouts, transport and parse exceptions
    return Classification.RETRYABLE


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry attempt counter.

    Semantics:
    - attempt == 0 represents the initial attempt (no retry yet).
    - attempt >= 1 represents the Nth retry attempt.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """
    Advance to the next retry attempt.

    Returns a new RetryAttempt with attempt incremented by 1.
    """
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

def max_attempts() -> int:
    """Total attempts per operation, initial attempt included."""
    return REFINE_MAX_ATTEMPTS


def should_retry(*, classification: Classification, attempt: RetryAttempt) -> bool:
    """
    Returns True if another attempt is allowed.

    attempt = number of retries already performed
    """
    if classification is not Classification.RETRYABLE:
        return False
    return attempt.attempt + 1 < max_attempts()


def get_retry_delay_ms(*, attempt: RetryAttempt) -> int:  # pylint: disable=unused-argument
    """
    Returns delay before the retry following `attempt`.

    Fixed backoff; the attempt is accepted for interface symmetry.
    """
    return REFINE_RETRY_DELAY_MS


# =============================================================================
# User-facing messages
# =============================================================================

_STATUS_MESSAGES: dict[int, str] = {
    400: "Invalid request. Check model configuration.",
    401: "Invalid API key or authentication failed. Check your settings.",
    403: "Access forbidden. Verify your API permissions.",
    404: "LLM endpoint not found. Check the Base URL in settings.",
    429: "Rate limit exceeded. Please wait before trying again.",
    500: "LLM server error. Try again later.",
    502: "LLM service unavailable. Try again later.",
    503: "LLM service temporarily unavailable. Try again later.",
    504: "LLM request timed out. Check your connection.",
}


def describe_status(status_code: int) -> str:
    """Short user-facing explanation of a failed HTTP status."""
    return _STATUS_MESSAGES.get(
        status_code, f"Server error ({status_code}). Please try again."
    )
