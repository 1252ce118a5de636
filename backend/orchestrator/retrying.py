"""
Retry driver.

Runs one network exchange under the retry policy in orchestrator.retry:
- attempts are strictly sequential
- each attempt runs under the caller's cancellation token with its own timeout
- terminal failures surface immediately
- backoff sleeps honour the token; cancellation aborts the whole exchange

Shared by the refinement supervisor and the remote (HTTP) transcriber.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, TypeVar

from observability.logger import ComponentLogger
from orchestrator.cancellation import CancellationToken, OperationCancelled
from orchestrator.errors import RetriesExhaustedError
from orchestrator.retry import (
    RETRIES_EXHAUSTED_MESSAGE,
    Classification,
    RetryAttempt,
    classify,
    get_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
)


T = TypeVar("T")

DelayFn = Callable[..., int]


async def run_with_retry(
    attempt_fn: Callable[[], Awaitable[T]],
    *,
    token: CancellationToken,
    timeout_s: float | None,
    log: ComponentLogger,
    event_prefix: str,
    get_delay: DelayFn = get_retry_delay_ms,
    exhausted_message: str = RETRIES_EXHAUSTED_MESSAGE,
    **log_fields: Any,
) -> T:
    """
    Await attempt_fn() until it succeeds, fails terminally, or the retry
    budget runs out.

    Args:
        attempt_fn: builds a fresh awaitable per attempt.
        event_prefix: log event prefix, e.g. "REFINE" ->
            REFINE_ATTEMPT_FAILED / REFINE_RETRY_SCHEDULED.
        get_delay: delay source, resolved by the caller so tests can
            patch it at the caller's module.

    Raises:
        OperationCancelled: the token was cancelled (never retried).
        RetriesExhaustedError: every attempt failed retryably.
        The attempt's own exception when it is terminal.
    """
    attempt: RetryAttempt = reset_attempt()
    while True:
        token.raise_if_cancelled()
        try:
            return await token.run(attempt_fn(), timeout_s=timeout_s)
        except OperationCancelled:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            classification = classify(exc)
            log(
                f"{event_prefix}_ATTEMPT_FAILED",
                attempt=attempt.attempt,
                classification=classification.value,
                error_type=type(exc).__name__,
                status_code=getattr(exc, "status_code", None),
                **log_fields,
            )

            if classification is Classification.TERMINAL:
                raise

            if not should_retry(classification=classification, attempt=attempt):
                raise RetriesExhaustedError(exhausted_message) from exc

            delay_ms = get_delay(attempt=attempt)
            log(
                f"{event_prefix}_RETRY_SCHEDULED",
                attempt=attempt.attempt,
                delay_ms=delay_ms,
                **log_fields,
            )
            await token.sleep(delay_ms / 1000)
            attempt = next_attempt(attempt)
