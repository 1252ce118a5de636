# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

import httpx
import pytest

from orchestrator.cancellation import OperationCancelled
from orchestrator.errors import (
    MalformedResponseError,
    NetworkTerminalError,
    NetworkTransientError,
    SinkError,
    ValidationError,
)
from orchestrator.retry import (
    Classification,
    classify,
    describe_status,
    get_retry_delay_ms,
    max_attempts,
    next_attempt,
    reset_attempt,
    should_retry,
)


# ---------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------

@pytest.mark.parametrize("status", [500, 502, 503, 504, 429])
def test_server_errors_and_rate_limit_are_retryable(status: int):
    assert classify(status) is Classification.RETRYABLE


@pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
def test_client_errors_are_terminal(status: int):
    assert classify(status) is Classification.TERMINAL


def test_exception_classification():
    assert classify(asyncio.TimeoutError()) is Classification.RETRYABLE
    assert classify(httpx.ConnectError("refused")) is Classification.RETRYABLE
    assert classify(ValueError("bad json")) is Classification.RETRYABLE
    assert classify(NetworkTransientError("503", status_code=503)) is Classification.RETRYABLE

    assert classify(NetworkTerminalError("404", status_code=404)) is Classification.TERMINAL
    assert classify(MalformedResponseError("no choices")) is Classification.TERMINAL
    assert classify(ValidationError("empty")) is Classification.TERMINAL
    assert classify(SinkError("clipboard")) is Classification.TERMINAL


def test_cancellation_is_not_classified():
    with pytest.raises(ValueError):
        classify(OperationCancelled())


# ---------------------------------------------------------------------
# Attempt budget
# ---------------------------------------------------------------------

def test_two_attempts_total():
    assert max_attempts() == 2

    first = reset_attempt()
    assert first.attempt == 0
    assert should_retry(classification=Classification.RETRYABLE, attempt=first) is True

    second = next_attempt(first)
    assert second.attempt == 1
    assert should_retry(classification=Classification.RETRYABLE, attempt=second) is False


def test_terminal_never_retries():
    assert should_retry(classification=Classification.TERMINAL, attempt=reset_attempt()) is False


def test_fixed_delay():
    assert get_retry_delay_ms(attempt=reset_attempt()) == 1000
    assert get_retry_delay_ms(attempt=next_attempt(reset_attempt())) == 1000


def test_attempt_is_immutable():
    attempt = reset_attempt()
    advanced = next_attempt(attempt)
    assert attempt.attempt == 0
    assert advanced.attempt == 1


# ---------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------

def test_describe_status():
    assert describe_status(401).startswith("Invalid API key")
    assert describe_status(404) == "LLM endpoint not found. Check the Base URL in settings."
    assert describe_status(418) == "Server error (418). Please try again."
