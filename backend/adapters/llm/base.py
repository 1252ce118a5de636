"""
Chat completion adapter contract.

Purpose:
- Define the interface for a single chat completion attempt.
- Keep all orchestration, retries, timing, and cancellation semantics
  OUT of the adapter.

Rules:
- This file contains NO logic.
- No retries.
- No timers.
- No knowledge of clipboard, history, or the supervisor state machine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from adapters.llm.models import ChatRequest, ChatResponse


class ChatCompletionAdapter(ABC):
    """
    Abstract base class for chat completion adapters.

    The adapter is a *dumb pipe*:
    request -> vendor -> response (or a classified error).

    Supervisor responsibilities (NOT here):
    - Whether to start
    - When to cancel
    - Retry policy
    - Per-attempt timeouts
    - What to do with the result
    """

    @abstractmethod
    async def complete(self, request: ChatRequest) -> ChatResponse:
        """
        Perform exactly ONE completion exchange.

        Contract:
        - Must NOT retry internally.
        - Non-success responses raise NetworkTransientError or
          NetworkTerminalError (orchestrator.errors), classified by
          orchestrator.retry.
        - A response without a usable first choice raises
          MalformedResponseError.
        - Transport and timeout failures may propagate as-is; the
          supervisor classifies them.
        - Must tolerate task cancellation at any await.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release the underlying HTTP client. Default: nothing to release."""
        return None
