"""OpenAI-compatible chat completion adapter"""
from __future__ import annotations

import time
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from adapters.llm.base import ChatCompletionAdapter
from adapters.llm.models import ChatRequest, ChatResponse
from config import LlmConfig
from constants import LLM_KEYLESS_API_KEY, REFINE_REQUEST_TIMEOUT_S
from observability.fingerprint import fingerprint
from observability.logger import ComponentLogger
from orchestrator.errors import (
    MalformedResponseError,
    NetworkTerminalError,
    NetworkTransientError,
)
from orchestrator.retry import Classification, classify_status, describe_status


_log = ComponentLogger("llm_adapter")


def create_client(
    llm_config: LlmConfig,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """
    Build the vendor client for an OpenAI-style endpoint.

    - SDK retries are disabled; the supervisor owns the retry policy.
    - Without an api key the Authorization header is omitted entirely.
    """
    headers: dict[str, Any] = {}
    if llm_config.http_referer:
        headers["Referer"] = llm_config.http_referer
    if llm_config.x_title:
        headers["X-Title"] = llm_config.x_title
    if not llm_config.api_key:
        headers["Authorization"] = openai.Omit()

    return AsyncOpenAI(
        base_url=llm_config.base_url.rstrip("/"),
        api_key=llm_config.api_key or LLM_KEYLESS_API_KEY,
        default_headers=headers,
        max_retries=0,
        timeout=REFINE_REQUEST_TIMEOUT_S,
        http_client=http_client,
    )


class OpenAIChatAdapter(ChatCompletionAdapter):
    """
    Concrete chat completion adapter over openai.AsyncOpenAI.

    Design notes:
    - One adapter instance serves many sequential refine operations.
    - Adapter is responsible ONLY for:
        - Talking to the provider (POST {base_url}/chat/completions)
        - Mapping vendor failures into the error taxonomy
    - Adapter does NOT:
        - Retry
        - Enforce per-attempt timeouts
        - Touch the clipboard or history
    """

    def __init__(
        self,
        llm_config: LlmConfig,
        *,
        client: AsyncOpenAI | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = llm_config
        self._client = client or create_client(llm_config, http_client=http_client)

        _log(
            "LLM_CLIENT_INIT",
            base_url=llm_config.base_url,
            model=llm_config.model,
            temperature=llm_config.temperature,
            max_tokens=llm_config.max_tokens,
            has_api_key=bool(llm_config.api_key),
            has_referer=bool(llm_config.http_referer),
            has_x_title=bool(llm_config.x_title),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def complete(self, request: ChatRequest) -> ChatResponse:
        user_text = request.messages[-1].content if request.messages else ""
        _log(
            "LLM_REQUEST",
            model=request.model,
            temperature=request.temperature,
            input=fingerprint(user_text),
        )
        start_ns = time.monotonic_ns()

        try:
            completion = await self._client.chat.completions.create(
                **request.to_payload()
            )
        except openai.APIStatusError as exc:
            raise self._status_error(exc) from exc
        except openai.APITimeoutError as exc:
            raise NetworkTransientError(f"LLM request timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise NetworkTransientError(f"LLM connection failed: {exc}") from exc
        except openai.APIError as exc:
            # Body could not be parsed into a completion
            raise NetworkTransientError(f"Invalid response JSON: {exc}") from exc

        response = self._to_response(completion)

        _log(
            "LLM_RESPONSE",
            elapsed_ms=(time.monotonic_ns() - start_ns) // 1_000_000,
            output=fingerprint(response.content),
        )
        return response

    async def aclose(self) -> None:
        await self._client.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _status_error(exc: openai.APIStatusError) -> Exception:
        status = exc.status_code
        classification = classify_status(status)
        message = describe_status(status)

        _log(
            "LLM_RESPONSE_STATUS",
            status_code=status,
            classification=classification.value,
        )

        if classification is Classification.RETRYABLE:
            return NetworkTransientError(message, status_code=status)

        try:
            body = exc.response.text
        except (httpx.ResponseNotRead, AttributeError):
            body = None
        return NetworkTerminalError(message, status_code=status, body=body)

    @staticmethod
    def _to_response(completion: Any) -> ChatResponse:
        # The SDK hands back raw text when the body is not JSON
        if isinstance(completion, (str, bytes)):
            raise NetworkTransientError("Invalid response JSON")

        choices = getattr(completion, "choices", None) or []
        if not choices or getattr(choices[0], "message", None) is None:
            raise MalformedResponseError("No choices in response")

        contents: list[str] = []
        for choice in choices:
            message = getattr(choice, "message", None)
            contents.append((getattr(message, "content", None) or "") if message else "")
        return ChatResponse(choices=tuple(contents))
