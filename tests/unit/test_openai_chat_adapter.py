# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from adapters.llm.models import ChatResponse, build_refine_request
from adapters.llm.openai_chat import OpenAIChatAdapter
from adapters.llm.prompts import REFINE_SYSTEM_PROMPT_V1
from config import LlmConfig
from observability import logger
from orchestrator.errors import (
    MalformedResponseError,
    NetworkTerminalError,
    NetworkTransientError,
)


Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def quiet_logs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(logger, "_print", lambda line: None)


def completion(content: Any) -> dict[str, Any]:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "llama3.1",
        "choices": [
            {
                "index": 0,
                "finish_reason": "stop",
                "message": {"role": "assistant", "content": content},
            }
        ],
    }


def run_complete(handler: Handler, cfg: LlmConfig | None = None) -> ChatResponse:
    cfg = cfg or LlmConfig(base_url="http://test/v1", api_key="k")

    async def scenario() -> ChatResponse:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        adapter = OpenAIChatAdapter(cfg, http_client=http_client)
        try:
            return await adapter.complete(build_refine_request(cfg, "teh text"))
        finally:
            await adapter.aclose()

    return asyncio.run(scenario())


# ---------------------------------------------------------------------
# Request shape
# ---------------------------------------------------------------------

def test_request_body_and_headers():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=completion("  the text  "))

    cfg = LlmConfig(
        base_url="http://test/v1/",
        api_key="sk-abc",
        http_referer="https://app.example",
        x_title="Refiner",
        max_tokens=256,
    )
    response = run_complete(handler, cfg)

    assert response.content == "the text"

    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "http://test/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-abc"
    assert request.headers["referer"] == "https://app.example"
    assert request.headers["x-title"] == "Refiner"

    body = json.loads(request.content)
    assert body["model"] == "llama3.1"
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 256
    assert body["messages"] == [
        {"role": "system", "content": REFINE_SYSTEM_PROMPT_V1},
        {"role": "user", "content": "teh text"},
    ]


def test_no_api_key_sends_no_authorization(monkeypatch: pytest.MonkeyPatch):
    # The SDK must not fall back to an ambient key either
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=completion("ok"))

    run_complete(handler, LlmConfig(base_url="http://test/v1"))

    assert "authorization" not in seen[0].headers
    assert "max_tokens" not in json.loads(seen[0].content)


def test_only_one_attempt_per_call():
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(503, json={"error": {"message": "busy"}})

    with pytest.raises(NetworkTransientError):
        run_complete(handler)

    assert len(calls) == 1


# ---------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------

@pytest.mark.parametrize("status", [500, 502, 503, 429])
def test_retryable_status_maps_to_transient(status: int):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": "nope"}})

    with pytest.raises(NetworkTransientError) as info:
        run_complete(handler)

    assert info.value.status_code == status


def test_not_found_maps_to_terminal_with_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"message": "no such route"}})

    with pytest.raises(NetworkTerminalError) as info:
        run_complete(handler)

    assert info.value.status_code == 404
    assert str(info.value) == "LLM endpoint not found. Check the Base URL in settings."


def test_connection_error_maps_to_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkTransientError):
        run_complete(handler)


def test_missing_choices_is_malformed():
    def handler(request: httpx.Request) -> httpx.Response:
        body = completion("x")
        body["choices"] = []
        return httpx.Response(200, json=body)

    with pytest.raises(MalformedResponseError):
        run_complete(handler)


def test_null_content_is_empty_result():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=completion(None))

    assert run_complete(handler).content == ""
