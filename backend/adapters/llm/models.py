"""
Chat completion exchange models.

Plain data only. The request is serialized with to_payload(); the
response keeps only what refinement consumes (choice contents).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from adapters.llm.prompts import REFINE_SYSTEM_PROMPT_V1
from config import LlmConfig


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class ChatRequest:
    """
    Body of POST {base_url}/chat/completions.

    max_tokens is omitted from the payload when None.
    """

    model: str
    temperature: float
    messages: tuple[ChatMessage, ...]
    max_tokens: int | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [m.to_payload() for m in self.messages],
        }
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        return payload


@dataclass(frozen=True)
class ChatResponse:
    """Choice contents in provider order. The first one is authoritative."""

    choices: tuple[str, ...] = field(default_factory=tuple)

    @property
    def content(self) -> str:
        """Trimmed content of the first choice ("" when absent)."""
        if not self.choices:
            return ""
        return self.choices[0].strip()


def build_refine_request(llm_config: LlmConfig, text: str) -> ChatRequest:
    """
    Build the refinement request: fixed system instruction, then the
    input text as the single user message.
    """
    return ChatRequest(
        model=llm_config.model,
        temperature=llm_config.temperature,
        max_tokens=llm_config.max_tokens,
        messages=(
            ChatMessage(role="system", content=REFINE_SYSTEM_PROMPT_V1),
            ChatMessage(role="user", content=text),
        ),
    )
