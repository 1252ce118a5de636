"""
Application configuration.

Responsibilities:
- Read environment variables
- Provide typed, immutable config objects
- Replace invalid values with safe defaults (validated())

Non-responsibilities:
- No persistence (the settings store is owned by the desktop shell)
- No secret decryption (keys arrive already resolved)
- No runtime mutation
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, replace
from urllib.parse import urlparse

from constants import (
    MAX_TOKENS_LIMIT,
    TEMPERATURE_MAX,
    TEMPERATURE_MIN,
    TIMEOUT_S_MAX,
)
from observability.logger import log_event


DEFAULT_LLM_BASE_URL = "http://localhost:11434/v1"
DEFAULT_LLM_MODEL = "llama3.1"
DEFAULT_LLM_TEMPERATURE = 0.2
DEFAULT_TRANSCRIBER_BASE_URL = "http://localhost:18000/v1/audio/transcriptions"
DEFAULT_TRANSCRIBER_MODEL = "glm-nano-2512"
DEFAULT_TRANSCRIBER_WS_URL = "ws://localhost:18000/v1/audio/transcriptions/stream"
DEFAULT_TRANSCRIBER_TIMEOUT_S = 30


# ------------------------------------------------------------------
# Validators
# ------------------------------------------------------------------

def is_valid_url(url: str | None, *, schemes: tuple[str, ...] = ("http", "https")) -> bool:
    """Absolute URL with one of the allowed schemes."""
    if not url or not url.strip():
        return False
    parsed = urlparse(url)
    return parsed.scheme in schemes and bool(parsed.netloc)


def is_valid_temperature(temperature: float) -> bool:
    return TEMPERATURE_MIN <= temperature <= TEMPERATURE_MAX


def is_valid_max_tokens(max_tokens: int) -> bool:
    return 0 < max_tokens <= MAX_TOKENS_LIMIT


def is_valid_model_name(model: str | None) -> bool:
    return bool(model and model.strip())


def is_valid_timeout(timeout_s: int) -> bool:
    return 0 < timeout_s <= TIMEOUT_S_MAX


# ------------------------------------------------------------------
# Config objects
# ------------------------------------------------------------------

@dataclass(frozen=True)
class LlmConfig:
    """Chat completion endpoint settings used by refinement."""

    enabled: bool = True
    base_url: str = DEFAULT_LLM_BASE_URL
    model: str = DEFAULT_LLM_MODEL
    temperature: float = DEFAULT_LLM_TEMPERATURE
    max_tokens: int | None = None
    api_key: str | None = None
    http_referer: str | None = None
    x_title: str | None = None


@dataclass(frozen=True)
class TranscriberConfig:
    """Transcription endpoint settings (HTTP upload and WebSocket streaming)."""

    enabled: bool = True
    base_url: str = DEFAULT_TRANSCRIBER_BASE_URL
    model: str = DEFAULT_TRANSCRIBER_MODEL
    websocket_url: str = DEFAULT_TRANSCRIBER_WS_URL
    api_key: str | None = None
    timeout_s: int = DEFAULT_TRANSCRIBER_TIMEOUT_S
    auto_paste: bool = True


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and passed downward to the
    supervisor / dictation session factories.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str = "dev"
    log_level: str = "INFO"
    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Desktop behavior
    # ------------------------------------------------------------------

    auto_paste: bool = True
    use_clipboard_fallback: bool = True

    # ------------------------------------------------------------------
    # Services
    # ------------------------------------------------------------------

    llm: LlmConfig = LlmConfig()
    transcriber: TranscriberConfig = TranscriberConfig()

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing variables fall back to defaults; call validated() before use.
        """
        max_tokens = os.environ.get("LLM_MAX_TOKENS")
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            auto_paste=os.environ.get("AUTO_PASTE", "1") == "1",
            use_clipboard_fallback=os.environ.get("USE_CLIPBOARD_FALLBACK", "1") == "1",

            llm=LlmConfig(
                enabled=os.environ.get("LLM_ENABLED", "1") == "1",
                base_url=os.environ.get("LLM_BASE_URL", DEFAULT_LLM_BASE_URL),
                model=os.environ.get("LLM_MODEL", DEFAULT_LLM_MODEL),
                temperature=_float_env("LLM_TEMPERATURE", DEFAULT_LLM_TEMPERATURE),
                max_tokens=int(max_tokens) if max_tokens else None,
                api_key=os.environ.get("LLM_API_KEY"),
                http_referer=os.environ.get("LLM_HTTP_REFERER"),
                x_title=os.environ.get("LLM_X_TITLE"),
            ),
            transcriber=TranscriberConfig(
                enabled=os.environ.get("TRANSCRIBER_ENABLED", "1") == "1",
                base_url=os.environ.get(
                    "TRANSCRIBER_BASE_URL", DEFAULT_TRANSCRIBER_BASE_URL
                ),
                model=os.environ.get("TRANSCRIBER_MODEL", DEFAULT_TRANSCRIBER_MODEL),
                websocket_url=os.environ.get(
                    "TRANSCRIBER_WS_URL", DEFAULT_TRANSCRIBER_WS_URL
                ),
                api_key=os.environ.get("TRANSCRIBER_API_KEY"),
                timeout_s=int(
                    os.environ.get("TRANSCRIBER_TIMEOUT_S", DEFAULT_TRANSCRIBER_TIMEOUT_S)
                ),
                auto_paste=os.environ.get("TRANSCRIBER_AUTO_PASTE", "1") == "1",
            ),
        )

    def validated(self) -> AppConfig:
        """
        Return a copy with every invalid value replaced by its default.

        Each replacement is logged so misconfiguration is visible.
        """
        llm = self.llm
        transcriber = self.transcriber

        if not is_valid_url(llm.base_url):
            _log_fallback("llm.base_url", llm.base_url)
            llm = replace(llm, base_url=DEFAULT_LLM_BASE_URL)

        if not is_valid_temperature(llm.temperature):
            _log_fallback("llm.temperature", llm.temperature)
            llm = replace(llm, temperature=DEFAULT_LLM_TEMPERATURE)

        if llm.max_tokens is not None and not is_valid_max_tokens(llm.max_tokens):
            _log_fallback("llm.max_tokens", llm.max_tokens)
            llm = replace(llm, max_tokens=None)

        if not is_valid_model_name(llm.model):
            _log_fallback("llm.model", llm.model)
            llm = replace(llm, model=DEFAULT_LLM_MODEL)

        if not is_valid_url(transcriber.base_url):
            _log_fallback("transcriber.base_url", transcriber.base_url)
            transcriber = replace(transcriber, base_url=DEFAULT_TRANSCRIBER_BASE_URL)

        if not is_valid_url(transcriber.websocket_url, schemes=("ws", "wss")):
            _log_fallback("transcriber.websocket_url", transcriber.websocket_url)
            transcriber = replace(transcriber, websocket_url=DEFAULT_TRANSCRIBER_WS_URL)

        if not is_valid_timeout(transcriber.timeout_s):
            _log_fallback("transcriber.timeout_s", transcriber.timeout_s)
            transcriber = replace(transcriber, timeout_s=DEFAULT_TRANSCRIBER_TIMEOUT_S)

        return replace(self, llm=llm, transcriber=transcriber)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        _log_fallback(name, raw)
        return default


def _log_fallback(field_name: str, value: object) -> None:
    log_event({
        "ts_ms": int(time.time() * 1000),
        "event_type": "CONFIG_FALLBACK",
        "component": "config",
        "field": field_name,
        "invalid_value": repr(value),
    })
