"""
Remote (HTTP upload) transcription client.

One-shot counterpart of the realtime client: a recorded WAV payload is
POSTed as multipart/form-data (`file`, optional `model`) to an
OpenAI-style /audio/transcriptions endpoint.

Failure mapping:
- timeout, connection failure     -> NetworkTransientError (retried)
- non-200 status                  -> NetworkTerminalError (not retried)
- invalid JSON / no text found    -> MalformedResponseError (not retried)

Attempts run through orchestrator.retrying with the shared policy
(2 attempts, fixed 1 s backoff).
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import httpx

from adapters.asr.base import FileTranscriber
from audio.pcm import pcm16le_to_wav, silence_pcm16le
from config import TranscriberConfig
from constants import (
    AUDIO_SAMPLE_RATE_HZ,
    AUDIO_SAMPLE_WIDTH_BYTES,
    REMOTE_AUDIO_CONTENT_TYPE,
    REMOTE_ERROR_BODY_MAX_CHARS,
    REMOTE_TEST_SILENCE_S,
)
from observability import metrics
from observability.fingerprint import fingerprint
from observability.logger import ComponentLogger
from orchestrator.cancellation import CancellationToken
from orchestrator.errors import (
    MalformedResponseError,
    NetworkTerminalError,
    NetworkTransientError,
)
from orchestrator.retry import get_retry_delay_ms
from orchestrator.retrying import run_with_retry


COMPONENT = "remote_transcriber"
_log = ComponentLogger(COMPONENT)

TRANSCRIPTION_RETRIES_EXHAUSTED_MESSAGE = "Transcription failed after multiple retries."

_TOP_LEVEL_KEYS = ("text", "transcription", "result", "content")
_ITEM_KEYS = ("text", "transcription", "content")


class RemoteTranscriber(FileTranscriber):
    """
    HTTP upload transcriber.

    Args:
        config:
            base_url, model, optional bearer api key, per-attempt timeout.
        http_client:
            Injectable httpx client (tests use httpx.MockTransport). A
            client created here is closed by aclose().
    """

    def __init__(
        self,
        config: TranscriberConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient()
        _log(
            "REMOTE_TRANSCRIBER_INIT",
            url=config.base_url,
            model=config.model,
            has_api_key=bool(config.api_key),
        )

    async def transcribe_file(
        self,
        path: Union[str, Path],
        *,
        token: Optional[CancellationToken] = None,
    ) -> str:
        audio_path = Path(path)
        if not audio_path.is_file():
            raise FileNotFoundError(f"Audio file not found: {audio_path}")
        audio = audio_path.read_bytes()
        return await self.transcribe(audio, filename=audio_path.name, token=token)

    async def transcribe(
        self,
        audio: bytes,
        *,
        filename: str = "audio.wav",
        token: Optional[CancellationToken] = None,
    ) -> str:
        token = token or CancellationToken()
        _log("REMOTE_TRANSCRIBE_STARTED", filename=filename, bytes=len(audio))

        with metrics.timed("remote_transcribe_latency", component=COMPONENT) as details:
            text = await run_with_retry(
                lambda: self._post(audio, filename),
                token=token,
                timeout_s=self._config.timeout_s,
                log=_log,
                event_prefix="REMOTE_TRANSCRIBE",
                get_delay=get_retry_delay_ms,
                exhausted_message=TRANSCRIPTION_RETRIES_EXHAUSTED_MESSAGE,
                filename=filename,
            )
            details["chars"] = len(text)

        _log("REMOTE_TRANSCRIBE_SUCCEEDED", text=fingerprint(text))
        return text

    async def test_connection(self, *, token: Optional[CancellationToken] = None) -> str:
        token = token or CancellationToken()
        num_samples = int(AUDIO_SAMPLE_RATE_HZ * REMOTE_TEST_SILENCE_S)
        wav = pcm16le_to_wav(silence_pcm16le(num_samples * AUDIO_SAMPLE_WIDTH_BYTES))

        _log("REMOTE_TEST_CONNECTION", url=self._config.base_url)
        try:
            return await token.run(
                self._post(wav, "connection_test.wav"),
                timeout_s=self._config.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise NetworkTransientError(self._timeout_message()) from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    async def _post(self, audio: bytes, filename: str) -> str:
        headers: dict[str, str] = {}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        data = {"model": self._config.model} if self._config.model else None

        try:
            response = await self._client.post(
                self._config.base_url,
                files={"file": (filename, audio, REMOTE_AUDIO_CONTENT_TYPE)},
                data=data,
                headers=headers,
                timeout=self._config.timeout_s,
            )
        except httpx.TimeoutException as exc:
            raise NetworkTransientError(self._timeout_message()) from exc
        except httpx.TransportError as exc:
            raise NetworkTransientError("Failed to connect to remote API") from exc

        body = response.text
        _log("REMOTE_RESPONSE", status_code=response.status_code, chars=len(body))

        if response.status_code != httpx.codes.OK:
            raise NetworkTerminalError(
                f"Remote API returned error (HTTP {response.status_code})",
                status_code=response.status_code,
                body=body[:REMOTE_ERROR_BODY_MAX_CHARS],
            )

        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(
                "Remote API returned invalid JSON",
                body=body[:REMOTE_ERROR_BODY_MAX_CHARS],
            ) from exc

        return extract_transcript_text(payload)

    def _timeout_message(self) -> str:
        return f"Remote API request timed out after {self._config.timeout_s}s"


# ---------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------

def extract_transcript_text(payload: Any) -> str:
    """
    Find the transcript in the response shapes compatible servers return.

    Checked in order:
    - top-level text / transcription / result / content
    - choices[0]: text keys, then message.content
    - results[0]: text keys, or the item itself when it is a string
    - data: text keys, then data.text.content

    Raises:
        MalformedResponseError when none of them holds a string.
    """
    if isinstance(payload, dict):
        found = _first_string(payload, _TOP_LEVEL_KEYS)
        if found is not None:
            return found

        choice = _first_item(payload.get("choices"))
        if isinstance(choice, dict):
            found = _first_string(choice, _ITEM_KEYS)
            message = choice.get("message")
            if found is None and isinstance(message, dict):
                found = _first_string(message, ("content",))
            if found is not None:
                return found

        result = _first_item(payload.get("results"))
        if isinstance(result, str):
            return result
        if isinstance(result, dict):
            found = _first_string(result, _ITEM_KEYS)
            if found is not None:
                return found

        data = payload.get("data")
        if isinstance(data, dict):
            found = _first_string(data, _TOP_LEVEL_KEYS)
            nested = data.get("text")
            if found is None and isinstance(nested, dict):
                found = _first_string(nested, ("content",))
            if found is not None:
                return found

    raise MalformedResponseError(
        "API response does not contain transcription text in any recognized format",
        body=json.dumps(payload)[:REMOTE_ERROR_BODY_MAX_CHARS],
    )


def _first_string(obj: dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = obj.get(key)
        if isinstance(value, str):
            return value
    return None


def _first_item(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None
