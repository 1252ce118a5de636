"""
Refinement supervisor.

Responsibilities:
- Own the single in-flight refine operation (IDLE <-> RUNNING)
- Toggle semantics: triggering while running cancels instead of starting
- Run capture -> request (under the retry policy) -> apply
- Emit exactly one RefineCompleted per RefineStarted, whatever the exit path

Non-responsibilities:
- NO vendor HTTP details (adapters.llm)
- NO retry rules (orchestrator.retry decides, orchestrator.retrying drives)
- NO clipboard or history implementation (adapters.clipboard / adapters.history)
"""

from __future__ import annotations

from dataclasses import dataclass

from adapters.clipboard.base import ClipboardAdapter
from adapters.history.base import HistoryAdapter
from adapters.llm.base import ChatCompletionAdapter
from adapters.llm.models import ChatRequest, build_refine_request
from config import AppConfig
from constants import REFINE_PASTE_DELAY_MS, REFINE_REQUEST_TIMEOUT_S
from observability import metrics
from observability.fingerprint import fingerprint
from observability.logger import ComponentLogger, now_ms
from orchestrator.cancellation import CancellationToken, OperationCancelled
from orchestrator.enums.outcome import RefineOutcome
from orchestrator.enums.state import RefineState
from orchestrator.errors import (
    EmptyResultError,
    RefinementError,
    SinkError,
    ValidationError,
)
from orchestrator.events import (
    Event,
    EventSink,
    EventType,
    RefineCompleted,
    RefineStarted,
)
from orchestrator.retry import get_retry_delay_ms
from orchestrator.retrying import run_with_retry


COMPONENT = "refinement"
_log = ComponentLogger(COMPONENT)


@dataclass(frozen=True)
class RefineResult:
    """
    Outcome of a single trigger() call.

    text is the applied refinement (SUCCEEDED only).
    error is the failure that ended the operation (FAILED only).
    """

    outcome: RefineOutcome
    text: str | None = None
    message: str | None = None
    error: BaseException | None = None


class RefinementSupervisor:
    """
    Single-flight, cancellable refine operations.

    State:
        IDLE     no operation; trigger() starts one
        RUNNING  one operation in flight; trigger() cancels it

    Every suspension point of an operation goes through the operation's
    CancellationToken, so cancel() is observed promptly and reported as
    CANCELLED (never FAILED).
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        adapter: ChatCompletionAdapter,
        clipboard: ClipboardAdapter,
        history: HistoryAdapter | None = None,
        emit_event: EventSink | None = None,
    ) -> None:
        self._config = config
        self._adapter = adapter
        self._clipboard = clipboard
        self._history = history
        self._emit_event = emit_event

        self._state = RefineState.IDLE
        self._token: CancellationToken | None = None
        self._operation_id = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> RefineState:
        return self._state

    @property
    def is_refining(self) -> bool:
        return self._state is RefineState.RUNNING

    async def trigger(self) -> RefineResult:
        """
        Start a refine operation, or cancel the running one.

        Returns:
            DISABLED / NOT_STARTED / BUSY without emitting events, or the
            outcome of the operation this call ran.
        """
        if not self._config.llm.enabled:
            _log("REFINE_DISABLED")
            return RefineResult(
                RefineOutcome.DISABLED,
                message="LLM processing is disabled. Enable it in settings first.",
            )

        if self._state is RefineState.RUNNING:
            if self._token is not None and not self._token.cancelled:
                self.cancel()
                return RefineResult(
                    RefineOutcome.NOT_STARTED, message="Refinement cancelled."
                )
            _log("REFINE_BUSY", operation_id=self._operation_id)
            return RefineResult(
                RefineOutcome.BUSY,
                message="Refinement already in progress. Please wait.",
            )

        # Claim the slot before the first await
        self._state = RefineState.RUNNING
        self._operation_id += 1
        operation_id = self._operation_id
        token = CancellationToken()
        self._token = token

        # Only task cancellation can skip the assignment below
        result = RefineResult(RefineOutcome.CANCELLED, message="Refinement cancelled.")
        try:
            _log("REFINE_STARTED", operation_id=operation_id)
            await self._emit(
                RefineStarted(
                    event_type=EventType.REFINE_STARTED,
                    ts_ms=now_ms(),
                    operation_id=operation_id,
                )
            )
            result = await self._run_operation(operation_id, token)
        finally:
            token.detach()
            self._token = None
            self._state = RefineState.IDLE

            _log(
                "REFINE_COMPLETED",
                operation_id=operation_id,
                outcome=result.outcome.value,
                error_type=type(result.error).__name__ if result.error else None,
            )
            await self._emit(
                RefineCompleted(
                    event_type=EventType.REFINE_COMPLETED,
                    ts_ms=now_ms(),
                    operation_id=operation_id,
                    outcome=result.outcome,
                    message=result.message,
                    result=result.text,
                )
            )

        return result

    def cancel(self) -> None:
        """Request cancellation of the running operation. Idempotent."""
        token = self._token
        if self._state is not RefineState.RUNNING or token is None:
            return
        if token.cancelled:
            return
        token.cancel()
        _log("REFINE_CANCEL_REQUESTED", operation_id=self._operation_id)

    # ------------------------------------------------------------------
    # Operation
    # ------------------------------------------------------------------

    async def _run_operation(
        self, operation_id: int, token: CancellationToken
    ) -> RefineResult:
        with metrics.timed(
            "refine_latency",
            component=COMPONENT,
            details={"operation_id": operation_id},
        ) as details:
            try:
                refined = await self._exchange(operation_id, token)
            except OperationCancelled:
                result = RefineResult(
                    RefineOutcome.CANCELLED, message="Refinement cancelled."
                )
            except RefinementError as exc:
                result = RefineResult(
                    RefineOutcome.FAILED, message=str(exc), error=exc
                )
            except Exception as exc:  # pylint: disable=broad-exception-caught
                result = RefineResult(
                    RefineOutcome.FAILED,
                    message=f"Refinement failed: {exc}",
                    error=exc,
                )
            else:
                result = RefineResult(
                    RefineOutcome.SUCCEEDED,
                    text=refined,
                    message="Refinement completed successfully.",
                )
            details["outcome"] = result.outcome.value
            return result

    async def _exchange(self, operation_id: int, token: CancellationToken) -> str:
        cfg = self._config

        text = await token.run(
            self._clipboard.capture_selection(cfg.use_clipboard_fallback)
        )
        _log(
            "REFINE_INPUT_CAPTURED",
            operation_id=operation_id,
            input=fingerprint(text),
        )

        if not text or not text.strip():
            raise ValidationError("No text selected or in clipboard.")

        request = build_refine_request(cfg.llm, text)
        refined = await self._request_with_retry(operation_id, request, token)

        _log(
            "REFINE_OUTPUT_RECEIVED",
            operation_id=operation_id,
            output=fingerprint(refined),
        )
        if not refined.strip():
            raise EmptyResultError("Provider returned empty result.")

        token.raise_if_cancelled()
        await self._apply(operation_id, refined, token)
        self._append_history(operation_id, text, refined)
        return refined

    async def _request_with_retry(
        self,
        operation_id: int,
        request: ChatRequest,
        token: CancellationToken,
    ) -> str:
        """
        Send the request under the retry policy.

        Attempts are strictly sequential; each runs under the operation
        token with its own timeout.
        """
        response = await run_with_retry(
            lambda: self._adapter.complete(request),
            token=token,
            timeout_s=REFINE_REQUEST_TIMEOUT_S,
            log=_log,
            event_prefix="REFINE",
            get_delay=get_retry_delay_ms,
            operation_id=operation_id,
        )
        return response.content

    async def _apply(
        self, operation_id: int, refined: str, token: CancellationToken
    ) -> None:
        try:
            placed = self._clipboard.set_text(refined)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise SinkError(f"Could not update clipboard: {exc}") from exc
        if not placed:
            raise SinkError("Could not update clipboard.")

        await token.sleep(REFINE_PASTE_DELAY_MS / 1000)

        if not self._config.auto_paste:
            _log("REFINE_TEXT_READY", operation_id=operation_id)
            return

        try:
            pasted = await token.run(self._clipboard.paste())
        except OperationCancelled:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise SinkError(f"Auto-paste failed: {exc}") from exc

        # Text stays on the clipboard for a manual paste
        _log("REFINE_AUTO_PASTE", operation_id=operation_id, pasted=bool(pasted))

    def _append_history(self, operation_id: int, original: str, refined: str) -> None:
        if self._history is None:
            return
        try:
            self._history.append_refinement(original, refined, self._config.llm.model)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log(
                "REFINE_HISTORY_APPEND_FAILED",
                operation_id=operation_id,
                error=f"{type(exc).__name__}: {exc}",
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _emit(self, event: Event) -> None:
        if self._emit_event is None:
            return
        try:
            await self._emit_event(event)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            _log(
                "LISTENER_ERROR",
                listener_event=event.event_type.value,
                error=f"{type(exc).__name__}: {exc}",
            )
