"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
- timed() yields a mutable details dict so callers can attach the
  outcome of the measured block before the metric is emitted
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability import logger


@contextmanager
def timed(
    name: str,
    *,
    component: str,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the enclosed block and emit exactly one METRIC_TIMER event.

    Guarantees:
    - The metric is ALWAYS emitted (exceptions and cancellation included)
    - Exceptions inside the block are NOT suppressed

    Usage:
        with timed("refine_latency", component="refinement") as details:
            result = await run()
            details["outcome"] = "succeeded"
    """
    metric_details: dict[str, Any] = dict(details or {})
    start_ns = time.monotonic_ns()
    try:
        yield metric_details
    finally:
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        logger.log_event({
            "ts_ms": logger.now_ms(),
            "event_type": "METRIC_TIMER",
            "component": component,
            "metric": name,
            "value_ms": duration_ms,
            "details": metric_details,
        })
