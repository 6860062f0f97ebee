"""
Timing helpers.

Durations use monotonic time; the emitted ts_ms is wall-clock for
correlation with other log lines. One measurement = one METRIC_TIMER event.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


def emit_duration(
    name: str,
    duration_ms: int,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    log_event({
        "ts_ms": now_ms(),
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "session_id": session_id,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the enclosed block and emit exactly one metric.

    The yielded dict is merged into the metric details, so the block can
    record an outcome:

        with timed("transport_open", session_id=sid) as extra:
            handle = await transport.open(...)
            extra["ok"] = True

    The metric is emitted even when the block raises.
    """
    extra: dict[str, Any] = {}
    start_ns = time.monotonic_ns()
    try:
        yield extra
    finally:
        emit_duration(
            name,
            (time.monotonic_ns() - start_ns) // 1_000_000,
            session_id=session_id,
            details={**(details or {}), **extra},
        )
