"""
Timing helpers for the finalize path.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit one METRIC_TIMER event per measurement via observability.logger
- Never aggregate

Event timestamps (ts_ms) stay wall-clock so they line up with other log lines.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


@contextmanager
def timed(
    name: str,
    *,
    conversation_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the enclosed block and emit a METRIC_TIMER event.

    Guarantees:
    - The metric is emitted exactly once, even if the block raises
    - Exceptions inside the block propagate unchanged

    The yielded dict is merged into the event's details, so callers can
    attach results known only after the work finished:

        with timed("wav_encode", conversation_id=cid) as extra:
            data = encode_wav(...)
            extra["bytes"] = len(data)
    """
    extra: dict[str, Any] = dict(details or {})
    start_ns = time.monotonic_ns()
    ok = False
    try:
        yield extra
        ok = True
    finally:
        log_event({
            "event_type": "METRIC_TIMER",
            "level": "DEBUG",
            "metric": name,
            "value_ms": (time.monotonic_ns() - start_ns) // 1_000_000,
            "conversation_id": conversation_id,
            "ok": ok,
            "details": extra,
        })
