"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}

_DEFAULT_LEVEL = "INFO"


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_min_level: int = LEVELS[_DEFAULT_LEVEL]
_json_lines: bool = True


def configure_logger(*, level: str = _DEFAULT_LEVEL, json_lines: bool = True) -> None:
    """
    Set the minimum level and output style.

    Unknown level names fall back to INFO.
    json_lines=False renders "LEVEL event_type key=value ..." for local dev.
    """
    global _min_level, _json_lines  # pylint: disable=global-statement
    _min_level = LEVELS.get(level.upper(), LEVELS[_DEFAULT_LEVEL])
    _json_lines = json_lines


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller supplies event_type plus any context fields
    (conversation_id, counts, error text).

    This function:
    - Stamps ts_ms and level when the caller omitted them
    - Drops events below the configured minimum level
    - Writes exactly one line and flushes immediately
    - Never raises
    """
    level = str(event.get("level", "INFO")).upper()
    if LEVELS.get(level, LEVELS["INFO"]) < _min_level:
        return

    record: dict[str, Any] = {"ts_ms": _now_ms(), "level": level}
    record.update(event)
    record["level"] = level

    if not _json_lines:
        fields = " ".join(
            f"{k}={v}" for k, v in record.items()
            if k not in ("ts_ms", "level", "event_type")
        )
        _print(f"{level} {record.get('event_type', '-')} {fields}".rstrip())
        return

    try:
        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the caller
        fallback: dict[str, Any] = {
            "ts_ms": record.get("ts_ms"),
            "level": "ERROR",
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
