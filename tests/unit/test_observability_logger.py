# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger
from observability.metrics import timed


@pytest.fixture
def captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_min_level", logger.LEVELS["DEBUG"])
    monkeypatch.setattr(logger, "_json_lines", True)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    - log_event emits exactly one JSONL line
    - payload fields are preserved
    - ts_ms and level are stamped
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    assert len(captured) == 1
    decoded = json.loads(captured[0])

    assert decoded["event_type"] == "TEST"
    assert decoded["value"] == 123
    assert decoded["level"] == "INFO"
    assert isinstance(decoded["ts_ms"], int)


def test_caller_level_is_kept_and_normalized(captured: list[str]) -> None:
    logger.log_event({"event_type": "X", "level": "warning"})
    assert json.loads(captured[0])["level"] == "WARNING"


def test_events_below_min_level_are_dropped(
    captured: list[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(logger, "_min_level", logger.LEVELS["WARNING"])

    logger.log_event({"event_type": "QUIET", "level": "DEBUG"})
    logger.log_event({"event_type": "ALSO_QUIET"})
    logger.log_event({"event_type": "LOUD", "level": "ERROR"})

    assert [json.loads(line)["event_type"] for line in captured] == ["LOUD"]


def test_unserializable_payload_falls_back(captured: list[str]) -> None:
    logger.log_event({"event_type": "BAD", "value": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["level"] == "ERROR"
    assert "BAD" in decoded["original_event_repr"]


def test_plain_text_mode(
    captured: list[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(logger, "_json_lines", False)

    logger.log_event({"event_type": "SESSION_STARTED", "conversation_id": "c1"})

    assert captured == ["INFO SESSION_STARTED conversation_id=c1"]


def test_configure_logger_unknown_level_falls_back_to_info(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(logger, "_min_level", logger.LEVELS["DEBUG"])
    monkeypatch.setattr(logger, "_json_lines", True)

    logger.configure_logger(level="chatty", json_lines=False)

    assert logger._min_level == logger.LEVELS["INFO"]  # pylint: disable=protected-access
    assert logger._json_lines is False  # pylint: disable=protected-access


def test_timed_emits_metric_with_extra_fields(captured: list[str]) -> None:
    with timed("wav_encode", conversation_id="c1", details={"backend": "local"}) as extra:
        extra["bytes"] = 44

    decoded = json.loads(captured[-1])
    assert decoded["event_type"] == "METRIC_TIMER"
    assert decoded["metric"] == "wav_encode"
    assert decoded["conversation_id"] == "c1"
    assert decoded["details"] == {"backend": "local", "bytes": 44}
    assert decoded["ok"] is True
    assert decoded["value_ms"] >= 0


def test_timed_marks_failure_and_reraises(captured: list[str]) -> None:
    with pytest.raises(RuntimeError):
        with timed("recording_upload"):
            raise RuntimeError("boom")

    assert json.loads(captured[-1])["ok"] is False
