# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

import pytest

from observability import logger


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class FakeUploader:
    """In-memory uploader recording every call."""

    backend_name = "memory"

    def __init__(self) -> None:
        self.calls: list[tuple[bytes, str]] = []
        self.delay_s = 0.0
        self.error: Exception | None = None

    async def upload(self, data: bytes, filename: str) -> str:
        self.calls.append((data, filename))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return f"memory://recordings/{filename}"


class LogCapture:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def write(self, line: str) -> None:
        self.lines.append(line)

    def events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        decoded = [json.loads(line) for line in self.lines]
        if event_type is None:
            return decoded
        return [e for e in decoded if e.get("event_type") == event_type]


@pytest.fixture(autouse=True)
def log_capture(monkeypatch: pytest.MonkeyPatch) -> LogCapture:
    capture = LogCapture()
    monkeypatch.setattr(logger, "_print", capture.write)
    monkeypatch.setattr(logger, "_min_level", logger.LEVELS["DEBUG"])
    monkeypatch.setattr(logger, "_json_lines", True)
    return capture


@pytest.fixture
def clock() -> FakeClock:
    # 2023-11-14T22:13:20.000Z
    return FakeClock(1_700_000_000_000)


@pytest.fixture
def uploader() -> FakeUploader:
    return FakeUploader()
