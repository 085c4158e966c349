"""
Call history records.

In-memory registry of completed calls and their recording URLs.
Filled by the HTTP end-call route and by the session manager when a
recording finishes through the media stream path.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any

from observability.logger import log_event


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class CallRecord:
    """Metadata of one finished call."""
    conversation_id: str
    audio_url: str | None = None
    duration_s: int = 0
    phone_number: str = "unknown"
    risk: float = 0
    status: str = "unknown"
    created_at: str = ""

    def to_json(self) -> dict[str, Any]:
        """camelCase view used by the HTTP API."""
        data = asdict(self)
        return {
            "conversationId": data["conversation_id"],
            "audioUrl": data["audio_url"],
            "duration": data["duration_s"],
            "phoneNumber": data["phone_number"],
            "risk": data["risk"],
            "status": data["status"],
            "createdAt": data["created_at"],
        }


class CallRecordStore:
    """conversation id -> CallRecord."""

    def __init__(self) -> None:
        self._records: dict[str, CallRecord] = {}

    def save(self, record: CallRecord) -> CallRecord:
        """
        Insert or replace a record.

        An audio URL already attached by the media stream path is kept
        when the new record has none.
        """
        existing = self._records.get(record.conversation_id)
        if not record.created_at:
            record = replace(record, created_at=_now_iso())
        if record.audio_url is None and existing is not None and existing.audio_url:
            record = replace(record, audio_url=existing.audio_url)

        self._records[record.conversation_id] = record
        log_event({
            "event_type": "CALL_RECORD_SAVED",
            "conversation_id": record.conversation_id,
            "audio_url": record.audio_url,
        })
        return record

    def attach_audio_url(self, conversation_id: str, audio_url: str) -> CallRecord:
        """Set the recording URL, creating a minimal record if needed."""
        existing = self._records.get(conversation_id)
        if existing is None:
            record = CallRecord(
                conversation_id=conversation_id,
                audio_url=audio_url,
                created_at=_now_iso(),
            )
        else:
            record = replace(existing, audio_url=audio_url)

        self._records[conversation_id] = record
        log_event({
            "event_type": "CALL_RECORD_AUDIO_ATTACHED",
            "conversation_id": conversation_id,
            "audio_url": audio_url,
        })
        return record

    def get(self, conversation_id: str) -> CallRecord | None:
        return self._records.get(conversation_id)

    def all(self) -> list[CallRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)
