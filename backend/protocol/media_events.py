# backend/protocol/media_events.py
"""
Vendor media-stream frame decoding.

The voice vendor pushes frames in several shapes. Everything is normalized
here into one MediaEvent before the rest of the backend sees it:

    Text frames (JSON):
        {"type": "audio_output", "data": "<b64>"}
        {"audio_output": "<b64>"}
        {"audio_output": {"data" | "audio_base_64": "<b64>"}}
        {"type": "audio", "audio_event": {"audio_base_64": "<b64>"}}
        ... and the same for audio_input
        {"type": "call_end" | "conversation_end_event"} or {"call_end": ...}

        conversation_id / conversationId may appear on any frame, or inside
        conversation_initiation_metadata_event.

    Binary frames:
        raw PCM16, agent output by convention

Usage example:

    for event in decode_text_frame(text):
        if event.kind is MediaEventKind.AUDIO_INPUT:
            manager.append_chunk(cid, Channel.INPUT, event.audio_b64)

Swapping vendors means replacing this module and the listener only.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from audio.chunks import Channel
from constants import AUDIO_PAYLOAD_KEYS, CALL_END_EVENT_TYPES


# -------------------------
# Exceptions
# -------------------------

class MediaFrameError(ValueError):
    """Raised when a text frame is not a JSON object."""


# -------------------------
# Normalized event
# -------------------------

class MediaEventKind(str, Enum):
    AUDIO_INPUT = "audio_input"
    AUDIO_OUTPUT = "audio_output"
    CALL_END = "call_end"
    UNKNOWN = "unknown"


_AUDIO_CHANNELS: dict[MediaEventKind, Channel] = {
    MediaEventKind.AUDIO_INPUT: Channel.INPUT,
    MediaEventKind.AUDIO_OUTPUT: Channel.OUTPUT,
}


@dataclass(frozen=True)
class MediaEvent:
    """
    One normalized vendor event.

    Audio events carry exactly one of audio_b64 (text frames) or
    pcm (binary frames).
    """
    kind: MediaEventKind
    conversation_id: Optional[str] = None
    audio_b64: Optional[str] = None
    pcm: Optional[bytes] = None
    raw_type: Optional[str] = None

    @property
    def is_audio(self) -> bool:
        return self.kind in _AUDIO_CHANNELS

    @property
    def channel(self) -> Channel:
        """Capture channel of an audio event."""
        return _AUDIO_CHANNELS[self.kind]


# -------------------------
# Helpers
# -------------------------

def _audio_payload(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        for key in AUDIO_PAYLOAD_KEYS:
            inner = value.get(key)
            if isinstance(inner, str) and inner:
                return inner
    return None


def _conversation_id(data: dict[str, Any]) -> Optional[str]:
    for key in ("conversation_id", "conversationId"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value

    metadata = data.get("conversation_initiation_metadata_event")
    if isinstance(metadata, dict):
        value = metadata.get("conversation_id")
        if isinstance(value, str) and value:
            return value
    return None


def _audio_for(data: dict[str, Any], kind: MediaEventKind) -> Optional[str]:
    """
    Base64 audio for one direction, or None if the frame carries none.

    A dedicated field wins over the generic top-level data field.
    """
    field_name = kind.value
    if field_name in data:
        return _audio_payload(data[field_name])
    if data.get("type") == field_name:
        return _audio_payload(data.get("data"))
    return None


# -------------------------
# Decoding
# -------------------------

def decode_text_frame(payload: str) -> tuple[MediaEvent, ...]:
    """
    Decode one JSON text frame into zero or more events.

    A frame may carry both directions at once; each becomes its own event
    (input first). A frame with nothing recognizable yields a single
    UNKNOWN event so the caller can still pick up its conversation id.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise MediaFrameError(f"invalid JSON frame: {e}") from e

    if not isinstance(data, dict):
        raise MediaFrameError(f"expected JSON object, got {type(data).__name__}")

    raw_type = data.get("type") if isinstance(data.get("type"), str) else None
    conversation_id = _conversation_id(data)
    events: list[MediaEvent] = []

    for kind in (MediaEventKind.AUDIO_INPUT, MediaEventKind.AUDIO_OUTPUT):
        audio = _audio_for(data, kind)
        if audio is not None:
            events.append(MediaEvent(
                kind=kind,
                conversation_id=conversation_id,
                audio_b64=audio,
                raw_type=raw_type,
            ))

    # ElevenLabs agent audio event
    if raw_type == "audio" and not events:
        audio = _audio_payload(data.get("audio_event"))
        if audio is not None:
            events.append(MediaEvent(
                kind=MediaEventKind.AUDIO_OUTPUT,
                conversation_id=conversation_id,
                audio_b64=audio,
                raw_type=raw_type,
            ))

    if raw_type in CALL_END_EVENT_TYPES or "call_end" in data:
        events.append(MediaEvent(
            kind=MediaEventKind.CALL_END,
            conversation_id=conversation_id,
            raw_type=raw_type,
        ))

    if not events:
        events.append(MediaEvent(
            kind=MediaEventKind.UNKNOWN,
            conversation_id=conversation_id,
            raw_type=raw_type,
        ))

    return tuple(events)


def decode_binary_frame(payload: bytes) -> MediaEvent:
    """Binary frames are raw agent-output PCM16."""
    return MediaEvent(kind=MediaEventKind.AUDIO_OUTPUT, pcm=bytes(payload))
