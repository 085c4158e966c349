"""
Audio chunk primitives.

Pure data containers only.
No behavior, no buffering, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum


class Channel(str, Enum):
    """
    Logical audio source of a chunk.

    Not a stereo channel: both sources are mono PCM16.
    """
    INPUT = "input"    # caller microphone
    OUTPUT = "output"  # synthesized agent voice


@dataclass(frozen=True)
class AudioChunk:
    """
    One buffered piece of call audio.

    payload:
        Raw PCM16 little-endian bytes. Length is a multiple of 2.

    channel:
        Which side of the call produced the audio.

    offset_ms:
        Milliseconds since session start when the chunk was received.
        Ordering key for merging.

    sequence_num:
        Arrival index within the channel (0-based). Keeps sorting
        deterministic when offsets tie.
    """
    payload: bytes
    channel: Channel
    offset_ms: int
    sequence_num: int = 0

    def __len__(self) -> int:
        return len(self.payload)
