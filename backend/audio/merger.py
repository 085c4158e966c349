"""
Chunk merging (pure).

Two ways to turn a session's channel lists into encodable PCM:

- merge_chunks: one mono track. Chunks from both channels are interleaved
  by offset, whole chunk by whole chunk. No sample-level mixing, so
  overlapping speech plays back-to-back instead of simultaneously.

- layout_tracks: one stereo track, caller left, agent right. Each chunk
  is placed at its offset on its own side; gaps are silence.

Both are deterministic: the same chunks always produce the same bytes.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import numpy as np

from audio.chunks import AudioChunk, Channel
from audio.pcm import interleave_channels, pcm16le_to_int16
from constants import ms_to_samples

# Ties on offset_ms: caller audio first
_CHANNEL_RANK: dict[Channel, int] = {Channel.INPUT: 0, Channel.OUTPUT: 1}


def _sort_key(chunk: AudioChunk) -> tuple[int, int, int]:
    return (chunk.offset_ms, _CHANNEL_RANK[chunk.channel], chunk.sequence_num)


def order_chunks(chunks: Iterable[AudioChunk]) -> list[AudioChunk]:
    """Sort chunks by offset, then channel (input first), then arrival."""
    return sorted(chunks, key=_sort_key)


def merge_chunks(
    input_chunks: Sequence[AudioChunk],
    output_chunks: Sequence[AudioChunk],
) -> list[bytes]:
    """
    Interleave both channels into one ordered list of PCM payloads.

    Example:
        input @100, input @300, output @200
        -> [input@100, output@200, input@300]
    """
    return [c.payload for c in order_chunks([*input_chunks, *output_chunks])]


def _place_track(chunks: Sequence[AudioChunk], *, sample_rate: int) -> np.ndarray:
    ordered = order_chunks(chunks)
    parts: list[np.ndarray] = []
    cursor = 0  # samples written so far

    for chunk in ordered:
        samples = pcm16le_to_int16(chunk.payload)
        start = ms_to_samples(chunk.offset_ms, sample_rate=sample_rate)

        # Never overwrite earlier audio; late chunks go right after it
        if start > cursor:
            parts.append(np.zeros(start - cursor, dtype="<i2"))
            cursor = start

        parts.append(samples)
        cursor += len(samples)

    if not parts:
        return np.zeros(0, dtype="<i2")
    return np.concatenate(parts)


def layout_tracks(
    input_chunks: Sequence[AudioChunk],
    output_chunks: Sequence[AudioChunk],
    *,
    sample_rate: int,
) -> bytes:
    """
    Build interleaved stereo PCM16: caller on the left, agent on the right.

    Returns b"" when neither channel holds audio.
    """
    left = _place_track(input_chunks, sample_rate=sample_rate)
    right = _place_track(output_chunks, sample_rate=sample_rate)
    if len(left) == 0 and len(right) == 0:
        return b""
    return interleave_channels(left, right)
