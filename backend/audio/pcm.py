"""PCM16 transport decoding and sample helpers."""

from __future__ import annotations

import base64
import binascii

import numpy as np

from constants import AUDIO_SAMPLE_WIDTH_BYTES


class ChunkDecodeError(ValueError):
    """
    Raised when one audio chunk cannot be turned into PCM16 bytes.

    Always handled locally: the chunk is dropped and the session continues.
    """


def decode_base64_pcm(payload: str | bytes) -> bytes:
    """
    Decode a base64 transport payload into raw PCM16 bytes.

    Strict decoding: stray characters or bad padding are errors, and so is
    an empty payload. A dangling odd byte is the low byte of a final sample
    whose high byte was cut off; it is completed with a zero high byte so the
    result always holds whole samples.
    """
    if isinstance(payload, str):
        try:
            payload = payload.strip().encode("ascii")
        except UnicodeEncodeError as e:
            raise ChunkDecodeError(f"non-ascii base64 payload: {e}") from e

    try:
        pcm = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ChunkDecodeError(f"invalid base64 payload: {e}") from e

    if not pcm:
        raise ChunkDecodeError("empty audio payload")

    if len(pcm) % AUDIO_SAMPLE_WIDTH_BYTES:
        pcm += b"\x00"
    return pcm


def has_whole_frames(pcm: bytes, *, channels: int = 1) -> bool:
    """True if pcm holds a whole number of sample frames."""
    return len(pcm) % (AUDIO_SAMPLE_WIDTH_BYTES * channels) == 0


def pcm16le_to_int16(pcm_bytes: bytes) -> np.ndarray:
    """
    View PCM16 little-endian bytes as an int16 sample array.

    No resampling. No channel mixing. A truncated trailing byte is ignored.
    """
    if len(pcm_bytes) % 2 != 0:
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]
    return np.frombuffer(pcm_bytes, dtype="<i2")


def interleave_channels(left: np.ndarray, right: np.ndarray) -> bytes:
    """
    Interleave two int16 tracks into stereo PCM16 little-endian bytes.

    The shorter track is padded with silence.
    """
    length = max(len(left), len(right))
    frames = np.zeros((length, 2), dtype="<i2")
    frames[: len(left), 0] = left
    frames[: len(right), 1] = right
    return frames.tobytes()
