# backend/audio/wav.py
"""
Canonical PCM16 WAV encoding.

Layout written (44-byte header, little-endian):

    0   "RIFF"
    4   u32  total file size - 8
    8   "WAVE"
    12  "fmt "
    16  u32  16            (fmt chunk size)
    20  u16  1             (PCM)
    22  u16  channels
    24  u32  sample_rate
    28  u32  byte_rate     = sample_rate * channels * 2
    32  u16  block_align   = channels * 2
    34  u16  16            (bits per sample)
    36  "data"
    40  u32  data size
    44  PCM payload, chunks concatenated in the order given

Usage example:

    data = encode_wav(merge_chunks(inputs, outputs), sample_rate=16000)

    info = read_wav(data)
    assert info.sample_rate == 16000

Pure functions: no resampling, no gain, no clipping, no I/O.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Iterable

from audio.pcm import ChunkDecodeError, decode_base64_pcm, has_whole_frames
from constants import (
    AUDIO_BITS_PER_SAMPLE,
    AUDIO_SAMPLE_WIDTH_BYTES,
    MONO_CHANNELS,
    SUPPORTED_CHANNEL_COUNTS,
    WAV_FMT_CHUNK_BYTES,
    WAV_FORMAT_PCM,
    WAV_HEADER_BYTES,
    WAV_MAX_DATA_BYTES,
    AudioFormat,
)
from observability.logger import log_event


_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


# -------------------------
# Exceptions
# -------------------------

class EncodeFailure(Exception):
    """
    Raised when a WAV file cannot be produced at all.

    Bad individual chunks never raise; they are skipped.
    """


class WavFormatError(ValueError):
    """Raised when bytes handed to read_wav are not a PCM16 RIFF/WAVE file."""


# -------------------------
# Encoding
# -------------------------

def wav_header(*, data_size: int, sample_rate: int, channels: int = MONO_CHANNELS) -> bytes:
    """Build the 44-byte canonical header for a data section of data_size bytes."""
    if sample_rate <= 0:
        raise EncodeFailure(f"Invalid sample_rate: {sample_rate}")
    if channels not in SUPPORTED_CHANNEL_COUNTS:
        raise EncodeFailure(f"Unsupported channel count: {channels}")
    if data_size < 0 or data_size > WAV_MAX_DATA_BYTES:
        raise EncodeFailure(f"Data size {data_size} does not fit a RIFF header")

    fmt = AudioFormat(sample_rate_hz=sample_rate, channels=channels)

    return _HEADER.pack(
        b"RIFF",
        WAV_HEADER_BYTES - 8 + data_size,
        b"WAVE",
        b"fmt ",
        WAV_FMT_CHUNK_BYTES,
        WAV_FORMAT_PCM,
        channels,
        sample_rate,
        fmt.byte_rate,
        fmt.block_align,
        AUDIO_BITS_PER_SAMPLE,
        b"data",
        data_size,
    )


def encode_wav(
    pcm_chunks: Iterable[bytes],
    *,
    sample_rate: int,
    channels: int = MONO_CHANNELS,
    conversation_id: str | None = None,
) -> bytes:
    """
    Encode raw PCM16 buffers into one WAV file.

    A buffer that does not hold whole sample frames is skipped with a
    warning. An empty sequence yields a header-only file.
    """
    accepted: list[bytes] = []
    skipped = 0

    for index, chunk in enumerate(pcm_chunks):
        if not has_whole_frames(chunk, channels=channels):
            skipped += 1
            log_event({
                "event_type": "WAV_CHUNK_SKIPPED",
                "level": "WARNING",
                "conversation_id": conversation_id,
                "chunk_index": index,
                "payload_len": len(chunk),
                "reason": "partial_sample_frame",
            })
            continue
        accepted.append(chunk)

    data = b"".join(accepted)
    header = wav_header(data_size=len(data), sample_rate=sample_rate, channels=channels)

    if skipped:
        log_event({
            "event_type": "WAV_ENCODED_WITH_SKIPS",
            "level": "WARNING",
            "conversation_id": conversation_id,
            "chunks_used": len(accepted),
            "chunks_skipped": skipped,
        })

    return header + data


def encode_wav_base64(
    b64_chunks: Iterable[str | bytes],
    *,
    sample_rate: int,
    channels: int = MONO_CHANNELS,
    conversation_id: str | None = None,
) -> bytes:
    """
    Decode base64 PCM16 chunks and encode them into one WAV file.

    Chunks that fail to decode are logged and skipped; the rest are
    encoded in the order given.
    """
    decoded: list[bytes] = []
    for index, chunk in enumerate(b64_chunks):
        try:
            decoded.append(decode_base64_pcm(chunk))
        except ChunkDecodeError as e:
            log_event({
                "event_type": "WAV_CHUNK_SKIPPED",
                "level": "WARNING",
                "conversation_id": conversation_id,
                "chunk_index": index,
                "reason": "decode_error",
                "error": str(e),
            })

    return encode_wav(
        decoded,
        sample_rate=sample_rate,
        channels=channels,
        conversation_id=conversation_id,
    )


# -------------------------
# Reading (diagnostics / verification)
# -------------------------

@dataclass(frozen=True)
class WavInfo:
    """Format and payload of a parsed WAV file."""
    sample_rate: int
    channels: int
    bits_per_sample: int
    pcm: bytes

    @property
    def duration_ms(self) -> int:
        """Duration of the PCM payload in milliseconds (floor)."""
        block = self.channels * (self.bits_per_sample // 8)
        if block <= 0 or self.sample_rate <= 0:
            return 0
        return (len(self.pcm) // block) * 1000 // self.sample_rate


def read_wav(data: bytes) -> WavInfo:
    """
    Parse a PCM16 RIFF/WAVE file.

    Walks sub-chunks, so files with extra chunks (LIST, fact) are accepted.
    Raises WavFormatError for anything that is not 16-bit PCM.
    """
    if len(data) < 12 or data[0:4] != b"RIFF" or data[8:12] != b"WAVE":
        raise WavFormatError("missing RIFF/WAVE signature")

    fmt: tuple[int, int, int, int] | None = None
    pos = 12

    while pos + 8 <= len(data):
        chunk_id = data[pos:pos + 4]
        (size,) = struct.unpack_from("<I", data, pos + 4)
        body_start = pos + 8
        body_end = body_start + size

        if chunk_id == b"fmt ":
            if size < WAV_FMT_CHUNK_BYTES or body_end > len(data):
                raise WavFormatError("truncated fmt chunk")
            audio_format, channels, sample_rate, _, _, bits = struct.unpack_from(
                "<HHIIHH", data, body_start
            )
            fmt = (audio_format, channels, sample_rate, bits)

        elif chunk_id == b"data":
            if fmt is None:
                raise WavFormatError("data chunk before fmt chunk")
            if body_end > len(data):
                raise WavFormatError(
                    f"data chunk declares {size} bytes, only {len(data) - body_start} present"
                )
            audio_format, channels, sample_rate, bits = fmt
            if audio_format != WAV_FORMAT_PCM or bits != AUDIO_SAMPLE_WIDTH_BYTES * 8:
                raise WavFormatError(
                    f"unsupported encoding: format={audio_format} bits={bits}"
                )
            return WavInfo(
                sample_rate=sample_rate,
                channels=channels,
                bits_per_sample=bits,
                pcm=data[body_start:body_end],
            )

        # RIFF chunks are word aligned
        pos = body_end + (size & 1)

    raise WavFormatError("no data chunk")
