# pylint: disable=missing-module-docstring,missing-function-docstring

import struct
from typing import Any

import pytest

from audio import wav as wav_module
from audio.wav import (
    EncodeFailure,
    WavFormatError,
    encode_wav,
    encode_wav_base64,
    read_wav,
)


@pytest.fixture
def events(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    captured: list[dict[str, Any]] = []
    monkeypatch.setattr(wav_module, "log_event", captured.append)
    return captured


def _unpack_header(data: bytes) -> tuple[Any, ...]:
    return struct.unpack_from("<4sI4s4sIHHIIHH4sI", data, 0)


def test_empty_sequence_yields_header_only_file() -> None:
    data = encode_wav([], sample_rate=16000)

    assert len(data) == 44
    riff, riff_size, wave, _, _, _, _, _, _, _, _, data_id, data_size = _unpack_header(data)
    assert (riff, wave, data_id) == (b"RIFF", b"WAVE", b"data")
    assert riff_size == 36
    assert data_size == 0


def test_header_fields_are_canonical() -> None:
    pcm = b"\x01\x00\x02\x00\x03\x00"
    data = encode_wav([pcm], sample_rate=24000)

    (
        riff, riff_size, wave, fmt_id, fmt_size, audio_format, channels,
        sample_rate, byte_rate, block_align, bits, data_id, data_size,
    ) = _unpack_header(data)

    assert (riff, wave, fmt_id, data_id) == (b"RIFF", b"WAVE", b"fmt ", b"data")
    assert riff_size == len(data) - 8
    assert fmt_size == 16
    assert audio_format == 1
    assert channels == 1
    assert sample_rate == 24000
    assert byte_rate == 48000
    assert block_align == 2
    assert bits == 16
    assert data_size == len(pcm)
    assert data[44:] == pcm


def test_stereo_header_uses_four_byte_frames() -> None:
    data = encode_wav([b"\x01\x00\x02\x00"], sample_rate=16000, channels=2)

    _, _, _, _, _, _, channels, _, byte_rate, block_align, _, _, _ = _unpack_header(data)
    assert channels == 2
    assert byte_rate == 64000
    assert block_align == 4


def test_data_is_chunks_concatenated_in_order() -> None:
    chunks = [bytes(range(20)), b"\xff\x7f\x00\x80", b"\x10\x00"]

    info = read_wav(encode_wav(chunks, sample_rate=16000))

    assert info.pcm == b"".join(chunks)
    assert info.sample_rate == 16000
    assert info.channels == 1
    assert info.bits_per_sample == 16


def test_partial_sample_chunk_is_skipped(events: list[dict[str, Any]]) -> None:
    data = encode_wav([b"\x01\x00", b"\x01\x02\x03", b"\x04\x00"], sample_rate=16000)

    assert data[44:] == b"\x01\x00\x04\x00"
    skipped = [e for e in events if e["event_type"] == "WAV_CHUNK_SKIPPED"]
    assert len(skipped) == 1
    assert skipped[0]["chunk_index"] == 1


def test_stereo_rejects_chunk_without_whole_frames(events: list[dict[str, Any]]) -> None:
    data = encode_wav([b"\x01\x00"], sample_rate=16000, channels=2)

    assert len(data) == 44
    assert events[0]["event_type"] == "WAV_CHUNK_SKIPPED"


def test_base64_chunks_decode_and_corrupt_ones_are_skipped(
    events: list[dict[str, Any]],
) -> None:
    data = encode_wav_base64(["AAAA", "!!not base64!!", "AQAB"], sample_rate=16000)

    # odd 3-byte payloads are completed to whole samples
    assert data[44:] == b"\x00\x00\x00\x00\x01\x00\x01\x00"
    reasons = [e.get("reason") for e in events if e["event_type"] == "WAV_CHUNK_SKIPPED"]
    assert reasons == ["decode_error"]


@pytest.mark.parametrize("sample_rate,channels", [(0, 1), (-8000, 1), (16000, 3)])
def test_invalid_format_raises_encode_failure(sample_rate: int, channels: int) -> None:
    with pytest.raises(EncodeFailure):
        encode_wav([b"\x00\x00"], sample_rate=sample_rate, channels=channels)


def test_read_wav_skips_extra_chunks() -> None:
    fmt_body = struct.pack("<HHIIHH", 1, 1, 8000, 16000, 2, 16)
    pcm = b"\x10\x00\x20\x00"
    body = (
        b"WAVE"
        + b"fmt " + struct.pack("<I", 16) + fmt_body
        + b"LIST" + struct.pack("<I", 3) + b"abc" + b"\x00"
        + b"data" + struct.pack("<I", len(pcm)) + pcm
    )
    data = b"RIFF" + struct.pack("<I", len(body)) + body

    info = read_wav(data)

    assert info.sample_rate == 8000
    assert info.pcm == pcm


def test_read_wav_rejects_non_riff() -> None:
    with pytest.raises(WavFormatError):
        read_wav(b"OggS" + b"\x00" * 40)


def test_read_wav_rejects_truncated_data() -> None:
    data = encode_wav([b"\x01\x00" * 8], sample_rate=16000)

    with pytest.raises(WavFormatError):
        read_wav(data[:-4])


def test_duration_ms() -> None:
    info = read_wav(encode_wav([b"\x00\x00" * 1600], sample_rate=16000))
    assert info.duration_ms == 100
