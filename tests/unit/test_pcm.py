# pylint: disable=missing-module-docstring,missing-function-docstring

import base64

import numpy as np
import pytest

from audio.pcm import (
    ChunkDecodeError,
    decode_base64_pcm,
    has_whole_frames,
    interleave_channels,
    pcm16le_to_int16,
)


def test_decode_even_payload_is_unchanged() -> None:
    raw = b"\x01\x00\xff\x7f"
    assert decode_base64_pcm(base64.b64encode(raw).decode()) == raw


def test_decode_accepts_bytes_and_surrounding_whitespace() -> None:
    assert decode_base64_pcm(b"AQAC") == b"\x01\x00\x02\x00"
    assert decode_base64_pcm("  AQAC\n") == b"\x01\x00\x02\x00"


def test_decode_completes_dangling_byte() -> None:
    assert decode_base64_pcm("AAAA") == b"\x00\x00\x00\x00"
    assert decode_base64_pcm("AQAB") == b"\x01\x00\x01\x00"


@pytest.mark.parametrize("payload", ["", "   ", "%%%notbase64", "AQA", "héllo"])
def test_decode_rejects_bad_payloads(payload: str) -> None:
    with pytest.raises(ChunkDecodeError):
        decode_base64_pcm(payload)


def test_has_whole_frames() -> None:
    assert has_whole_frames(b"\x00\x00")
    assert not has_whole_frames(b"\x00")
    assert has_whole_frames(b"\x00" * 4, channels=2)
    assert not has_whole_frames(b"\x00" * 2, channels=2)


def test_pcm16le_to_int16_drops_trailing_byte() -> None:
    samples = pcm16le_to_int16(b"\x01\x00\xff\xff\x07")
    assert samples.tolist() == [1, -1]


def test_interleave_pads_shorter_track() -> None:
    left = np.array([1, 2, 3], dtype="<i2")
    right = np.array([9], dtype="<i2")

    out = np.frombuffer(interleave_channels(left, right), dtype="<i2")

    assert out.tolist() == [1, 9, 2, 0, 3, 0]
