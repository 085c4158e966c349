# pylint: disable=missing-module-docstring,missing-function-docstring

import struct

from audio.chunks import AudioChunk, Channel
from audio.merger import layout_tracks, merge_chunks, order_chunks


def make_chunk(channel: Channel, offset_ms: int, payload: bytes, seq: int = 0) -> AudioChunk:
    return AudioChunk(payload=payload, channel=channel, offset_ms=offset_ms, sequence_num=seq)


def samples(*values: int) -> bytes:
    return struct.pack(f"<{len(values)}h", *values)


def test_merge_interleaves_channels_by_offset() -> None:
    inputs = [
        make_chunk(Channel.INPUT, 100, samples(1), 0),
        make_chunk(Channel.INPUT, 300, samples(3), 1),
    ]
    outputs = [make_chunk(Channel.OUTPUT, 200, samples(2), 0)]

    assert merge_chunks(inputs, outputs) == [samples(1), samples(2), samples(3)]


def test_offset_tie_puts_input_first() -> None:
    inputs = [make_chunk(Channel.INPUT, 50, samples(1))]
    outputs = [make_chunk(Channel.OUTPUT, 50, samples(2))]

    assert merge_chunks(inputs, outputs) == [samples(1), samples(2)]
    assert merge_chunks([], outputs + inputs) == [samples(1), samples(2)]


def test_out_of_order_arrivals_are_resorted() -> None:
    inputs = [
        make_chunk(Channel.INPUT, 300, samples(3), 0),
        make_chunk(Channel.INPUT, 100, samples(1), 1),
    ]

    assert merge_chunks(inputs, []) == [samples(1), samples(3)]


def test_same_offset_same_channel_keeps_arrival_order() -> None:
    chunks = [
        make_chunk(Channel.OUTPUT, 0, samples(2), 1),
        make_chunk(Channel.OUTPUT, 0, samples(1), 0),
    ]

    assert [c.sequence_num for c in order_chunks(chunks)] == [0, 1]


def test_merge_is_deterministic_regardless_of_list_order() -> None:
    inputs = [make_chunk(Channel.INPUT, t, samples(t), i) for i, t in enumerate((0, 40, 80))]
    outputs = [make_chunk(Channel.OUTPUT, t, samples(-t), i) for i, t in enumerate((20, 40, 60))]

    first = merge_chunks(inputs, outputs)
    second = merge_chunks(list(reversed(inputs)), list(reversed(outputs)))

    assert first == second


def test_merge_empty() -> None:
    assert merge_chunks([], []) == []


# -------------------------
# Stereo layout (1 sample per ms at 1 kHz)
# -------------------------

def test_layout_puts_input_left_and_output_right() -> None:
    inputs = [make_chunk(Channel.INPUT, 0, samples(1, 2))]
    outputs = [make_chunk(Channel.OUTPUT, 1, samples(5))]

    pcm = layout_tracks(inputs, outputs, sample_rate=1000)

    assert pcm == samples(1, 0, 2, 5)


def test_layout_fills_gaps_with_silence() -> None:
    inputs = [make_chunk(Channel.INPUT, 3, samples(7))]

    pcm = layout_tracks(inputs, [], sample_rate=1000)

    assert pcm == samples(0, 0, 0, 0, 0, 0, 7, 0)


def test_layout_never_overwrites_earlier_audio() -> None:
    inputs = [
        make_chunk(Channel.INPUT, 0, samples(1, 2), 0),
        make_chunk(Channel.INPUT, 1, samples(3), 1),
    ]

    pcm = layout_tracks(inputs, [], sample_rate=1000)

    assert pcm == samples(1, 0, 2, 0, 3, 0)


def test_layout_empty() -> None:
    assert layout_tracks([], [], sample_rate=16000) == b""
