# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from protocol.binary import (
    decode_c2s_frame,
    decode_s2c_header,
    encode_c2s_frame,
    encode_s2c_frame,
    check_sequence_gap,
    next_seq,
    InvalidFrameLength,
    InvalidSequenceNumber,
)
from constants import (
    AUDIO_BYTES_PER_FRAME_PCM,
    S2C_HEADER_BYTES,
    SEQ_NUM_MAX,
    SEQ_NUM_START,
)


def make_valid_pcm() -> bytes:
    return b"\x00\x00" * (AUDIO_BYTES_PER_FRAME_PCM // 2)


# ---------------------------------------------------------------------
# Client -> server (mic)
# ---------------------------------------------------------------------

def test_decode_rejects_short_frame():
    payload = b"\x01\x00\x00\x00" + make_valid_pcm()[:-2]

    with pytest.raises(InvalidFrameLength):
        decode_c2s_frame(payload, ts_ms=123)


def test_decode_rejects_long_frame():
    payload = b"\x01\x00\x00\x00" + make_valid_pcm() + b"\x00\x00"

    with pytest.raises(InvalidFrameLength):
        decode_c2s_frame(payload, ts_ms=123)


def test_decode_rejects_seq_zero():
    payload = (0).to_bytes(4, "little") + make_valid_pcm()

    with pytest.raises(InvalidSequenceNumber):
        decode_c2s_frame(payload, ts_ms=123)


def test_decode_reads_little_endian_seq_and_pcm():
    pcm = b"\x01\x02" * (AUDIO_BYTES_PER_FRAME_PCM // 2)

    frame = decode_c2s_frame(encode_c2s_frame(sequence_num=258, pcm_bytes=pcm), ts_ms=7)

    assert frame.sequence_num == 258
    assert frame.pcm_bytes == pcm
    assert frame.ts_ms == 7


def test_encode_c2s_rejects_partial_frame():
    with pytest.raises(InvalidFrameLength):
        encode_c2s_frame(sequence_num=1, pcm_bytes=b"\x00\x00")


# ---------------------------------------------------------------------
# Server -> client (agent audio)
# ---------------------------------------------------------------------

def test_encode_rejects_invalid_seq():
    with pytest.raises(InvalidSequenceNumber):
        encode_s2c_frame(
            sequence_num=0,
            turn_id=1,
            pcm_bytes=make_valid_pcm(),
        )


def test_encode_rejects_invalid_turn_id():
    with pytest.raises(InvalidSequenceNumber):
        encode_s2c_frame(
            sequence_num=1,
            turn_id=0,
            pcm_bytes=make_valid_pcm(),
        )


@pytest.mark.parametrize("pcm", [b"", b"\x00\x00\x00"])
def test_encode_rejects_empty_or_odd_audio(pcm: bytes):
    with pytest.raises(InvalidFrameLength):
        encode_s2c_frame(sequence_num=1, turn_id=1, pcm_bytes=pcm)


def test_s2c_frames_carry_variable_length_audio():
    short = encode_s2c_frame(sequence_num=9, turn_id=3, pcm_bytes=b"\x10\x00")
    long = encode_s2c_frame(sequence_num=10, turn_id=3, pcm_bytes=b"\x00\x00" * 4000)

    assert len(short) == S2C_HEADER_BYTES + 2
    assert len(long) == S2C_HEADER_BYTES + 8000
    assert decode_s2c_header(short) == (9, 3)
    assert decode_s2c_header(long) == (10, 3)


def test_s2c_header_without_audio_rejected():
    with pytest.raises(InvalidFrameLength):
        decode_s2c_header(b"\x01\x00\x00\x00\x01\x00\x00\x00")


# ---------------------------------------------------------------------
# Sequence gap detection
# ---------------------------------------------------------------------

def test_sequence_gap_detected():
    result = check_sequence_gap(last_seq=5, current_seq=8)

    assert result.gap is True
    assert result.expected == 6
    assert result.actual == 8
    assert result.gap_size == 2


def test_sequence_no_gap():
    result = check_sequence_gap(last_seq=5, current_seq=6)

    assert result.gap is False
    assert result.gap_size == 0


def test_first_frame_never_a_gap():
    assert check_sequence_gap(last_seq=None, current_seq=40).gap is False


# ---------------------------------------------------------------------
# Wraparound handling
# ---------------------------------------------------------------------

def test_next_seq_wraps_to_start():
    assert next_seq(SEQ_NUM_MAX) == SEQ_NUM_START
    assert next_seq(1) == 2


def test_sequence_wraparound_no_gap():
    result = check_sequence_gap(last_seq=SEQ_NUM_MAX, current_seq=SEQ_NUM_START)

    assert result.gap is False


def test_sequence_wraparound_gap():
    result = check_sequence_gap(last_seq=SEQ_NUM_MAX - 2, current_seq=1)

    assert result.gap is True
    assert result.gap_size == 2
