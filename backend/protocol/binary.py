"""
Binary framing for the UI WebSocket.

Client → Server (mic):
    4 bytes  seq_num (u32, little-endian)
    640 bytes PCM16 audio (one 20ms frame)

Server → Client (agent audio):
    4 bytes  seq_num (u32, little-endian)
    4 bytes  turn_id (u32, little-endian, agent utterance counter)
    N bytes  PCM16 audio (variable, even length)

The UI drops agent audio whose turn_id is older than the newest it has
seen, so a barge-in flushes stale playback.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional

from audio.frames import AudioFrame
from constants import (
    AUDIO_BYTES_PER_FRAME_PCM,
    C2S_FRAME_BYTES_TOTAL,
    C2S_SEQ_NUM_BYTES,
    S2C_HEADER_BYTES,
    SEQ_NUM_MAX,
    SEQ_NUM_START,
)


class BinaryProtocolError(Exception):
    """Base class for binary framing violations. The frame must be dropped."""


class InvalidFrameLength(BinaryProtocolError):
    """Payload is truncated, oversized or not whole PCM16 samples."""


class InvalidSequenceNumber(BinaryProtocolError):
    """seq_num or turn_id outside the valid u32 range."""


def _u32_le(value: int) -> bytes:
    return struct.pack("<I", value)


def _read_u32_le(buf: bytes, offset: int = 0) -> int:
    return struct.unpack_from("<I", buf, offset)[0]


def next_seq(seq: int) -> int:
    """Successor with u32 wraparound back to SEQ_NUM_START."""
    return SEQ_NUM_START if seq >= SEQ_NUM_MAX else seq + 1


# -------------------------
# Client → Server (mic)
# -------------------------

def decode_c2s_frame(payload: bytes, *, ts_ms: int) -> AudioFrame:
    if len(payload) != C2S_FRAME_BYTES_TOTAL:
        raise InvalidFrameLength(
            f"C2S frame length {len(payload)} != {C2S_FRAME_BYTES_TOTAL}"
        )

    seq = _read_u32_le(payload, 0)
    if seq < SEQ_NUM_START:
        raise InvalidSequenceNumber(f"Invalid seq_num: {seq}")

    return AudioFrame(
        sequence_num=seq,
        pcm_bytes=payload[C2S_SEQ_NUM_BYTES:],
        ts_ms=ts_ms,
    )


def encode_c2s_frame(*, sequence_num: int, pcm_bytes: bytes) -> bytes:
    """Client-side encoder; used by the dev client and tests."""
    if len(pcm_bytes) != AUDIO_BYTES_PER_FRAME_PCM:
        raise InvalidFrameLength(
            f"PCM length {len(pcm_bytes)} != {AUDIO_BYTES_PER_FRAME_PCM}"
        )
    if sequence_num < SEQ_NUM_START or sequence_num > SEQ_NUM_MAX:
        raise InvalidSequenceNumber(f"Invalid seq_num: {sequence_num}")
    return _u32_le(sequence_num) + pcm_bytes


# -------------------------
# Server → Client (agent audio)
# -------------------------

def encode_s2c_frame(*, sequence_num: int, turn_id: int, pcm_bytes: bytes) -> bytes:
    if sequence_num < SEQ_NUM_START or sequence_num > SEQ_NUM_MAX:
        raise InvalidSequenceNumber(f"Invalid seq_num: {sequence_num}")
    if turn_id < 1 or turn_id > SEQ_NUM_MAX:
        raise InvalidSequenceNumber(f"Invalid turn_id: {turn_id}")
    if not pcm_bytes or len(pcm_bytes) % 2 != 0:
        raise InvalidFrameLength(f"PCM length {len(pcm_bytes)} is not whole PCM16 samples")

    return _u32_le(sequence_num) + _u32_le(turn_id) + pcm_bytes


def decode_s2c_header(payload: bytes) -> tuple[int, int]:
    """(sequence_num, turn_id) of an agent audio frame."""
    if len(payload) <= S2C_HEADER_BYTES:
        raise InvalidFrameLength(f"S2C frame length {len(payload)} has no audio")
    return _read_u32_le(payload, 0), _read_u32_le(payload, 4)


# -------------------------
# Sequence gap detection
# -------------------------

@dataclass(frozen=True)
class SeqCheckResult:
    gap: bool
    expected: int
    actual: int

    @property
    def gap_size(self) -> int:
        """Frames skipped (0 if no gap), accounting for wraparound."""
        if not self.gap:
            return 0
        if self.actual > self.expected:
            return self.actual - self.expected
        return (SEQ_NUM_MAX - self.expected + 1) + (self.actual - SEQ_NUM_START)


def check_sequence_gap(*, last_seq: Optional[int], current_seq: int) -> SeqCheckResult:
    """Pure; never raises."""
    if last_seq is None:
        return SeqCheckResult(gap=False, expected=current_seq, actual=current_seq)

    expected = next_seq(last_seq)
    return SeqCheckResult(gap=current_seq != expected, expected=expected, actual=current_seq)
