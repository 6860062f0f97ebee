"""
Audio frame primitives. Pure data containers.
"""

from __future__ import annotations
from dataclasses import dataclass


@dataclass(frozen=True)
class AudioFrame:
    """
    One 20ms mic frame received from the UI.

    sequence_num: sender's monotonic counter, for gap detection only.
    pcm_bytes:    PCM16 mono, AUDIO_BYTES_PER_FRAME_PCM long.
    ts_ms:        receive wall-clock time, for observability only.
    """
    sequence_num: int
    pcm_bytes: bytes
    ts_ms: int
