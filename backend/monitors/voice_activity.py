"""Trailing-silence monitor used while LISTENING."""

from __future__ import annotations

from typing import Callable

from audio.vad import TrailingSilenceDetector
from monitors.base import PollingMonitor
from orchestrator.enums.monitor import Monitor
from orchestrator.events import Event, EventType, SilenceReached
from orchestrator.runtime_context import LevelProbe

from observability.logger import now_ms
from constants import MONITOR_POLL_MS, VAD_SPEECH_LEVEL, VAD_TRAILING_SILENCE_MS


class VoiceActivityMonitor(PollingMonitor):
    """
    Emits SilenceReached once, after speech was heard and then no speech
    for the trailing-silence threshold. Silence alone never fires.
    """

    monitor = Monitor.VOICE_ACTIVITY

    def __init__(
        self,
        probe: LevelProbe,
        *,
        speech_level: float = VAD_SPEECH_LEVEL,
        silence_ms: int = VAD_TRAILING_SILENCE_MS,
        poll_ms: int = MONITOR_POLL_MS,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(probe, poll_ms=poll_ms, clock_ms=clock_ms)
        self._detector = TrailingSilenceDetector(speech_level, silence_ms)

    def _reset(self) -> None:
        self._detector.reset()

    def _observe(self, level: float, ts_ms: int) -> Event | None:
        if self._detector.observe(level, ts_ms):
            return SilenceReached(event_type=EventType.SILENCE_REACHED, ts_ms=ts_ms)
        return None
