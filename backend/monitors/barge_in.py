"""Speech-onset monitor used while SPEAKING."""

from __future__ import annotations

from typing import Callable

from audio.vad import OnsetDetector
from monitors.base import PollingMonitor
from orchestrator.enums.monitor import Monitor
from orchestrator.events import BargeInDetected, Event, EventType
from orchestrator.runtime_context import LevelProbe

from observability.logger import now_ms
from constants import BARGE_IN_ONSET_LEVEL, BARGE_IN_POLLS_REQUIRED, MONITOR_POLL_MS


class BargeInMonitor(PollingMonitor):
    # Higher threshold than VAD so agent playback leaking into the mic
    # does not interrupt the agent.
    monitor = Monitor.BARGE_IN

    def __init__(
        self,
        probe: LevelProbe,
        *,
        onset_level: float = BARGE_IN_ONSET_LEVEL,
        polls_required: int = BARGE_IN_POLLS_REQUIRED,
        poll_ms: int = MONITOR_POLL_MS,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        super().__init__(probe, poll_ms=poll_ms, clock_ms=clock_ms)
        self._detector = OnsetDetector(onset_level, polls_required)

    def _reset(self) -> None:
        self._detector.reset()

    def _observe(self, level: float, ts_ms: int) -> Event | None:
        if self._detector.observe(level):
            return BargeInDetected(event_type=EventType.BARGE_IN, ts_ms=ts_ms)
        return None
