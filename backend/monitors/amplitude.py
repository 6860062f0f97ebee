"""
Amplitude sampler for visualization.

Samples the agent output level while the agent speaks, otherwise the
local input level. Never emits events and never affects state; probe
failures are logged and the last value decays to 0.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from orchestrator.enums.monitor import Monitor
from orchestrator.runtime_context import EventSink, LevelProbe

from observability.logger import log_event, now_ms
from constants import AMPLITUDE_POLL_MS


class AmplitudeSampler:
    monitor = Monitor.AMPLITUDE

    def __init__(
        self,
        *,
        input_level: LevelProbe,
        output_level: LevelProbe,
        is_agent_speaking: Callable[[], bool],
        poll_ms: int = AMPLITUDE_POLL_MS,
    ) -> None:
        self._input_level = input_level
        self._output_level = output_level
        self._is_agent_speaking = is_agent_speaking
        self._poll_s = poll_ms / 1000.0
        self._task: asyncio.Task[None] | None = None
        self._amplitude = 0.0
        self._failures = 0

    @property
    def amplitude(self) -> float:
        return self._amplitude

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, emit_event: EventSink) -> None:  # pylint: disable=unused-argument
        if self.running:
            return
        self._failures = 0
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        self._amplitude = 0.0
        if task is not None and not task.done():
            task.cancel()

    def sample(self) -> float:
        """Take one reading; failures log and read as 0."""
        try:
            if self._is_agent_speaking():
                level = self._output_level()
            else:
                level = self._input_level()
            self._amplitude = max(0.0, min(1.0, float(level)))
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._failures += 1
            self._amplitude = 0.0
            # Log the first failure and every 100th after it
            if self._failures % 100 == 1:
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "amplitude_probe_failed",
                    "level": "warning",
                    "failures": self._failures,
                    "error": repr(exc),
                })
        return self._amplitude

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            self.sample()
            await asyncio.sleep(self._poll_s)
