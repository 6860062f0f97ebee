"""
Polling monitor base.

A monitor owns one asyncio task that samples a level probe every poll
interval. start() spawns the task, stop() cancels it. Both are idempotent;
stop() never raises and no event is emitted after it returns.
"""

from __future__ import annotations

import asyncio
from typing import Callable

from orchestrator.enums.monitor import Monitor
from orchestrator.events import Event, EventType, MonitorFailed
from orchestrator.runtime_context import EventSink, LevelProbe, MonitorError

from observability.logger import log_event, now_ms


class PollingMonitor:
    """
    Subclasses implement _reset() and _observe(level, now_ms), returning an
    event to emit or None. A monitor fires at most once per start().
    """

    monitor: Monitor

    def __init__(
        self,
        probe: LevelProbe,
        *,
        poll_ms: int,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self._probe = probe
        self._poll_s = poll_ms / 1000.0
        self._clock_ms = clock_ms
        self._emit: EventSink | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, emit_event: EventSink) -> None:
        if self.running:
            return
        self._reset()
        self._emit = emit_event
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        self._emit = None
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------

    def _reset(self) -> None:
        raise NotImplementedError

    def _observe(self, level: float, ts_ms: int) -> Event | None:
        raise NotImplementedError

    async def _run(self) -> None:
        me = asyncio.current_task()
        while self._task is me:
            try:
                level = self._read_level()
            except MonitorError as exc:
                await self._fail(me, str(exc))
                return

            event = self._observe(level, self._clock_ms())
            if event is not None:
                await self._deliver(me, event)
                return

            await asyncio.sleep(self._poll_s)

    def _read_level(self) -> float:
        try:
            return float(self._probe())
        except MonitorError:
            raise
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise MonitorError(str(exc) or type(exc).__name__) from exc

    async def _deliver(self, me: asyncio.Task[None] | None, event: Event) -> None:
        emit = self._emit
        if self._task is not me or emit is None:
            return
        await emit(event)

    async def _fail(self, me: asyncio.Task[None] | None, reason: str) -> None:
        log_event({
            "ts_ms": self._clock_ms(),
            "event_type": "monitor_failed",
            "level": "warning",
            "monitor": self.monitor.value,
            "reason": reason,
        })
        await self._deliver(
            me,
            MonitorFailed(
                event_type=EventType.MONITOR_FAILED,
                ts_ms=self._clock_ms(),
                monitor=self.monitor,
                reason=reason,
            ),
        )
