"""
Wake phrase listener.

Runs the speech engine's recognition loop while SLEEPING and emits
WakePhraseHeard when a transcript matches a configured phrase. The
recognition loop ending (platform timeout) or failing is not terminal:
the listener restarts it with bounded exponential backoff until stop().
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Callable, Sequence

from orchestrator.enums.monitor import Monitor
from orchestrator.events import EventType, MonitorFailed, WakePhraseHeard
from orchestrator.runtime_context import EventSink, SpeechEngine, SpeechEngineError

from observability.logger import log_event, now_ms
from constants import (
    WAKE_DEBOUNCE_MS,
    WAKE_HEALTHY_RUN_MS,
    WAKE_PHRASES_DEFAULT,
    WAKE_RESTART_DELAY_MS,
    WAKE_RESTART_MAX_DELAY_MS,
    WAKE_SIMILARITY_THRESHOLD,
)


# =============================================================================
# Matching
# =============================================================================

def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert / delete / substitute, unit cost)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1 - distance / longer length; two empty strings are identical."""
    a, b = a.lower(), b.lower()
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein(a, b) / longest


def matches_wake_phrase(
    transcript: str,
    phrases: Sequence[str],
    threshold: float = WAKE_SIMILARITY_THRESHOLD,
) -> str | None:
    """
    Return the matched phrase, or None.

    A phrase matches when it occurs in the transcript, or when the whole
    transcript is at least `threshold` similar to it ("hey kava").
    """
    text = " ".join(transcript.lower().split())
    if not text:
        return None
    for phrase in phrases:
        if phrase in text:
            return phrase
        if similarity(text, phrase) >= threshold:
            return phrase
    return None


# =============================================================================
# Listener
# =============================================================================

class WakePhraseListener:
    monitor = Monitor.WAKE_PHRASE

    def __init__(  # pylint: disable=too-many-arguments
        self,
        engine: SpeechEngine,
        *,
        phrases: Sequence[str] = WAKE_PHRASES_DEFAULT,
        threshold: float = WAKE_SIMILARITY_THRESHOLD,
        debounce_ms: int = WAKE_DEBOUNCE_MS,
        restart_delay_ms: int = WAKE_RESTART_DELAY_MS,
        restart_max_delay_ms: int = WAKE_RESTART_MAX_DELAY_MS,
        healthy_run_ms: int = WAKE_HEALTHY_RUN_MS,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self._engine = engine
        self._phrases = tuple(p.lower() for p in phrases)
        self._threshold = threshold
        self._debounce_ms = debounce_ms
        self._restart_delay_ms = restart_delay_ms
        self._restart_max_delay_ms = restart_max_delay_ms
        self._healthy_run_ms = healthy_run_ms
        self._clock_ms = clock_ms

        self._emit: EventSink | None = None
        self._task: asyncio.Task[None] | None = None
        # Survives restarts so a phrase straddling two sessions fires once
        self._last_activation_ms: int | None = None
        self.restarts = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, emit_event: EventSink) -> None:
        if self.running:
            return
        self._emit = emit_event
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        task, self._task = self._task, None
        self._emit = None
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------

    def _debounced(self, ts_ms: int) -> bool:
        last = self._last_activation_ms
        return last is not None and ts_ms - last < self._debounce_ms

    async def _run(self) -> None:
        me = asyncio.current_task()
        delay_ms = self._restart_delay_ms

        while self._task is me:
            started = self._clock_ms()
            try:
                async with aclosing(self._engine.listen()) as transcripts:
                    async for transcript in transcripts:
                        await self._on_transcript(me, transcript)
            except SpeechEngineError as exc:
                await self._on_engine_error(me, exc)

            if self._task is not me:
                return

            if self._clock_ms() - started >= self._healthy_run_ms:
                delay_ms = self._restart_delay_ms

            log_event({
                "ts_ms": self._clock_ms(),
                "event_type": "wake_listener_restart",
                "level": "debug",
                "delay_ms": delay_ms,
                "restarts": self.restarts,
            })
            await asyncio.sleep(delay_ms / 1000.0)
            self.restarts += 1
            delay_ms = min(delay_ms * 2, self._restart_max_delay_ms)

    async def _on_transcript(self, me: asyncio.Task[None] | None, transcript: str) -> None:
        ts = self._clock_ms()
        phrase = matches_wake_phrase(transcript, self._phrases, self._threshold)
        if phrase is None or self._debounced(ts):
            return

        self._last_activation_ms = ts
        emit = self._emit
        if self._task is not me or emit is None:
            return
        log_event({
            "ts_ms": ts,
            "event_type": "wake_phrase_matched",
            "phrase": phrase,
            "transcript": transcript,
        })
        await emit(
            WakePhraseHeard(event_type=EventType.WAKE_PHRASE_HEARD, ts_ms=ts, transcript=transcript)
        )

    async def _on_engine_error(self, me: asyncio.Task[None] | None, exc: SpeechEngineError) -> None:
        log_event({
            "ts_ms": self._clock_ms(),
            "event_type": "wake_engine_error",
            "level": "warning",
            "reason": exc.reason,
        })
        emit = self._emit
        if self._task is not me or emit is None:
            return
        await emit(
            MonitorFailed(
                event_type=EventType.MONITOR_FAILED,
                ts_ms=self._clock_ms(),
                monitor=self.monitor,
                reason=exc.reason,
            )
        )
