# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
from typing import Any

import pytest

import monitors.base as base_mod
from audio.vad import OnsetDetector, TrailingSilenceDetector
from monitors.amplitude import AmplitudeSampler
from monitors.barge_in import BargeInMonitor
from monitors.voice_activity import VoiceActivityMonitor
from orchestrator.enums.monitor import Monitor
from orchestrator.events import BargeInDetected, Event, MonitorFailed, SilenceReached
from orchestrator.runtime_context import MonitorError

from fakes import FakeClock


class LevelScript:
    """Probe returning scripted levels; advances the clock one poll per read."""

    def __init__(self, levels: list[float], clock: FakeClock, step_ms: int = 50) -> None:
        self._levels = list(levels)
        self._clock = clock
        self._step_ms = step_ms
        self.reads = 0

    def __call__(self) -> float:
        self.reads += 1
        self._clock.advance(self._step_ms)
        if self._levels:
            return self._levels.pop(0)
        return 0.0


async def run_for(monitor: Any, seconds: float = 0.2) -> list[Event]:
    emitted: list[Event] = []

    async def sink(event: Event) -> None:
        emitted.append(event)

    monitor.start(sink)
    await asyncio.sleep(seconds)
    monitor.stop()
    return emitted


# ---------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------

def test_onset_requires_consecutive_polls():
    detector = OnsetDetector(threshold=0.05, polls_required=3)

    assert [detector.observe(x) for x in (0.1, 0.1, 0.0, 0.1, 0.1, 0.1)] == [
        False, False, False, False, False, True,
    ]


def test_trailing_silence_never_fires_without_speech():
    detector = TrailingSilenceDetector(speech_level=0.01, silence_ms=2000)

    assert not detector.observe(0.0, 0)
    assert not detector.observe(0.0, 10_000)
    assert not detector.armed

    assert not detector.observe(0.2, 10_000)
    assert not detector.observe(0.0, 11_999)
    assert detector.observe(0.0, 12_000)


# ---------------------------------------------------------------------
# Voice activity
# ---------------------------------------------------------------------

def test_vad_fires_once_after_speech_then_silence():
    clock = FakeClock(0)
    probe = LevelScript([0.0, 0.0, 0.3, 0.3] + [0.0] * 100, clock, step_ms=100)
    monitor = VoiceActivityMonitor(probe, speech_level=0.01, silence_ms=500, poll_ms=1, clock_ms=clock)

    emitted = asyncio.run(run_for(monitor))

    assert len(emitted) == 1
    assert isinstance(emitted[0], SilenceReached)
    assert not monitor.running


def test_vad_silent_room_never_fires():
    clock = FakeClock(0)
    monitor = VoiceActivityMonitor(
        LevelScript([], clock, step_ms=1000), silence_ms=500, poll_ms=1, clock_ms=clock
    )

    assert asyncio.run(run_for(monitor, 0.05)) == []


# ---------------------------------------------------------------------
# Barge-in
# ---------------------------------------------------------------------

def test_barge_in_needs_three_polls_above_onset():
    clock = FakeClock(0)
    probe = LevelScript([0.2, 0.2, 0.0, 0.2, 0.2, 0.2], clock)
    monitor = BargeInMonitor(probe, onset_level=0.05, polls_required=3, poll_ms=1, clock_ms=clock)

    emitted = asyncio.run(run_for(monitor))

    assert len(emitted) == 1
    assert isinstance(emitted[0], BargeInDetected)
    assert probe.reads == 6


def test_barge_in_ignores_single_spike():
    clock = FakeClock(0)
    probe = LevelScript([0.9, 0.0, 0.9, 0.0], clock)
    monitor = BargeInMonitor(probe, onset_level=0.05, polls_required=3, poll_ms=1, clock_ms=clock)

    assert asyncio.run(run_for(monitor, 0.05)) == []


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------

def test_stop_is_idempotent_and_safe_before_start():
    clock = FakeClock(0)
    monitor = BargeInMonitor(LevelScript([], clock), poll_ms=1, clock_ms=clock)

    monitor.stop()

    async def main() -> None:
        async def sink(event: Event) -> None:  # pylint: disable=unused-argument
            pass

        monitor.start(sink)
        monitor.start(sink)
        assert monitor.running
        monitor.stop()
        monitor.stop()
        await asyncio.sleep(0)
        assert not monitor.running

    asyncio.run(main())


def test_no_event_after_stop():
    clock = FakeClock(0)
    probe = LevelScript([0.2] * 100, clock)
    monitor = BargeInMonitor(probe, polls_required=3, poll_ms=5, clock_ms=clock)

    async def main() -> list[Event]:
        emitted: list[Event] = []

        async def sink(event: Event) -> None:
            emitted.append(event)

        monitor.start(sink)
        monitor.stop()
        await asyncio.sleep(0.05)
        return emitted

    assert asyncio.run(main()) == []


def test_restart_resets_detector_state():
    levels = [0.2, 0.2, 0.2] + [0.0] * 50
    reads = [0]
    monitor = BargeInMonitor(lambda: 0.0, polls_required=3, poll_ms=1)

    def probe() -> float:
        reads[0] += 1
        if reads[0] == 2:
            # Stopped with two onset polls counted
            monitor.stop()
        return levels.pop(0) if levels else 0.0

    monitor._probe = probe  # pylint: disable=protected-access

    async def main() -> list[Event]:
        emitted: list[Event] = []

        async def sink(event: Event) -> None:
            emitted.append(event)

        monitor.start(sink)
        await asyncio.sleep(0.01)
        assert not monitor.running
        monitor.start(sink)
        await asyncio.sleep(0.05)
        monitor.stop()
        return emitted

    assert asyncio.run(main()) == []


def test_probe_failure_reports_monitor_failed(monkeypatch: pytest.MonkeyPatch):
    logged: list[dict[str, Any]] = []
    monkeypatch.setattr(base_mod, "log_event", logged.append)

    def broken() -> float:
        raise OSError("mic unplugged")

    monitor = VoiceActivityMonitor(broken, poll_ms=1)

    emitted = asyncio.run(run_for(monitor, 0.05))

    assert len(emitted) == 1
    assert isinstance(emitted[0], MonitorFailed)
    assert emitted[0].monitor is Monitor.VOICE_ACTIVITY
    assert emitted[0].reason == "mic unplugged"
    assert logged[0]["event_type"] == "monitor_failed"


# ---------------------------------------------------------------------
# Amplitude
# ---------------------------------------------------------------------

def test_amplitude_follows_agent_when_speaking():
    speaking = [False]
    sampler = AmplitudeSampler(
        input_level=lambda: 0.2,
        output_level=lambda: 0.7,
        is_agent_speaking=lambda: speaking[0],
    )

    assert sampler.sample() == 0.2
    speaking[0] = True
    assert sampler.sample() == 0.7


def test_amplitude_is_clamped_and_failures_read_as_zero():
    calls = [0]

    def flaky() -> float:
        calls[0] += 1
        if calls[0] == 2:
            raise RuntimeError("device gone")
        return 3.0

    sampler = AmplitudeSampler(input_level=flaky, output_level=lambda: 0.0, is_agent_speaking=lambda: False)

    assert sampler.sample() == 1.0
    assert sampler.sample() == 0.0
    assert sampler.sample() == 1.0


def test_amplitude_resets_on_stop():
    sampler = AmplitudeSampler(input_level=lambda: 0.5, output_level=lambda: 0.0, is_agent_speaking=lambda: False)

    async def main() -> None:
        async def sink(event: Event) -> None:  # pylint: disable=unused-argument
            pass

        sampler.start(sink)
        await asyncio.sleep(0.01)
        assert sampler.amplitude == 0.5
        sampler.stop()
        sampler.stop()

    asyncio.run(main())
    assert sampler.amplitude == 0.0
    assert not sampler.running


def test_probe_monitor_error_reason_is_reported_as_is(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(base_mod, "log_event", lambda event: None)

    def busy() -> float:
        raise MonitorError("input device busy")

    monitor = BargeInMonitor(busy, poll_ms=1)

    emitted = asyncio.run(run_for(monitor, 0.05))

    assert len(emitted) == 1
    assert isinstance(emitted[0], MonitorFailed)
    assert emitted[0].monitor is Monitor.BARGE_IN
    assert emitted[0].reason == "input device busy"
