# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio

import pytest

from monitors.wake_phrase import (
    WakePhraseListener,
    levenshtein,
    matches_wake_phrase,
    similarity,
)
from orchestrator.enums.monitor import Monitor
from orchestrator.events import Event, MonitorFailed, WakePhraseHeard
from orchestrator.runtime_context import SpeechEngineError

from fakes import FakeClock, ScriptedSpeechEngine, wait_until


PHRASES = ("kaeva", "hey kaeva", "hi kaeva", "ok kaeva")


# ---------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------

def test_levenshtein_basics():
    assert levenshtein("", "") == 0
    assert levenshtein("kaeva", "kaeva") == 0
    assert levenshtein("kaeva", "kava") == 1
    assert levenshtein("kitten", "sitting") == 3


def test_similarity_is_normalized():
    assert similarity("kaeva", "KAEVA") == 1.0
    assert similarity("", "") == 1.0
    assert similarity("abc", "xyz") == 0.0


@pytest.mark.parametrize(
    "transcript",
    ["Kaeva", "hey kaeva what's for dinner", "  OK   Kaeva ", "hey kava", "hi keva"],
)
def test_wake_phrase_matches(transcript: str):
    assert matches_wake_phrase(transcript, PHRASES) is not None


@pytest.mark.parametrize("transcript", ["", "what's the weather", "heavy rain", "okay google"])
def test_wake_phrase_rejects(transcript: str):
    assert matches_wake_phrase(transcript, PHRASES) is None


# ---------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------

def make_listener(engine: ScriptedSpeechEngine, clock: FakeClock, **kwargs) -> WakePhraseListener:
    params = {
        "phrases": PHRASES,
        "restart_delay_ms": 1,
        "restart_max_delay_ms": 4,
        "healthy_run_ms": 10_000,
        "clock_ms": clock,
    }
    params.update(kwargs)
    return WakePhraseListener(engine, **params)


def test_listener_emits_on_match_only():
    clock = FakeClock()
    engine = ScriptedSpeechEngine([["turn on the lights", "hey kaeva"]])
    listener = make_listener(engine, clock)

    async def main() -> list[Event]:
        emitted: list[Event] = []

        async def sink(event: Event) -> None:
            emitted.append(event)

        listener.start(sink)
        await wait_until(lambda: emitted)
        listener.stop()
        return emitted

    emitted = asyncio.run(main())
    assert len(emitted) == 1
    assert isinstance(emitted[0], WakePhraseHeard)
    assert emitted[0].transcript == "hey kaeva"


def test_debounce_persists_across_restarts():
    clock = FakeClock()
    engine = ScriptedSpeechEngine([["kaeva"], ["hey kaeva"]])
    listener = make_listener(engine, clock, debounce_ms=3000)

    async def main() -> list[Event]:
        emitted: list[Event] = []

        async def sink(event: Event) -> None:
            emitted.append(event)

        listener.start(sink)
        # third session blocks forever: both scripted sessions are done
        await wait_until(lambda: engine.sessions >= 3)
        listener.stop()
        return emitted

    emitted = asyncio.run(main())
    assert [e.transcript for e in emitted if isinstance(e, WakePhraseHeard)] == ["kaeva"]


def test_activation_allowed_again_after_debounce_window():
    clock = FakeClock()
    engine = ScriptedSpeechEngine([["kaeva"], ["hey kaeva"]])
    listener = make_listener(engine, clock, debounce_ms=3000)

    async def main() -> list[Event]:
        emitted: list[Event] = []

        async def sink(event: Event) -> None:
            emitted.append(event)
            clock.advance(3000)

        listener.start(sink)
        await wait_until(lambda: engine.sessions >= 3)
        listener.stop()
        return emitted

    emitted = asyncio.run(main())
    assert [e.transcript for e in emitted if isinstance(e, WakePhraseHeard)] == ["kaeva", "hey kaeva"]


def test_listener_restarts_when_session_ends():
    clock = FakeClock()
    engine = ScriptedSpeechEngine([[], [], []])
    listener = make_listener(engine, clock)

    async def main() -> None:
        async def sink(event: Event) -> None:  # pylint: disable=unused-argument
            pass

        listener.start(sink)
        await wait_until(lambda: engine.sessions >= 4)
        assert listener.running
        listener.stop()

    asyncio.run(main())
    assert listener.restarts >= 3
    assert not listener.running


def test_engine_error_reports_and_keeps_restarting():
    clock = FakeClock()
    engine = ScriptedSpeechEngine([SpeechEngineError("network"), ["hey kaeva"]])
    listener = make_listener(engine, clock)

    async def main() -> list[Event]:
        emitted: list[Event] = []

        async def sink(event: Event) -> None:
            emitted.append(event)

        listener.start(sink)
        await wait_until(lambda: len(emitted) >= 2)
        listener.stop()
        return emitted

    emitted = asyncio.run(main())
    assert isinstance(emitted[0], MonitorFailed)
    assert emitted[0].monitor is Monitor.WAKE_PHRASE
    assert emitted[0].reason == "network"
    assert isinstance(emitted[1], WakePhraseHeard)


def test_stop_is_idempotent_and_silences_listener():
    clock = FakeClock()
    engine = ScriptedSpeechEngine([])
    listener = make_listener(engine, clock)
    listener.stop()

    async def main() -> None:
        async def sink(event: Event) -> None:  # pylint: disable=unused-argument
            pass

        listener.start(sink)
        await wait_until(lambda: engine.sessions == 1)
        listener.stop()
        listener.stop()
        await asyncio.sleep(0.01)

    asyncio.run(main())
    assert not listener.running
    assert engine.sessions == 1
