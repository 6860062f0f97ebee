# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
"""
In-process fakes for runtime collaborators.

Imported by test modules in this directory (pytest puts it on sys.path).
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Mapping

from orchestrator.events import (
    AgentSpeakingChanged,
    Event,
    EventType,
    MessageReceived,
    ToolCallRequested,
    TransportConnected,
    TransportDisconnected,
)
from orchestrator.runtime_context import EventSink, SpeechEngineError, TransportError


class FakeClock:
    def __init__(self, start_ms: int = 1_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class FakeHandle:
    def __init__(self, session_id: str, emit_event: EventSink) -> None:
        self.session_id = session_id
        self.emit = emit_event
        self.closed = False
        self.context_updates: list[str] = []
        self.tool_results: list[tuple[str, str]] = []
        self.interrupts = 0
        self.audio: list[bytes] = []
        self.in_level = 0.0
        self.out_level = 0.0

    async def close(self) -> None:
        self.closed = True

    async def send_context_update(self, text: str) -> None:
        self.context_updates.append(text)

    async def send_tool_result(self, call_id: str, result: str) -> None:
        self.tool_results.append((call_id, result))

    async def interrupt(self) -> None:
        self.interrupts += 1

    async def send_user_audio(self, pcm_bytes: bytes) -> None:
        self.audio.append(pcm_bytes)

    def input_level(self) -> float:
        return self.in_level

    def output_level(self) -> float:
        return self.out_level

    # -- remote side helpers -------------------------------------------

    async def connected(self, ts_ms: int = 0) -> None:
        await self.emit(TransportConnected(
            event_type=EventType.TRANSPORT_CONNECTED, ts_ms=ts_ms, session_id=self.session_id,
        ))

    async def disconnected(self, ts_ms: int = 0) -> None:
        await self.emit(TransportDisconnected(
            event_type=EventType.TRANSPORT_DISCONNECTED, ts_ms=ts_ms, session_id=self.session_id,
        ))

    async def message(self, source: str, text: str, ts_ms: int = 0) -> None:
        await self.emit(MessageReceived(
            event_type=EventType.MESSAGE_RECEIVED, ts_ms=ts_ms,
            session_id=self.session_id, source=source, text=text,  # type: ignore[arg-type]
        ))

    async def speaking(self, is_speaking: bool, ts_ms: int = 0) -> None:
        await self.emit(AgentSpeakingChanged(
            event_type=EventType.AGENT_SPEAKING_CHANGED, ts_ms=ts_ms,
            session_id=self.session_id, is_speaking=is_speaking,
        ))

    async def tool_call(self, call_id: str, tool_name: str, parameters: dict[str, Any]) -> None:
        await self.emit(ToolCallRequested(
            event_type=EventType.TOOL_CALL_REQUESTED, ts_ms=0,
            session_id=self.session_id, call_id=call_id,
            tool_name=tool_name, parameters=parameters,
        ))


class FakeTransport:
    def __init__(self, *, fail: str | None = None) -> None:
        self.fail = fail
        self.handles: list[FakeHandle] = []
        self.dynamic_variables: list[Mapping[str, str]] = []

    @property
    def handle(self) -> FakeHandle:
        return self.handles[-1]

    async def open(
        self,
        *,
        session_id: str,
        dynamic_variables: Mapping[str, str],
        emit_event: EventSink,
    ) -> FakeHandle:
        self.dynamic_variables.append(dict(dynamic_variables))
        if self.fail is not None:
            raise TransportError(self.fail)
        handle = FakeHandle(session_id, emit_event)
        self.handles.append(handle)
        return handle


class FakeMonitor:
    def __init__(self) -> None:
        self.running = False
        self.starts = 0
        self.stops = 0
        self.emit: EventSink | None = None

    def start(self, emit_event: EventSink) -> None:
        self.running = True
        self.starts += 1
        self.emit = emit_event

    def stop(self) -> None:
        self.running = False
        self.stops += 1
        self.emit = None

    async def fire(self, event: Event) -> None:
        assert self.emit is not None, "monitor is not running"
        await self.emit(event)


class ScriptedSpeechEngine:
    """Each listen() call plays the next script: a list of transcripts or an exception."""

    def __init__(self, scripts: list[list[str] | SpeechEngineError]) -> None:
        self._scripts = list(scripts)
        self.sessions = 0

    async def listen(self) -> AsyncIterator[str]:
        self.sessions += 1
        if not self._scripts:
            await asyncio.Event().wait()
        script = self._scripts.pop(0)
        if isinstance(script, SpeechEngineError):
            raise script
        for transcript in script:
            await asyncio.sleep(0)
            yield transcript


async def wait_until(predicate: Any, timeout_s: float = 1.0) -> None:
    """Yield to the loop until predicate() is true."""
    deadline = asyncio.get_running_loop().time() + timeout_s
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)
