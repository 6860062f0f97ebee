"""
Runtime collaborator protocols.

Narrow capabilities the Runtime needs from the imperative world
(remote agent transport, speech engine, household store, change feed).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- The error taxonomy raised across those seams
- Zero orchestration logic
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Protocol, runtime_checkable

from orchestrator.events import Event


EventSink = Callable[[Event], Awaitable[None]]
LevelProbe = Callable[[], float]
ChangeCallback = Callable[["RowChange"], None]
Unsubscribe = Callable[[], None]


# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------

class TransportError(Exception):
    """Remote agent transport failed (handshake or open session)."""


class MonitorError(Exception):
    """A local monitor could not acquire or read its audio source."""


class SpeechEngineError(Exception):
    """The speech engine failed while producing transcripts."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PersistenceError(Exception):
    """A store write failed. Always logged and swallowed by callers."""


# ---------------------------------------------------------------------
# Agent transport
# ---------------------------------------------------------------------

@runtime_checkable
class TransportHandle(Protocol):
    """
    Live handle onto one open remote conversation.

    Events for the conversation (connected, disconnected, error, message,
    speaking change, tool call, turn end) are delivered through the
    EventSink passed to AgentTransport.open().
    """

    session_id: str

    async def close(self) -> None: ...
    async def send_context_update(self, text: str) -> None: ...
    async def send_tool_result(self, call_id: str, result: str) -> None: ...
    async def interrupt(self) -> None: ...
    async def send_user_audio(self, pcm_bytes: bytes) -> None: ...
    def input_level(self) -> float: ...
    def output_level(self) -> float: ...


@runtime_checkable
class AgentTransport(Protocol):
    async def open(
        self,
        *,
        session_id: str,
        dynamic_variables: Mapping[str, str],
        emit_event: EventSink,
    ) -> TransportHandle:
        """
        Perform the handshake and return a live handle.

        Raises TransportError when the handshake fails.
        """


# ---------------------------------------------------------------------
# Monitors
# ---------------------------------------------------------------------

@runtime_checkable
class LocalMonitor(Protocol):
    """
    Restartable local sensing loop.

    stop() is idempotent, never raises, and no event is emitted after
    it returns.
    """

    @property
    def running(self) -> bool: ...
    def start(self, emit_event: EventSink) -> None: ...
    def stop(self) -> None: ...


# ---------------------------------------------------------------------
# Speech engine
# ---------------------------------------------------------------------

@runtime_checkable
class SpeechEngine(Protocol):
    def listen(self) -> AsyncIterator[str]:
        """
        Yield recognized transcripts.

        The iterator ending means the platform session timed out.
        Failures raise SpeechEngineError.
        """


# ---------------------------------------------------------------------
# Store + change feed
# ---------------------------------------------------------------------

class RowChange(Protocol):
    table: str
    change_type: str  # INSERT | UPDATE | DELETE
    new: Mapping[str, Any] | None
    old: Mapping[str, Any] | None


@runtime_checkable
class ChangeFeed(Protocol):
    def subscribe(
        self,
        table: str,
        filter: Mapping[str, Any],  # pylint: disable=redefined-builtin
        on_change: ChangeCallback,
    ) -> Unsubscribe: ...


@runtime_checkable
class HouseholdStore(Protocol):
    """Generic row access plus the household queries used by tools."""

    async def read(self, entity: str, entity_id: str) -> dict[str, Any] | None: ...
    async def update(self, entity: str, entity_id: str, fields: Mapping[str, Any]) -> None: ...
    async def insert(self, entity: str, row: Mapping[str, Any]) -> dict[str, Any]: ...
    async def select(
        self,
        entity: str,
        where: Mapping[str, Any] | None = None,
        *,
        name_contains: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def append_message(self, session_id: str, role: str, text: str) -> None: ...
    async def log_event(
        self,
        session_id: str,
        event_type: str,
        data: Mapping[str, Any],
        role: str | None = None,
    ) -> None: ...
    async def recent_messages(self, limit: int) -> list[dict[str, Any]]: ...
