"""
Side-effect command definitions for the orchestrator.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from orchestrator.events import EventType
from orchestrator.enums.context_kind import ContextKind
from orchestrator.enums.monitor import Monitor

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging, replay,
    and runtime dispatch.
    """

    # Monitors
    START_MONITOR = "START_MONITOR"
    STOP_MONITOR = "STOP_MONITOR"

    # Transport
    OPEN_TRANSPORT = "OPEN_TRANSPORT"
    CLOSE_TRANSPORT = "CLOSE_TRANSPORT"
    INTERRUPT_AGENT_TURN = "INTERRUPT_AGENT_TURN"
    SEND_CONTEXT_UPDATE = "SEND_CONTEXT_UPDATE"
    SEND_TOOL_RESULT = "SEND_TOOL_RESULT"

    # Tools
    DISPATCH_TOOL_CALL = "DISPATCH_TOOL_CALL"

    # Context feed
    START_CONTEXT_FEED = "START_CONTEXT_FEED"
    STOP_CONTEXT_FEED = "STOP_CONTEXT_FEED"

    # Persistence
    PERSIST_MESSAGE = "PERSIST_MESSAGE"
    RECORD_CONVERSATION_EVENT = "RECORD_CONVERSATION_EVENT"

    # UI
    PLAY_CUE = "PLAY_CUE"
    NOTIFY_USER = "NOTIFY_USER"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Monitor Commands
# =============================================================================

@dataclass(frozen=True)
class StartMonitor(Command):
    """Request to start a local monitor."""
    monitor: Monitor
    command_type: CommandType = CommandType.START_MONITOR


@dataclass(frozen=True)
class StopMonitor(Command):
    """
    Request to stop a local monitor.

    Runtime must execute every StopMonitor even if an earlier one raised.
    """
    monitor: Monitor
    command_type: CommandType = CommandType.STOP_MONITOR


# =============================================================================
# Transport Commands
# =============================================================================

@dataclass(frozen=True)
class OpenTransport(Command):
    """
    Request to open the remote conversation for a locally allocated id.

    The runtime awaits the handshake and emits TransportOpened or
    TransportOpenFailed.
    """
    session_id: str
    command_type: CommandType = CommandType.OPEN_TRANSPORT


@dataclass(frozen=True)
class CloseTransport(Command):
    """Request to close the remote conversation."""
    session_id: str
    command_type: CommandType = CommandType.CLOSE_TRANSPORT


@dataclass(frozen=True)
class InterruptAgentTurn(Command):
    """Cancel the current agent utterance only; the session stays open."""
    session_id: str
    command_type: CommandType = CommandType.INTERRUPT_AGENT_TURN


@dataclass(frozen=True)
class SendContextUpdate(Command):
    """Fire-and-forget context update into the open session."""
    session_id: str
    kind: ContextKind
    text: str
    command_type: CommandType = CommandType.SEND_CONTEXT_UPDATE


@dataclass(frozen=True)
class SendToolResult(Command):
    """Deliver a tool handler's string result back to the agent."""
    session_id: str
    call_id: str
    result: str
    command_type: CommandType = CommandType.SEND_TOOL_RESULT


# =============================================================================
# Tool Commands
# =============================================================================

@dataclass(frozen=True)
class DispatchToolCall(Command):
    """
    Run a registered tool handler.

    The runtime runs the handler as its own task and emits
    ToolCallCompleted; it never awaits the handler inline.
    """
    session_id: str
    call_id: str
    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    command_type: CommandType = CommandType.DISPATCH_TOOL_CALL


# =============================================================================
# Context Feed Commands
# =============================================================================

@dataclass(frozen=True)
class StartContextFeed(Command):
    """Subscribe to household changes and propose the initial snapshot."""
    session_id: str
    command_type: CommandType = CommandType.START_CONTEXT_FEED


@dataclass(frozen=True)
class StopContextFeed(Command):
    """Unsubscribe from household changes."""
    command_type: CommandType = CommandType.STOP_CONTEXT_FEED


# =============================================================================
# Persistence Commands
# =============================================================================

@dataclass(frozen=True)
class PersistMessage(Command):
    """Append one transcript line to conversation history (fire-and-forget)."""
    session_id: str
    role: str
    text: str
    command_type: CommandType = CommandType.PERSIST_MESSAGE


@dataclass(frozen=True)
class RecordConversationEvent(Command):
    """Append one structured event to the per-session conversation log."""
    session_id: str
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)
    role: str | None = None
    command_type: CommandType = CommandType.RECORD_CONVERSATION_EVENT


# =============================================================================
# UI Commands
# =============================================================================

@dataclass(frozen=True)
class PlayCue(Command):
    """Play a short local audio cue."""
    cue: str
    command_type: CommandType = CommandType.PLAY_CUE


@dataclass(frozen=True)
class NotifyUser(Command):
    """Show a user-visible notice (toast)."""
    title: str
    description: str
    variant: str = "default"
    command_type: CommandType = CommandType.NOTIFY_USER


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start a named timer.

    On expiration, the runtime must inject the specified timeout event.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
