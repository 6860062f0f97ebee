"""
Unified event definitions for the orchestrator reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Every collaborator callback (transport, monitors, change feed, timers,
public API calls) is translated into one of these events at its boundary
and fed into the runtime mailbox.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from orchestrator.enums.context_kind import ContextKind
from orchestrator.enums.monitor import Monitor


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Surface lifecycle
    # ------------------------------------------------------------------
    STARTUP_GRACE_ELAPSED = "STARTUP_GRACE_ELAPSED"
    SURFACE_TEARDOWN = "SURFACE_TEARDOWN"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    START_CONVERSATION = "START_CONVERSATION"
    END_CONVERSATION = "END_CONVERSATION"

    # ------------------------------------------------------------------
    # Monitors
    # ------------------------------------------------------------------
    WAKE_PHRASE_HEARD = "WAKE_PHRASE_HEARD"
    SILENCE_REACHED = "SILENCE_REACHED"
    BARGE_IN = "BARGE_IN"
    MONITOR_FAILED = "MONITOR_FAILED"

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    TRANSPORT_OPENED = "TRANSPORT_OPENED"
    TRANSPORT_OPEN_FAILED = "TRANSPORT_OPEN_FAILED"
    TRANSPORT_CONNECTED = "TRANSPORT_CONNECTED"
    TRANSPORT_DISCONNECTED = "TRANSPORT_DISCONNECTED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    TURN_ENDED = "TURN_ENDED"
    AGENT_SPEAKING_CHANGED = "AGENT_SPEAKING_CHANGED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------
    TOOL_CALL_REQUESTED = "TOOL_CALL_REQUESTED"
    TOOL_CALL_COMPLETED = "TOOL_CALL_COMPLETED"

    # ------------------------------------------------------------------
    # Context feed
    # ------------------------------------------------------------------
    CONTEXT_PROPOSED = "CONTEXT_PROPOSED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    ACKNOWLEDGE_TIMEOUT = "ACKNOWLEDGE_TIMEOUT"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class SessionScopedEvent(Event):
    """
    Base class for events produced on behalf of one ConversationSession.

    The reducer MUST ignore events whose session_id does not match the
    currently open session (late callbacks from a closed transport).
    """

    session_id: str


# =============================================================================
# Surface lifecycle
# =============================================================================

@dataclass(frozen=True)
class StartupGraceElapsed(Event):
    """Startup grace delay elapsed; the surface may start sleeping."""


@dataclass(frozen=True)
class SurfaceTeardown(Event):
    """The voice surface is being destroyed (app shutdown / unmount)."""


# =============================================================================
# Public API
# =============================================================================

@dataclass(frozen=True)
class StartConversation(Event):
    """Caller asked to open a conversation without a wake phrase."""


@dataclass(frozen=True)
class EndConversation(Event):
    """Caller (or the agent via a tool) asked to end the conversation."""
    reason: str = "explicit"


# =============================================================================
# Monitor events
# =============================================================================

@dataclass(frozen=True)
class WakePhraseHeard(Event):
    """Wake listener matched a configured phrase."""
    transcript: str


@dataclass(frozen=True)
class SilenceReached(Event):
    """Voice activity monitor observed the trailing-silence threshold."""


@dataclass(frozen=True)
class BargeInDetected(Event):
    """Barge-in monitor observed local speech onset while the agent spoke."""


@dataclass(frozen=True)
class MonitorFailed(Event):
    """
    A monitor could not run (audio device or recognition failure).

    Contained at its origin: never forces a transition.
    """
    monitor: Monitor
    reason: str


# =============================================================================
# Transport events
# =============================================================================

@dataclass(frozen=True)
class TransportOpened(SessionScopedEvent):
    """Transport handshake returned a live handle."""


@dataclass(frozen=True)
class TransportOpenFailed(SessionScopedEvent):
    """Transport handshake failed before a handle existed."""
    reason: str


@dataclass(frozen=True)
class TransportConnected(SessionScopedEvent):
    """Remote service confirmed the conversation."""


@dataclass(frozen=True)
class TransportDisconnected(SessionScopedEvent):
    """Remote service closed the conversation."""
    reason: str | None = None


@dataclass(frozen=True)
class TransportError(SessionScopedEvent):
    """Unrecoverable transport failure on an open session."""
    reason: str


@dataclass(frozen=True)
class TurnEnded(SessionScopedEvent):
    """Transport signalled that the user turn is complete."""


@dataclass(frozen=True)
class AgentSpeakingChanged(SessionScopedEvent):
    """Agent playback started or stopped."""
    is_speaking: bool


@dataclass(frozen=True)
class MessageReceived(SessionScopedEvent):
    """
    A finalized transcript line.

    source:
        "user" for the user's recognized utterance,
        "agent" for the agent's response text.
    """
    source: Literal["user", "agent"]
    text: str


# =============================================================================
# Tool events
# =============================================================================

@dataclass(frozen=True)
class ToolCallRequested(SessionScopedEvent):
    """The remote agent invoked a client tool."""
    call_id: str
    tool_name: str
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallCompleted(SessionScopedEvent):
    """A tool handler produced its string result."""
    call_id: str
    tool_name: str
    result: str
    duration_ms: int = 0


# =============================================================================
# Context feed
# =============================================================================

@dataclass(frozen=True)
class ContextProposed(Event):
    """
    The context feed proposes an out-of-band context update.

    The reducer decides whether it is forwarded (throttle + status).
    """
    kind: ContextKind
    text: str


# =============================================================================
# Timers
# =============================================================================

@dataclass(frozen=True)
class AcknowledgeTimeout(Event):
    """ACKNOWLEDGED presentation delay elapsed."""
