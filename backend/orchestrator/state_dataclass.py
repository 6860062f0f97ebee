"""
Authoritative orchestrator state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from orchestrator.enums.monitor import Monitor
from orchestrator.enums.session_status import SessionStatus
from orchestrator.enums.state import State


# =============================================================================
# Transcript
# =============================================================================

@dataclass(frozen=True)
class TranscriptLine:
    """Single transcript line, in arrival order."""
    role: Literal["user", "agent"]
    text: str
    ts_ms: int


# =============================================================================
# Conversation session
# =============================================================================

@dataclass(frozen=True)
class ConversationSession:
    """
    The single open remote session.

    session_id is allocated locally before the handshake so that logs and
    events correlate even when the handshake fails.
    """
    session_id: str
    status: SessionStatus = SessionStatus.CONNECTING
    is_agent_speaking: bool = False


# =============================================================================
# Orchestrator State
# =============================================================================

@dataclass(frozen=True)
class OrchestratorState:
    """Immutable snapshot of all orchestrator-owned state."""

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    state: State = State.IDLE

    # Presentation only: ACKNOWLEDGED refinement of PROCESSING
    acknowledged: bool = False

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    session: ConversationSession | None = None

    # Next id to allocate; supplied by the runtime (reducer stays pure)
    next_session_id: str = ""

    # ------------------------------------------------------------------
    # Monitors believed running (after StartMonitor / before StopMonitor)
    # ------------------------------------------------------------------
    active_monitors: frozenset[Monitor] = frozenset()

    # ------------------------------------------------------------------
    # Transcript
    # ------------------------------------------------------------------
    transcript: tuple[TranscriptLine, ...] = ()
    last_user_text: str = ""
    last_agent_text: str = ""

    # ------------------------------------------------------------------
    # Context throttling
    # ------------------------------------------------------------------
    last_context_emitted_ms: int | None = None

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------
    pending_tool_calls: frozenset[str] = frozenset()

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None
