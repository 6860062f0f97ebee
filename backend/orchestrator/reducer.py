"""
Pure orchestrator reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

# Reducer owns monitor lifecycles; runtime must not start or stop a
# monitor except through StartMonitor / StopMonitor.

from __future__ import annotations

from dataclasses import replace
from typing import Any

from orchestrator.commands import (
    CancelTimer,
    CloseTransport,
    Command,
    DispatchToolCall,
    InterruptAgentTurn,
    LogEvent,
    NotifyUser,
    OpenTransport,
    PersistMessage,
    PlayCue,
    RecordConversationEvent,
    SendContextUpdate,
    SendToolResult,
    StartContextFeed,
    StartMonitor,
    StartTimer,
    StopContextFeed,
    StopMonitor,
)
from orchestrator.enums.monitor import Monitor
from orchestrator.enums.session_status import SessionStatus
from orchestrator.enums.state import DisplayState, State
from orchestrator.events import (
    AcknowledgeTimeout,
    AgentSpeakingChanged,
    BargeInDetected,
    ContextProposed,
    EndConversation,
    Event,
    EventType,
    MessageReceived,
    MonitorFailed,
    SessionScopedEvent,
    SilenceReached,
    StartConversation,
    StartupGraceElapsed,
    SurfaceTeardown,
    ToolCallCompleted,
    ToolCallRequested,
    TransportConnected,
    TransportDisconnected,
    TransportError,
    TransportOpened,
    TransportOpenFailed,
    TurnEnded,
    WakePhraseHeard,
)
from orchestrator.state_dataclass import (
    ConversationSession,
    OrchestratorState,
    TranscriptLine,
)
from constants import ACKNOWLEDGE_REVERT_MS, CONTEXT_THROTTLE_MS


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_STARTUP_GRACE = "startup_grace"
TIMER_ACKNOWLEDGE = "acknowledge_revert"

CUE_WAKE = "wake"

# Stop order used on teardown; every monitor is stopped unconditionally
ALL_MONITORS: tuple[Monitor, ...] = (
    Monitor.WAKE_PHRASE,
    Monitor.VOICE_ACTIVITY,
    Monitor.BARGE_IN,
    Monitor.AMPLITUDE,
)


# =============================================================================
# Monitor invariant
# =============================================================================

_MONITORS_BY_STATE: dict[State, frozenset[Monitor]] = {
    State.IDLE: frozenset(),
    State.SLEEPING: frozenset({Monitor.WAKE_PHRASE}),
    State.LISTENING: frozenset({Monitor.VOICE_ACTIVITY, Monitor.AMPLITUDE}),
    State.PROCESSING: frozenset({Monitor.AMPLITUDE}),
    State.SPEAKING: frozenset({Monitor.BARGE_IN, Monitor.AMPLITUDE}),
}


def monitors_for_state(state: State) -> frozenset[Monitor]:
    """
    The exact set of monitors that must be running in a control state.

    Wake listener only while SLEEPING, voice activity only while LISTENING,
    barge-in only while SPEAKING, amplitude whenever a session is open.
    """
    return _MONITORS_BY_STATE[state]


def display_state_of(state: OrchestratorState) -> DisplayState:
    """Presentation state; ACKNOWLEDGED only refines PROCESSING."""
    if state.state is State.PROCESSING and state.acknowledged:
        return DisplayState.ACKNOWLEDGED
    return DisplayState(state.state.value)


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: OrchestratorState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    session = state.session
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "state": state.state.value,
            "event_type": event.event_type.value,
            "decision": decision,
            "session_id": session.session_id if session else None,
            "session_status": session.status.value if session else None,
            "active_monitors": sorted(m.value for m in state.active_monitors),
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(
    state: OrchestratorState, event: Event, reason: str
) -> tuple[OrchestratorState, tuple[Command, ...]]:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _transition(
    state: OrchestratorState,
    event: Event,
    new_state: OrchestratorState,
    source: str,
    effects: tuple[Command, ...] = (),
) -> tuple[OrchestratorState, tuple[Command, ...]]:
    """
    Move to new_state and reconcile monitors against the state invariant.

    Command order: stop monitors that must not run, then effects, then
    start monitors that must run.
    """
    desired = monitors_for_state(new_state.state)
    to_stop = [m for m in ALL_MONITORS if m in state.active_monitors and m not in desired]
    to_start = [m for m in ALL_MONITORS if m in desired and m not in state.active_monitors]

    new_state = replace(new_state, active_monitors=desired)

    cmds: list[Command] = [StopMonitor(monitor=m) for m in to_stop]
    cmds.extend(effects)
    cmds.extend(StartMonitor(monitor=m) for m in to_start)

    if new_state.state is not state.state:
        cmds.append(
            _log(
                new_state,
                event,
                "state_changed",
                {
                    "from_state": state.state.value,
                    "to_state": new_state.state.value,
                    "source": source,
                },
            )
        )

    return new_state, _logs_last(tuple(cmds))


def _open_session(
    state: OrchestratorState,
    event: Event,
    source: str,
    cue: bool,
) -> tuple[OrchestratorState, tuple[Command, ...]]:
    session_id = state.next_session_id
    session = ConversationSession(session_id=session_id)
    new_state = replace(
        state,
        state=State.LISTENING,
        session=session,
        next_session_id="",
        acknowledged=False,
        last_context_emitted_ms=None,
        last_error=None,
        pending_tool_calls=frozenset(),
    )

    effects: list[Command] = []
    if cue:
        effects.append(PlayCue(cue=CUE_WAKE))
    effects.append(OpenTransport(session_id=session_id))
    effects.append(_log(new_state, event, "session_opening", {"source": source}))

    return _transition(state, event, new_state, source, tuple(effects))


def _teardown(
    state: OrchestratorState,
    event: Event,
    source: str,
    to_state: State = State.SLEEPING,
    notice: NotifyUser | None = None,
) -> tuple[OrchestratorState, tuple[Command, ...]]:
    """
    Single teardown path: stop every monitor, close the session, clear
    transient data, then (unless going IDLE) restart the wake listener.
    """
    cmds: list[Command] = [StopMonitor(monitor=m) for m in ALL_MONITORS]

    cmds.append(CancelTimer(timer_id=TIMER_ACKNOWLEDGE))
    if state.state is State.IDLE:
        cmds.append(CancelTimer(timer_id=TIMER_STARTUP_GRACE))

    session = state.session
    if session is not None:
        cmds.append(StopContextFeed())
        cmds.append(CloseTransport(session_id=session.session_id))
        cmds.append(
            RecordConversationEvent(
                session_id=session.session_id,
                event_type="session_end",
                data={"reason": source},
            )
        )

    if notice is not None:
        cmds.append(notice)

    new_state = replace(
        state,
        state=to_state,
        session=None,
        acknowledged=False,
        active_monitors=monitors_for_state(to_state),
        transcript=(),
        last_user_text="",
        last_agent_text="",
        pending_tool_calls=frozenset(),
        last_error=notice.description if notice is not None else state.last_error,
    )

    cmds.extend(StartMonitor(monitor=m) for m in ALL_MONITORS if m in new_state.active_monitors)

    cmds.append(
        _log(
            new_state,
            event,
            "teardown",
            {
                "source": source,
                "closed_session_id": session.session_id if session else None,
            },
        )
    )
    cmds.append(
        _log(
            new_state,
            event,
            "state_changed",
            {
                "from_state": state.state.value,
                "to_state": new_state.state.value,
                "source": source,
            },
        )
    )
    return new_state, _logs_last(tuple(cmds))


def _is_stale(state: OrchestratorState, event: SessionScopedEvent) -> bool:
    return state.session is None or state.session.session_id != event.session_id


# =============================================================================
# Reducer
# =============================================================================

def reduce(  # pylint: disable=too-many-return-statements,too-many-branches
    state: OrchestratorState, event: Event
) -> tuple[OrchestratorState, tuple[Command, ...]]:
    """
    Pure reducer for the voice surface state machine.

    Given the current orchestrator state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Session-safe: ignores session-scoped events for a closed session
    """

    # ------------------------------------------------------------------
    # Surface lifecycle
    # ------------------------------------------------------------------
    if isinstance(event, SurfaceTeardown):
        return _teardown(state, event, "surface_teardown", to_state=State.IDLE)

    if isinstance(event, StartupGraceElapsed):
        if state.state is not State.IDLE:
            return _ignore(state, event, "not_idle")
        return _transition(
            state, event, replace(state, state=State.SLEEPING), "startup_grace"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    if isinstance(event, EndConversation):
        return _teardown(state, event, event.reason)

    if isinstance(event, StartConversation):
        if state.session is not None or state.state not in (State.IDLE, State.SLEEPING):
            return _ignore(state, event, "session_already_open")
        cmds_state, cmds = _open_session(state, event, "start_conversation", cue=False)
        if state.state is State.IDLE:
            cmds = (CancelTimer(timer_id=TIMER_STARTUP_GRACE),) + cmds
        return cmds_state, cmds

    # ------------------------------------------------------------------
    # Monitors
    # ------------------------------------------------------------------
    if isinstance(event, WakePhraseHeard):
        if state.state is not State.SLEEPING:
            return _ignore(state, event, "not_sleeping")
        return _open_session(state, event, "wake_phrase", cue=True)

    if isinstance(event, SilenceReached):
        if state.state is not State.LISTENING:
            return _ignore(state, event, "not_listening")
        return _transition(
            state, event, replace(state, state=State.PROCESSING), "silence"
        )

    if isinstance(event, BargeInDetected):
        if state.state is not State.SPEAKING or state.session is None:
            return _ignore(state, event, "not_speaking")
        session = state.session
        new_state = replace(
            state,
            state=State.LISTENING,
            session=replace(session, is_agent_speaking=False),
        )
        return _transition(
            state,
            event,
            new_state,
            "barge_in",
            (InterruptAgentTurn(session_id=session.session_id),),
        )

    if isinstance(event, MonitorFailed):
        cmds: list[Command] = [
            _log(state, event, "monitor_failed", {"monitor": event.monitor.value, "reason": event.reason})
        ]
        if event.monitor in (Monitor.VOICE_ACTIVITY, Monitor.BARGE_IN):
            cmds.insert(
                0,
                NotifyUser(
                    title="Voice detection unavailable",
                    description=f"{event.monitor.value.lower()} monitor failed: {event.reason}",
                    variant="destructive",
                ),
            )
        return replace(state, last_error=event.reason), tuple(cmds)

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    if isinstance(event, AcknowledgeTimeout):
        if not state.acknowledged:
            return _ignore(state, event, "not_acknowledged")
        new_state = replace(state, acknowledged=False)
        return new_state, (_log(new_state, event, "acknowledge_reverted"),)

    # ------------------------------------------------------------------
    # Context feed
    # ------------------------------------------------------------------
    if isinstance(event, ContextProposed):
        session = state.session
        if session is None or session.status is not SessionStatus.CONNECTED:
            return _ignore(state, event, "session_not_connected")
        last = state.last_context_emitted_ms
        if last is not None and event.ts_ms - last < CONTEXT_THROTTLE_MS:
            return _ignore(state, event, "context_throttled")
        new_state = replace(state, last_context_emitted_ms=event.ts_ms)
        return new_state, (
            SendContextUpdate(session_id=session.session_id, kind=event.kind, text=event.text),
            _log(new_state, event, "context_forwarded", {"kind": event.kind.value, "chars": len(event.text)}),
        )

    # ------------------------------------------------------------------
    # Session-scoped events: stale sessions are dropped
    # ------------------------------------------------------------------
    if isinstance(event, SessionScopedEvent):
        if _is_stale(state, event):
            return _ignore(state, event, "stale_session")
        return _reduce_session_event(state, event)

    return _ignore(state, event, "unhandled_event")


def _reduce_session_event(  # pylint: disable=too-many-return-statements
    state: OrchestratorState, event: SessionScopedEvent
) -> tuple[OrchestratorState, tuple[Command, ...]]:
    session = state.session
    assert session is not None

    if isinstance(event, TransportOpened):
        return state, (_log(state, event, "transport_opened"),)

    if isinstance(event, TransportOpenFailed):
        return _teardown(
            state,
            event,
            "transport_open_failed",
            notice=NotifyUser(
                title="Connection Error",
                description=f"Could not start a conversation: {event.reason}",
                variant="destructive",
            ),
        )

    if isinstance(event, TransportConnected):
        new_state = replace(state, session=replace(session, status=SessionStatus.CONNECTED))
        return new_state, (
            StartContextFeed(session_id=session.session_id),
            RecordConversationEvent(session_id=session.session_id, event_type="session_start"),
            _log(new_state, event, "transport_connected"),
        )

    if isinstance(event, TransportDisconnected):
        return _teardown(state, event, "transport_disconnected")

    if isinstance(event, TransportError):
        return _teardown(
            state,
            event,
            "transport_error",
            notice=NotifyUser(
                title="Connection Error",
                description="Voice connection failed. Please try again.",
                variant="destructive",
            ),
        )

    if isinstance(event, TurnEnded):
        if state.state is not State.LISTENING:
            return _ignore(state, event, "not_listening")
        return _transition(
            state, event, replace(state, state=State.PROCESSING), "turn_ended"
        )

    if isinstance(event, AgentSpeakingChanged):
        return _reduce_agent_speaking(state, event, session)

    if isinstance(event, MessageReceived):
        return _reduce_message(state, event, session)

    if isinstance(event, ToolCallRequested):
        new_state = replace(
            state, pending_tool_calls=state.pending_tool_calls | {event.call_id}
        )
        return new_state, (
            DispatchToolCall(
                session_id=session.session_id,
                call_id=event.call_id,
                tool_name=event.tool_name,
                parameters=dict(event.parameters),
            ),
            _log(new_state, event, "tool_dispatched", {"tool": event.tool_name, "call_id": event.call_id}),
        )

    if isinstance(event, ToolCallCompleted):
        new_state = replace(
            state, pending_tool_calls=state.pending_tool_calls - {event.call_id}
        )
        return new_state, (
            SendToolResult(session_id=session.session_id, call_id=event.call_id, result=event.result),
            RecordConversationEvent(
                session_id=session.session_id,
                event_type="tool_call",
                data={
                    "tool": event.tool_name,
                    "call_id": event.call_id,
                    "result": event.result,
                    "duration_ms": event.duration_ms,
                },
                role="agent",
            ),
            _log(
                new_state,
                event,
                "tool_completed",
                {"tool": event.tool_name, "call_id": event.call_id, "duration_ms": event.duration_ms},
            ),
        )

    return _ignore(state, event, "unhandled_session_event")


def _reduce_agent_speaking(
    state: OrchestratorState,
    event: AgentSpeakingChanged,
    session: ConversationSession,
) -> tuple[OrchestratorState, tuple[Command, ...]]:
    updated = replace(state, session=replace(session, is_agent_speaking=event.is_speaking))

    if event.is_speaking and state.state in (State.LISTENING, State.PROCESSING):
        return _transition(
            state,
            event,
            replace(updated, state=State.SPEAKING, acknowledged=False),
            "agent_speaking",
            (CancelTimer(timer_id=TIMER_ACKNOWLEDGE),),
        )

    if not event.is_speaking and state.state is State.SPEAKING:
        return _transition(
            state, event, replace(updated, state=State.LISTENING), "agent_done"
        )

    return updated, (
        _log(updated, event, "agent_speaking_flag", {"is_speaking": event.is_speaking}),
    )


def _reduce_message(
    state: OrchestratorState,
    event: MessageReceived,
    session: ConversationSession,
) -> tuple[OrchestratorState, tuple[Command, ...]]:
    text = event.text.strip()
    if not text:
        return _ignore(state, event, "empty_message")

    line = TranscriptLine(role=event.source, text=text, ts_ms=event.ts_ms)
    new_state = replace(state, transcript=state.transcript + (line,))

    cmds: list[Command] = [
        PersistMessage(session_id=session.session_id, role=event.source, text=text),
        RecordConversationEvent(
            session_id=session.session_id,
            event_type="message",
            data={"text": text},
            role=event.source,
        ),
    ]

    if event.source == "user":
        new_state = replace(new_state, last_user_text=text)
        if new_state.state is State.PROCESSING:
            new_state = replace(new_state, acknowledged=True)
            cmds.append(CancelTimer(timer_id=TIMER_ACKNOWLEDGE))
            cmds.append(
                StartTimer(
                    timer_id=TIMER_ACKNOWLEDGE,
                    duration_ms=ACKNOWLEDGE_REVERT_MS,
                    timeout_event_type=EventType.ACKNOWLEDGE_TIMEOUT,
                )
            )
    else:
        new_state = replace(new_state, last_agent_text=text)

    cmds.append(_log(new_state, event, "message_received", {"source": event.source, "chars": len(text)}))
    return new_state, tuple(cmds)
