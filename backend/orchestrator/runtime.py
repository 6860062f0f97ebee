"""
Runtime execution shell for one voice surface.

Responsibilities:
- Own orchestrator state
- Serialize events through a FIFO mailbox and call the pure reducer
- Execute commands with side effects (monitors, transport, tools,
  persistence, timers)
- Convert timer expiry and tool completion into events
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping

from orchestrator.reducer import TIMER_STARTUP_GRACE, display_state_of, reduce
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
from orchestrator.enums.state import DisplayState
from orchestrator.events import (
    AcknowledgeTimeout,
    Event,
    EventType,
    StartupGraceElapsed,
    SurfaceTeardown,
    ToolCallCompleted,
    TransportOpened,
    TransportOpenFailed,
)
from orchestrator.runtime_context import (
    AgentTransport,
    HouseholdStore,
    LocalMonitor,
    TransportError,
    TransportHandle,
)
from orchestrator.state_dataclass import OrchestratorState

from observability.logger import log_event, now_ms
from observability.metrics import timed

from constants import PERSIST_QUEUE_MAX, STARTUP_GRACE_MS, TRANSPORT_OPEN_TIMEOUT_S

if TYPE_CHECKING:
    from agent_tools.registry import ToolRegistry
    from context.feed import ContextFeed


StateObserver = Callable[[OrchestratorState], None]
NoticeSink = Callable[[NotifyUser], None]
CueSink = Callable[[str], None]

_TIMEOUT_EVENTS: dict[EventType, type[Event]] = {
    EventType.STARTUP_GRACE_ELAPSED: StartupGraceElapsed,
    EventType.ACKNOWLEDGE_TIMEOUT: AcknowledgeTimeout,
}


def _new_session_id() -> str:
    return uuid.uuid4().hex


class Runtime:
    """
    Runtime execution boundary for one voice surface.

    Guarantees:
    - Reducer is called exactly once per incoming event
    - Events are processed one at a time in arrival order; events that
      arrive while a step executes are queued, never dropped or interleaved
    - All side effects of a step occur after its state swap
    - Every command of a step runs even if an earlier one raised
    - Timers, tool tasks and collaborators re-enter through handle_event()

    The mailbox is drained by a runtime-owned task so that a collaborator
    whose own task is cancelled by a step (a monitor being stopped, a timer
    being cancelled) never aborts that step.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        *,
        transport: AgentTransport,
        monitors: Mapping[Monitor, LocalMonitor],
        registry: ToolRegistry,
        context_feed: ContextFeed,
        store: HouseholdStore,
        initial_state: OrchestratorState | None = None,
        on_state: StateObserver | None = None,
        on_notice: NoticeSink | None = None,
        on_cue: CueSink | None = None,
        session_id_factory: Callable[[], str] = _new_session_id,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self._state = initial_state or OrchestratorState()
        self._transport = transport
        self._monitors = dict(monitors)
        self._registry = registry
        self._feed = context_feed
        self._store = store
        self._on_state = on_state
        self._on_notice = on_notice
        self._on_cue = on_cue
        self._new_session_id = session_id_factory
        self._clock_ms = clock_ms

        self._mailbox: deque[Event] = deque()
        self._drain_task: asyncio.Task[None] | None = None

        self._handle: TransportHandle | None = None
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._tool_tasks: set[asyncio.Task[None]] = set()

        self._persist_q: asyncio.Queue[Callable[[], Awaitable[None]]] | None = None
        self._persist_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        """Current immutable orchestrator state. Replaced only by the reducer."""
        return self._state

    @property
    def display_state(self) -> DisplayState:
        return display_state_of(self._state)

    def input_level(self) -> float:
        handle = self._handle
        return handle.input_level() if handle is not None else 0.0

    def output_level(self) -> float:
        handle = self._handle
        return handle.output_level() if handle is not None else 0.0

    def is_agent_speaking(self) -> bool:
        session = self._state.session
        return bool(session and session.is_agent_speaking)

    async def send_user_audio(self, pcm_bytes: bytes) -> None:
        """Forward mic audio into the open session, if any."""
        handle = self._handle
        if handle is None:
            return
        try:
            await handle.send_user_audio(pcm_bytes)
        except TransportError as exc:
            log_event({
                "ts_ms": self._clock_ms(),
                "event_type": "user_audio_send_failed",
                "level": "debug",
                "session_id": handle.session_id,
                "error": str(exc),
            })

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arm the startup grace timer (IDLE -> SLEEPING)."""
        self._start_timer(
            timer_id=TIMER_STARTUP_GRACE,
            duration_ms=STARTUP_GRACE_MS,
            timeout_event_type=EventType.STARTUP_GRACE_ELAPSED,
        )

    async def shutdown(self) -> None:
        """
        Tear down: force-end any conversation, then cancel timers and tool
        tasks and flush pending persistence writes.
        """
        await self.handle_event(
            SurfaceTeardown(event_type=EventType.SURFACE_TEARDOWN, ts_ms=self._clock_ms())
        )
        await self.settle()

        for timer_id in list(self._timers):
            self._cancel_timer(timer_id)
        for task in list(self._tool_tasks):
            task.cancel()
        if self._tool_tasks:
            await asyncio.gather(*self._tool_tasks, return_exceptions=True)

        if self._persist_q is not None and self._persist_task is not None:
            try:
                await asyncio.wait_for(self._persist_q.join(), timeout=2.0)
            except asyncio.TimeoutError:
                log_event({
                    "ts_ms": self._clock_ms(),
                    "event_type": "persist_flush_timeout",
                    "level": "warning",
                    "pending": self._persist_q.qsize(),
                })
            self._persist_task.cancel()
            await asyncio.gather(self._persist_task, return_exceptions=True)
            self._persist_task = None

    # ------------------------------------------------------------------
    # Event entry point
    # ------------------------------------------------------------------

    async def handle_event(self, event: Event) -> None:
        """
        Single entry point for every event source.

        Enqueues the event, ensures the mailbox is being drained and waits
        until it is. Calls made from inside a step (collaborators emitting
        synchronously during a command) only enqueue.
        """
        self._mailbox.append(event)

        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())

        if asyncio.current_task() is self._drain_task:
            return
        await asyncio.shield(self._drain_task)

    async def settle(self) -> None:
        """Wait until the mailbox is empty and no step is executing."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    async def _drain(self) -> None:
        while self._mailbox:
            event = self._mailbox.popleft()
            await self._step(event)

    async def _step(self, event: Event) -> None:
        state = self._state
        if not state.next_session_id:
            state = replace(state, next_session_id=self._new_session_id())

        new_state, commands = reduce(state, event)
        self._state = new_state
        self._registry.set_locked(new_state.session is not None)

        for cmd in commands:
            try:
                await self._execute_command(cmd)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": self._clock_ms(),
                    "event_type": "command_failed",
                    "level": "error",
                    "command_type": cmd.command_type.value,
                    "error": repr(exc),
                })

        if self._on_state is not None:
            self._on_state(self._state)

    def _post(self, event: Event) -> None:
        """Enqueue from inside a step without waiting."""
        self._mailbox.append(event)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:  # pylint: disable=too-many-branches
        if isinstance(cmd, LogEvent):
            log_event(cmd.event)

        elif isinstance(cmd, StartMonitor):
            self._monitors[cmd.monitor].start(self.handle_event)

        elif isinstance(cmd, StopMonitor):
            self._monitors[cmd.monitor].stop()

        elif isinstance(cmd, OpenTransport):
            await self._open_transport(cmd.session_id)

        elif isinstance(cmd, CloseTransport):
            handle = self._handle
            if handle is None or handle.session_id != cmd.session_id:
                return
            self._handle = None
            try:
                await handle.close()
            except TransportError as exc:
                self._log_side_effect("transport_close_failed", cmd.session_id, exc)

        elif isinstance(cmd, InterruptAgentTurn):
            handle = self._current_handle(cmd.session_id)
            if handle is not None:
                await handle.interrupt()

        elif isinstance(cmd, SendContextUpdate):
            handle = self._current_handle(cmd.session_id)
            if handle is None:
                return
            try:
                await handle.send_context_update(cmd.text)
            except TransportError as exc:
                self._log_side_effect("context_update_failed", cmd.session_id, exc)

        elif isinstance(cmd, SendToolResult):
            handle = self._current_handle(cmd.session_id)
            if handle is None:
                return
            try:
                await handle.send_tool_result(cmd.call_id, cmd.result)
            except TransportError as exc:
                self._log_side_effect("tool_result_send_failed", cmd.session_id, exc)

        elif isinstance(cmd, DispatchToolCall):
            task = asyncio.create_task(self._run_tool(cmd))
            self._tool_tasks.add(task)
            task.add_done_callback(self._tool_tasks.discard)

        elif isinstance(cmd, StartContextFeed):
            self._feed.start(cmd.session_id, self.handle_event)

        elif isinstance(cmd, StopContextFeed):
            self._feed.stop()

        elif isinstance(cmd, PersistMessage):
            store = self._store
            self._persist(
                lambda: store.append_message(cmd.session_id, cmd.role, cmd.text),
                cmd.session_id,
            )

        elif isinstance(cmd, RecordConversationEvent):
            store = self._store
            self._persist(
                lambda: store.log_event(cmd.session_id, cmd.event_type, cmd.data, cmd.role),
                cmd.session_id,
            )

        elif isinstance(cmd, PlayCue):
            if self._on_cue is not None:
                self._on_cue(cmd.cue)

        elif isinstance(cmd, NotifyUser):
            if self._on_notice is not None:
                self._on_notice(cmd)

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                timeout_event_type=cmd.timeout_event_type,
            )

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        else:
            log_event({
                "ts_ms": self._clock_ms(),
                "event_type": "COMMAND_NOT_HANDLED",
                "level": "warning",
                "command_type": cmd.command_type.value,
            })

    def _current_handle(self, session_id: str) -> TransportHandle | None:
        handle = self._handle
        if handle is None or handle.session_id != session_id:
            return None
        return handle

    def _log_side_effect(self, event_type: str, session_id: str, exc: BaseException) -> None:
        log_event({
            "ts_ms": self._clock_ms(),
            "event_type": event_type,
            "level": "warning",
            "session_id": session_id,
            "error": str(exc),
        })

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _open_transport(self, session_id: str) -> None:
        """
        Await the handshake inside the step. Events the transport emits
        during the handshake are queued behind TransportOpened's result.
        """
        dynamic_variables: dict[str, str] = {}
        try:
            dynamic_variables = await self._feed.dynamic_variables()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_side_effect("dynamic_variables_failed", session_id, exc)

        ts = self._clock_ms()
        try:
            with timed("transport_open", session_id=session_id) as extra:
                handle = await asyncio.wait_for(
                    self._transport.open(
                        session_id=session_id,
                        dynamic_variables=dynamic_variables,
                        emit_event=self.handle_event,
                    ),
                    timeout=TRANSPORT_OPEN_TIMEOUT_S,
                )
                extra["ok"] = True
        except (TransportError, OSError, asyncio.TimeoutError) as exc:
            reason = str(exc) or type(exc).__name__
            self._post(
                TransportOpenFailed(
                    event_type=EventType.TRANSPORT_OPEN_FAILED,
                    ts_ms=ts,
                    session_id=session_id,
                    reason=reason,
                )
            )
            return

        self._handle = handle
        self._post(
            TransportOpened(
                event_type=EventType.TRANSPORT_OPENED,
                ts_ms=self._clock_ms(),
                session_id=session_id,
            )
        )

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    async def _run_tool(self, cmd: DispatchToolCall) -> None:
        started = self._clock_ms()
        with timed(
            "tool_call",
            session_id=cmd.session_id,
            details={"tool": cmd.tool_name, "call_id": cmd.call_id},
        ):
            result = await self._registry.dispatch(cmd.tool_name, cmd.parameters)

        finished = self._clock_ms()
        await self.handle_event(
            ToolCallCompleted(
                event_type=EventType.TOOL_CALL_COMPLETED,
                ts_ms=finished,
                session_id=cmd.session_id,
                call_id=cmd.call_id,
                tool_name=cmd.tool_name,
                result=result,
                duration_ms=finished - started,
            )
        )

    # ------------------------------------------------------------------
    # Persistence (ordered, fire-and-forget)
    # ------------------------------------------------------------------

    def _persist(self, write: Callable[[], Awaitable[None]], session_id: str) -> None:
        if self._persist_q is None:
            self._persist_q = asyncio.Queue(maxsize=PERSIST_QUEUE_MAX)
        if self._persist_task is None or self._persist_task.done():
            self._persist_task = asyncio.create_task(self._persist_writer(self._persist_q))
        try:
            self._persist_q.put_nowait(write)
        except asyncio.QueueFull:
            log_event({
                "ts_ms": self._clock_ms(),
                "event_type": "persist_dropped",
                "level": "warning",
                "session_id": session_id,
                "reason": "queue_full",
            })

    async def _persist_writer(self, queue: asyncio.Queue[Callable[[], Awaitable[None]]]) -> None:
        """Single writer: preserves arrival order across all writes."""
        while True:
            write = await queue.get()
            try:
                await write()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": self._clock_ms(),
                    "event_type": "persist_failed",
                    "level": "warning",
                    "error": repr(exc),
                })
            finally:
                queue.task_done()

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        timeout_event_type: EventType,
    ) -> None:
        """Start or replace a timer; expiry re-enters handle_event()."""
        self._cancel_timer(timer_id)
        event_cls: Any = _TIMEOUT_EVENTS[timeout_event_type]

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
            except asyncio.CancelledError:
                return
            self._timers.pop(timer_id, None)
            await self.handle_event(
                event_cls(event_type=timeout_event_type, ts_ms=self._clock_ms())
            )

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """Idempotent: safe to call even if the timer doesn't exist."""
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done():
            task.cancel()
