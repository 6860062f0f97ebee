"""
Voice surface: the public facade over one orchestrator.

Responsibilities:
- Construct and wire the runtime, monitors, tool registry, household
  tools and context feed for one device
- Translate public calls (start/end conversation, tool registration,
  mic audio) into runtime events
- Mirror state, notices, cues and agent audio to connected UI sockets

Not responsible for:
- Any state machine logic (reducer)
- Executing commands (runtime)
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Mapping, Sequence

from adapters.agent.elevenlabs_ws import ElevenLabsTransport
from adapters.speech.deepgram_listen import DeepgramSpeechEngine
from agent_tools.household import register_household_tools
from agent_tools.registry import ParamSpec, Tool, ToolHandler, ToolRegistry
from audio.frames import AudioFrame
from audio.queues import MicHub
from context.feed import ContextFeed
from monitors.amplitude import AmplitudeSampler
from monitors.barge_in import BargeInMonitor
from monitors.voice_activity import VoiceActivityMonitor
from monitors.wake_phrase import WakePhraseListener
from orchestrator.commands import NotifyUser
from orchestrator.enums.monitor import Monitor
from orchestrator.enums.state import DisplayState, State
from orchestrator.events import EndConversation, EventType, StartConversation
from orchestrator.runtime import Runtime
from orchestrator.runtime_context import (
    AgentTransport,
    ChangeFeed,
    EventSink,
    HouseholdStore,
    SpeechEngine,
    TransportError,
    TransportHandle,
)
from orchestrator.state_dataclass import OrchestratorState, TranscriptLine
from services.household_service import HouseholdService, MealAnalyzer, RecipeSource
from session.ui_channel import UiChannel
from store.memory import InMemoryChangeFeed, InMemoryHouseholdStore

from observability.logger import log_event, now_ms
from config import AppConfig
from constants import (
    AGENT_END_CONVERSATION_DELAY_MS,
    BARGE_IN_ONSET_LEVEL,
    VAD_SPEECH_LEVEL,
    WAKE_PHRASES_DEFAULT,
    WAKE_SIMILARITY_THRESHOLD,
)


class UnconfiguredTransport:
    """Agent transport used when no provider credentials are configured."""

    def __init__(self, reason: str) -> None:
        self._reason = reason

    async def open(  # pylint: disable=unused-argument
        self,
        *,
        session_id: str,
        dynamic_variables: Mapping[str, str],
        emit_event: EventSink,
    ) -> TransportHandle:
        raise TransportError(self._reason)


class IdleSpeechEngine:
    """Speech engine that never hears anything (no recognizer configured)."""

    async def listen(self) -> AsyncIterator[str]:
        await asyncio.Event().wait()
        yield ""  # pragma: no cover


class VoiceSurface:  # pylint: disable=too-many-instance-attributes
    """
    One voice surface == one orchestrator == at most one open conversation.

    Lifecycle: start() arms the startup grace delay (IDLE -> SLEEPING);
    shutdown() forces end_conversation and releases every task.
    """

    def __init__(  # pylint: disable=too-many-arguments,too-many-locals
        self,
        *,
        transport: AgentTransport,
        speech_engine: SpeechEngine,
        store: HouseholdStore,
        change_feed: ChangeFeed,
        user_id: str,
        household_id: str,
        mic: MicHub | None = None,
        ui: UiChannel | None = None,
        wake_phrases: Sequence[str] = WAKE_PHRASES_DEFAULT,
        wake_threshold: float = WAKE_SIMILARITY_THRESHOLD,
        vad_speech_level: float = VAD_SPEECH_LEVEL,
        barge_in_onset_level: float = BARGE_IN_ONSET_LEVEL,
        meal_analyzer: MealAnalyzer | None = None,
        recipe_source: RecipeSource | None = None,
        end_delay_ms: int = AGENT_END_CONVERSATION_DELAY_MS,
        session_id_factory: Callable[[], str] | None = None,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self.mic = mic or MicHub()
        self.ui = ui or UiChannel()
        self._clock_ms = clock_ms
        self._end_delay_s = end_delay_ms / 1000.0
        self._end_tasks: set[asyncio.Task[None]] = set()
        self._last_snapshot: dict[str, object] | None = None

        self.registry = ToolRegistry()
        self.service = HouseholdService(
            store,
            user_id=user_id,
            household_id=household_id,
            meal_analyzer=meal_analyzer,
            recipe_source=recipe_source,
            on_state_changed=self._household_changed,
        )
        register_household_tools(
            self.registry,
            self.service,
            request_end=self._request_end,
            navigate=self._navigate,
        )

        self.feed = ContextFeed(
            store,
            change_feed,
            user_id=user_id,
            household_id=household_id,
            clock_ms=clock_ms,
        )

        # Probes resolve the runtime lazily: it is built after the monitors.
        self.amplitude_sampler = AmplitudeSampler(
            input_level=self._input_level,
            output_level=self._output_level,
            is_agent_speaking=self._is_agent_speaking,
        )
        monitors = {
            Monitor.WAKE_PHRASE: WakePhraseListener(
                speech_engine,
                phrases=wake_phrases,
                threshold=wake_threshold,
                clock_ms=clock_ms,
            ),
            Monitor.VOICE_ACTIVITY: VoiceActivityMonitor(
                self._input_level, speech_level=vad_speech_level, clock_ms=clock_ms
            ),
            Monitor.BARGE_IN: BargeInMonitor(
                self._input_level, onset_level=barge_in_onset_level, clock_ms=clock_ms
            ),
            Monitor.AMPLITUDE: self.amplitude_sampler,
        }

        runtime_kwargs: dict[str, Callable[[], str]] = {}
        if session_id_factory is not None:
            runtime_kwargs["session_id_factory"] = session_id_factory
        self.runtime = Runtime(
            transport=transport,
            monitors=monitors,
            registry=self.registry,
            context_feed=self.feed,
            store=store,
            on_state=self._on_state,
            on_notice=self._on_notice,
            on_cue=self._on_cue,
            clock_ms=clock_ms,
            **runtime_kwargs,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.runtime.start()
        log_event({
            "ts_ms": self._clock_ms(),
            "event_type": "voice_surface_started",
            "tools": self.registry.names(),
        })

    async def shutdown(self) -> None:
        for task in list(self._end_tasks):
            task.cancel()
        if self._end_tasks:
            await asyncio.gather(*self._end_tasks, return_exceptions=True)
        await self.runtime.shutdown()
        self.ui.close()
        log_event({"ts_ms": self._clock_ms(), "event_type": "voice_surface_stopped"})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start_conversation(self) -> None:
        """No-op unless IDLE/SLEEPING with no open session. Awaits the handshake."""
        await self.runtime.handle_event(
            StartConversation(event_type=EventType.START_CONVERSATION, ts_ms=self._clock_ms())
        )
        await self.runtime.settle()

    async def end_conversation(self, reason: str = "explicit") -> None:
        """Safe from any state; always ends in SLEEPING."""
        await self.runtime.handle_event(
            EndConversation(event_type=EventType.END_CONVERSATION, ts_ms=self._clock_ms(), reason=reason)
        )
        await self.runtime.settle()

    def register_tool(
        self,
        name: str,
        parameters: Sequence[ParamSpec],
        handler: ToolHandler,
        description: str = "",
    ) -> Tool:
        return self.registry.register(name, tuple(parameters), handler, description)

    async def push_mic_frame(self, frame: AudioFrame) -> None:
        """Fan a mic frame out to local listeners and the open session."""
        self.mic.publish(frame)
        await self.runtime.send_user_audio(frame.pcm_bytes)

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> State:
        return self.runtime.state.state

    @property
    def display_state(self) -> DisplayState:
        return self.runtime.display_state

    @property
    def session_id(self) -> str | None:
        session = self.runtime.state.session
        return session.session_id if session is not None else None

    @property
    def last_user_text(self) -> str:
        return self.runtime.state.last_user_text

    @property
    def last_agent_text(self) -> str:
        return self.runtime.state.last_agent_text

    @property
    def transcript(self) -> tuple[TranscriptLine, ...]:
        return self.runtime.state.transcript

    @property
    def amplitude(self) -> float:
        return self.amplitude_sampler.amplitude

    def snapshot(self) -> dict[str, object]:
        state = self.runtime.state
        return {
            "state": state.state.value,
            "display_state": self.runtime.display_state.value,
            "session_id": self.session_id,
            "session_status": state.session.status.value if state.session else None,
            "is_agent_speaking": self.runtime.is_agent_speaking(),
            "last_user_text": state.last_user_text,
            "last_agent_text": state.last_agent_text,
            "active_monitors": sorted(m.value for m in state.active_monitors),
            "amplitude": self.amplitude,
        }

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _input_level(self) -> float:
        return self.runtime.input_level()

    def _output_level(self) -> float:
        return self.runtime.output_level()

    def _is_agent_speaking(self) -> bool:
        return self.runtime.is_agent_speaking()

    def _request_end(self, reason: str) -> None:
        task = asyncio.create_task(self._end_after_delay(reason))
        self._end_tasks.add(task)
        task.add_done_callback(self._end_tasks.discard)

    async def _end_after_delay(self, reason: str) -> None:
        await asyncio.sleep(self._end_delay_s)
        await self.runtime.handle_event(
            EndConversation(event_type=EventType.END_CONVERSATION, ts_ms=self._clock_ms(), reason=reason)
        )

    def _navigate(self, route: str) -> None:
        self.ui.publish_json({"type": "NAVIGATE", "route": route})

    def _household_changed(self) -> None:
        self.ui.publish_json({"type": "STATE_CHANGED"})

    def _on_state(self, state: OrchestratorState) -> None:  # pylint: disable=unused-argument
        snapshot = self.snapshot()
        snapshot.pop("amplitude")
        if snapshot == self._last_snapshot:
            return
        self._last_snapshot = snapshot
        self.ui.publish_json({"type": "STATE", **snapshot})

    def _on_notice(self, notice: NotifyUser) -> None:
        self.ui.publish_json({
            "type": "NOTICE",
            "title": notice.title,
            "description": notice.description,
            "variant": notice.variant,
        })

    def _on_cue(self, cue: str) -> None:
        self.ui.publish_json({"type": "CUE", "cue": cue})


def build_voice_surface(
    config: AppConfig,
    *,
    store: HouseholdStore | None = None,
    change_feed: ChangeFeed | None = None,
) -> VoiceSurface:
    """
    Wire a surface from configuration. Without provider keys the surface
    still runs: conversations fail with a notice and the wake listener
    never fires.
    """
    if store is None or change_feed is None:
        feed = InMemoryChangeFeed()
        store, change_feed = InMemoryHouseholdStore(feed), feed

    mic = MicHub()
    ui = UiChannel()

    transport: AgentTransport
    if config.agent_configured:
        assert config.elevenlabs_api_key is not None
        assert config.elevenlabs_agent_id is not None
        transport = ElevenLabsTransport(
            api_key=config.elevenlabs_api_key,
            agent_id=config.elevenlabs_agent_id,
            audio_sink=ui.publish_audio,
        )
    else:
        transport = UnconfiguredTransport("ELEVENLABS_API_KEY / ELEVENLABS_AGENT_ID not set")

    speech_engine: SpeechEngine
    if config.wake_configured:
        assert config.deepgram_api_key is not None
        speech_engine = DeepgramSpeechEngine(
            api_key=config.deepgram_api_key,
            audio_source=mic.frames,
            model=config.deepgram_model,
        )
    else:
        speech_engine = IdleSpeechEngine()

    return VoiceSurface(
        transport=transport,
        speech_engine=speech_engine,
        store=store,
        change_feed=change_feed,
        user_id=config.user_id,
        household_id=config.household_id,
        mic=mic,
        ui=ui,
        wake_phrases=config.wake_phrases,
        wake_threshold=config.wake_similarity_threshold,
        vad_speech_level=config.vad_speech_level,
        barge_in_onset_level=config.barge_in_onset_level,
    )
