"""
ElevenLabs Conversational AI transport.

One open() call is one remote conversation:
- fetch a signed WebSocket URL for the configured agent (REST, via the SDK)
- connect and send conversation_initiation_client_data with the
  household dynamic variables
- wait for conversation_initiation_metadata, then return a live handle

Inbound messages are translated into orchestrator events and delivered
through the EventSink given to open(). The adapter never decides state:
it reports facts (transcripts, agent audio start/stop, tool calls, close).

Agent speaking is inferred from audio: the first audio chunk after a quiet
period flips it on; AGENT_AUDIO_TAIL_MS without audio (or an interruption
message) flips it off.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import time
from typing import Any, Awaitable, Callable, Literal, Mapping

from elevenlabs.client import AsyncElevenLabs
from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from audio.pcm import rms_level
from orchestrator import events
from orchestrator.events import (
    AgentSpeakingChanged,
    EventType,
    MessageReceived,
    ToolCallRequested,
    TransportConnected,
    TransportDisconnected,
    TurnEnded,
)
from orchestrator.runtime_context import EventSink, TransportError

from observability.logger import log_event, now_ms
from constants import AGENT_AUDIO_TAIL_MS, LEVEL_DECAY_MS, SEQ_NUM_MAX


# (turn_id, pcm16 bytes) -> relayed to the UI socket
AgentAudioSink = Callable[[int, bytes], Awaitable[None]]
SignedUrlProvider = Callable[[], Awaitable[str]]


def _decayed(level: float, at_monotonic: float) -> float:
    if (time.monotonic() - at_monotonic) * 1000 > LEVEL_DECAY_MS:
        return 0.0
    return level


class ElevenLabsTransport:
    """AgentTransport backed by the ElevenLabs Conversational AI WebSocket."""

    def __init__(
        self,
        *,
        api_key: str,
        agent_id: str,
        audio_sink: AgentAudioSink | None = None,
        signed_url_provider: SignedUrlProvider | None = None,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self._api_key = api_key
        self._agent_id = agent_id
        self._audio_sink = audio_sink
        self._signed_url_provider = signed_url_provider or self._fetch_signed_url
        self._clock_ms = clock_ms
        self._client: AsyncElevenLabs | None = None

    async def _fetch_signed_url(self) -> str:
        if self._client is None:
            self._client = AsyncElevenLabs(api_key=self._api_key)
        response = await self._client.conversational_ai.conversations.get_signed_url(
            agent_id=self._agent_id
        )
        return response.signed_url

    async def open(
        self,
        *,
        session_id: str,
        dynamic_variables: Mapping[str, str],
        emit_event: EventSink,
    ) -> ElevenLabsSession:
        try:
            url = await self._signed_url_provider()
        except Exception as exc:  # pylint: disable=broad-exception-caught
            raise TransportError(f"signed_url_failed: {exc}") from exc

        try:
            ws = await ws_connect(url, max_size=2**22)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise TransportError(f"connect_failed: {exc!r}") from exc

        session = ElevenLabsSession(
            session_id=session_id,
            ws=ws,
            emit_event=emit_event,
            audio_sink=self._audio_sink,
            clock_ms=self._clock_ms,
        )
        try:
            await session.initiate(dynamic_variables)
        except BaseException:
            await session.close()
            raise
        return session


class ElevenLabsSession:  # pylint: disable=too-many-instance-attributes
    """TransportHandle for one open ElevenLabs conversation."""

    def __init__(
        self,
        *,
        session_id: str,
        ws: ClientConnection,
        emit_event: EventSink,
        audio_sink: AgentAudioSink | None,
        clock_ms: Callable[[], int],
    ) -> None:
        self.session_id = session_id
        self.conversation_id: str | None = None

        self._ws = ws
        self._emit = emit_event
        self._audio_sink = audio_sink
        self._clock_ms = clock_ms

        self._initiated: asyncio.Future[None] | None = None
        self._reader: asyncio.Task[None] | None = None
        self._closing = False

        self._speaking = False
        self._tail_task: asyncio.Task[None] | None = None
        self._turn_id = 0
        self._muted_through_event_id = -1
        self._last_audio_event_id = -1

        self._input_level = 0.0
        self._input_at = 0.0
        self._output_level = 0.0
        self._output_at = 0.0

    # ------------------------------------------------------------------
    # Handshake
    # ------------------------------------------------------------------

    async def initiate(self, dynamic_variables: Mapping[str, str]) -> None:
        """Send client data and wait for the conversation metadata."""
        self._initiated = asyncio.get_running_loop().create_future()
        self._reader = asyncio.create_task(self._read_loop())

        await self._send({
            "type": "conversation_initiation_client_data",
            "dynamic_variables": dict(dynamic_variables),
        })
        await self._initiated

    # ------------------------------------------------------------------
    # TransportHandle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Idempotent. No events are emitted for a locally closed session."""
        if self._closing:
            return
        self._closing = True
        self._cancel_tail()
        reader = self._reader
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        with contextlib.suppress(WebSocketException, OSError):
            await self._ws.close()

    async def send_context_update(self, text: str) -> None:
        await self._send({"type": "contextual_update", "text": text})

    async def send_tool_result(self, call_id: str, result: str) -> None:
        await self._send({
            "type": "client_tool_result",
            "tool_call_id": call_id,
            "result": result,
            "is_error": result.startswith("ERROR"),
        })

    async def interrupt(self) -> None:
        """
        Stop relaying the current agent utterance and tell the agent the
        user is active. Audio already queued remotely for this turn is muted.
        """
        self._muted_through_event_id = max(self._muted_through_event_id, self._last_audio_event_id)
        self._cancel_tail()
        await self._set_speaking(False)
        await self._send({"type": "user_activity"})

    async def send_user_audio(self, pcm_bytes: bytes) -> None:
        self._input_level = rms_level(pcm_bytes)
        self._input_at = time.monotonic()
        await self._send({"user_audio_chunk": base64.b64encode(pcm_bytes).decode("ascii")})

    def input_level(self) -> float:
        return _decayed(self._input_level, self._input_at)

    def output_level(self) -> float:
        return _decayed(self._output_level, self._output_at)

    # ------------------------------------------------------------------
    # Wire
    # ------------------------------------------------------------------

    async def _send(self, message: dict[str, Any]) -> None:
        if self._closing:
            raise TransportError("session closed")
        try:
            await self._ws.send(json.dumps(message))
        except (WebSocketException, OSError) as exc:
            raise TransportError(f"send_failed: {exc!r}") from exc

    async def _read_loop(self) -> None:
        reason: str | None = None
        failed = False
        try:
            async for raw in self._ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    message = json.loads(raw)
                except ValueError:
                    continue
                await self._dispatch(message)
        except ConnectionClosed as exc:
            reason = exc.rcvd.reason if exc.rcvd is not None else None
            failed = exc.rcvd is None or exc.rcvd.code not in (1000, 1001)
            if failed:
                reason = reason or repr(exc)
        except (WebSocketException, OSError) as exc:
            reason = repr(exc)
            failed = True

        self._cancel_tail()
        initiated = self._initiated
        if initiated is not None and not initiated.done():
            # Closed before the handshake finished: open() raises.
            initiated.set_exception(TransportError(f"closed_during_handshake: {reason}"))
            return
        if self._closing:
            return

        self._closing = True
        if failed:
            await self._emit(
                events.TransportError(
                    event_type=EventType.TRANSPORT_ERROR,
                    ts_ms=self._clock_ms(),
                    session_id=self.session_id,
                    reason=reason or "connection_lost",
                )
            )
        else:
            await self._emit(
                TransportDisconnected(
                    event_type=EventType.TRANSPORT_DISCONNECTED,
                    ts_ms=self._clock_ms(),
                    session_id=self.session_id,
                    reason=reason,
                )
            )

    async def _dispatch(self, message: dict[str, Any]) -> None:  # pylint: disable=too-many-branches
        kind = message.get("type")

        if kind == "conversation_initiation_metadata":
            meta = message.get("conversation_initiation_metadata_event") or {}
            self.conversation_id = meta.get("conversation_id")
            # open() must be released before the event is emitted: the
            # runtime step awaiting open() is the one draining the mailbox.
            if self._initiated is not None and not self._initiated.done():
                self._initiated.set_result(None)
            await self._emit(
                TransportConnected(
                    event_type=EventType.TRANSPORT_CONNECTED,
                    ts_ms=self._clock_ms(),
                    session_id=self.session_id,
                )
            )

        elif kind == "ping":
            ping = message.get("ping_event") or {}
            with contextlib.suppress(TransportError):
                await self._send({"type": "pong", "event_id": ping.get("event_id")})

        elif kind == "user_transcript":
            text = ((message.get("user_transcription_event") or {}).get("user_transcript") or "").strip()
            await self._emit(
                TurnEnded(
                    event_type=EventType.TURN_ENDED,
                    ts_ms=self._clock_ms(),
                    session_id=self.session_id,
                )
            )
            if text:
                await self._emit_message("user", text)

        elif kind == "agent_response":
            text = ((message.get("agent_response_event") or {}).get("agent_response") or "").strip()
            if text:
                await self._emit_message("agent", text)

        elif kind == "audio":
            await self._on_audio(message.get("audio_event") or {})

        elif kind == "interruption":
            interruption = message.get("interruption_event") or {}
            event_id = interruption.get("event_id")
            if isinstance(event_id, int):
                self._muted_through_event_id = max(self._muted_through_event_id, event_id)
            self._cancel_tail()
            await self._set_speaking(False)

        elif kind == "client_tool_call":
            call = message.get("client_tool_call") or {}
            parameters = call.get("parameters")
            await self._emit(
                ToolCallRequested(
                    event_type=EventType.TOOL_CALL_REQUESTED,
                    ts_ms=self._clock_ms(),
                    session_id=self.session_id,
                    call_id=str(call.get("tool_call_id") or ""),
                    tool_name=str(call.get("tool_name") or ""),
                    parameters=parameters if isinstance(parameters, dict) else {},
                )
            )

        else:
            log_event({
                "ts_ms": self._clock_ms(),
                "event_type": "agent_message_ignored",
                "level": "debug",
                "session_id": self.session_id,
                "message_type": kind,
            })

    async def _emit_message(self, source: Literal["user", "agent"], text: str) -> None:
        await self._emit(
            MessageReceived(
                event_type=EventType.MESSAGE_RECEIVED,
                ts_ms=self._clock_ms(),
                session_id=self.session_id,
                source=source,
                text=text,
            )
        )

    # ------------------------------------------------------------------
    # Agent audio
    # ------------------------------------------------------------------

    async def _on_audio(self, audio_event: Mapping[str, Any]) -> None:
        event_id = audio_event.get("event_id")
        if isinstance(event_id, int):
            if event_id <= self._muted_through_event_id:
                return
            self._last_audio_event_id = max(self._last_audio_event_id, event_id)

        encoded = audio_event.get("audio_base_64") or ""
        try:
            pcm = base64.b64decode(encoded)
        except ValueError:
            return
        if not pcm:
            return

        self._output_level = rms_level(pcm)
        self._output_at = time.monotonic()

        if not self._speaking:
            self._turn_id = 1 if self._turn_id >= SEQ_NUM_MAX else self._turn_id + 1
            await self._set_speaking(True)
        self._restart_tail()

        if self._audio_sink is not None:
            try:
                await self._audio_sink(self._turn_id, pcm)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": self._clock_ms(),
                    "event_type": "agent_audio_relay_failed",
                    "level": "debug",
                    "session_id": self.session_id,
                    "error": repr(exc),
                })

    def _restart_tail(self) -> None:
        self._cancel_tail()
        self._tail_task = asyncio.create_task(self._tail())

    def _cancel_tail(self) -> None:
        task, self._tail_task = self._tail_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _tail(self) -> None:
        try:
            await asyncio.sleep(AGENT_AUDIO_TAIL_MS / 1000.0)
        except asyncio.CancelledError:
            return
        self._tail_task = None
        await self._set_speaking(False)

    async def _set_speaking(self, speaking: bool) -> None:
        if speaking == self._speaking or self._closing:
            return
        self._speaking = speaking
        if not speaking:
            self._output_level = 0.0
        await self._emit(
            AgentSpeakingChanged(
                event_type=EventType.AGENT_SPEAKING_CHANGED,
                ts_ms=self._clock_ms(),
                session_id=self.session_id,
                is_speaking=speaking,
            )
        )
