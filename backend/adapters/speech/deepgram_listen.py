"""
Deepgram streaming speech engine for the wake phrase listener.

Each listen() call is one recognition session:
- opens a Deepgram Live WebSocket
- streams mic PCM from the supplied audio source
- yields final transcripts
- ends after `session_s` (the platform session limit the listener
  restarts from), or raises SpeechEngineError on connection failure

Interim results are requested so short phrases finalize quickly, but only
is_final transcripts are yielded.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import time
import urllib.parse
from typing import Any, AsyncIterator, Callable

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import WebSocketException

from orchestrator.runtime_context import SpeechEngineError

from observability.logger import log_event, now_ms
from constants import AUDIO_SAMPLE_RATE_HZ


AudioSource = Callable[[], AsyncIterator[bytes]]

DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


def extract_final_transcript(data: dict[str, Any]) -> str | None:
    """Final transcript text of a Results message, else None."""
    if data.get("type") != "Results" or not data.get("is_final"):
        return None
    alternatives = (data.get("channel") or {}).get("alternatives") or []
    if not alternatives:
        return None
    text = str(alternatives[0].get("transcript") or "").strip()
    return text or None


class DeepgramSpeechEngine:
    def __init__(
        self,
        *,
        api_key: str,
        audio_source: AudioSource,
        model: str = "nova-2",
        language: str = "en-US",
        session_s: float = 60.0,
    ) -> None:
        self._api_key = api_key
        self._audio_source = audio_source
        self._model = model
        self._language = language
        self._session_s = session_s

    def _build_url(self) -> str:
        params = {
            "model": self._model,
            "language": self._language,
            "encoding": "linear16",
            "sample_rate": str(AUDIO_SAMPLE_RATE_HZ),
            "channels": "1",
            "interim_results": "true",
            "punctuate": "false",
        }
        return f"{DEEPGRAM_LISTEN_URL}?{urllib.parse.urlencode(params)}"

    async def listen(self) -> AsyncIterator[str]:
        try:
            ws = await ws_connect(
                self._build_url(),
                additional_headers={"Authorization": f"Token {self._api_key}"},
                max_size=2**22,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise SpeechEngineError(f"deepgram_connect_failed: {e!r}") from e

        sender = asyncio.create_task(self._send_audio(ws))
        deadline = time.monotonic() + self._session_s
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return
                try:
                    raw = await asyncio.wait_for(ws.recv(), timeout=remaining)
                except asyncio.TimeoutError:
                    return
                except WebSocketException as e:
                    raise SpeechEngineError(f"deepgram_recv_failed: {e!r}") from e

                try:
                    data = json.loads(raw)
                except (TypeError, ValueError):
                    continue

                if data.get("type") == "Error":
                    raise SpeechEngineError(
                        f"deepgram_error: {data.get('code')} {data.get('description')}"
                    )

                transcript = extract_final_transcript(data)
                if transcript:
                    yield transcript
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketException):
                await sender
            await self._close(ws)

    async def _send_audio(self, ws: ClientConnection) -> None:
        try:
            async for pcm in self._audio_source():
                await ws.send(pcm)
        except WebSocketException as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "deepgram_send_failed",
                "level": "warning",
                "error": repr(e),
            })

    async def _close(self, ws: ClientConnection) -> None:
        with contextlib.suppress(WebSocketException, OSError):
            await ws.send(json.dumps({"type": "CloseStream"}))
        with contextlib.suppress(WebSocketException, OSError):
            await ws.close()
