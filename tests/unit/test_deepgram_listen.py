# pylint: disable=missing-module-docstring,missing-function-docstring,missing-class-docstring
import asyncio
import json
from typing import Any, AsyncIterator

import pytest

import adapters.speech.deepgram_listen as dg_mod
from adapters.speech.deepgram_listen import DeepgramSpeechEngine, extract_final_transcript
from orchestrator.runtime_context import SpeechEngineError


def results(transcript: str, *, is_final: bool = True) -> dict[str, Any]:
    return {
        "type": "Results",
        "is_final": is_final,
        "channel": {"alternatives": [{"transcript": transcript, "confidence": 0.9}]},
    }


# ---------------------------------------------------------------------
# Message parsing
# ---------------------------------------------------------------------

def test_extract_final_transcript():
    assert extract_final_transcript(results(" hey kaeva ")) == "hey kaeva"
    assert extract_final_transcript(results("hey", is_final=False)) is None
    assert extract_final_transcript(results("   ")) is None
    assert extract_final_transcript({"type": "Metadata"}) is None
    assert extract_final_transcript({"type": "Results", "is_final": True, "channel": {}}) is None


# ---------------------------------------------------------------------
# Recognition session
# ---------------------------------------------------------------------

class FakeDeepgramWs:
    def __init__(self, inbound: list[Any]) -> None:
        self._inbound = list(inbound)
        self.sent: list[Any] = []
        self.closed = False

    async def recv(self) -> Any:
        if not self._inbound:
            await asyncio.Event().wait()
        return json.dumps(self._inbound.pop(0))

    async def send(self, data: Any) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True


def make_engine(monkeypatch: pytest.MonkeyPatch, ws: FakeDeepgramWs, **kwargs: Any) -> DeepgramSpeechEngine:
    async def fake_connect(url: str, **connect_kwargs: Any) -> FakeDeepgramWs:
        assert "encoding=linear16" in url
        assert connect_kwargs["additional_headers"] == {"Authorization": "Token dg-key"}
        return ws

    async def mic() -> AsyncIterator[bytes]:
        yield b"\x00\x00" * 320

    monkeypatch.setattr(dg_mod, "ws_connect", fake_connect)
    params: dict[str, Any] = {"api_key": "dg-key", "audio_source": mic, "session_s": 0.05}
    params.update(kwargs)
    return DeepgramSpeechEngine(**params)


async def collect(engine: DeepgramSpeechEngine) -> list[str]:
    return [t async for t in engine.listen()]


def test_listen_yields_final_transcripts_until_session_limit(monkeypatch: pytest.MonkeyPatch):
    ws = FakeDeepgramWs([results("turn", is_final=False), results("hey kaeva"), {"type": "Metadata"}])
    engine = make_engine(monkeypatch, ws)

    assert asyncio.run(collect(engine)) == ["hey kaeva"]
    assert ws.sent[0] == b"\x00\x00" * 320
    assert json.loads(ws.sent[-1]) == {"type": "CloseStream"}
    assert ws.closed


def test_provider_error_message_raises(monkeypatch: pytest.MonkeyPatch):
    ws = FakeDeepgramWs([{"type": "Error", "code": "429", "description": "rate limited"}])
    engine = make_engine(monkeypatch, ws)

    with pytest.raises(SpeechEngineError, match="rate limited"):
        asyncio.run(collect(engine))
    assert ws.closed


def test_connect_failure_raises(monkeypatch: pytest.MonkeyPatch):
    async def refuse(url: str, **kwargs: Any) -> None:  # pylint: disable=unused-argument
        raise OSError("connection refused")

    async def mic() -> AsyncIterator[bytes]:
        yield b""

    monkeypatch.setattr(dg_mod, "ws_connect", refuse)
    engine = DeepgramSpeechEngine(api_key="k", audio_source=mic)

    with pytest.raises(SpeechEngineError, match="deepgram_connect_failed"):
        asyncio.run(collect(engine))
