# pylint: disable=missing-module-docstring,missing-function-docstring
from typing import Any

import pytest
from fastapi.testclient import TestClient

from config import AppConfig
from constants import AUDIO_BYTES_PER_FRAME_PCM, WAKE_PHRASES_DEFAULT
from protocol.binary import encode_c2s_frame
from server.app import create_app
from session.surface import VoiceSurface
from store.memory import InMemoryChangeFeed, InMemoryHouseholdStore

from fakes import FakeTransport, ScriptedSpeechEngine


def make_config() -> AppConfig:
    return AppConfig(
        env="test",
        log_level="warning",
        enable_json_logs=False,
        user_id="u1",
        household_id="h1",
        elevenlabs_api_key=None,
        elevenlabs_agent_id=None,
        deepgram_api_key=None,
        deepgram_model="nova-2",
        wake_phrases=WAKE_PHRASES_DEFAULT,
        wake_similarity_threshold=0.7,
        vad_speech_level=0.01,
        barge_in_onset_level=0.05,
    )


@pytest.fixture(name="transport")
def fixture_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture(name="client")
def fixture_client(transport: FakeTransport) -> Any:
    def factory(config: AppConfig) -> VoiceSurface:
        changes = InMemoryChangeFeed()
        return VoiceSurface(
            transport=transport,
            speech_engine=ScriptedSpeechEngine([]),
            store=InMemoryHouseholdStore(changes),
            change_feed=changes,
            user_id=config.user_id,
            household_id=config.household_id,
        )

    with TestClient(create_app(make_config(), surface_factory=factory)) as client:
        yield client


def receive_until_state(ws: Any, state: str) -> dict[str, Any]:
    while True:
        message = ws.receive_json()
        if message.get("type") == "STATE" and message["state"] == state:
            return message


# ---------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------

def test_health(client: TestClient):
    assert client.get("/health").json() == {"status": "ok"}


def test_start_and_end_over_http(client: TestClient, transport: FakeTransport):
    assert client.get("/voice/state").json()["state"] == "IDLE"

    started = client.post("/voice/start").json()
    assert started["state"] == "LISTENING"
    assert started["session_status"] == "CONNECTING"
    assert started["session_id"] == transport.handle.session_id
    assert started["active_monitors"] == ["AMPLITUDE", "VOICE_ACTIVITY"]

    ended = client.post("/voice/end").json()
    assert ended["state"] == "SLEEPING"
    assert ended["session_id"] is None
    assert transport.handle.closed


# ---------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------

def test_websocket_controls_and_mic_audio(client: TestClient, transport: FakeTransport):
    pcm = b"\x01\x00" * (AUDIO_BYTES_PER_FRAME_PCM // 2)

    with client.websocket_connect("/ws") as ws:
        first = ws.receive_json()
        assert first["type"] == "STATE"
        assert first["state"] == "IDLE"

        ws.send_text("not json")
        ws.send_json({"type": "DANCE"})
        ws.send_json({"type": "START_CONVERSATION"})
        listening = receive_until_state(ws, "LISTENING")
        assert listening["session_id"] == transport.handle.session_id

        ws.send_bytes(encode_c2s_frame(sequence_num=1, pcm_bytes=pcm))
        ws.send_bytes(b"\x01\x02")
        ws.send_json({"type": "END_CONVERSATION"})
        receive_until_state(ws, "SLEEPING")

    assert transport.handle.audio == [pcm]
    assert transport.handle.closed


def test_open_failure_notice_reaches_socket():
    transport = FakeTransport(fail="ELEVENLABS_API_KEY not set")

    def factory(config: AppConfig) -> VoiceSurface:
        changes = InMemoryChangeFeed()
        return VoiceSurface(
            transport=transport,
            speech_engine=ScriptedSpeechEngine([]),
            store=InMemoryHouseholdStore(changes),
            change_feed=changes,
            user_id=config.user_id,
            household_id=config.household_id,
        )

    with TestClient(create_app(make_config(), surface_factory=factory)) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "START_CONVERSATION"})
            while True:
                message = ws.receive_json()
                if message["type"] == "NOTICE":
                    break

    assert "ELEVENLABS_API_KEY" in message["description"]
    assert message["variant"] == "destructive"
