"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No orchestration logic
- No timing or threshold constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    BARGE_IN_ONSET_LEVEL,
    VAD_SPEECH_LEVEL,
    WAKE_PHRASES_DEFAULT,
    WAKE_SIMILARITY_THRESHOLD,
)


def _parse_phrases(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return WAKE_PHRASES_DEFAULT
    phrases = tuple(p.strip().lower() for p in raw.split(",") if p.strip())
    return phrases or WAKE_PHRASES_DEFAULT


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and passed down to the voice
    surface factory.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str
    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Household identity
    # ------------------------------------------------------------------

    user_id: str
    household_id: str

    # ------------------------------------------------------------------
    # Remote conversational agent
    # ------------------------------------------------------------------

    elevenlabs_api_key: str | None
    elevenlabs_agent_id: str | None

    # ------------------------------------------------------------------
    # Wake phrase recognition
    # ------------------------------------------------------------------

    deepgram_api_key: str | None
    deepgram_model: str
    wake_phrases: tuple[str, ...]
    wake_similarity_threshold: float

    # ------------------------------------------------------------------
    # Local monitors (normalized RMS, 0..1)
    # ------------------------------------------------------------------

    vad_speech_level: float
    barge_in_onset_level: float

    @property
    def agent_configured(self) -> bool:
        return bool(self.elevenlabs_api_key and self.elevenlabs_agent_id)

    @property
    def wake_configured(self) -> bool:
        return bool(self.deepgram_api_key)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Missing provider keys are allowed; the surface reports the
        capability as unavailable instead of failing at startup.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",

            user_id=os.environ.get("HOUSEHOLD_USER_ID", "local-user"),
            household_id=os.environ.get("HOUSEHOLD_ID", "local-household"),

            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY"),
            elevenlabs_agent_id=os.environ.get("ELEVENLABS_AGENT_ID"),

            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY"),
            deepgram_model=os.environ.get("DEEPGRAM_MODEL", "nova-2"),
            wake_phrases=_parse_phrases(os.environ.get("WAKE_PHRASES")),
            wake_similarity_threshold=float(
                os.environ.get("WAKE_SIMILARITY_THRESHOLD", WAKE_SIMILARITY_THRESHOLD)
            ),

            vad_speech_level=float(os.environ.get("VAD_SPEECH_LEVEL", VAD_SPEECH_LEVEL)),
            barge_in_onset_level=float(
                os.environ.get("BARGE_IN_ONSET_LEVEL", BARGE_IN_ONSET_LEVEL)
            ),
        )
