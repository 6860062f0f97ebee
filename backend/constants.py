"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for all timing and threshold values in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Tuple

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz, 20ms frames)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)
AUDIO_FRAME_MS: Final[int] = 20

AUDIO_SAMPLES_PER_FRAME: Final[int] = (AUDIO_SAMPLE_RATE_HZ * AUDIO_FRAME_MS) // 1000
AUDIO_BYTES_PER_FRAME_PCM: Final[int] = AUDIO_SAMPLES_PER_FRAME * AUDIO_SAMPLE_WIDTH_BYTES
AUDIO_FRAME_DURATION_S: Final[float] = AUDIO_FRAME_MS / 1000.0

# =============================================================================
# Binary WebSocket Frame Formats (UI client <-> voice surface)
# =============================================================================
# Client → Server (mic audio): 4B seq_num + PCM frame
C2S_SEQ_NUM_BYTES: Final[int] = 4
C2S_FRAME_BYTES_TOTAL: Final[int] = C2S_SEQ_NUM_BYTES + AUDIO_BYTES_PER_FRAME_PCM

# Server → Client (agent audio): 4B seq_num + 4B turn_id + PCM (variable length)
S2C_HEADER_BYTES: Final[int] = 8

SEQ_NUM_START: Final[int] = 1
SEQ_NUM_MAX: Final[int] = 2**32 - 1  # u32 wraparound

# =============================================================================
# Mic fan-out queues
# =============================================================================

MIC_SUBSCRIBER_Q_MAX_S: Final[float] = 2.0

# Per UI socket: control messages + agent audio frames
UI_OUTBOX_MAX: Final[int] = 512

# =============================================================================
# Session & State Timing
# =============================================================================

# IDLE -> SLEEPING after surface construction
STARTUP_GRACE_MS: Final[int] = 2000

# Presentation-only ACKNOWLEDGED reverts to PROCESSING after this delay
ACKNOWLEDGE_REVERT_MS: Final[int] = 150

# Context updates: at most one per window
CONTEXT_THROTTLE_MS: Final[int] = 5000

# Delay before an agent-requested end_conversation takes effect,
# so the agent can finish its closing sentence
AGENT_END_CONVERSATION_DELAY_MS: Final[int] = 500

# =============================================================================
# Wake phrase listener
# =============================================================================

WAKE_PHRASES_DEFAULT: Final[Tuple[str, ...]] = (
    "kaeva",
    "hey kaeva",
    "hi kaeva",
    "ok kaeva",
)
WAKE_SIMILARITY_THRESHOLD: Final[float] = 0.7
WAKE_DEBOUNCE_MS: Final[int] = 3000

# Restart-on-end backoff (bounded)
WAKE_RESTART_DELAY_MS: Final[int] = 1000
WAKE_RESTART_MAX_DELAY_MS: Final[int] = 30_000
# A recognition loop that ran at least this long resets the backoff
WAKE_HEALTHY_RUN_MS: Final[int] = 10_000

# =============================================================================
# Voice activity / barge-in / amplitude
# =============================================================================

MONITOR_POLL_MS: Final[int] = 50

# Normalized RMS level (0..1). 0.01 ~= -40 dBFS
VAD_SPEECH_LEVEL: Final[float] = 0.01
VAD_TRAILING_SILENCE_MS: Final[int] = 2000

# Barge-in is less sensitive to avoid triggering on agent echo
BARGE_IN_ONSET_LEVEL: Final[float] = 0.05
BARGE_IN_POLLS_REQUIRED: Final[int] = 3

AMPLITUDE_POLL_MS: Final[int] = 50

# =============================================================================
# Agent transport
# =============================================================================

# No agent audio for this long => agent stopped speaking
AGENT_AUDIO_TAIL_MS: Final[int] = 400

# Levels are computed over the most recent chunk only
LEVEL_DECAY_MS: Final[int] = 250

TRANSPORT_OPEN_TIMEOUT_S: Final[float] = 10.0

# =============================================================================
# Persistence / history
# =============================================================================

RECENT_HISTORY_LIMIT: Final[int] = 10
PERSIST_QUEUE_MAX: Final[int] = 256

# =============================================================================
# Tools / context
# =============================================================================

INVENTORY_QUERY_LIMIT: Final[int] = 10
RECENT_INVENTORY_LIMIT: Final[int] = 10
WELL_STOCKED_LIMIT: Final[int] = 10
EXPIRING_SOON_DAYS: Final[int] = 3
CART_PREVIEW_ITEMS: Final[int] = 5
RECIPE_PREVIEW_ITEMS: Final[int] = 5

PET_TOXIC_FOODS: Final[Tuple[str, ...]] = (
    "chocolate",
    "xylitol",
    "grapes",
    "raisins",
    "onion",
    "garlic",
    "avocado",
    "macadamia",
)
