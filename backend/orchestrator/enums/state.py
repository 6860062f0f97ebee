"""
Authoritative session state enumeration.

Rules:
- This enum defines ONLY the control-plane states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class State(str, Enum):
    """
    High-level deterministic control states for one voice surface.

    These states represent orchestration intent, NOT connection status
    and NOT monitor lifecycles.
    """

    IDLE = "IDLE"
    SLEEPING = "SLEEPING"
    LISTENING = "LISTENING"
    PROCESSING = "PROCESSING"
    SPEAKING = "SPEAKING"


class DisplayState(str, Enum):
    """
    Presentation-only state rendered by the UI.

    Mirrors State, plus ACKNOWLEDGED: a transient refinement of
    PROCESSING shown right after a user utterance. The reducer never
    reads this enum.
    """

    IDLE = "IDLE"
    SLEEPING = "SLEEPING"
    LISTENING = "LISTENING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    PROCESSING = "PROCESSING"
    SPEAKING = "SPEAKING"
