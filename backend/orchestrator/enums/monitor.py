"""
Local monitor enumeration.

Rules:
- This enum identifies monitors only.
- It must NOT encode behavior or lifecycle rules.
- Reducer logic decides when monitors are started and stopped.
"""

from __future__ import annotations

from enum import Enum


class Monitor(str, Enum):
    """
    Local sensing loops owned by the orchestrator.

    Each monitor:
    - Is either running or stopped (never two instances)
    - Is started and stopped only through reducer commands
    """

    WAKE_PHRASE = "WAKE_PHRASE"
    VOICE_ACTIVITY = "VOICE_ACTIVITY"
    BARGE_IN = "BARGE_IN"
    AMPLITUDE = "AMPLITUDE"
