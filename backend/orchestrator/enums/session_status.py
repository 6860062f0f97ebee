"""
Remote session status enumeration.

Status is orthogonal to control states:
- State answers:  "What is the surface doing?"
- Status answers: "Where is the remote handshake?"
"""

from __future__ import annotations

from enum import Enum


class SessionStatus(str, Enum):
    """
    Connection status of the single open ConversationSession.

    CONNECTING:
        Session id allocated, transport handshake in flight.

    CONNECTED:
        Transport reported connect; context updates may be sent.

    DISCONNECTED:
        Transport closed or failed; the session is about to be discarded.
    """

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
