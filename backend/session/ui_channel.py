"""
Outbound fan-out to connected UI sockets.

Every UI connection gets its own bounded outbox of control JSON and
encoded agent-audio frames. A slow socket loses its oldest messages;
other sockets and the orchestrator are never blocked by it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Deque, Union

from protocol.binary import encode_s2c_frame, next_seq
from constants import SEQ_NUM_START, UI_OUTBOX_MAX


Outbound = Union[dict[str, Any], bytes]


class UiOutbox:
    def __init__(self, *, max_items: int = UI_OUTBOX_MAX) -> None:
        self._items: Deque[Outbound] = deque()
        self._max_items = max_items
        self._ready = asyncio.Event()
        self._closed = False
        self.dropped = 0

    def put(self, item: Outbound) -> None:
        if self._closed:
            return
        while len(self._items) >= self._max_items:
            self._items.popleft()
            self.dropped += 1
        self._items.append(item)
        self._ready.set()

    async def get(self) -> Outbound | None:
        """Next message; None once closed."""
        while not self._items:
            if self._closed:
                return None
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()

    def close(self) -> None:
        self._closed = True
        self._ready.set()

    def __len__(self) -> int:
        return len(self._items)


class UiChannel:
    def __init__(self) -> None:
        self._outboxes: set[UiOutbox] = set()
        self._audio_seq = SEQ_NUM_START

    @property
    def connection_count(self) -> int:
        return len(self._outboxes)

    def connect(self) -> UiOutbox:
        outbox = UiOutbox()
        self._outboxes.add(outbox)
        return outbox

    def disconnect(self, outbox: UiOutbox) -> None:
        self._outboxes.discard(outbox)
        outbox.close()

    def publish_json(self, message: dict[str, Any]) -> None:
        for outbox in list(self._outboxes):
            outbox.put(message)

    async def publish_audio(self, turn_id: int, pcm_bytes: bytes) -> None:
        """AgentAudioSink: frame agent PCM for the UI player."""
        if not self._outboxes or not pcm_bytes:
            return
        if len(pcm_bytes) % 2:
            pcm_bytes = pcm_bytes[:-1]
        frame = encode_s2c_frame(
            sequence_num=self._audio_seq,
            turn_id=turn_id,
            pcm_bytes=pcm_bytes,
        )
        self._audio_seq = next_seq(self._audio_seq)
        for outbox in list(self._outboxes):
            outbox.put(frame)

    def close(self) -> None:
        for outbox in list(self._outboxes):
            self.disconnect(outbox)
