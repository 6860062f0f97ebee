"""
Mic audio fan-out.

The UI socket pushes each decoded mic frame into MicHub. Consumers (the
wake listener's speech engine, the agent transport) read through their own
bounded subscription, measured in seconds of audio. A slow consumer loses
its OLDEST frames so it never falls behind real time; other consumers are
unaffected.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, Deque, Optional

from audio.frames import AudioFrame
from constants import AUDIO_FRAME_DURATION_S, MIC_SUBSCRIBER_Q_MAX_S


@dataclass
class DropCounters:
    stale: int = 0


class AudioFrameQueue:
    """
    Bounded FIFO of AudioFrames. Enqueue never blocks: when full, the
    oldest frame is dropped to make room.
    """

    def __init__(self, *, max_depth_s: float) -> None:
        if max_depth_s <= 0:
            raise ValueError("max_depth_s must be > 0")

        self._max_depth_s = max_depth_s
        self._frames: Deque[AudioFrame] = deque()
        self._ready = asyncio.Event()
        self._closed = False
        self.drops = DropCounters()

    def enqueue(self, frame: AudioFrame) -> None:
        if self._closed:
            return
        while self._frames and self.depth_seconds() + AUDIO_FRAME_DURATION_S > self._max_depth_s:
            self._frames.popleft()
            self.drops.stale += 1
        self._frames.append(frame)
        self._ready.set()

    def dequeue(self) -> Optional[AudioFrame]:
        if not self._frames:
            return None
        frame = self._frames.popleft()
        if not self._frames:
            self._ready.clear()
        return frame

    async def get(self) -> Optional[AudioFrame]:
        """Wait for the next frame; None once closed and drained."""
        while not self._frames:
            if self._closed:
                return None
            await self._ready.wait()
        return self.dequeue()

    def close(self) -> None:
        self._closed = True
        self._ready.set()

    def clear(self) -> None:
        self._frames.clear()
        self._ready.clear()

    def __len__(self) -> int:
        return len(self._frames)

    def depth_seconds(self) -> float:
        return len(self._frames) * AUDIO_FRAME_DURATION_S


class MicHub:
    def __init__(self, *, max_depth_s: float = MIC_SUBSCRIBER_Q_MAX_S) -> None:
        self._max_depth_s = max_depth_s
        self._subscribers: set[AudioFrameQueue] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, frame: AudioFrame) -> None:
        for queue in list(self._subscribers):
            queue.enqueue(frame)

    def subscribe(self) -> AudioFrameQueue:
        queue = AudioFrameQueue(max_depth_s=self._max_depth_s)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: AudioFrameQueue) -> None:
        self._subscribers.discard(queue)
        queue.close()

    async def frames(self) -> AsyncIterator[bytes]:
        """PCM stream for one consumer; unsubscribes when the consumer stops."""
        queue = self.subscribe()
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    return
                yield frame.pcm_bytes
        finally:
            self.unsubscribe(queue)
