# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import time

import pytest

from audio.frames import AudioFrame
from audio.queues import AudioFrameQueue, MicHub
from constants import AUDIO_FRAME_DURATION_S


def make_frame(seq: int) -> AudioFrame:
    return AudioFrame(
        sequence_num=seq,
        pcm_bytes=b"\x00\x00" * 320,
        ts_ms=int(time.time() * 1000),
    )


# ---------------------------------------------------------------------
# depth_seconds math
# ---------------------------------------------------------------------

def test_depth_seconds_exact():
    q = AudioFrameQueue(max_depth_s=1.0)

    q.enqueue(make_frame(1))
    q.enqueue(make_frame(2))
    q.enqueue(make_frame(3))

    expected = 3 * AUDIO_FRAME_DURATION_S
    assert q.depth_seconds() == expected


def test_rejects_non_positive_depth():
    with pytest.raises(ValueError):
        AudioFrameQueue(max_depth_s=0)


# ---------------------------------------------------------------------
# Overflow behavior
# ---------------------------------------------------------------------

def test_overflow_drops_oldest():
    max_depth = 2 * AUDIO_FRAME_DURATION_S
    q = AudioFrameQueue(max_depth_s=max_depth)

    q.enqueue(make_frame(1))
    q.enqueue(make_frame(2))
    q.enqueue(make_frame(3))

    assert q.drops.stale == 1
    assert len(q) == 2
    head = q.dequeue()
    assert head is not None
    assert head.sequence_num == 2


def test_closed_queue_drains_then_returns_none():
    q = AudioFrameQueue(max_depth_s=1.0)
    q.enqueue(make_frame(1))
    q.close()
    q.enqueue(make_frame(2))

    async def main() -> list[AudioFrame | None]:
        return [await q.get(), await q.get()]

    first, second = asyncio.run(main())
    assert first is not None and first.sequence_num == 1
    assert second is None


# ---------------------------------------------------------------------
# Mic fan-out
# ---------------------------------------------------------------------

def test_slow_subscriber_does_not_affect_others():
    hub = MicHub(max_depth_s=2 * AUDIO_FRAME_DURATION_S)
    slow = hub.subscribe()
    fast = hub.subscribe()

    for seq in range(1, 4):
        hub.publish(make_frame(seq))
        frame = fast.dequeue()
        assert frame is not None and frame.sequence_num == seq

    assert slow.drops.stale == 1
    assert fast.drops.stale == 0


def test_frames_stream_unsubscribes_when_consumer_stops():
    hub = MicHub()

    async def main() -> list[bytes]:
        stream = hub.frames()
        received: list[bytes] = []

        async def consume() -> None:
            async for pcm in stream:
                received.append(pcm)
                if len(received) == 2:
                    break

        task = asyncio.create_task(consume())
        while hub.subscriber_count == 0:
            await asyncio.sleep(0)
        hub.publish(make_frame(1))
        hub.publish(make_frame(2))
        await task
        await stream.aclose()
        return received

    received = asyncio.run(main())
    assert len(received) == 2
    assert hub.subscriber_count == 0
