"""
tests/test_pipeline.py

Tests for pipeline.py — FrameStream ring-buffer / close semantics and the
thread → event-loop hand_off().
"""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from flowwatch.metrics import METRICS
from flowwatch.pipeline import FrameStream, HandOffError, StreamClosed, hand_off


@pytest.fixture(autouse=True)
def _reset_metrics():
    METRICS.reset_all()
    yield


def drain(stream: FrameStream) -> list:
    items = []
    while True:
        try:
            item = stream.take(timeout=0.01)
        except StreamClosed:
            break
        if item is None:
            break
        items.append(item)
    return items


# ---------------------------------------------------------------------------
# FrameStream — producer side
# ---------------------------------------------------------------------------

class TestFrameStreamOffer:

    def test_offer_and_take_fifo(self):
        stream = FrameStream(maxsize=10)
        for frame in (b"1", b"2", b"3"):
            assert stream.offer(frame) is True
        assert drain(stream) == [b"1", b"2", b"3"]

    def test_drops_oldest_when_full(self):
        stream = FrameStream(maxsize=2)
        stream.offer(b"old_1")
        stream.offer(b"old_2")
        assert stream.offer(b"new_1") is True
        assert drain(stream) == [b"old_2", b"new_1"]

    def test_increments_drop_counter(self):
        stream = FrameStream(maxsize=1)
        stream.offer(b"first")
        stream.offer(b"second")
        stream.offer(b"third")
        assert METRICS.frames_dropped.value == 2

    def test_offer_after_close_rejected(self):
        stream = FrameStream(maxsize=5)
        stream.close()
        assert stream.offer(b"late") is False
        assert stream.closed is True


# ---------------------------------------------------------------------------
# FrameStream — consumer side
# ---------------------------------------------------------------------------

class TestFrameStreamTake:

    def test_timeout_returns_none(self):
        stream = FrameStream(maxsize=5)
        assert stream.take(timeout=0.01) is None

    def test_queued_frames_drained_before_closed(self):
        stream = FrameStream(maxsize=5)
        stream.offer(b"a")
        stream.offer(b"b")
        stream.close(consumers=1)
        assert stream.take(timeout=0.1) == b"a"
        assert stream.take(timeout=0.1) == b"b"
        with pytest.raises(StreamClosed):
            stream.take(timeout=0.1)

    def test_closed_and_empty_keeps_raising(self):
        stream = FrameStream(maxsize=5)
        stream.close(consumers=1)
        with pytest.raises(StreamClosed):
            stream.take(timeout=0.01)
        with pytest.raises(StreamClosed):
            stream.take(timeout=0.01)

    def test_close_on_full_stream_still_terminates_consumers(self):
        stream = FrameStream(maxsize=1)
        stream.offer(b"only")
        stream.close(consumers=3)   # no room for wake-up markers
        assert stream.take(timeout=0.01) == b"only"
        with pytest.raises(StreamClosed):
            stream.take(timeout=0.01)

    def test_close_wakes_blocked_consumers(self):
        stream = FrameStream(maxsize=5)
        outcomes = []

        def consumer():
            try:
                stream.take(timeout=5.0)
            except StreamClosed:
                outcomes.append("closed")

        threads = [threading.Thread(target=consumer) for _ in range(3)]
        for t in threads:
            t.start()
        time.sleep(0.05)
        started = time.monotonic()
        stream.close(consumers=3)
        for t in threads:
            t.join(timeout=2.0)

        assert outcomes == ["closed"] * 3
        assert time.monotonic() - started < 2.0

    def test_each_frame_taken_exactly_once(self):
        stream = FrameStream(maxsize=1000)
        frames = [str(i).encode() for i in range(500)]
        for f in frames:
            stream.offer(f)
        stream.close(consumers=4)

        seen: list[bytes] = []
        lock = threading.Lock()

        def consumer():
            while True:
                try:
                    item = stream.take(timeout=0.5)
                except StreamClosed:
                    return
                if item is not None:
                    with lock:
                        seen.append(item)

        threads = [threading.Thread(target=consumer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5.0)

        assert sorted(seen) == sorted(frames)


# ---------------------------------------------------------------------------
# hand_off
# ---------------------------------------------------------------------------

class TestHandOff:

    @pytest.mark.asyncio
    async def test_item_reaches_mailbox(self):
        mailbox: asyncio.Queue = asyncio.Queue(maxsize=4)
        loop = asyncio.get_running_loop()

        await asyncio.to_thread(hand_off, mailbox, loop, {"table": 1}, 1.0)

        assert mailbox.qsize() == 1
        assert mailbox.get_nowait() == {"table": 1}

    @pytest.mark.asyncio
    async def test_full_mailbox_times_out(self):
        mailbox: asyncio.Queue = asyncio.Queue(maxsize=1)
        mailbox.put_nowait("occupied")
        loop = asyncio.get_running_loop()

        with pytest.raises(HandOffError):
            await asyncio.to_thread(hand_off, mailbox, loop, "blocked", 0.1)

        # The timed-out item must not sneak in later
        await asyncio.sleep(0.05)
        assert mailbox.qsize() == 1
        assert mailbox.get_nowait() == "occupied"

    @pytest.mark.asyncio
    async def test_waits_for_room(self):
        mailbox: asyncio.Queue = asyncio.Queue(maxsize=1)
        mailbox.put_nowait("first")
        loop = asyncio.get_running_loop()

        pending = asyncio.ensure_future(asyncio.to_thread(hand_off, mailbox, loop, "second", 2.0))
        await asyncio.sleep(0.05)
        assert mailbox.get_nowait() == "first"
        await pending
        assert mailbox.get_nowait() == "second"

    def test_closed_loop_raises(self):
        loop = asyncio.new_event_loop()
        mailbox: asyncio.Queue = asyncio.Queue()
        loop.close()
        with pytest.raises(HandOffError):
            hand_off(mailbox, loop, {"table": 1}, 0.1)

    @pytest.mark.asyncio
    async def test_put_landing_after_timeout_counts_as_delivered(self):
        class SlowAckQueue(asyncio.Queue):
            async def put(self, item):
                await super().put(item)
                # Hold the loop after enqueuing so the caller's wait expires
                time.sleep(0.3)

        mailbox = SlowAckQueue()
        loop = asyncio.get_running_loop()

        await asyncio.to_thread(hand_off, mailbox, loop, {"table": 1}, 0.05)

        assert mailbox.qsize() == 1
        assert mailbox.get_nowait() == {"table": 1}
