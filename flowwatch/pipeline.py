"""
flowwatch/pipeline.py

The two hand-over points between execution contexts:

  FrameStream — capture thread  → N worker threads
                Thread-safe bounded queue. Every frame is taken by exactly
                one worker. When full, the *oldest* frame is dropped
                (ring-buffer semantics) rather than blocking the sniffer.

  hand_off()  — worker thread   → coordinator coroutine
                Moves a finished local table onto the coordinator's
                asyncio mailbox and waits until it has actually been
                enqueued. Tables are never dropped: a full mailbox makes
                the worker wait, a broken loop is a fatal HandOffError.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import queue
import threading
from typing import Any

from .metrics import METRICS

logger = logging.getLogger(__name__)

_DROP_LOG_EVERY = 1000

# Upper bound on waiting for a cancelled hand-off to settle on the loop
_SETTLE_SECONDS = 1.0

# Marker placed on the queue by close(), one per consumer
_CLOSED = object()


class StreamClosed(Exception):
    """Raised by FrameStream.take() once the stream is closed and drained."""


class HandOffError(RuntimeError):
    """A local table could not be transferred to the coordinator."""


class FrameStream:
    """
    Work-distribution queue of raw frames shared by all workers.

    Args:
        maxsize: Frames buffered before the oldest ones are dropped.
    """

    def __init__(self, maxsize: int = 10_000) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._lock = threading.Lock()
        self._closed = False
        self._drops = 0

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def offer(self, frame: bytes) -> bool:
        """
        Non-blocking enqueue.

        Returns:
            True  — frame was enqueued (possibly after dropping the oldest).
            False — stream is closed, or the frame itself was lost.
        """
        with self._lock:
            if self._closed:
                return False
            try:
                self._queue.put_nowait(frame)
                return True
            except queue.Full:
                pass

            try:
                self._queue.get_nowait()  # discard oldest frame
                self._record_drop()
            except queue.Empty:
                pass  # workers drained it between put_nowait() and get_nowait()

            try:
                self._queue.put_nowait(frame)
                return True
            except queue.Full:
                self._record_drop()
                return False

    def _record_drop(self) -> None:
        METRICS.frames_dropped.inc()
        self._drops += 1
        if self._drops % _DROP_LOG_EVERY == 1:
            logger.warning(
                "Frame stream full (%d) — dropping oldest frames (%d dropped so far)",
                self._queue.maxsize,
                self._drops,
            )

    def close(self, consumers: int = 1) -> None:
        """
        Stop accepting frames and wake ``consumers`` blocked workers.

        Frames already queued are still handed out before StreamClosed.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for _ in range(consumers):
                try:
                    self._queue.put_nowait(_CLOSED)
                except queue.Full:
                    # take() also notices the closed flag on its next timeout
                    break
        logger.debug("Frame stream closed (%d frames still queued)", self._queue.qsize())

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def take(self, timeout: float | None = None) -> bytes | None:
        """
        Dequeue the next frame, waiting at most ``timeout`` seconds.

        Returns None on timeout. Raises StreamClosed once the stream has
        been closed and every queued frame has been handed out.
        """
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            if self._closed:
                raise StreamClosed() from None
            return None
        if item is _CLOSED:
            raise StreamClosed()
        return item

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()


def hand_off(
    mailbox: asyncio.Queue,
    loop: asyncio.AbstractEventLoop,
    item: Any,
    timeout: float | None = None,
) -> None:
    """
    Put ``item`` on ``mailbox`` from a non-asyncio thread, exactly once.

    Blocks the calling thread until the coordinator's loop has enqueued the
    item. Raises HandOffError if the loop is gone or the transfer does not
    complete within ``timeout`` seconds.
    """
    delivered = threading.Event()
    settled = threading.Event()

    async def _put() -> None:
        try:
            await mailbox.put(item)
            delivered.set()
        finally:
            settled.set()

    coro = _put()
    try:
        future = asyncio.run_coroutine_threadsafe(coro, loop)
    except RuntimeError as exc:
        coro.close()
        raise HandOffError(f"coordinator loop unavailable: {exc}") from exc

    try:
        future.result(timeout)
    except concurrent.futures.TimeoutError:
        if not future.cancel():
            # Completed between the timeout and cancel()
            future.result()
            return
        # cancel() reaches the task only when the loop runs it; the put may
        # already have gone through by then
        settled.wait(_SETTLE_SECONDS)
        if delivered.is_set():
            logger.warning("Table delivered after the %ss hand-off timeout", timeout)
            return
        raise HandOffError(
            f"coordinator did not accept table within {timeout}s"
        ) from None
    except concurrent.futures.CancelledError as exc:
        raise HandOffError("hand-off cancelled by coordinator loop") from exc
