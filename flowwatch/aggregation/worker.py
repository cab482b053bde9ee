"""
aggregation/worker.py

WorkerAggregator — one thread draining the shared FrameStream into a
private FlowKey → FlowStats table.

Scheduling:
  - Each worker blocks on FrameStream.take(timeout=flush_interval).
  - Every ``flush_interval`` seconds (checked after each frame and on each
    take() timeout) a non-empty local table is swapped for a fresh one and
    the old table is handed to the coordinator's mailbox.
  - When the stream is closed and drained, the remaining table is handed
    off once more and the thread exits.

Thread safety: the local table is touched only by its own thread. After a
table has been handed off the worker keeps no reference to it.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time

from ..capture.parser import extract_flow
from ..metrics import METRICS
from ..pipeline import FrameStream, HandOffError, StreamClosed, hand_off
from .models import FlowStats, WindowTable

logger = logging.getLogger(__name__)


class WorkerAggregator(threading.Thread):
    """
    Args:
        wid:             Worker index, used in the thread name.
        stream:          Shared FrameStream (many workers, one producer).
        mailbox:         The coordinator's asyncio.Queue of local tables.
        loop:            Event loop the coordinator runs on.
        flush_interval:  Seconds between incremental emissions.
        bidirectional:   Passed through to the frame extractor.
        handoff_timeout: Max seconds to wait for the coordinator to accept a table.
    """

    def __init__(
        self,
        *,
        wid: int,
        stream: FrameStream,
        mailbox: asyncio.Queue,
        loop: asyncio.AbstractEventLoop,
        flush_interval: float = 0.5,
        bidirectional: bool = False,
        handoff_timeout: float | None = 30.0,
    ) -> None:
        super().__init__(name=f"flow-worker-{wid}", daemon=True)
        self.wid = wid
        self._stream = stream
        self._mailbox = mailbox
        self._loop = loop
        self._flush_interval = flush_interval
        self._bidirectional = bidirectional
        self._handoff_timeout = handoff_timeout

        self.table: WindowTable = {}
        self._last_emit = time.monotonic()
        self.failed: HandOffError | None = None

        self.stats: dict[str, int] = {
            "frames_processed": 0,
            "frames_accounted": 0,
            "frames_skipped": 0,
            "tables_emitted": 0,
        }

    # ------------------------------------------------------------------
    # Per-frame step
    # ------------------------------------------------------------------

    def process(self, frame: bytes) -> None:
        """Extract one frame and account it in the local table."""
        self.stats["frames_processed"] += 1
        record = extract_flow(frame, bidirectional=self._bidirectional)
        if record is None:
            self.stats["frames_skipped"] += 1
            METRICS.frames_skipped.inc()
            return

        stats = self.table.get(record.key)
        if stats is None:
            stats = self.table[record.key] = FlowStats()
        stats.add(record.byte_delta)
        self.stats["frames_accounted"] += 1
        METRICS.frames_accounted.inc()

    # ------------------------------------------------------------------
    # Thread body
    # ------------------------------------------------------------------

    def run(self) -> None:
        logger.info("%s started", self.name)
        try:
            while True:
                try:
                    frame = self._stream.take(timeout=self._flush_interval)
                except StreamClosed:
                    break
                if frame is not None:
                    self.process(frame)
                if time.monotonic() - self._last_emit >= self._flush_interval:
                    self.emit()
            self.emit()
        except HandOffError as exc:
            self.failed = exc
            logger.error("%s: table hand-off failed — worker stopping", self.name, exc_info=True)
            return
        logger.info("%s exiting — %s", self.name, self.stats)

    def emit(self) -> None:
        """Hand the local table to the coordinator and start a fresh one."""
        self._last_emit = time.monotonic()
        if not self.table:
            return
        table, self.table = self.table, {}
        hand_off(self._mailbox, self._loop, table, timeout=self._handoff_timeout)
        self.stats["tables_emitted"] += 1
        METRICS.tables_emitted.inc()
        logger.debug("%s emitted %d flows", self.name, len(table))


class WorkerPool:
    """
    Fixed set of WorkerAggregator threads sharing one FrameStream.

    Lifecycle:
        pool = WorkerPool(stream, mailbox, loop, count=4)
        pool.start()
        ...
        pool.close()          # closes the stream; workers drain and exit
        pool.join(timeout=5)
    """

    def __init__(
        self,
        stream: FrameStream,
        mailbox: asyncio.Queue,
        loop: asyncio.AbstractEventLoop,
        count: int = 4,
        flush_interval: float = 0.5,
        bidirectional: bool = False,
        handoff_timeout: float | None = 30.0,
    ) -> None:
        self._stream = stream
        self.workers = [
            WorkerAggregator(
                wid=i,
                stream=stream,
                mailbox=mailbox,
                loop=loop,
                flush_interval=flush_interval,
                bidirectional=bidirectional,
                handoff_timeout=handoff_timeout,
            )
            for i in range(count)
        ]

    def start(self) -> None:
        for worker in self.workers:
            worker.start()
        logger.info("Started %d flow workers", len(self.workers))

    def close(self) -> None:
        self._stream.close(consumers=len(self.workers))

    def join(self, timeout: float | None = None) -> None:
        """Wait for every worker to exit, at most ``timeout`` seconds in total."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for worker in self.workers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.join(remaining)
            if worker.is_alive():
                logger.warning("%s did not exit within %ss", worker.name, timeout)

    @property
    def alive_count(self) -> int:
        return sum(1 for w in self.workers if w.is_alive())

    @property
    def failures(self) -> list[HandOffError]:
        return [w.failed for w in self.workers if w.failed is not None]

    def stats(self) -> dict[str, int]:
        """Sum of every worker's counters."""
        totals: dict[str, int] = {}
        for worker in self.workers:
            for name, value in worker.stats.items():
                totals[name] = totals.get(name, 0) + value
        return totals
