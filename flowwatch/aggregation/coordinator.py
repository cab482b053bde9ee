"""
aggregation/coordinator.py

AggregationCoordinator — sole owner of the canonical window table.

Consumes local tables from the worker mailbox, merges them into the
canonical table, and every ``window_seconds`` hands a WindowReport to the
reporter and starts the next window from an empty table.

Scheduling:
  - Main loop: a mailbox.get() task raced against the deadline with
    asyncio.wait(). Whichever happens first is serviced: a table arrives →
    merge; the deadline passes → report and reset. A get() that already
    holds a table when the coordinator is cancelled is merged, never lost,
    and the cancellation is never swallowed.
  - Deadlines use time.monotonic() and are re-armed as
    previous_deadline + window_seconds, so report cadence does not drift.
  - Report timestamps use time.time() for human readability.
  - Graceful shutdown: on CancelledError, drains the mailbox and reports
    the final partial window before re-raising.

Thread safety: NOT thread-safe. Every method runs on the coordinator's
event loop; workers only ever reach it through the mailbox.
"""

from __future__ import annotations

import asyncio
import logging
import time

from ..metrics import METRICS
from ..reporting import Reporter
from .models import WindowReport, WindowTable, merge_into

logger = logging.getLogger(__name__)


class AggregationCoordinator:
    """
    Args:
        mailbox:        asyncio.Queue[WindowTable] filled by worker hand-offs.
        reporter:       Receives one WindowReport per elapsed window.
        window_seconds: Reporting period.
    """

    def __init__(
        self,
        mailbox: asyncio.Queue,
        reporter: Reporter,
        window_seconds: float = 10.0,
    ) -> None:
        self._mailbox = mailbox
        self._reporter = reporter
        self._window_seconds = window_seconds

        self._table: WindowTable = {}
        self._window_start_wall = time.time()
        self._deadline = time.monotonic() + window_seconds

        self.stats: dict[str, int] = {
            "tables_merged": 0,
            "windows_reported": 0,
            "flows_in_window": 0,
        }

    # ------------------------------------------------------------------
    # Table operations
    # ------------------------------------------------------------------

    def merge(self, table: WindowTable) -> None:
        """Add a worker's local table into the canonical table."""
        merge_into(self._table, table)
        self.stats["tables_merged"] += 1
        self.stats["flows_in_window"] = len(self._table)
        METRICS.tables_merged.inc()

    def on_window_elapsed(self) -> WindowReport:
        """
        Snapshot and clear the canonical table, then hand it to the reporter.

        This is the only place the canonical table is reset.
        """
        now_wall = time.time()
        report = WindowReport(
            window_start=self._window_start_wall,
            window_end=now_wall,
            window_seconds=self._window_seconds,
            flows=self._table,
        )
        self._table = {}
        self._window_start_wall = now_wall
        self.stats["flows_in_window"] = 0

        try:
            self._reporter.report(report)
        except Exception:
            logger.error("Reporter failed for %r", report, exc_info=True)

        self.stats["windows_reported"] += 1
        METRICS.windows_reported.inc()
        logger.info(
            "Window closed — flows=%d pkts=%d bytes=%d | metrics=%s",
            len(report.flows),
            report.total_packets,
            report.total_bytes,
            METRICS.by_stage(),
        )
        return report

    def snapshot(self) -> WindowTable:
        """Copy of the current window's totals (the live table is never exposed)."""
        copy: WindowTable = {}
        merge_into(copy, self._table)
        return copy

    # ------------------------------------------------------------------
    # Main async loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Merge incoming tables and close windows on schedule. Runs until cancelled.
        """
        logger.info("Coordinator started — %gs windows", self._window_seconds)
        self._window_start_wall = time.time()
        self._deadline = time.monotonic() + self._window_seconds
        try:
            while True:
                await self._step()
        except asyncio.CancelledError:
            logger.info("Coordinator cancellation received — flushing final window…")
            self._drain()
            if self._table:
                self.on_window_elapsed()
            logger.info("Coordinator shutdown — final stats: %s", self.stats)
            raise

    async def _step(self) -> None:
        """Wait for one table or the window deadline, whichever comes first."""
        remaining = self._deadline - time.monotonic()
        if remaining > 0:
            getter = asyncio.ensure_future(self._mailbox.get())
            try:
                done, _ = await asyncio.wait({getter}, timeout=remaining)
            except asyncio.CancelledError:
                self._settle(getter)
                raise
            if done:
                self._mailbox.task_done()
                self.merge(getter.result())
                return
            self._settle(getter)

        self.on_window_elapsed()
        self._rearm()

    def _settle(self, getter: asyncio.Future) -> None:
        """Merge a get() that already completed, otherwise cancel it.

        A cancelled get() leaves its item on the queue for the next get().
        """
        if getter.done() and not getter.cancelled():
            self._mailbox.task_done()
            self.merge(getter.result())
        else:
            getter.cancel()

    def _rearm(self) -> None:
        self._deadline += self._window_seconds
        now = time.monotonic()
        if self._deadline <= now:
            # Fell more than a full period behind — re-anchor on now
            logger.warning("Coordinator fell behind schedule — re-anchoring window timer")
            self._deadline = now + self._window_seconds

    def _drain(self) -> None:
        while True:
            try:
                table = self._mailbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._mailbox.task_done()
            self.merge(table)
