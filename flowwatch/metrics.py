"""
flowwatch/metrics.py

Process-wide counters for the capture → worker → coordinator pipeline.
Workers run in their own threads, so every counter carries its own lock.

Counters are grouped by the pipeline stage that increments them; the
coordinator logs ``by_stage()`` once per window.

Usage:
    from flowwatch.metrics import METRICS
    METRICS.frames_captured.inc()
    print(METRICS.as_dict())
"""

import threading

# stage → counters owned by that stage, in pipeline order
STAGES: dict[str, tuple[str, ...]] = {
    "capture": ("frames_captured", "frames_dropped"),
    "workers": ("frames_accounted", "frames_skipped", "tables_emitted"),
    "coordinator": ("tables_merged", "windows_reported"),
}


class StageCounter:
    """Monotonic count of one pipeline event, safe to bump from any thread."""

    __slots__ = ("name", "_total", "_lock")

    def __init__(self, name: str) -> None:
        self.name = name
        self._total = 0
        self._lock = threading.Lock()

    def inc(self, amount: int = 1) -> int:
        """Add ``amount`` and return the new total."""
        with self._lock:
            self._total += amount
            return self._total

    def reset(self) -> None:
        with self._lock:
            self._total = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._total

    def __repr__(self) -> str:  # pragma: no cover
        return f"{self.name}={self._total}"


class Metrics:
    """
    One StageCounter per name in STAGES, exposed as attributes:

      frames_captured   frames handed to the frame stream by the sniffer callback
      frames_dropped    frames discarded because the frame stream was full
      frames_accounted  frames that produced a FlowRecord (IPv4 + TCP)
      frames_skipped    frames outside the accounted traffic class
      tables_emitted    local tables handed off from workers to the coordinator
      tables_merged     local tables merged into the canonical table
      windows_reported  windows handed to the reporter
    """

    frames_captured: StageCounter
    frames_dropped: StageCounter
    frames_accounted: StageCounter
    frames_skipped: StageCounter
    tables_emitted: StageCounter
    tables_merged: StageCounter
    windows_reported: StageCounter

    def __init__(self) -> None:
        self._counters: dict[str, StageCounter] = {}
        for names in STAGES.values():
            for name in names:
                counter = StageCounter(name)
                self._counters[name] = counter
                setattr(self, name, counter)

    def as_dict(self) -> dict[str, int]:
        """Flat name → value mapping (safe for JSON serialisation)."""
        return {name: c.value for name, c in self._counters.items()}

    def by_stage(self) -> dict[str, dict[str, int]]:
        return {
            stage: {name: self._counters[name].value for name in names}
            for stage, names in STAGES.items()
        }

    def reset_all(self) -> None:
        """Zero every counter (used between tests)."""
        for counter in self._counters.values():
            counter.reset()


# Module-level singleton — import from here everywhere
METRICS = Metrics()
