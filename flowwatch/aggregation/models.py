"""
aggregation/models.py

Data models for the aggregation layer.

FlowStats    — per-flow byte/packet accumulator
WindowReport — completed window snapshot handed to the reporter

A window table is a plain ``dict[FlowKey, FlowStats]``. Worker-local tables
and the coordinator's canonical table share the same shape so that merging
is a single loop (see ``merge_into``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from ..models import FlowKey, FlowRecord, make_flow_key

__all__ = [
    "FlowKey",
    "FlowRecord",
    "FlowStats",
    "WindowReport",
    "WindowTable",
    "make_flow_key",
    "merge_into",
]


# ---------------------------------------------------------------------------
# FlowStats — per-flow accumulator
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class FlowStats:
    bytes: int = 0
    packets: int = 0

    def add(self, byte_delta: int) -> None:
        """Account one packet carrying ``byte_delta`` payload bytes."""
        self.bytes += byte_delta
        self.packets += 1

    def absorb(self, other: FlowStats) -> None:
        self.bytes += other.bytes
        self.packets += other.packets


WindowTable = Dict[FlowKey, FlowStats]


def merge_into(target: WindowTable, source: WindowTable) -> None:
    """
    Add every entry of ``source`` into ``target``.

    Missing keys start from zero. FlowStats objects from ``source`` are
    never stored in ``target``, so the two tables stay independent.
    """
    for key, stats in source.items():
        entry = target.get(key)
        if entry is None:
            target[key] = FlowStats(stats.bytes, stats.packets)
        else:
            entry.absorb(stats)


# ---------------------------------------------------------------------------
# WindowReport — completed window snapshot
# ---------------------------------------------------------------------------

@dataclass
class WindowReport:
    """
    Snapshot of the canonical table at a window boundary.

    Produced by AggregationCoordinator.on_window_elapsed(); the reporter
    only reads it.
    """

    window_start: float
    """Unix timestamp of the window's start."""

    window_end: float
    """Unix timestamp of the window boundary."""

    window_seconds: float

    flows: WindowTable = field(default_factory=dict)

    @property
    def total_bytes(self) -> int:
        return sum(s.bytes for s in self.flows.values())

    @property
    def total_packets(self) -> int:
        return sum(s.packets for s in self.flows.values())

    def sorted_flows(self) -> List[Tuple[FlowKey, FlowStats]]:
        """Flows ordered by bytes, then packets (both descending), then key."""
        return sorted(
            self.flows.items(),
            key=lambda kv: (-kv[1].bytes, -kv[1].packets, kv[0]),
        )

    def __repr__(self) -> str:
        return (
            f"WindowReport("
            f"{self.window_seconds:g}s "
            f"flows={len(self.flows)} "
            f"pkts={self.total_packets} "
            f"bytes={self.total_bytes})"
        )
