"""
flowwatch/reporting.py

Renders each completed WindowReport.

  text — the classic console form, one line per flow:
      Flow Stats (10 Seconds): 2024-01-01 12:00:10.123456
      SrcIP: 10.0.0.1, SrcPort: 443, DstIP: 10.0.0.2, DstPort: 51000, SrcBytes: 1200, SrcPkts: 3
      <blank line>

  json — one JSON object per window, suitable for piping into jq or a
         log shipper.

Reporters only read the report they are given and keep nothing after
report() returns.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime
from typing import IO, TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from .aggregation.models import FlowKey, FlowStats, WindowReport


class Reporter(Protocol):
    def report(self, window: "WindowReport") -> None: ...


def _timestamp(ts: float) -> str:
    return datetime.fromtimestamp(ts).isoformat(sep=" ")


def format_flow_line(key: "FlowKey", stats: "FlowStats") -> str:
    return (
        f"SrcIP: {key.src_ip}, SrcPort: {key.src_port}, "
        f"DstIP: {key.dst_ip}, DstPort: {key.dst_port}, "
        f"SrcBytes: {stats.bytes}, SrcPkts: {stats.packets}"
    )


class ConsoleReporter:
    """Prints the textual form to ``stream`` (stdout by default)."""

    def __init__(self, stream: IO[str] | None = None, sort: bool = True) -> None:
        self._stream = stream
        self._sort = sort

    def report(self, window: "WindowReport") -> None:
        out = self._stream or sys.stdout
        flows = window.sorted_flows() if self._sort else list(window.flows.items())
        lines = [f"Flow Stats ({window.window_seconds:g} Seconds): {_timestamp(window.window_end)}"]
        lines.extend(format_flow_line(key, stats) for key, stats in flows)
        print("\n".join(lines) + "\n", file=out, flush=True)


def window_to_dict(window: "WindowReport") -> dict:
    return {
        "window_start":   window.window_start,
        "window_end":     window.window_end,
        "window_seconds": window.window_seconds,
        "total_bytes":    window.total_bytes,
        "total_packets":  window.total_packets,
        "flows": [
            {
                "src_ip":   key.src_ip,
                "src_port": key.src_port,
                "dst_ip":   key.dst_ip,
                "dst_port": key.dst_port,
                "bytes":    stats.bytes,
                "packets":  stats.packets,
            }
            for key, stats in window.sorted_flows()
        ],
    }


class JsonReporter:
    """Writes one JSON document per window, newline-terminated."""

    def __init__(self, stream: IO[str] | None = None) -> None:
        self._stream = stream

    def report(self, window: "WindowReport") -> None:
        out = self._stream or sys.stdout
        print(json.dumps(window_to_dict(window)), file=out, flush=True)


def build_reporter(fmt: str, stream: IO[str] | None = None) -> Reporter:
    """Return the reporter registered under ``fmt`` ('text' or 'json')."""
    fmt = fmt.lower()
    if fmt == "text":
        return ConsoleReporter(stream)
    if fmt == "json":
        return JsonReporter(stream)
    raise ValueError(f"Unknown report format: {fmt!r}")
