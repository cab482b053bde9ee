"""
flowwatch/models.py

Contract between the frame extractor and everything downstream of it.

FlowKey    — hashable 4-tuple used as dict key in every window table
FlowRecord — one extracted frame: key + TCP payload byte delta

The aggregation-side types (FlowStats, WindowReport, …) live in
aggregation/models.py and re-export these two.
"""

from __future__ import annotations

from typing import NamedTuple


# ---------------------------------------------------------------------------
# FlowKey — hashable 4-tuple
# ---------------------------------------------------------------------------

class FlowKey(NamedTuple):
    """
    Directed flow identity.

    (A → B) and (B → A) are different keys unless the caller asked
    ``make_flow_key`` for bidirectional normalisation.
    """

    src_ip: str
    src_port: int
    dst_ip: str
    dst_port: int

    def __repr__(self) -> str:
        return f"{self.src_ip}:{self.src_port}→{self.dst_ip}:{self.dst_port}"


def make_flow_key(
    src_ip: str,
    src_port: int,
    dst_ip: str,
    dst_port: int,
    bidirectional: bool = False,
) -> FlowKey:
    """
    Build a FlowKey from raw packet fields.

    With ``bidirectional=True`` both directions of a connection map to the
    same key:
    - Lower-port side → src
    - Tie-break: lexicographically smaller IP → src
    """
    if not bidirectional or src_port < dst_port:
        return FlowKey(src_ip, src_port, dst_ip, dst_port)
    if dst_port < src_port:
        return FlowKey(dst_ip, dst_port, src_ip, src_port)
    # Equal ports: sort by IP
    if src_ip <= dst_ip:
        return FlowKey(src_ip, src_port, dst_ip, dst_port)
    return FlowKey(dst_ip, dst_port, src_ip, src_port)


# ---------------------------------------------------------------------------
# FlowRecord — frame extractor output
# ---------------------------------------------------------------------------

class FlowRecord(NamedTuple):
    """Result of extracting one frame."""

    key: FlowKey
    byte_delta: int
    """TCP payload bytes carried by the frame (headers excluded)."""
