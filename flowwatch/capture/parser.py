"""
capture/parser.py

Frame extractor: one raw Ethernet frame → optional FlowRecord.

Design principles:
  - Called concurrently from every worker thread. Pure: no shared state,
    no logging, no metrics — the caller does the bookkeeping.
  - Returns None for anything outside the accounted traffic class:
    undecodable frames, non-IPv4, non-first fragments, no TCP header
    (including a TCP header cut short by the snapshot length, which scapy
    decodes as Raw).
  - byte_delta is the TCP payload that was actually captured. The bytes
    scapy hands to the TCP layer already exclude Ethernet trailer padding
    (IP.extract_padding trims to the IP total length), so subtracting the
    TCP header length leaves only the payload.
"""

from __future__ import annotations

from scapy.layers.inet import IP, TCP  # type: ignore[import-untyped]
from scapy.layers.l2 import Ether  # type: ignore[import-untyped]

from ..models import FlowRecord, make_flow_key

_MIN_TCP_HEADER_WORDS = 5


def _tcp_payload_length(tcp: TCP) -> int:
    segment = tcp.original or b""
    return max(0, len(segment) - tcp.dataofs * 4)


def extract_flow(frame: bytes, bidirectional: bool = False) -> FlowRecord | None:
    """
    Decode an Ethernet frame and return its flow key and TCP payload size.

    Args:
        frame:         Raw link-layer bytes as delivered by the capture source.
        bidirectional: Normalise the key so both directions share one flow.

    Returns:
        FlowRecord on success, None if the frame is not IPv4 + TCP.
    """
    try:
        pkt = Ether(frame)
    except Exception:
        # Too short for an Ethernet header, or otherwise undecodable
        return None

    ip = pkt.getlayer(IP)
    if ip is None or ip.version != 4:
        return None

    tcp = ip.getlayer(TCP)
    if tcp is None or tcp.dataofs is None or tcp.dataofs < _MIN_TCP_HEADER_WORDS:
        return None

    key = make_flow_key(
        str(ip.src),
        int(tcp.sport),
        str(ip.dst),
        int(tcp.dport),
        bidirectional=bidirectional,
    )
    return FlowRecord(key=key, byte_delta=_tcp_payload_length(tcp))
