"""
tests/test_parser.py

Tests for capture/parser.py — the frame extractor.
All tests use in-memory Scapy frame construction — NO live network required.
"""

from __future__ import annotations

import pytest
from scapy.layers.inet import ICMP, IP, TCP, UDP
from scapy.layers.inet6 import IPv6
from scapy.layers.l2 import ARP, Dot1Q, Ether
from scapy.packet import Raw

from flowwatch.capture.parser import extract_flow
from flowwatch.models import FlowKey

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Explicit MACs keep Scapy from trying to resolve them over the network
SRC_MAC = "00:11:22:33:44:55"
DST_MAC = "66:77:88:99:aa:bb"


def eth():
    return Ether(src=SRC_MAC, dst=DST_MAC)


def make_tcp(
    src="1.2.3.4",
    dst="5.6.7.8",
    sport=1111,
    dport=80,
    payload=b"",
    flags="PA",
) -> bytes:
    pkt = eth() / IP(src=src, dst=dst) / TCP(sport=sport, dport=dport, flags=flags)
    if payload:
        pkt = pkt / Raw(load=payload)
    return bytes(pkt)


# ---------------------------------------------------------------------------
# Accounted frames
# ---------------------------------------------------------------------------

class TestExtractTcp:

    def test_key_fields(self):
        record = extract_flow(make_tcp(payload=b"x" * 10))
        assert record is not None
        assert record.key == FlowKey("1.2.3.4", 1111, "5.6.7.8", 80)

    @pytest.mark.parametrize("size", [0, 1, 10, 20, 30, 1400])
    def test_byte_delta_is_tcp_payload(self, size):
        record = extract_flow(make_tcp(payload=b"a" * size))
        assert record is not None
        assert record.byte_delta == size

    def test_tcp_options_not_counted(self):
        pkt = (
            eth()
            / IP(src="1.2.3.4", dst="5.6.7.8")
            / TCP(sport=1111, dport=80, options=[("MSS", 1460), ("NOP", None), ("WScale", 7)])
            / Raw(load=b"z" * 25)
        )
        record = extract_flow(bytes(pkt))
        assert record is not None
        assert record.byte_delta == 25

    def test_ethernet_padding_not_counted(self):
        # A bare ACK is 54 bytes; the NIC pads it to the 60-byte Ethernet minimum
        frame = make_tcp(flags="A") + b"\x00" * 6
        record = extract_flow(frame)
        assert record is not None
        assert record.byte_delta == 0

    def test_snaplen_truncated_payload_counts_captured_bytes(self):
        frame = make_tcp(payload=b"p" * 100)
        headers = 14 + 20 + 20
        record = extract_flow(frame[: headers + 40])
        assert record is not None
        assert record.byte_delta == 40

    def test_vlan_tagged_frame(self):
        pkt = eth() / Dot1Q(vlan=42) / IP(src="1.2.3.4", dst="5.6.7.8") / TCP(sport=1111, dport=80) / Raw(b"q" * 7)
        record = extract_flow(bytes(pkt))
        assert record is not None
        assert record.key == FlowKey("1.2.3.4", 1111, "5.6.7.8", 80)
        assert record.byte_delta == 7

    def test_direction_preserved_by_default(self):
        fwd = extract_flow(make_tcp(src="1.2.3.4", dst="5.6.7.8", sport=1111, dport=80))
        rev = extract_flow(make_tcp(src="5.6.7.8", dst="1.2.3.4", sport=80, dport=1111))
        assert fwd.key != rev.key

    def test_bidirectional_merges_directions(self):
        fwd = extract_flow(make_tcp(src="1.2.3.4", dst="5.6.7.8", sport=1111, dport=80), bidirectional=True)
        rev = extract_flow(make_tcp(src="5.6.7.8", dst="1.2.3.4", sport=80, dport=1111), bidirectional=True)
        assert fwd.key == rev.key
        assert fwd.key == FlowKey("5.6.7.8", 80, "1.2.3.4", 1111)


# ---------------------------------------------------------------------------
# Frames outside the accounted class → None
# ---------------------------------------------------------------------------

class TestExtractMisses:

    def test_udp(self):
        frame = bytes(eth() / IP(src="1.2.3.4", dst="5.6.7.8") / UDP(sport=5000, dport=53) / Raw(b"q"))
        assert extract_flow(frame) is None

    def test_icmp(self):
        frame = bytes(eth() / IP(src="1.2.3.4", dst="5.6.7.8") / ICMP())
        assert extract_flow(frame) is None

    def test_arp(self):
        frame = bytes(eth() / ARP(psrc="1.2.3.4", pdst="5.6.7.8", hwsrc=SRC_MAC))
        assert extract_flow(frame) is None

    def test_ipv6_tcp(self):
        frame = bytes(eth() / IPv6(src="::1", dst="::2") / TCP(sport=1111, dport=80))
        assert extract_flow(frame) is None

    def test_non_first_fragment(self):
        frame = bytes(eth() / IP(src="1.2.3.4", dst="5.6.7.8", proto=6, frag=100) / Raw(b"f" * 40))
        assert extract_flow(frame) is None

    def test_truncated_tcp_header(self):
        frame = make_tcp(payload=b"x" * 10)
        assert extract_flow(frame[: 14 + 20 + 3]) is None

    @pytest.mark.parametrize("frame", [b"", b"\x01", b"\x00" * 10, b"\xff" * 13])
    def test_garbage(self, frame):
        assert extract_flow(frame) is None


# ---------------------------------------------------------------------------
# Purity
# ---------------------------------------------------------------------------

class TestPurity:

    def test_same_bytes_same_result(self):
        frame = make_tcp(payload=b"hello")
        assert extract_flow(frame) == extract_flow(frame)

    def test_frame_not_mutated(self):
        frame = make_tcp(payload=b"hello")
        copy = bytes(frame)
        extract_flow(frame)
        assert frame == copy

    def test_miss_is_stable(self):
        frame = bytes(eth() / IP(src="1.2.3.4", dst="5.6.7.8") / UDP(sport=1, dport=2))
        assert extract_flow(frame) is None
        assert extract_flow(frame) is None
