"""
capture/filter.py

BPF (Berkeley Packet Filter) string builder.

BPF filters are applied by the kernel, so frames that can never produce a
flow record (ARP, UDP, IPv6, …) are rejected before they reach the frame
stream. The frame extractor still checks every frame on its own.

Usage:
    bpf = build_bpf_filter()                            # "ip and tcp"
    bpf = build_bpf_filter(ports=[80, 443])             # web traffic only
    bpf = build_bpf_filter(exclude_ips=["10.0.0.1"])    # hide the collector
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Sequence

logger = logging.getLogger(__name__)

DEFAULT_BASE = "ip and tcp"


def build_bpf_filter(
    base: str = DEFAULT_BASE,
    ports: Sequence[int] | None = None,
    exclude_ips: Sequence[str] | None = None,
) -> str:
    """
    Build a BPF filter string from high-level options.

    Args:
        base:        Root BPF clause. Default 'ip and tcp'. An empty string
                     means "no base clause".
        ports:       Optional TCP ports to restrict capture to (either side).
        exclude_ips: Optional list of host IPs to *exclude* from capture.
                     Entries that are not valid IPv4 addresses are skipped.

    Returns:
        A BPF filter string ready to pass to Scapy. Empty means "capture all".

    Examples:
        >>> build_bpf_filter()
        'ip and tcp'
        >>> build_bpf_filter(ports=[80, 443])
        'ip and tcp and (port 80 or port 443)'
        >>> build_bpf_filter(exclude_ips=['10.0.0.1', '10.0.0.2'])
        'ip and tcp and not (host 10.0.0.1 or host 10.0.0.2)'
    """
    parts: list[str] = []
    if base.strip():
        parts.append(base.strip())

    if ports:
        valid_ports = []
        for port in ports:
            if not 0 < int(port) < 65536:
                logger.warning("Invalid port for BPF filter: %r — skipping", port)
                continue
            valid_ports.append(f"port {int(port)}")
        if valid_ports:
            parts.append(f"({' or '.join(valid_ports)})")

    if exclude_ips:
        hosts = []
        for ip in exclude_ips:
            try:
                ipaddress.IPv4Address(ip)
            except ValueError:
                logger.warning("Invalid IPv4 address for BPF filter: %r — skipping", ip)
                continue
            hosts.append(f"host {ip}")
        if hosts:
            parts.append(f"not ({' or '.join(hosts)})")

    bpf = " and ".join(parts)
    logger.debug("Built BPF filter: %r", bpf)
    return bpf
