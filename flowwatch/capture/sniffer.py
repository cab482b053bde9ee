"""
capture/sniffer.py

PacketCapture — wraps Scapy's AsyncSniffer and feeds raw frames into the
shared FrameStream.

Key design decisions:
  - The listening socket is opened synchronously in start(), so a missing
    interface or missing capture privileges fails the process at launch
    (CaptureError) instead of dying silently inside the sniffer thread.
    The opened socket is then handed to AsyncSniffer(opened_socket=...).
  - store=False: Scapy must NEVER accumulate captured packets in RAM.
  - The callback runs in Scapy's capture thread and does no parsing at all:
    it only takes the frame bytes, truncates them to the snapshot length
    and offers them to the stream. Extraction is the workers' job.
  - The BPF prefilter runs in the kernel, so non-TCP traffic never reaches
    the stream.

Lifecycle:
    capture = PacketCapture(stream, iface="eth0")
    capture.start()          # raises CaptureError if the interface can't be opened
    # ... workers drain the stream ...
    capture.stop()
"""

from __future__ import annotations

import logging
import threading

from scapy.all import AsyncSniffer, conf  # type: ignore[import-untyped]
from scapy.error import Scapy_Exception  # type: ignore[import-untyped]

from ..metrics import METRICS
from ..pipeline import FrameStream

logger = logging.getLogger(__name__)


class CaptureError(RuntimeError):
    """The capture source could not be opened."""


def open_listen_socket(iface: str, promisc: bool, bpf_filter: str):
    """Open a Scapy L2 listening socket on ``iface``."""
    return conf.L2listen(iface=iface, promisc=promisc, filter=bpf_filter or None)


class PacketCapture:
    """
    Args:
        stream:     FrameStream shared with the worker pool.
        iface:      Network interface name, e.g. 'eth0', 'wlan0', 'lo'
        snaplen:    Maximum bytes kept per frame.
        promisc:    Put the interface in promiscuous mode.
        bpf_filter: BPF filter string (see capture/filter.py). Empty = none.
    """

    def __init__(
        self,
        stream: FrameStream,
        iface: str = "eth0",
        snaplen: int = 1500,
        promisc: bool = True,
        bpf_filter: str = "ip and tcp",
    ) -> None:
        self._stream = stream
        self._iface = iface
        self._snaplen = snaplen
        self._promisc = promisc
        self._bpf_filter = bpf_filter
        self._sniffer = None
        self._socket = None
        self._running = False
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Callback — executes in Scapy's capture thread
    # ------------------------------------------------------------------

    def _packet_callback(self, pkt) -> None:
        frame = bytes(pkt)[: self._snaplen]
        if self._stream.offer(frame):
            METRICS.frames_captured.inc()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Open the interface and start the sniffer in its background thread."""
        with self._lock:
            if self._running:
                logger.warning("Capture on %r already running", self._iface)
                return

            logger.info(
                "Opening capture — iface=%r snaplen=%d promisc=%s filter=%r",
                self._iface,
                self._snaplen,
                self._promisc,
                self._bpf_filter,
            )
            try:
                sock = open_listen_socket(self._iface, self._promisc, self._bpf_filter)
            except (OSError, ValueError, Scapy_Exception) as exc:
                raise CaptureError(
                    f"cannot open interface {self._iface!r} for capture: {exc}"
                ) from exc

            self._socket = sock
            self._sniffer = AsyncSniffer(
                opened_socket=sock,
                prn=self._packet_callback,
                store=False,
            )
            self._sniffer.start()
            self._running = True
            logger.info("Capture running on %r", self._iface)

    def stop(self) -> None:
        """Stop the sniffer and wait for its thread to finish."""
        with self._lock:
            if not self._running:
                return
            if self._sniffer is not None:
                logger.info("Stopping capture on %r", self._iface)
                try:
                    self._sniffer.stop(join=True)
                except Scapy_Exception as exc:
                    logger.warning("Sniffer on %r did not stop cleanly: %s", self._iface, exc)
                finally:
                    self._sniffer = None
            if self._socket is not None:
                self._socket.close()
                self._socket = None
            self._running = False
            logger.info(
                "Capture stopped — captured=%d dropped=%d",
                METRICS.frames_captured.value,
                METRICS.frames_dropped.value,
            )

    @property
    def is_running(self) -> bool:
        return self._running

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"PacketCapture(iface={self._iface!r}, "
            f"snaplen={self._snaplen}, filter={self._bpf_filter!r}, "
            f"running={self._running})"
        )
