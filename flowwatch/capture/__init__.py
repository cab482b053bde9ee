"""
capture/__init__.py

Public API for the capture sub-package.
"""

from .filter import build_bpf_filter
from .parser import extract_flow
from .sniffer import CaptureError, PacketCapture

__all__ = ["PacketCapture", "CaptureError", "extract_flow", "build_bpf_filter"]
