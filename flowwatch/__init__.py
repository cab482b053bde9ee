"""
flowwatch — windowed per-flow TCP byte/packet accounting from live capture.
"""

__version__ = "0.1.0"
