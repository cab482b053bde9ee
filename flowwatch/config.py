"""
flowwatch/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file,
and most of them again with command-line flags (see main.py).

Quick start — create a .env file in your project root:
    INTERFACE=wlan0
    WORKER_COUNT=8
    WINDOW_SECONDS=5
    REPORT_FORMAT=json
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

REPORT_FORMATS = ("text", "json")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Capture
    INTERFACE: str = "eth0"
    SNAPLEN: int = 1500           # typical Ethernet MTU
    PROMISC: bool = True
    BPF_FILTER: str = "ip and tcp"
    EXCLUDE_IPS: Annotated[list[str], NoDecode] = []
    PORTS: Annotated[list[int], NoDecode] = []

    # Aggregation
    WORKER_COUNT: int = 4
    WINDOW_SECONDS: float = 10.0
    FLUSH_INTERVAL_SECONDS: float = 0.5
    BIDIRECTIONAL_FLOWS: bool = False

    # Queues
    FRAME_QUEUE_SIZE: int = 10_000
    MAILBOX_SIZE: int = 64
    HANDOFF_TIMEOUT_SECONDS: float = 30.0

    # Output
    REPORT_FORMAT: str = "text"

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("EXCLUDE_IPS", mode="before")
    @classmethod
    def parse_exclude_ips(cls, v):
        if isinstance(v, str):
            import json as _json
            v = v.strip()
            if v.startswith("["):
                try:
                    return _json.loads(v)
                except ValueError:
                    pass
            return [ip.strip() for ip in v.split(",") if ip.strip()]
        return v

    @field_validator("PORTS", mode="before")
    @classmethod
    def parse_ports(cls, v):
        if isinstance(v, str):
            return [p.strip() for p in v.strip().strip("[]").split(",") if p.strip()]
        return v

    @field_validator("WORKER_COUNT", "FRAME_QUEUE_SIZE", "MAILBOX_SIZE")
    @classmethod
    def positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1, got {v}")
        return v

    @field_validator("SNAPLEN")
    @classmethod
    def snaplen_range(cls, v: int) -> int:
        if not 64 <= v <= 65535:
            raise ValueError(f"must be between 64 and 65535, got {v}")
        return v

    @field_validator("WINDOW_SECONDS", "FLUSH_INTERVAL_SECONDS", "HANDOFF_TIMEOUT_SECONDS")
    @classmethod
    def positive_period(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"must be > 0, got {v}")
        return v

    @field_validator("REPORT_FORMAT")
    @classmethod
    def known_format(cls, v: str) -> str:
        v = v.lower()
        if v not in REPORT_FORMATS:
            raise ValueError(f"must be one of {REPORT_FORMATS}, got {v!r}")
        return v


@lru_cache
def get_settings() -> Settings:
    """Settings from env/.env, built on first use so a bad value surfaces
    where the caller can report it instead of at import time."""
    return Settings()
