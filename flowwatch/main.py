from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import NoReturn

from pydantic import ValidationError

from .aggregation import AggregationCoordinator, WorkerPool
from .capture import CaptureError, PacketCapture, build_bpf_filter
from .config import Settings, get_settings
from .metrics import METRICS
from .pipeline import FrameStream
from .reporting import Reporter, build_reporter

logger = logging.getLogger("flowwatch.main")

WORKER_JOIN_TIMEOUT = 5.0


# ---------------------------------------------------------------------------
# Supervision
# ---------------------------------------------------------------------------

async def worker_watchdog(
    pool: WorkerPool,
    shutdown_event: asyncio.Event,
    interval: float = 1.0,
) -> None:
    """A failed hand-off breaks the single-coordinator invariant: stop everything."""
    while not shutdown_event.is_set():
        await asyncio.sleep(interval)
        failures = pool.failures
        if failures:
            logger.critical("Worker hand-off failed (%s) — shutting down", failures[0])
            shutdown_event.set()


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

async def run(cfg: Settings, reporter: Reporter) -> int:
    """
    Wire capture → workers → coordinator and run until SIGINT/SIGTERM.

    Returns the process exit status. Raises CaptureError if the interface
    cannot be opened.
    """
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler(_signum, _frame) -> None:
        logger.info("Shutdown signal received")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    stream = FrameStream(maxsize=cfg.FRAME_QUEUE_SIZE)
    mailbox: asyncio.Queue = asyncio.Queue(maxsize=cfg.MAILBOX_SIZE)

    # Capture — fails fast before any worker is started
    capture = PacketCapture(
        stream=stream,
        iface=cfg.INTERFACE,
        snaplen=cfg.SNAPLEN,
        promisc=cfg.PROMISC,
        bpf_filter=build_bpf_filter(
            base=cfg.BPF_FILTER,
            ports=cfg.PORTS,
            exclude_ips=cfg.EXCLUDE_IPS,
        ),
    )
    capture.start()

    coordinator = AggregationCoordinator(
        mailbox=mailbox,
        reporter=reporter,
        window_seconds=cfg.WINDOW_SECONDS,
    )
    pool = WorkerPool(
        stream=stream,
        mailbox=mailbox,
        loop=loop,
        count=cfg.WORKER_COUNT,
        flush_interval=cfg.FLUSH_INTERVAL_SECONDS,
        bidirectional=cfg.BIDIRECTIONAL_FLOWS,
        handoff_timeout=cfg.HANDOFF_TIMEOUT_SECONDS,
    )
    pool.start()

    tasks = [
        asyncio.create_task(coordinator.run(),                      name="coordinator"),
        asyncio.create_task(worker_watchdog(pool, shutdown_event),  name="watchdog"),
    ]

    logger.info(
        "flowwatch — iface=%r workers=%d window=%gs flush=%gs bidirectional=%s",
        cfg.INTERFACE,
        cfg.WORKER_COUNT,
        cfg.WINDOW_SECONDS,
        cfg.FLUSH_INTERVAL_SECONDS,
        cfg.BIDIRECTIONAL_FLOWS,
    )

    await shutdown_event.wait()

    # Stop the producer, let workers drain and hand off their last tables
    # while the coordinator is still merging, then close the final window.
    capture.stop()
    pool.close()
    await asyncio.to_thread(pool.join, WORKER_JOIN_TIMEOUT)
    for t in tasks:
        t.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)

    logger.info("Final stats — workers=%s coordinator=%s", pool.stats(), coordinator.stats)
    logger.info("Final metrics — %s", METRICS.as_dict())
    if pool.failures:
        logger.error("flowwatch stopped after an internal hand-off fault")
        return 1
    logger.info("flowwatch stopped cleanly")
    return 0


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Windowed per-flow TCP byte/packet counts from live capture",
    )
    parser.add_argument("--iface", dest="INTERFACE")
    parser.add_argument("--snaplen", dest="SNAPLEN", type=int)
    parser.add_argument(
        "--no-promisc", dest="PROMISC", action="store_const", const=False,
        help="do not put the interface in promiscuous mode",
    )
    parser.add_argument("--filter", dest="BPF_FILTER", help="base BPF filter")
    parser.add_argument("--workers", dest="WORKER_COUNT", type=int)
    parser.add_argument("--window", dest="WINDOW_SECONDS", type=float, help="seconds")
    parser.add_argument("--format", dest="REPORT_FORMAT", choices=["text", "json"])
    parser.add_argument(
        "--bidirectional", dest="BIDIRECTIONAL_FLOWS", action="store_const", const=True,
        help="count both directions of a connection as one flow",
    )
    parser.add_argument(
        "--log-level", dest="LOG_LEVEL",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Overlay explicitly given CLI flags on top of env/.env settings."""
    if base is None:
        base = get_settings()
    overrides = {k: v for k, v in vars(args).items() if v is not None}
    return Settings(**{**base.model_dump(), **overrides})


def main(argv: list[str] | None = None) -> NoReturn:
    args = _parse_args(argv)
    try:
        cfg = build_settings(args)
    except ValidationError as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, cfg.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        status = asyncio.run(run(cfg, build_reporter(cfg.REPORT_FORMAT)))
    except CaptureError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(status)


if __name__ == "__main__":
    main()
