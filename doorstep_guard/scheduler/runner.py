"""
Periodic scan runner.

run_periodic_scans() is started by the FastAPI lifespan in a background
thread and never blocks the API. Each tick runs one scan over all records;
a failed tick is logged and the loop continues until stop_event is set.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from doorstep_guard.core.exceptions import ScanFailed
from doorstep_guard.guard_logging import get_logger
from doorstep_guard.scanner.engine import ScanEngine

logger = get_logger(__name__)

DEFAULT_SCAN_INTERVAL_SEC = 300.0
MIN_SCAN_INTERVAL_SEC = 1.0
SHUTDOWN_JOIN_TIMEOUT_SEC = 15.0


@dataclass
class PeriodicScanConfig:
    interval_sec: float = DEFAULT_SCAN_INTERVAL_SEC
    run_on_start: bool = True
    """Scan immediately on start instead of waiting one interval."""


def run_periodic_scans(
    engine: ScanEngine,
    config: PeriodicScanConfig,
    stop_event: threading.Event,
) -> int:
    """
    Scan every interval_sec until stop_event is set. Returns the tick count.
    """
    interval = max(MIN_SCAN_INTERVAL_SEC, config.interval_sec)
    logger.info("periodic_scanner_started", interval_sec=interval)
    tick_count = 0
    if not config.run_on_start:
        stop_event.wait(timeout=interval)
    while not stop_event.is_set():
        tick_start = time.monotonic()
        tick_count += 1
        try:
            result = engine.run_scan()
            logger.info(
                "periodic_tick_done",
                tick=tick_count,
                scan_id=result.scan_id,
                alerts_created=result.alerts_created,
                alerts_updated=result.alerts_updated,
                partial=result.partial,
            )
        except ScanFailed as e:
            logger.warning("periodic_tick_scan_failed", tick=tick_count, failed_sources=e.failed_sources)
        except Exception as e:
            logger.exception("periodic_tick_failed", tick=tick_count, error=str(e))
        # Sleep until next tick; wake periodically to check stop_event
        deadline = tick_start + interval
        while not stop_event.is_set() and time.monotonic() < deadline:
            stop_event.wait(timeout=min(1.0, max(0, deadline - time.monotonic())))
    logger.info("periodic_scanner_stopped", tick_count=tick_count)
    return tick_count


def start_periodic_scans(
    engine: ScanEngine,
    config: PeriodicScanConfig,
) -> tuple[threading.Thread, threading.Event]:
    """Start run_periodic_scans in a daemon thread; set the event to stop it."""
    stop_event = threading.Event()
    thread = threading.Thread(
        target=run_periodic_scans,
        args=(engine, config, stop_event),
        name="doorstep-guard-scanner",
        daemon=True,
    )
    thread.start()
    return thread, stop_event


def stop_periodic_scans(thread: threading.Thread, stop_event: threading.Event) -> None:
    stop_event.set()
    thread.join(timeout=SHUTDOWN_JOIN_TIMEOUT_SEC)
    if thread.is_alive():
        logger.warning("periodic_scanner_join_timeout", timeout_sec=SHUTDOWN_JOIN_TIMEOUT_SEC)
