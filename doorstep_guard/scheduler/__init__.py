# Periodic scanning: background thread started with the API server.

from doorstep_guard.scheduler.runner import (
    PeriodicScanConfig,
    run_periodic_scans,
    start_periodic_scans,
    stop_periodic_scans,
)

__all__ = [
    "PeriodicScanConfig",
    "run_periodic_scans",
    "start_periodic_scans",
    "stop_periodic_scans",
]
