"""
Scanner: runs a detection pass from record sources into the alert store.
"""

from doorstep_guard.scanner.engine import ScanEngine, ScanResult

__all__ = [
    "ScanEngine",
    "ScanResult",
]
