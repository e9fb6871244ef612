"""
Core: shared exceptions.
"""

from doorstep_guard.core.exceptions import (
    AlertNotFound,
    DoorstepGuardError,
    InvalidTransition,
    MalformedRecord,
    ScanFailed,
    SourceUnavailable,
)

__all__ = [
    "AlertNotFound",
    "DoorstepGuardError",
    "InvalidTransition",
    "MalformedRecord",
    "ScanFailed",
    "SourceUnavailable",
]
