"""
Application-level exceptions.

Non-fatal conditions (SourceUnavailable, MalformedRecord) are caught by the
scan engine and folded into the ScanResult. Lifecycle errors (AlertNotFound,
InvalidTransition) propagate to the caller; the API maps them to 404/409.
"""

from __future__ import annotations


class DoorstepGuardError(Exception):
    """Base class for all engine errors."""


class SourceUnavailable(DoorstepGuardError):
    """A record source could not return data (network error, timeout, DB down)."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"Source {source!r} unavailable: {reason}")
        self.source = source
        self.reason = reason


class MalformedRecord(DoorstepGuardError):
    """A source record is missing a required field or carries an invalid value."""

    def __init__(self, source: str, record_id: str | None, reason: str) -> None:
        super().__init__(f"Malformed {source} record {record_id or '?'}: {reason}")
        self.source = source
        self.record_id = record_id
        self.reason = reason


class AlertNotFound(DoorstepGuardError):
    """No alert with the given id exists in the store."""

    def __init__(self, alert_id: str) -> None:
        super().__init__(f"Alert {alert_id} not found")
        self.alert_id = alert_id


class InvalidTransition(DoorstepGuardError):
    """Requested status change is not allowed from the alert's current status."""

    def __init__(self, alert_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Alert {alert_id}: cannot move from {current!r} to {requested!r}"
        )
        self.alert_id = alert_id
        self.current = current
        self.requested = requested


class ScanFailed(DoorstepGuardError):
    """No usable input at all: every record-bearing source failed."""

    def __init__(self, failed_sources: list[str]) -> None:
        super().__init__(
            "Scan aborted, no usable input; failed sources: " + ", ".join(failed_sources)
        )
        self.failed_sources = list(failed_sources)
