"""
Alert lifecycle: reviewer status transitions and dashboard queries.

Transitions run under the store lock, so a status change never interleaves
with a scan merge.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from doorstep_guard.alerts.models import (
    Alert,
    AlertCategory,
    AlertStatus,
    can_transition,
)
from doorstep_guard.alerts.store import AlertStore
from doorstep_guard.core.exceptions import AlertNotFound, InvalidTransition
from doorstep_guard.guard_logging import get_logger

logger = get_logger(__name__)


class AlertLifecycleManager:
    """Reviewer-facing operations over an AlertStore."""

    def __init__(self, store: AlertStore) -> None:
        self._store = store

    @property
    def store(self) -> AlertStore:
        return self._store

    def get_alert(self, alert_id: str) -> Alert:
        alert = self._store.get(alert_id)
        if alert is None:
            raise AlertNotFound(alert_id)
        return alert

    def set_alert_status(self, alert_id: str, new_status: AlertStatus | str) -> Alert:
        """
        Move an alert to new_status and return the updated alert.

        Raises:
            ValueError: new_status is not a known status value.
            AlertNotFound: no alert with this id.
            InvalidTransition: confirmed <-> dismissed without going through pending.
        """
        requested = AlertStatus(new_status)
        with self._store.lock:
            alert = self.get_alert(alert_id)
            if alert.status == requested:
                return alert
            if not can_transition(alert.status, requested):
                logger.warning(
                    "alert_transition_rejected",
                    alert_id=alert_id,
                    current=alert.status.value,
                    requested=requested.value,
                )
                raise InvalidTransition(alert_id, alert.status.value, requested.value)
            previous = alert.status
            alert.status = requested
            alert.updated_at = datetime.now(timezone.utc)
            self._store.save(alert)
        logger.info(
            "alert_status_changed",
            alert_id=alert_id,
            previous=previous.value,
            status=requested.value,
        )
        return alert

    def list_alerts(
        self,
        category: AlertCategory | str | None = None,
        search: str | None = None,
        status: AlertStatus | str | None = None,
    ) -> list[Alert]:
        """
        Alerts newest first. category/status are exact matches; search is a
        case-insensitive substring over subject name, subject id and reason.
        """
        wanted_category = AlertCategory(category) if category else None
        wanted_status = AlertStatus(status) if status else None
        needle = (search or "").strip().lower()
        out: list[Alert] = []
        for alert in self._store.list_all():
            if wanted_category is not None and alert.category != wanted_category:
                continue
            if wanted_status is not None and alert.status != wanted_status:
                continue
            if needle:
                haystack = " ".join((alert.subject_name, alert.subject_id, alert.reason)).lower()
                if needle not in haystack:
                    continue
            out.append(alert)
        out.sort(key=lambda a: (a.detected_at, a.alert_id), reverse=True)
        return out

    def summary(self) -> dict[str, Any]:
        """Totals by status and category for the dashboard header."""
        by_status = {s.value: 0 for s in AlertStatus}
        by_category = {c.value: 0 for c in AlertCategory}
        alerts = self._store.list_all()
        for alert in alerts:
            by_status[alert.status.value] += 1
            by_category[alert.category.value] += 1
        return {
            "total": len(alerts),
            "pending": by_status[AlertStatus.PENDING.value],
            "reviewed": by_status[AlertStatus.CONFIRMED.value] + by_status[AlertStatus.DISMISSED.value],
            "by_status": by_status,
            "by_category": by_category,
        }
