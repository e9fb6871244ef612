"""
Alerts: entity model, deduplicating store and reviewer lifecycle.

One alert per (subject, category). Re-scans refresh evidence; reviewers move
alerts between pending, confirmed and dismissed.
"""

from doorstep_guard.alerts.dedup import fold_candidates, merge_evidence, merge_into
from doorstep_guard.alerts.lifecycle import AlertLifecycleManager
from doorstep_guard.alerts.models import (
    ALLOWED_TRANSITIONS,
    CATEGORY_LABELS,
    Alert,
    AlertCategory,
    AlertStatus,
    SubjectRole,
    alert_key,
    can_transition,
    derive_alert_id,
)
from doorstep_guard.alerts.store import AlertStore, InMemoryAlertStore, SQLAlertStore

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CATEGORY_LABELS",
    "Alert",
    "AlertCategory",
    "AlertLifecycleManager",
    "AlertStatus",
    "AlertStore",
    "InMemoryAlertStore",
    "SQLAlertStore",
    "SubjectRole",
    "alert_key",
    "can_transition",
    "derive_alert_id",
    "fold_candidates",
    "merge_evidence",
    "merge_into",
]
