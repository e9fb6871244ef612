"""
Alert entity and its enumerations.

Alert identity is deterministic: the id is derived from (subject id, category),
so a re-scan that fires the same rule for the same subject lands on the same
alert instead of creating a new one.
"""

from __future__ import annotations

import copy
import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AlertCategory(str, Enum):
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    UNUSUAL_PATTERNS = "unusual_patterns"
    CONTENT_VIOLATION = "content_violation"


class AlertStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISMISSED = "dismissed"


class SubjectRole(str, Enum):
    USER = "user"
    AGENT = "agent"


CATEGORY_LABELS = {
    AlertCategory.SUSPICIOUS_ACTIVITY: "Suspicious Activity",
    AlertCategory.UNUSUAL_PATTERNS: "Unusual Patterns",
    AlertCategory.CONTENT_VIOLATION: "Content Violation",
}

_ID_PREFIX = {
    AlertCategory.SUSPICIOUS_ACTIVITY: "sa",
    AlertCategory.UNUSUAL_PATTERNS: "up",
    AlertCategory.CONTENT_VIOLATION: "cv",
}

# Allowed status changes; reset to pending is the only way out of a review decision.
ALLOWED_TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.PENDING: frozenset({AlertStatus.CONFIRMED, AlertStatus.DISMISSED}),
    AlertStatus.CONFIRMED: frozenset({AlertStatus.PENDING}),
    AlertStatus.DISMISSED: frozenset({AlertStatus.PENDING}),
}

CONFIDENCE_BAND_HIGH = 0.9
CONFIDENCE_BAND_MEDIUM = 0.7


def alert_key(subject_id: str, category: AlertCategory) -> str:
    """Deduplication key: one alert per (subject, category)."""
    return f"{subject_id}:{AlertCategory(category).value}"


def derive_alert_id(subject_id: str, category: AlertCategory) -> str:
    """Stable alert id, e.g. 'sa-1f0c9a3b7d2e4c51'."""
    category = AlertCategory(category)
    digest = hashlib.sha256(alert_key(subject_id, category).encode("utf-8")).hexdigest()
    return f"{_ID_PREFIX[category]}-{digest[:16]}"


def can_transition(current: AlertStatus, requested: AlertStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


@dataclass
class Alert:
    """
    Entity-level risk alert produced by a detection rule.

    Created pending by the rule evaluator; status changes only through the
    lifecycle manager; never deleted (confirmed/dismissed alerts stay for audit).
    """

    alert_id: str
    subject_id: str
    subject_name: str
    subject_role: SubjectRole
    category: AlertCategory
    reason: str
    confidence: float
    detected_at: datetime
    """When the alert was first raised; preserved across re-scans."""
    status: AlertStatus = AlertStatus.PENDING
    evidence: dict[str, Any] = field(default_factory=dict)
    """Category-specific detail (matched transactions, keywords, rates)."""
    rule: str = ""
    """Name of the detection rule that fired."""
    updated_at: datetime | None = None
    """Last evidence refresh or status change."""

    @property
    def key(self) -> str:
        return alert_key(self.subject_id, self.category)

    @property
    def confidence_band(self) -> str:
        if self.confidence >= CONFIDENCE_BAND_HIGH:
            return "high"
        if self.confidence >= CONFIDENCE_BAND_MEDIUM:
            return "medium"
        return "low"

    def copy(self) -> "Alert":
        """Deep copy so callers never hold a reference into the store."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "subject_id": self.subject_id,
            "subject_name": self.subject_name,
            "subject_role": self.subject_role.value,
            "category": self.category.value,
            "category_label": CATEGORY_LABELS[self.category],
            "reason": self.reason,
            "confidence": self.confidence,
            "confidence_band": self.confidence_band,
            "detected_at": self.detected_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "status": self.status.value,
            "rule": self.rule,
            "evidence": self.evidence,
        }
