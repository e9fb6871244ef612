"""
Rule-based fraud detection over aggregated subject behavior and support tickets.

Four independent rules, evaluated in a fixed order every scan:
  1. repeated suspicious amounts   → suspicious_activity (user)
  2. repeated large transactions   → unusual_patterns (user)
  3. flagged support content       → content_violation (message author)
  4. abnormal agent approval rate  → unusual_patterns (agent)
Fully explainable: every alert carries the rule name, a reason and the
evidence that made it fire. No ML; thresholds come from RuleConfig and
confidence is a fixed constant per rule.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

from doorstep_guard.alerts.models import (
    Alert,
    AlertCategory,
    SubjectRole,
    derive_alert_id,
)
from doorstep_guard.analysis_engine.aggregator import (
    DEFAULT_LARGE_VALUE_THRESHOLD,
    DEFAULT_SUSPICIOUS_AMOUNTS,
    SubjectAggregate,
)
from doorstep_guard.guard_logging import get_logger
from doorstep_guard.sources.models import Identity, SupportMessage, Transaction

logger = get_logger(__name__)

RULE_SUSPICIOUS_AMOUNTS = "repeated_suspicious_amounts"
RULE_LARGE_TRANSACTIONS = "repeated_large_transactions"
RULE_FLAGGED_CONTENT = "flagged_support_content"
RULE_AGENT_APPROVAL_RATE = "abnormal_agent_approval_rate"

CONFIDENCE_SUSPICIOUS_AMOUNTS = 0.85
CONFIDENCE_LARGE_TRANSACTIONS = 0.78
CONFIDENCE_FLAGGED_CONTENT = 0.92
CONFIDENCE_AGENT_APPROVAL_RATE = 0.88

ANONYMOUS_SUBJECT_ID = "anonymous"

DEFAULT_SUSPICIOUS_KEYWORDS = (
    "money laundering",
    "bypass",
    "hack",
    "fake id",
    "illegal",
    "bypass verification",
    "fake account",
    "identity theft",
)


@dataclass(frozen=True)
class RuleConfig:
    """
    Tunable thresholds for the detection rules.

    Loaded from env / JSON by doorstep_guard.config.load_rule_config; the
    defaults reproduce the portal's production values.
    """

    suspicious_amounts: frozenset[Decimal] = DEFAULT_SUSPICIOUS_AMOUNTS
    large_value_threshold: Decimal = DEFAULT_LARGE_VALUE_THRESHOLD
    """Amounts strictly above this are large-value."""
    suspicious_min_count: int = 2
    large_min_count: int = 3
    agent_min_handled: int = 10
    """Agent rule needs strictly more handled transactions than this."""
    agent_min_approval_rate: float = 0.95
    """Agent rule fires when approved/handled is strictly above this (0..1)."""
    agent_recent_limit: int = 5
    suspicious_keywords: tuple[str, ...] = field(default=DEFAULT_SUSPICIOUS_KEYWORDS)

    def __post_init__(self) -> None:
        if not 0.0 <= self.agent_min_approval_rate <= 1.0:
            raise ValueError("agent_min_approval_rate must be between 0 and 1")
        for name in ("suspicious_min_count", "large_min_count", "agent_recent_limit"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.agent_min_handled < 0:
            raise ValueError("agent_min_handled must be non-negative")
        if self.large_value_threshold < 0:
            raise ValueError("large_value_threshold must be non-negative")


def _amount_out(amount: Decimal | None) -> int | float:
    """JSON-friendly amount: int when integral, else float."""
    if amount is None:
        return 0
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def _date_out(ts: datetime | None) -> str | None:
    return ts.date().isoformat() if ts else None


def _transaction_evidence(tx: Transaction) -> dict[str, Any]:
    return {
        "serviceId": tx.transaction_id,
        "amount": _amount_out(tx.amount),
        "date": _date_out(tx.created_at),
        "serviceType": tx.service_type,
    }


class RuleEvaluator:
    """Applies the fixed rule set to one scan's aggregates and raw records."""

    def __init__(self, config: RuleConfig | None = None) -> None:
        self.config = config or RuleConfig()
        self._keywords = tuple(k.lower() for k in self.config.suspicious_keywords)

    def evaluate(
        self,
        aggregates: Mapping[str, SubjectAggregate],
        transactions: Sequence[Transaction],
        support_messages: Iterable[SupportMessage],
        identities: Iterable[Identity],
        *,
        now: datetime | None = None,
    ) -> list[Alert]:
        """
        Run all rules and return candidate alerts (not yet deduplicated).

        Args:
            aggregates: subject id → SubjectAggregate from aggregate_transactions.
            transactions: the validated transactions of the scan (display names).
            support_messages: validated support messages of the scan.
            identities: directory used to resolve display names.
            now: detection timestamp stamped on every candidate.
        """
        now = now or datetime.now(timezone.utc)
        directory = {i.identity_id: i for i in identities}
        record_names: dict[str, str] = {}
        for tx in transactions:
            if tx.subject_name and tx.subject_id not in record_names:
                record_names[tx.subject_id] = tx.subject_name

        def user_name(subject_id: str) -> str:
            ident = directory.get(subject_id)
            if ident is not None:
                return ident.display_name
            return record_names.get(subject_id) or "Unknown User"

        candidates: list[Alert] = []
        for agg in aggregates.values():
            alert = self._check_suspicious_amounts(agg, user_name, now)
            if alert is not None:
                candidates.append(alert)
        for agg in aggregates.values():
            alert = self._check_large_transactions(agg, user_name, now)
            if alert is not None:
                candidates.append(alert)
        for msg in support_messages:
            alert = self._check_support_content(msg, directory, now)
            if alert is not None:
                candidates.append(alert)
        for agg in aggregates.values():
            alert = self._check_agent_approval_rate(agg, directory, now)
            if alert is not None:
                candidates.append(alert)

        logger.info(
            "rules_evaluated",
            subjects=len(aggregates),
            candidates=len(candidates),
        )
        return candidates

    def _check_suspicious_amounts(self, agg: SubjectAggregate, user_name, now: datetime) -> Alert | None:
        """Flag a user with repeated round 'test' amounts (999, 1999, ...)."""
        cfg = self.config
        if agg.suspicious_count < cfg.suspicious_min_count or not agg.suspicious_transactions:
            return None
        category = AlertCategory.SUSPICIOUS_ACTIVITY
        return Alert(
            alert_id=derive_alert_id(agg.subject_id, category),
            subject_id=agg.subject_id,
            subject_name=user_name(agg.subject_id),
            subject_role=SubjectRole.USER,
            category=category,
            reason="Multiple transactions with suspicious amounts",
            confidence=CONFIDENCE_SUSPICIOUS_AMOUNTS,
            detected_at=now,
            updated_at=now,
            rule=RULE_SUSPICIOUS_AMOUNTS,
            evidence={
                "suspiciousTransactions": [_transaction_evidence(tx) for tx in agg.suspicious_transactions],
            },
        )

    def _check_large_transactions(self, agg: SubjectAggregate, user_name, now: datetime) -> Alert | None:
        """Flag a user with several transactions above the large-value threshold."""
        cfg = self.config
        if agg.large_count < cfg.large_min_count or not agg.large_transactions:
            return None
        category = AlertCategory.UNUSUAL_PATTERNS
        return Alert(
            alert_id=derive_alert_id(agg.subject_id, category),
            subject_id=agg.subject_id,
            subject_name=user_name(agg.subject_id),
            subject_role=SubjectRole.USER,
            category=category,
            reason="Multiple large transactions in short period",
            confidence=CONFIDENCE_LARGE_TRANSACTIONS,
            detected_at=now,
            updated_at=now,
            rule=RULE_LARGE_TRANSACTIONS,
            evidence={
                "largeTransactions": [_transaction_evidence(tx) for tx in agg.large_transactions],
            },
        )

    def _check_support_content(
        self,
        msg: SupportMessage,
        directory: Mapping[str, Identity],
        now: datetime,
    ) -> Alert | None:
        """Flag a ticket whose body contains a configured keyword (literal substring)."""
        body = (msg.body or "").lower()
        flagged = [kw for kw in self._keywords if kw in body]
        if not flagged:
            return None
        subject_id = msg.subject_id or ANONYMOUS_SUBJECT_ID
        ident = directory.get(subject_id) if msg.subject_id else None
        if ident is not None:
            name = ident.display_name
        elif msg.author_name:
            name = msg.author_name
        else:
            name = "Unknown User" if msg.subject_id else "Anonymous User"
        category = AlertCategory.CONTENT_VIOLATION
        return Alert(
            alert_id=derive_alert_id(subject_id, category),
            subject_id=subject_id,
            subject_name=name,
            subject_role=SubjectRole.USER,
            category=category,
            reason="Suspicious keywords in message",
            confidence=CONFIDENCE_FLAGGED_CONTENT,
            detected_at=now,
            updated_at=now,
            rule=RULE_FLAGGED_CONTENT,
            evidence={
                "flaggedWords": flagged,
                "ticketId": msg.message_id,
                "ticketIds": [msg.message_id],
                "message": msg.body,
                "email": msg.email,
                "contactNo": msg.phone,
            },
        )

    def _check_agent_approval_rate(
        self,
        agg: SubjectAggregate,
        directory: Mapping[str, Identity],
        now: datetime,
    ) -> Alert | None:
        """Flag an agent who approves nearly everything they handle."""
        cfg = self.config
        rate = agg.approval_rate
        if rate is None or agg.handled_count <= cfg.agent_min_handled:
            return None
        if rate <= cfg.agent_min_approval_rate:
            return None
        recent = sorted(
            agg.handled_transactions,
            key=lambda tx: tx.created_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )[: cfg.agent_recent_limit]
        if not recent:
            return None
        ident = directory.get(agg.subject_id)
        avg = agg.avg_amount or Decimal(0)
        category = AlertCategory.UNUSUAL_PATTERNS
        return Alert(
            alert_id=derive_alert_id(agg.subject_id, category),
            subject_id=agg.subject_id,
            subject_name=ident.display_name if ident else "Unknown Agent",
            subject_role=SubjectRole.AGENT,
            category=category,
            reason="Abnormally high service approval rate",
            confidence=CONFIDENCE_AGENT_APPROVAL_RATE,
            detected_at=now,
            updated_at=now,
            rule=RULE_AGENT_APPROVAL_RATE,
            evidence={
                "approvalRate": f"{rate * 100:.1f}%",
                "serviceCount": agg.handled_count,
                "approved": agg.approved_count,
                "rejected": agg.rejected_count,
                "avgAmount": round(float(avg), 2),
                "recentServices": [
                    {
                        "id": tx.transaction_id,
                        "status": tx.status.value if tx.status else None,
                        "amount": _amount_out(tx.amount),
                        "date": _date_out(tx.created_at),
                        "serviceType": tx.service_type,
                    }
                    for tx in recent
                ],
            },
        )
