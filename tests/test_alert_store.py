"""
Tests for alert deduplication and the alert stores (in-memory and SQLite).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from doorstep_guard.alerts.dedup import fold_candidates, merge_evidence, merge_into
from doorstep_guard.alerts.models import (
    Alert,
    AlertCategory,
    AlertStatus,
    SubjectRole,
    derive_alert_id,
)

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _candidate(subject_id="U", category=AlertCategory.SUSPICIOUS_ACTIVITY, evidence=None, reason="r1"):
    return Alert(
        alert_id=derive_alert_id(subject_id, category),
        subject_id=subject_id,
        subject_name="Some User",
        subject_role=SubjectRole.USER,
        category=category,
        reason=reason,
        confidence=0.85,
        detected_at=T0,
        evidence=evidence if evidence is not None else {"suspiciousTransactions": [{"serviceId": "t1"}]},
        rule="repeated_suspicious_amounts",
    )


def test_derive_alert_id_is_stable_and_prefixed():
    a = derive_alert_id("U", AlertCategory.SUSPICIOUS_ACTIVITY)
    assert a == derive_alert_id("U", "suspicious_activity")
    assert a.startswith("sa-")
    assert derive_alert_id("U", AlertCategory.UNUSUAL_PATTERNS).startswith("up-")
    assert derive_alert_id("U", AlertCategory.CONTENT_VIOLATION).startswith("cv-")
    assert a != derive_alert_id("V", AlertCategory.SUSPICIOUS_ACTIVITY)


def test_merge_evidence_lists_and_scalars():
    merged = merge_evidence(
        {"ticketIds": ["t1"], "flaggedWords": ["hack"], "message": "first"},
        {"ticketIds": ["t2", "t1"], "flaggedWords": ["illegal"], "message": "second"},
    )
    assert merged == {
        "ticketIds": ["t1", "t2"],
        "flaggedWords": ["hack", "illegal"],
        "message": "second",
    }


def test_fold_candidates_same_key():
    c1 = _candidate(category=AlertCategory.CONTENT_VIOLATION, evidence={"ticketIds": ["t1"], "ticketId": "t1"})
    c2 = _candidate(category=AlertCategory.CONTENT_VIOLATION, evidence={"ticketIds": ["t2"], "ticketId": "t2"})
    other = _candidate(subject_id="V")
    folded = fold_candidates([c1, other, c2])
    assert len(folded) == 2
    assert folded[0].evidence == {"ticketIds": ["t1", "t2"], "ticketId": "t2"}
    # inputs untouched
    assert c1.evidence == {"ticketIds": ["t1"], "ticketId": "t1"}


def test_merge_into_new_and_unchanged():
    created, changed = merge_into(None, _candidate(), T0)
    assert changed is True
    assert created.status == AlertStatus.PENDING
    assert created.detected_at == T0

    later = T0 + timedelta(hours=1)
    same, changed = merge_into(created, _candidate(), later)
    assert changed is False
    assert same.updated_at == T0


@pytest.fixture(params=["memory", "sql"])
def store(request, memory_store, sql_store):
    return memory_store if request.param == "memory" else sql_store


def test_apply_scan_creates_then_is_idempotent(store):
    created, updated = store.apply_scan([_candidate(), _candidate("V")], now=T0)
    assert len(created) == 2
    assert updated == []
    created, updated = store.apply_scan([_candidate(), _candidate("V")], now=T0 + timedelta(hours=1))
    assert created == []
    assert updated == []
    assert len(store.list_all()) == 2


def test_refire_preserves_status_and_detected_at(store):
    store.apply_scan([_candidate()], now=T0)
    alert_id = derive_alert_id("U", AlertCategory.SUSPICIOUS_ACTIVITY)
    alert = store.get(alert_id)
    alert.status = AlertStatus.CONFIRMED
    store.save(alert)

    later = T0 + timedelta(days=1)
    new_evidence = {"suspiciousTransactions": [{"serviceId": "t1"}, {"serviceId": "t9"}]}
    created, updated = store.apply_scan([_candidate(evidence=new_evidence, reason="r2")], now=later)
    assert created == []
    assert len(updated) == 1
    stored = store.get(alert_id)
    assert stored.status == AlertStatus.CONFIRMED
    assert stored.detected_at == T0
    assert stored.updated_at == later
    assert stored.evidence == new_evidence
    assert stored.reason == "r2"


def test_alerts_not_fired_are_untouched(store):
    store.apply_scan([_candidate(), _candidate("V")], now=T0)
    store.apply_scan([_candidate()], now=T0 + timedelta(hours=1))
    v = store.get(derive_alert_id("V", AlertCategory.SUSPICIOUS_ACTIVITY))
    assert v is not None
    assert v.updated_at == T0


def test_store_returns_copies(store):
    store.apply_scan([_candidate()], now=T0)
    alert = store.get(derive_alert_id("U", AlertCategory.SUSPICIOUS_ACTIVITY))
    alert.evidence["suspiciousTransactions"].append({"serviceId": "x"})
    again = store.get(alert.alert_id)
    assert again.evidence == {"suspiciousTransactions": [{"serviceId": "t1"}]}


def test_get_unknown_returns_none(store):
    assert store.get("sa-doesnotexist") is None


def test_sql_store_persists_across_instances(tmp_path):
    from doorstep_guard.alerts.store import SQLAlertStore

    url = f"sqlite:///{tmp_path / 'persist.db'}"
    first = SQLAlertStore(url)
    first.apply_scan([_candidate()], now=T0)
    first.dispose()
    second = SQLAlertStore(url)
    alerts = second.list_all()
    second.dispose()
    assert len(alerts) == 1
    assert alerts[0].detected_at == T0
    assert alerts[0].subject_role == SubjectRole.USER
    assert alerts[0].to_dict()["category_label"] == "Suspicious Activity"
