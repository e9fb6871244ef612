"""
Alert store: keyed persistence for alerts plus the scan merge step.

AlertStore holds a single re-entrant lock shared by the scan merge and by
lifecycle transitions, so readers see either the pre-merge or the post-merge
state. Two backends:
  - InMemoryAlertStore: dict keyed by alert id (tests, embedded use).
  - SQLAlertStore: SQLAlchemy ORM, fraud_alerts table, evidence as JSON text.
Both return copies; callers never hold references into the store.
"""

from __future__ import annotations

import json
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator

from sqlalchemy import Column, DateTime, Float, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from doorstep_guard.alerts.dedup import fold_candidates, merge_into
from doorstep_guard.alerts.models import (
    Alert,
    AlertCategory,
    AlertStatus,
    SubjectRole,
)
from doorstep_guard.guard_logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()


class AlertStore(ABC):
    """Abstract keyed alert store. Subclasses implement the raw read/write."""

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @abstractmethod
    def _read(self, alert_id: str) -> Alert | None:
        ...

    @abstractmethod
    def _read_all(self) -> list[Alert]:
        ...

    @abstractmethod
    def _write(self, alerts: list[Alert]) -> None:
        """Insert or replace the given alerts atomically."""
        ...

    def get(self, alert_id: str) -> Alert | None:
        with self._lock:
            return self._read(alert_id)

    def list_all(self) -> list[Alert]:
        with self._lock:
            return self._read_all()

    def save(self, alert: Alert) -> None:
        with self._lock:
            self._write([alert.copy()])

    def apply_scan(
        self,
        candidates: Iterable[Alert],
        *,
        now: datetime | None = None,
    ) -> tuple[list[Alert], list[Alert]]:
        """
        Merge one scan's candidates into the store.

        Returns (created, updated). Alerts whose key did not fire are left
        untouched; status and detected_at of existing alerts are preserved.
        """
        now = now or datetime.now(timezone.utc)
        folded = fold_candidates(candidates)
        created: list[Alert] = []
        updated: list[Alert] = []
        with self._lock:
            for cand in folded:
                current = self._read(cand.alert_id)
                merged, changed = merge_into(current, cand, now)
                if current is None:
                    created.append(merged)
                elif changed:
                    updated.append(merged)
            if created or updated:
                self._write(created + updated)
        for alert in created:
            logger.info(
                "alert_created",
                alert_id=alert.alert_id,
                subject_id=alert.subject_id,
                category=alert.category.value,
                rule=alert.rule,
            )
        for alert in updated:
            logger.info(
                "alert_updated",
                alert_id=alert.alert_id,
                subject_id=alert.subject_id,
                category=alert.category.value,
                status=alert.status.value,
            )
        return [a.copy() for a in created], [a.copy() for a in updated]


class InMemoryAlertStore(AlertStore):
    def __init__(self) -> None:
        super().__init__()
        self._alerts: dict[str, Alert] = {}

    def _read(self, alert_id: str) -> Alert | None:
        alert = self._alerts.get(alert_id)
        return alert.copy() if alert else None

    def _read_all(self) -> list[Alert]:
        return [a.copy() for a in self._alerts.values()]

    def _write(self, alerts: list[Alert]) -> None:
        for alert in alerts:
            self._alerts[alert.alert_id] = alert.copy()


# -----------------------------------------------------------------------------
# SQLAlchemy backend
# -----------------------------------------------------------------------------


class FraudAlertRow(Base):
    """One row per alert; alert_id is the deterministic (subject, category) id."""

    __tablename__ = "fraud_alerts"

    alert_id = Column(String(32), primary_key=True)
    subject_id = Column(String(64), nullable=False, index=True)
    subject_name = Column(String(256), nullable=False)
    subject_role = Column(String(16), nullable=False)
    category = Column(String(32), nullable=False, index=True)
    reason = Column(String(512), nullable=False)
    confidence = Column(Float, nullable=False)
    status = Column(String(16), nullable=False, index=True)
    rule = Column(String(64), nullable=False, default="")
    evidence_json = Column(Text, nullable=False, default="{}")
    detected_at = Column(DateTime, nullable=False, index=True)  # naive UTC
    updated_at = Column(DateTime, nullable=True)  # naive UTC

    def to_alert(self) -> Alert:
        return Alert(
            alert_id=self.alert_id,
            subject_id=self.subject_id,
            subject_name=self.subject_name,
            subject_role=SubjectRole(self.subject_role),
            category=AlertCategory(self.category),
            reason=self.reason,
            confidence=self.confidence,
            detected_at=_aware(self.detected_at),
            status=AlertStatus(self.status),
            evidence=json.loads(self.evidence_json or "{}"),
            rule=self.rule or "",
            updated_at=_aware(self.updated_at) if self.updated_at else None,
        )

    def fill_from(self, alert: Alert) -> None:
        self.subject_id = alert.subject_id
        self.subject_name = alert.subject_name
        self.subject_role = alert.subject_role.value
        self.category = alert.category.value
        self.reason = alert.reason
        self.confidence = alert.confidence
        self.status = alert.status.value
        self.rule = alert.rule
        self.evidence_json = json.dumps(alert.evidence, default=str)
        self.detected_at = _naive(alert.detected_at)
        self.updated_at = _naive(alert.updated_at) if alert.updated_at else None


def _naive(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class SQLAlertStore(AlertStore):
    """
    SQLAlchemy-backed store. Tables are created on construction (safe to call
    on every startup). The merge step of a scan is written in one transaction.
    """

    def __init__(self, url: str | None = None, *, engine: Engine | None = None) -> None:
        super().__init__()
        if engine is None:
            if not url:
                raise ValueError("SQLAlertStore needs a database url or an engine")
            connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
            engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        self._engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        Base.metadata.create_all(bind=engine)
        logger.info("alert_store_init_db", url=str(engine.url).split("?")[0].split("//")[-1])

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _read(self, alert_id: str) -> Alert | None:
        with self._session_scope() as session:
            row = session.get(FraudAlertRow, alert_id)
            return row.to_alert() if row else None

    def _read_all(self) -> list[Alert]:
        with self._session_scope() as session:
            return [row.to_alert() for row in session.query(FraudAlertRow).all()]

    def _write(self, alerts: list[Alert]) -> None:
        with self._session_scope() as session:
            for alert in alerts:
                row = session.get(FraudAlertRow, alert.alert_id)
                if row is None:
                    row = FraudAlertRow(alert_id=alert.alert_id)
                    session.add(row)
                row.fill_from(alert)

    def dispose(self) -> None:
        self._engine.dispose()

