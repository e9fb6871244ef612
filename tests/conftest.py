"""
Pytest fixtures for Doorstep Guard tests. Record factories, in-memory and
temporary SQLite alert stores, and a FastAPI TestClient wired to them.
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from doorstep_guard.alerts.lifecycle import AlertLifecycleManager
from doorstep_guard.alerts.store import InMemoryAlertStore, SQLAlertStore
from doorstep_guard.sources.models import (
    Identity,
    IdentityRole,
    SupportMessage,
    Transaction,
    TransactionStatus,
)

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_tx():
    """Factory for valid transactions; ids and timestamps increase per call."""
    counter = itertools.count(1)

    def _make(
        subject_id: str = "user-1",
        amount: int | str = 500,
        *,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        agent_id: str | None = None,
        service_type: str = "CASH_DEPOSIT",
        subject_name: str | None = None,
        created_at: datetime | None = None,
    ) -> Transaction:
        n = next(counter)
        return Transaction(
            transaction_id=f"tx-{n}",
            subject_id=subject_id,
            amount=Decimal(str(amount)),
            service_type=service_type,
            status=status,
            created_at=created_at or BASE_TIME + timedelta(minutes=n),
            agent_id=agent_id,
            subject_name=subject_name,
        )

    return _make


@pytest.fixture
def make_message():
    counter = itertools.count(1)

    def _make(
        body: str,
        subject_id: str | None = "user-1",
        *,
        author_name: str | None = None,
        created_at: datetime | None = None,
    ) -> SupportMessage:
        n = next(counter)
        return SupportMessage(
            message_id=f"ticket-{n}",
            subject_id=subject_id,
            body=body,
            email="someone@example.com",
            phone="9876543210",
            created_at=created_at or BASE_TIME + timedelta(minutes=n),
            author_name=author_name,
        )

    return _make


@pytest.fixture
def make_identity():
    def _make(identity_id: str, name: str, role: IdentityRole = IdentityRole.CUSTOMER) -> Identity:
        return Identity(identity_id=identity_id, display_name=name, role=role)

    return _make


@pytest.fixture
def memory_store():
    return InMemoryAlertStore()


@pytest.fixture
def sql_store(tmp_path):
    """Alert store on a temporary SQLite file; tables created on construction."""
    store = SQLAlertStore(f"sqlite:///{tmp_path / 'alerts.db'}")
    yield store
    store.dispose()


@pytest.fixture
def lifecycle(memory_store):
    return AlertLifecycleManager(memory_store)


@pytest.fixture
def client(lifecycle):
    """
    FastAPI TestClient with the lifecycle dependency pointed at an in-memory
    store. Not used as a context manager, so the periodic scanner never starts.
    """
    from fastapi.testclient import TestClient

    from doorstep_guard.api_server.server import app, get_lifecycle

    app.dependency_overrides[get_lifecycle] = lambda: lifecycle
    yield TestClient(app)
    app.dependency_overrides.clear()
