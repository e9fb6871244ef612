"""
Tests for record parsing and the record source adapters (portal API via
httpx.MockTransport, relational mirror on a temporary SQLite file).
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine

from doorstep_guard.core.exceptions import MalformedRecord, SourceUnavailable
from doorstep_guard.scanner.engine import ScanEngine
from doorstep_guard.sources.models import (
    Identity,
    IdentityRole,
    ScanWindow,
    SupportMessage,
    Transaction,
    TransactionStatus,
    parse_amount,
    parse_status,
    parse_timestamp,
)
from doorstep_guard.sources.portal_api import PortalApiRecordSource
from doorstep_guard.sources.sql_source import (
    SQLRecordSource,
    service_requests,
    source_metadata,
    tickets,
    users,
)

SERVICES = {
    "success": True,
    "data": [
        {
            "_id": "s1",
            "userId": {"_id": "u1", "name": "Priya Sharma"},
            "assignedAgent": "a1",
            "amount": 999,
            "serviceType": "CASH_WITHDRAWAL",
            "status": "APPROVED",
            "createdAt": "2024-03-01T10:00:00.000Z",
        },
        {
            "_id": "s2",
            "userId": "u1",
            "amount": "1999",
            "serviceType": "CASH_DEPOSIT",
            "status": "APPROVAL_PENDING",
            "createdAt": "2024-03-05T10:00:00Z",
        },
    ],
}
TICKETS = {
    "tickets": [
        {"_id": "t1", "userId": "u1", "message": "fake account?", "email": "p@example.com",
         "contactNo": "9000000000", "createdAt": "2024-03-02T08:00:00Z"},
        {"_id": "t2", "message": "anonymous note", "createdAt": "2024-03-06T08:00:00Z"},
    ]
}
USERS = {
    "users": [
        {"_id": "u1", "name": "Priya Sharma", "userType": "customer", "password": "hash"},
        {"_id": "a1", "firstName": "Ravi", "lastName": "Kumar", "userType": "agent"},
        {"_id": "x1", "name": "Root", "userType": "admin"},
    ]
}


def _portal(handler):
    return PortalApiRecordSource(
        "https://portal.example.com",
        "secret-token",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _ok_handler(request: httpx.Request) -> httpx.Response:
    assert request.headers["Authorization"] == "Bearer secret-token"
    payload = {
        "/api/services/all": SERVICES,
        "/api/tickets": TICKETS,
        "/api/users": USERS,
    }[request.url.path]
    return httpx.Response(200, json=payload)


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("APPROVAL_PENDING", TransactionStatus.REQUESTED),
        ("APPROVED", TransactionStatus.APPROVED),
        ("REJECTED", TransactionStatus.REJECTED),
        ("ASSIGNED", TransactionStatus.IN_PROGRESS),
        ("in_progress", TransactionStatus.IN_PROGRESS),
        ("CANCELLED", TransactionStatus.CANCELLED),
        ("COMPLETED", TransactionStatus.COMPLETED),
        ("SOMETHING", None),
        (None, None),
    ],
)
def test_parse_status(raw, expected):
    assert parse_status(raw) == expected


def test_parse_amount():
    assert parse_amount(None) == Decimal(0)
    assert parse_amount("12.50") == Decimal("12.50")
    assert parse_amount("abc") is None
    assert parse_amount(True) is None


def test_parse_timestamp():
    expected = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2024-03-01T10:00:00Z") == expected
    assert parse_timestamp(int(expected.timestamp() * 1000)) == expected
    assert parse_timestamp(datetime(2024, 3, 1, 10, 0)) == expected
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(10**20) is None
    assert parse_timestamp(float("nan")) is None
    assert parse_timestamp(True) is None


def test_transaction_validate():
    tx = Transaction.from_portal({"_id": "s9", "userId": "u1", "amount": -5, "status": "COMPLETED",
                                  "createdAt": "2024-03-01T00:00:00Z"})
    with pytest.raises(MalformedRecord, match="negative"):
        tx.validate()
    tx = Transaction.from_portal({"_id": "s9", "userId": "u1", "amount": 5, "status": "??",
                                  "createdAt": "2024-03-01T00:00:00Z"})
    with pytest.raises(MalformedRecord, match="status"):
        tx.validate()


def test_support_message_validate():
    with pytest.raises(MalformedRecord):
        SupportMessage.from_portal({"_id": "t9"}).validate()


def test_identity_from_portal_skips_admins():
    assert Identity.from_portal({"_id": "x", "userType": "admin"}) is None
    agent = Identity.from_portal({"_id": "a1", "firstName": "Ravi", "lastName": "Kumar", "userType": "agent"})
    assert agent.display_name == "Ravi Kumar"
    assert agent.role == IdentityRole.AGENT


def test_scan_window_bounds():
    since = datetime(2024, 3, 1, tzinfo=timezone.utc)
    until = datetime(2024, 3, 2, tzinfo=timezone.utc)
    window = ScanWindow(since, until)
    assert window.contains(since)
    assert not window.contains(until)
    assert not window.contains(None)
    assert ScanWindow().contains(None)
    with pytest.raises(ValueError):
        ScanWindow(until, since)


# -----------------------------------------------------------------------------
# Portal API adapter
# -----------------------------------------------------------------------------


def test_portal_transactions():
    txs = _portal(_ok_handler).list_transactions()
    assert [t.transaction_id for t in txs] == ["s1", "s2"]
    first = txs[0]
    assert first.subject_id == "u1"
    assert first.subject_name == "Priya Sharma"
    assert first.agent_id == "a1"
    assert first.amount == Decimal(999)
    assert first.status == TransactionStatus.APPROVED
    assert txs[1].status == TransactionStatus.REQUESTED


def test_portal_window_filter():
    window = ScanWindow(since=datetime(2024, 3, 3, tzinfo=timezone.utc))
    source = _portal(_ok_handler)
    assert [t.transaction_id for t in source.list_transactions(window)] == ["s2"]
    assert [m.message_id for m in source.list_support_messages(window)] == ["t2"]


def test_portal_messages_and_identities():
    source = _portal(_ok_handler)
    messages = source.list_support_messages()
    assert messages[0].phone == "9000000000"
    assert messages[1].subject_id is None
    identities = source.list_identities()
    assert {i.identity_id for i in identities} == {"u1", "a1"}
    assert "password" not in identities[0].profile
    assert [i.identity_id for i in source.list_identities(IdentityRole.AGENT)] == ["a1"]


def test_portal_http_error_is_source_unavailable():
    source = _portal(lambda request: httpx.Response(500, json={"message": "boom"}))
    with pytest.raises(SourceUnavailable) as info:
        source.list_support_messages()
    assert info.value.source == "supportMessages"


def test_portal_transport_error_is_source_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SourceUnavailable):
        _portal(handler).list_transactions()


def test_portal_bad_payload_is_source_unavailable():
    with pytest.raises(SourceUnavailable):
        _portal(lambda request: httpx.Response(200, json={"unexpected": []})).list_identities()
    with pytest.raises(SourceUnavailable):
        _portal(lambda request: httpx.Response(200, content=b"<html>")).list_transactions()


# -----------------------------------------------------------------------------
# SQL adapter
# -----------------------------------------------------------------------------


@pytest.fixture
def sql_source(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'portal.db'}")
    source_metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(service_requests.insert(), [
            {"id": "s1", "user_id": "u1", "user_name": "Priya", "agent_id": "a1", "amount": Decimal("999"),
             "service_type": "CASH_DEPOSIT", "status": "APPROVED", "created_at": datetime(2024, 3, 1, 10)},
            {"id": "s2", "user_id": "u1", "user_name": "Priya", "agent_id": None, "amount": Decimal("9100"),
             "service_type": "CASH_DEPOSIT", "status": "COMPLETED", "created_at": datetime(2024, 3, 4, 10)},
        ])
        conn.execute(tickets.insert(), [
            {"id": "t1", "user_id": None, "user_name": None, "message": "identity theft",
             "email": None, "contact_no": None, "created_at": datetime(2024, 3, 2)},
        ])
        conn.execute(users.insert(), [
            {"id": "u1", "name": "Priya Sharma", "first_name": None, "last_name": None,
             "user_type": "customer", "email": None, "phone": None},
            {"id": "a1", "name": None, "first_name": "Ravi", "last_name": "Kumar",
             "user_type": "agent", "email": None, "phone": None},
        ])
    yield SQLRecordSource(engine=engine)
    engine.dispose()


def test_sql_source_reads_all(sql_source):
    txs = sql_source.list_transactions()
    assert [t.transaction_id for t in txs] == ["s1", "s2"]
    assert txs[0].created_at == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
    assert txs[0].amount == Decimal("999")
    assert sql_source.list_support_messages()[0].subject_id is None
    assert [i.display_name for i in sql_source.list_identities(IdentityRole.AGENT)] == ["Ravi Kumar"]


def test_sql_source_window(sql_source):
    window = ScanWindow(
        since=datetime(2024, 3, 1, 10, tzinfo=timezone.utc),
        until=datetime(2024, 3, 4, 10, tzinfo=timezone.utc),
    )
    assert [t.transaction_id for t in sql_source.list_transactions(window)] == ["s1"]


def test_sql_source_missing_table_is_source_unavailable(tmp_path):
    source = SQLRecordSource(f"sqlite:///{tmp_path / 'empty.db'}")
    with pytest.raises(SourceUnavailable) as info:
        source.list_transactions()
    assert info.value.source == "transactions"


# -----------------------------------------------------------------------------
# Portal documents through a full scan
# -----------------------------------------------------------------------------


def _services_handler(services):
    def handler(request: httpx.Request) -> httpx.Response:
        payload = {
            "/api/services/all": {"success": True, "data": services},
            "/api/tickets": {"tickets": []},
            "/api/users": {"users": []},
        }[request.url.path]
        return httpx.Response(200, json=payload)

    return handler


def test_assigned_services_do_not_count_as_approvals(memory_store):
    services = [
        {"_id": f"s{i}", "userId": f"u{i}", "assignedAgent": "agent-1", "amount": 500,
         "serviceType": "CASH_DEPOSIT", "status": "ASSIGNED" if i % 2 else "IN_PROGRESS",
         "createdAt": "2024-03-01T10:00:00Z"}
        for i in range(12)
    ]
    result = ScanEngine(_portal(_services_handler(services)), memory_store).run_scan()
    assert result.records_scanned["transactions"] == 12
    assert memory_store.list_all() == []


def test_out_of_range_timestamp_is_skipped_not_fatal(memory_store):
    services = [
        {"_id": "s1", "userId": "u1", "amount": 999, "status": "COMPLETED",
         "createdAt": "2024-03-01T10:00:00Z"},
        {"_id": "s2", "userId": "u1", "amount": 1999, "status": "COMPLETED",
         "createdAt": "2024-03-02T10:00:00Z"},
        {"_id": "s3", "userId": "u1", "amount": 999, "status": "COMPLETED", "createdAt": 10**20},
    ]
    result = ScanEngine(_portal(_services_handler(services)), memory_store).run_scan()
    assert result.skipped_records["transactions"] == 1
    assert result.alerts_created == 1
    assert result.partial is False
