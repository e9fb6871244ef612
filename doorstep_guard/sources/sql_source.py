"""
Relational record source (SQLAlchemy Core).

Reads a relational mirror of the portal collections: service_requests,
tickets and users. Timestamps are stored as naive UTC. Window bounds are
pushed into the SQL WHERE clause. Any SQLAlchemyError becomes SourceUnavailable.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    Engine,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.exc import SQLAlchemyError

from doorstep_guard.core.exceptions import SourceUnavailable
from doorstep_guard.guard_logging import get_logger
from doorstep_guard.sources.base import RecordSource
from doorstep_guard.sources.models import (
    SOURCE_IDENTITIES,
    SOURCE_SUPPORT_MESSAGES,
    SOURCE_TRANSACTIONS,
    Identity,
    IdentityRole,
    ScanWindow,
    SupportMessage,
    Transaction,
)

logger = get_logger(__name__)

source_metadata = MetaData()

service_requests = Table(
    "service_requests",
    source_metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=True, index=True),
    Column("user_name", String(256), nullable=True),
    Column("agent_id", String(64), nullable=True, index=True),
    Column("amount", Numeric(14, 2), nullable=True),
    Column("service_type", String(64), nullable=True),
    Column("status", String(32), nullable=True),
    Column("created_at", DateTime, nullable=True, index=True),
)

tickets = Table(
    "tickets",
    source_metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", String(64), nullable=True, index=True),
    Column("user_name", String(256), nullable=True),
    Column("message", Text, nullable=True),
    Column("email", String(256), nullable=True),
    Column("contact_no", String(32), nullable=True),
    Column("created_at", DateTime, nullable=True, index=True),
)

users = Table(
    "users",
    source_metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(256), nullable=True),
    Column("first_name", String(128), nullable=True),
    Column("last_name", String(128), nullable=True),
    Column("user_type", String(16), nullable=False, index=True),
    Column("email", String(256), nullable=True),
    Column("phone", String(32), nullable=True),
)


def _naive_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)


def _apply_window(query: Any, table: Table, window: ScanWindow | None) -> Any:
    if window is None:
        return query
    if window.since is not None:
        query = query.where(table.c.created_at >= _naive_utc(window.since))
    if window.until is not None:
        query = query.where(table.c.created_at < _naive_utc(window.until))
    return query


class SQLRecordSource(RecordSource):
    """Read-only adapter over the relational portal mirror."""

    def __init__(self, url: str | None = None, *, engine: Engine | None = None) -> None:
        if engine is None:
            if not url:
                raise ValueError("SQLRecordSource needs a database url or an engine")
            connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
            engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        self._engine = engine

    def _rows(self, source: str, query: Any) -> list[dict[str, Any]]:
        try:
            with self._engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            raise SourceUnavailable(source, f"{type(e).__name__}: {e}") from e
        logger.debug("sql_source_fetched", source=source, count=len(rows))
        return [dict(r) for r in rows]

    def list_transactions(self, window: ScanWindow | None = None) -> list[Transaction]:
        query = _apply_window(select(service_requests), service_requests, window)
        return [
            Transaction.from_portal({
                "_id": r["id"],
                "userId": r["user_id"],
                "userName": r["user_name"],
                "agentId": r["agent_id"],
                "amount": r["amount"],
                "serviceType": r["service_type"],
                "status": r["status"],
                "createdAt": r["created_at"],
            })
            for r in self._rows(SOURCE_TRANSACTIONS, query)
        ]

    def list_support_messages(self, window: ScanWindow | None = None) -> list[SupportMessage]:
        query = _apply_window(select(tickets), tickets, window)
        return [
            SupportMessage.from_portal({
                "_id": r["id"],
                "userId": r["user_id"],
                "userName": r["user_name"],
                "message": r["message"],
                "email": r["email"],
                "contactNo": r["contact_no"],
                "createdAt": r["created_at"],
            })
            for r in self._rows(SOURCE_SUPPORT_MESSAGES, query)
        ]

    def list_identities(self, role: IdentityRole | None = None) -> list[Identity]:
        query = select(users)
        if role is not None:
            query = query.where(users.c.user_type == role.value)
        out: list[Identity] = []
        for r in self._rows(SOURCE_IDENTITIES, query):
            identity = Identity.from_portal({
                "_id": r["id"],
                "name": r["name"],
                "firstName": r["first_name"],
                "lastName": r["last_name"],
                "userType": r["user_type"],
                "email": r["email"],
                "phone": r["phone"],
            })
            if identity is not None:
                out.append(identity)
        return out
