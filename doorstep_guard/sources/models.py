"""
Normalized input records: Transaction, SupportMessage, Identity.

Records are frozen; the engine never mutates source data. Adapters build them
from portal documents via the from_portal() constructors, which are lenient
(missing optional fields become None). validate() enforces the fields the
rules depend on and raises MalformedRecord so the scan can skip and count.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping

from doorstep_guard.core.exceptions import MalformedRecord

SOURCE_TRANSACTIONS = "transactions"
SOURCE_SUPPORT_MESSAGES = "supportMessages"
SOURCE_IDENTITIES = "identities"


class TransactionStatus(str, Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    CANCELLED = "cancelled"


class IdentityRole(str, Enum):
    CUSTOMER = "customer"
    AGENT = "agent"


# Portal service-request statuses → engine lifecycle status. Only APPROVED and
# REJECTED count toward an agent's approval rate.
PORTAL_STATUS_MAP: dict[str, TransactionStatus] = {
    "APPROVAL_PENDING": TransactionStatus.REQUESTED,
    "PENDING": TransactionStatus.REQUESTED,
    "REQUESTED": TransactionStatus.REQUESTED,
    "APPROVED": TransactionStatus.APPROVED,
    "ASSIGNED": TransactionStatus.IN_PROGRESS,
    "IN_PROGRESS": TransactionStatus.IN_PROGRESS,
    "REJECTED": TransactionStatus.REJECTED,
    "CANCELLED": TransactionStatus.CANCELLED,
    "COMPLETED": TransactionStatus.COMPLETED,
}


def parse_status(raw: Any) -> TransactionStatus | None:
    if isinstance(raw, TransactionStatus):
        return raw
    if raw is None:
        return None
    return PORTAL_STATUS_MAP.get(str(raw).strip().upper())


def parse_amount(raw: Any) -> Decimal | None:
    """Missing amount counts as 0 (portal default); unparsable amount → None."""
    if raw is None or raw == "":
        return Decimal(0)
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, bool):
        return None
    try:
        return Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None


def parse_timestamp(raw: Any) -> datetime | None:
    """ISO string, epoch seconds/millis, or datetime → aware UTC datetime."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        seconds = raw / 1000.0 if raw > 10_000_000_000 else float(raw)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    text = str(raw).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _clean_id(raw: Any) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        # populated reference: {"_id": "...", "name": "..."}
        raw = raw.get("_id") or raw.get("id")
        if raw is None:
            return None
    text = str(raw).strip()
    return text or None


@dataclass(frozen=True)
class ScanWindow:
    """Time window for a scan; since inclusive, until exclusive, both optional."""

    since: datetime | None = None
    until: datetime | None = None

    def __post_init__(self) -> None:
        if self.since and self.until and self.since >= self.until:
            raise ValueError("ScanWindow.since must be earlier than ScanWindow.until")

    def contains(self, ts: datetime | None) -> bool:
        if ts is None:
            return self.since is None and self.until is None
        if self.since is not None and ts < self.since:
            return False
        if self.until is not None and ts >= self.until:
            return False
        return True


@dataclass(frozen=True)
class Transaction:
    """One service operation owned by a user, optionally handled by an agent."""

    transaction_id: str
    subject_id: str | None
    amount: Decimal | None
    service_type: str
    status: TransactionStatus | None
    created_at: datetime | None
    agent_id: str | None = None
    subject_name: str | None = None

    @classmethod
    def from_portal(cls, doc: Mapping[str, Any]) -> "Transaction":
        """Build from a portal service-request document (Mongo-style keys)."""
        subject = doc.get("userId", doc.get("user"))
        subject_name = doc.get("userName")
        if subject_name is None and isinstance(subject, Mapping):
            subject_name = subject.get("name")
        agent = doc.get("agentId", doc.get("assignedAgent"))
        return cls(
            transaction_id=_clean_id(doc.get("_id", doc.get("id"))) or "",
            subject_id=_clean_id(subject),
            amount=parse_amount(doc.get("amount")),
            service_type=str(doc.get("serviceType") or "UNKNOWN"),
            status=parse_status(doc.get("status")),
            created_at=parse_timestamp(doc.get("createdAt", doc.get("created_at"))),
            agent_id=_clean_id(agent),
            subject_name=subject_name,
        )

    def validate(self) -> None:
        def bad(reason: str) -> MalformedRecord:
            return MalformedRecord(SOURCE_TRANSACTIONS, self.transaction_id, reason)

        if not self.transaction_id:
            raise bad("missing transaction id")
        if not self.subject_id:
            raise bad("missing subject id")
        if self.amount is None:
            raise bad("amount is not a number")
        if self.amount < 0:
            raise bad("negative amount")
        if self.status is None:
            raise bad("missing or unknown status")
        if self.created_at is None:
            raise bad("missing creation timestamp")


@dataclass(frozen=True)
class SupportMessage:
    """Free-text support ticket; subject_id is None for anonymous submissions."""

    message_id: str
    subject_id: str | None
    body: str | None
    email: str | None
    phone: str | None
    created_at: datetime | None
    author_name: str | None = None

    @classmethod
    def from_portal(cls, doc: Mapping[str, Any]) -> "SupportMessage":
        return cls(
            message_id=_clean_id(doc.get("_id", doc.get("id"))) or "",
            subject_id=_clean_id(doc.get("userId")),
            body=doc.get("message"),
            email=doc.get("email"),
            phone=doc.get("contactNo", doc.get("phone")),
            created_at=parse_timestamp(doc.get("createdAt", doc.get("created_at"))),
            author_name=doc.get("userName"),
        )

    def validate(self) -> None:
        if not self.message_id:
            raise MalformedRecord(SOURCE_SUPPORT_MESSAGES, None, "missing message id")
        if self.body is None or not isinstance(self.body, str):
            raise MalformedRecord(SOURCE_SUPPORT_MESSAGES, self.message_id, "missing message body")


@dataclass(frozen=True)
class Identity:
    """A portal user or field agent; profile fields are carried but unused."""

    identity_id: str
    display_name: str
    role: IdentityRole
    profile: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_portal(cls, doc: Mapping[str, Any]) -> "Identity | None":
        """Return None for roles the engine ignores (admins) or documents without an id."""
        identity_id = _clean_id(doc.get("_id", doc.get("id")))
        user_type = str(doc.get("userType") or "").strip().lower()
        if not identity_id or user_type not in (IdentityRole.CUSTOMER.value, IdentityRole.AGENT.value):
            return None
        name = doc.get("name")
        if not name:
            name = " ".join(p for p in (doc.get("firstName"), doc.get("lastName")) if p)
        profile = {
            k: v for k, v in doc.items()
            if k not in ("_id", "id", "name", "firstName", "lastName", "userType", "password")
        }
        return cls(
            identity_id=identity_id,
            display_name=name or identity_id,
            role=IdentityRole(user_type),
            profile=profile,
        )
