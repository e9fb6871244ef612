"""
Record source interface and the in-memory implementation.

A RecordSource is a read-only pull adapter over the portal's data stores.
Each call may raise SourceUnavailable; the scan engine turns that into a
partial result instead of aborting. Implementations return lists (a snapshot),
never live cursors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable

from doorstep_guard.sources.models import (
    Identity,
    IdentityRole,
    ScanWindow,
    SupportMessage,
    Transaction,
)


class RecordSource(ABC):
    """Abstract interface for the three inbound collections."""

    @abstractmethod
    def list_transactions(self, window: ScanWindow | None = None) -> list[Transaction]:
        """Return service transactions created inside the window."""
        ...

    @abstractmethod
    def list_support_messages(self, window: ScanWindow | None = None) -> list[SupportMessage]:
        """Return support messages created inside the window."""
        ...

    @abstractmethod
    def list_identities(self, role: IdentityRole | None = None) -> list[Identity]:
        """Return users and agents, optionally restricted to one role."""
        ...


def filter_window(records: Iterable, window: ScanWindow | None) -> list:
    if window is None:
        return list(records)
    return [r for r in records if window.contains(r.created_at)]


def filter_role(identities: Iterable[Identity], role: IdentityRole | None) -> list[Identity]:
    if role is None:
        return list(identities)
    return [i for i in identities if i.role == role]


class InMemoryRecordSource(RecordSource):
    """Serves caller-supplied lists; used by tests and when embedding the engine."""

    def __init__(
        self,
        transactions: Iterable[Transaction] = (),
        support_messages: Iterable[SupportMessage] = (),
        identities: Iterable[Identity] = (),
    ) -> None:
        self._transactions = tuple(transactions)
        self._support_messages = tuple(support_messages)
        self._identities = tuple(identities)

    def list_transactions(self, window: ScanWindow | None = None) -> list[Transaction]:
        return filter_window(self._transactions, window)

    def list_support_messages(self, window: ScanWindow | None = None) -> list[SupportMessage]:
        return filter_window(self._support_messages, window)

    def list_identities(self, role: IdentityRole | None = None) -> list[Identity]:
        return filter_role(self._identities, role)
