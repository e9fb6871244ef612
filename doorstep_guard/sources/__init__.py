"""
Record source adapters: read-only access to portal transactions, tickets and users.

build_record_source() picks the adapter from settings: portal REST API when
PORTAL_API_URL is set, otherwise the relational mirror at SOURCE_DATABASE_URL.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from doorstep_guard.sources.base import InMemoryRecordSource, RecordSource
from doorstep_guard.sources.models import (
    SOURCE_IDENTITIES,
    SOURCE_SUPPORT_MESSAGES,
    SOURCE_TRANSACTIONS,
    Identity,
    IdentityRole,
    ScanWindow,
    SupportMessage,
    Transaction,
    TransactionStatus,
)

if TYPE_CHECKING:
    from doorstep_guard.config.settings import Settings


def build_record_source(settings: "Settings") -> RecordSource:
    """Return the configured adapter; ValueError when no source is configured."""
    if settings.portal_api_url:
        from doorstep_guard.sources.portal_api import PortalApiRecordSource

        return PortalApiRecordSource(
            settings.portal_api_url,
            settings.portal_api_token,
            timeout_sec=settings.source_timeout_sec,
        )
    if settings.source_database_url:
        from doorstep_guard.sources.sql_source import SQLRecordSource

        return SQLRecordSource(settings.source_database_url)
    raise ValueError("No record source configured: set PORTAL_API_URL or SOURCE_DATABASE_URL")


__all__ = [
    "SOURCE_IDENTITIES",
    "SOURCE_SUPPORT_MESSAGES",
    "SOURCE_TRANSACTIONS",
    "Identity",
    "IdentityRole",
    "InMemoryRecordSource",
    "RecordSource",
    "ScanWindow",
    "SupportMessage",
    "Transaction",
    "TransactionStatus",
    "build_record_source",
]
