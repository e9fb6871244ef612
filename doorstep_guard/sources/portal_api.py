"""
Portal REST API record source.

Pulls the same endpoints the admin dashboard reads:
  GET /api/services/all  → {"data": [...service requests...]}
  GET /api/tickets       → {"tickets": [...]}
  GET /api/users         → {"users": [...]}
All calls carry the admin bearer token. Any transport error, timeout,
non-2xx status or unexpected payload shape becomes SourceUnavailable.
"""

from __future__ import annotations

from typing import Any

import httpx

from doorstep_guard.core.exceptions import SourceUnavailable
from doorstep_guard.guard_logging import get_logger
from doorstep_guard.sources.base import RecordSource, filter_role, filter_window
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

SERVICES_PATH = "/api/services/all"
TICKETS_PATH = "/api/tickets"
USERS_PATH = "/api/users"


class PortalApiRecordSource(RecordSource):
    """
    Read-only adapter over the portal API.

    A fresh httpx.Client is opened per call unless one is injected (tests pass
    a client built on httpx.MockTransport).
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        timeout_sec: float = 20.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not base_url.strip() and client is None:
            raise ValueError("base_url must be non-empty")
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout_sec = timeout_sec
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _fetch_list(self, source: str, path: str, key: str) -> list[dict[str, Any]]:
        url = f"{self._base_url}{path}"
        try:
            if self._client is not None:
                resp = self._client.get(url, headers=self._headers())
            else:
                with httpx.Client(timeout=httpx.Timeout(self._timeout_sec)) as client:
                    resp = client.get(url, headers=self._headers())
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(source, f"HTTP {e.response.status_code} from {path}") from e
        except httpx.HTTPError as e:
            raise SourceUnavailable(source, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise SourceUnavailable(source, f"invalid JSON from {path}") from e

        items = payload.get(key) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise SourceUnavailable(source, f"response from {path} has no '{key}' list")
        docs = [item for item in items if isinstance(item, dict)]
        logger.debug("portal_api_fetched", source=source, path=path, count=len(docs))
        return docs

    def list_transactions(self, window: ScanWindow | None = None) -> list[Transaction]:
        docs = self._fetch_list(SOURCE_TRANSACTIONS, SERVICES_PATH, "data")
        return filter_window((Transaction.from_portal(d) for d in docs), window)

    def list_support_messages(self, window: ScanWindow | None = None) -> list[SupportMessage]:
        docs = self._fetch_list(SOURCE_SUPPORT_MESSAGES, TICKETS_PATH, "tickets")
        return filter_window((SupportMessage.from_portal(d) for d in docs), window)

    def list_identities(self, role: IdentityRole | None = None) -> list[Identity]:
        docs = self._fetch_list(SOURCE_IDENTITIES, USERS_PATH, "users")
        identities = [i for i in (Identity.from_portal(d) for d in docs) if i is not None]
        return filter_role(identities, role)
