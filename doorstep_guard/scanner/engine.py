"""
Scan engine: one detection pass from record sources to the alert store.

    fetch (concurrent, shared deadline) → validate → aggregate → rules → merge

Source failures degrade the scan to partial; malformed records are skipped and
counted. Only when neither transactions nor support messages could be read
does the scan abort with ScanFailed, before anything is merged. Aggregation
and rule evaluation run outside the store lock; only the merge takes it.
"""

from __future__ import annotations

import contextvars
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from doorstep_guard.alerts.store import AlertStore
from doorstep_guard.analysis_engine.aggregator import aggregate_transactions
from doorstep_guard.analysis_engine.rules import RuleConfig, RuleEvaluator
from doorstep_guard.core.exceptions import MalformedRecord, ScanFailed, SourceUnavailable
from doorstep_guard.guard_logging import scan_context, source_context
from doorstep_guard.sources.base import RecordSource
from doorstep_guard.sources.models import (
    SOURCE_IDENTITIES,
    SOURCE_SUPPORT_MESSAGES,
    SOURCE_TRANSACTIONS,
    ScanWindow,
)

DEFAULT_SOURCE_TIMEOUT_SEC = 20.0
SOURCE_WORKERS = 6

# Sources that carry detection input; identities only supply display names.
RECORD_SOURCES = (SOURCE_TRANSACTIONS, SOURCE_SUPPORT_MESSAGES)


def _call_source(name: str, fn: Callable[[], list]) -> list:
    with source_context(name):
        return fn()


@dataclass
class ScanResult:
    """Outcome of one scan."""

    alerts_created: int = 0
    alerts_updated: int = 0
    partial: bool = False
    """True when at least one source failed and the scan ran on the rest."""
    failed_sources: list[str] = field(default_factory=list)
    skipped_records: dict[str, int] = field(default_factory=dict)
    """Malformed records skipped, per source."""
    candidates: int = 0
    records_scanned: dict[str, int] = field(default_factory=dict)
    scan_id: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "alerts_created": self.alerts_created,
            "alerts_updated": self.alerts_updated,
            "partial": self.partial,
            "failed_sources": list(self.failed_sources),
            "skipped_records": dict(self.skipped_records),
            "candidates": self.candidates,
            "records_scanned": dict(self.records_scanned),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class ScanEngine:
    """
    Runs scans against one RecordSource and one AlertStore.

    Scans are serialized: a scan started while another is running waits for it.
    Source calls share one worker pool for the engine's lifetime; call close()
    on shutdown.
    """

    def __init__(
        self,
        source: RecordSource,
        store: AlertStore,
        evaluator: RuleEvaluator | None = None,
        *,
        source_timeout_sec: float = DEFAULT_SOURCE_TIMEOUT_SEC,
    ) -> None:
        if source_timeout_sec <= 0:
            raise ValueError("source_timeout_sec must be positive")
        self._source = source
        self._store = store
        self._evaluator = evaluator or RuleEvaluator()
        self._source_timeout_sec = source_timeout_sec
        self._scan_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=SOURCE_WORKERS, thread_name_prefix="guard-source")

    @property
    def rule_config(self) -> RuleConfig:
        return self._evaluator.config

    @property
    def store(self) -> AlertStore:
        return self._store

    def close(self) -> None:
        """Stop the source pool without waiting for calls that are still hung."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _fetch_all(self, window: ScanWindow | None, log: Any) -> tuple[dict[str, list], list[str]]:
        """Fetch the three collections concurrently; failed or slow sources yield []."""
        calls: dict[str, Callable[[], list]] = {
            SOURCE_TRANSACTIONS: lambda: self._source.list_transactions(window),
            SOURCE_SUPPORT_MESSAGES: lambda: self._source.list_support_messages(window),
            SOURCE_IDENTITIES: lambda: self._source.list_identities(),
        }
        futures = {
            name: self._executor.submit(contextvars.copy_context().run, _call_source, name, fn)
            for name, fn in calls.items()
        }
        results: dict[str, list] = {}
        failed: list[str] = []
        deadline = time.monotonic() + self._source_timeout_sec
        for name, fut in futures.items():
            try:
                remaining = max(0.0, deadline - time.monotonic())
                results[name] = list(fut.result(timeout=remaining))
            except FutureTimeout:
                # A hung call keeps its worker; the pool size caps how many can pile up.
                fut.cancel()
                failed.append(name)
                results[name] = []
                log.warning("source_timeout", source=name, timeout_sec=self._source_timeout_sec)
            except SourceUnavailable as e:
                failed.append(name)
                results[name] = []
                log.warning("source_unavailable", source=name, reason=e.reason)
            except Exception as e:
                failed.append(name)
                results[name] = []
                log.exception("source_error", source=name, error=str(e))
        return results, failed

    @staticmethod
    def _validated(records: list, source: str, log: Any) -> tuple[list, int]:
        valid = []
        skipped = 0
        for record in records:
            try:
                record.validate()
            except MalformedRecord as e:
                skipped += 1
                log.warning(
                    "record_skipped",
                    source=source,
                    record_id=e.record_id,
                    reason=e.reason,
                )
                continue
            valid.append(record)
        return valid, skipped

    def run_scan(self, window: ScanWindow | None = None) -> ScanResult:
        """
        Run one detection pass and merge its alerts into the store.

        Raises:
            ScanFailed: neither transactions nor support messages could be read.
        """
        with self._scan_lock:
            return self._run_scan(window)

    def _run_scan(self, window: ScanWindow | None) -> ScanResult:
        scan_id = uuid.uuid4().hex[:12]
        with scan_context(scan_id) as log:
            return self._scan_in_context(scan_id, window, log)

    def _scan_in_context(self, scan_id: str, window: ScanWindow | None, log: Any) -> ScanResult:
        started_at = datetime.now(timezone.utc)
        log.info(
            "scan_started",
            since=window.since.isoformat() if window and window.since else None,
            until=window.until.isoformat() if window and window.until else None,
        )

        fetched, failed = self._fetch_all(window, log)
        if all(name in failed for name in RECORD_SOURCES):
            log.error("scan_failed", failed_sources=failed)
            raise ScanFailed(failed)

        transactions, tx_skipped = self._validated(fetched[SOURCE_TRANSACTIONS], SOURCE_TRANSACTIONS, log)
        messages, msg_skipped = self._validated(
            fetched[SOURCE_SUPPORT_MESSAGES], SOURCE_SUPPORT_MESSAGES, log
        )
        identities = fetched[SOURCE_IDENTITIES]

        cfg = self._evaluator.config
        aggregates = aggregate_transactions(
            transactions,
            suspicious_amounts=cfg.suspicious_amounts,
            large_value_threshold=cfg.large_value_threshold,
        )
        candidates = self._evaluator.evaluate(
            aggregates, transactions, messages, identities, now=started_at
        )
        created, updated = self._store.apply_scan(candidates)

        result = ScanResult(
            alerts_created=len(created),
            alerts_updated=len(updated),
            partial=bool(failed),
            failed_sources=failed,
            skipped_records={SOURCE_TRANSACTIONS: tx_skipped, SOURCE_SUPPORT_MESSAGES: msg_skipped},
            candidates=len(candidates),
            records_scanned={
                SOURCE_TRANSACTIONS: len(transactions),
                SOURCE_SUPPORT_MESSAGES: len(messages),
                SOURCE_IDENTITIES: len(identities),
            },
            scan_id=scan_id,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        log.info(
            "scan_completed",
            alerts_created=result.alerts_created,
            alerts_updated=result.alerts_updated,
            partial=result.partial,
            failed_sources=result.failed_sources,
            skipped_records=result.skipped_records,
            candidates=result.candidates,
            duration_sec=round((result.finished_at - started_at).total_seconds(), 3),
        )
        return result
