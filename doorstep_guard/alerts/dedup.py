"""
Alert deduplication: fold same-key candidates and merge them into stored alerts.

Pure functions; the store calls them under its lock. One alert per
(subject id, category) key. A re-fire refreshes evidence and reason but never
touches the review status or the first-detection timestamp.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from doorstep_guard.alerts.models import Alert, AlertStatus


def merge_evidence(earlier: dict[str, Any], later: dict[str, Any]) -> dict[str, Any]:
    """
    Combine two evidence dicts for the same alert key.

    List values are concatenated keeping first-seen order and dropping
    duplicates; any other value is taken from the later dict.
    """
    merged = dict(earlier)
    for key, value in later.items():
        prev = merged.get(key)
        if isinstance(prev, list) and isinstance(value, list):
            combined = list(prev)
            for item in value:
                if item not in combined:
                    combined.append(item)
            merged[key] = combined
        else:
            merged[key] = value
    return merged


def fold_candidates(candidates: Iterable[Alert]) -> list[Alert]:
    """Collapse candidates sharing a key into one, in first-seen key order."""
    folded: dict[str, Alert] = {}
    for cand in candidates:
        prev = folded.get(cand.key)
        if prev is None:
            folded[cand.key] = cand.copy()
            continue
        prev.evidence = merge_evidence(prev.evidence, cand.evidence)
        prev.reason = cand.reason
        prev.subject_name = cand.subject_name
        prev.rule = cand.rule
    return list(folded.values())


def merge_into(current: Alert | None, candidate: Alert, now: datetime) -> tuple[Alert, bool]:
    """
    Merge one folded candidate into the stored alert for its key.

    Returns (alert to persist, changed). With no stored alert the candidate
    becomes a new pending alert. Otherwise evidence and reason are replaced and
    changed is True only when one of them differs from what was stored.
    """
    if current is None:
        created = candidate.copy()
        created.status = AlertStatus.PENDING
        created.detected_at = now
        created.updated_at = now
        return created, True

    changed = current.evidence != candidate.evidence or current.reason != candidate.reason
    merged = current.copy()
    if changed:
        merged.evidence = candidate.copy().evidence
        merged.reason = candidate.reason
        merged.subject_name = candidate.subject_name
        merged.rule = candidate.rule
        merged.confidence = candidate.confidence
        merged.updated_at = now
    return merged, changed
