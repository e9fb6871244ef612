"""
Analysis engine: per-subject aggregation and the fraud detection rules.

Aggregates are rebuilt from the scanned records on every scan; the rules turn
them into candidate alerts for the alert store.
"""

from doorstep_guard.analysis_engine.aggregator import (
    DEFAULT_LARGE_VALUE_THRESHOLD,
    DEFAULT_SUSPICIOUS_AMOUNTS,
    SubjectAggregate,
    aggregate_transactions,
)
from doorstep_guard.analysis_engine.rules import (
    DEFAULT_SUSPICIOUS_KEYWORDS,
    RuleConfig,
    RuleEvaluator,
)

__all__ = [
    "DEFAULT_LARGE_VALUE_THRESHOLD",
    "DEFAULT_SUSPICIOUS_AMOUNTS",
    "DEFAULT_SUSPICIOUS_KEYWORDS",
    "RuleConfig",
    "RuleEvaluator",
    "SubjectAggregate",
    "aggregate_transactions",
]
