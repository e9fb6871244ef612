"""
Per-subject aggregation of service transactions.

Folds the transaction snapshot of one scan into SubjectAggregate records
keyed by subject id (customer or agent). Counters only; no rule logic. The
mapping is rebuilt every scan and never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from doorstep_guard.guard_logging import get_logger
from doorstep_guard.sources.models import Transaction, TransactionStatus

logger = get_logger(__name__)

# Round "test-looking" amounts seen in probing/structuring attempts
DEFAULT_SUSPICIOUS_AMOUNTS = frozenset(Decimal(v) for v in (999, 1999, 4999, 9999))
# Amount strictly above this counts as a large-value transaction
DEFAULT_LARGE_VALUE_THRESHOLD = Decimal(8000)


@dataclass
class SubjectAggregate:
    """
    Running statistics for one subject over the scanned transactions.

    User-side counters are filled for the owning subject of each transaction;
    agent-side counters for the handling agent. A subject that is both (rare)
    carries both sets of counters.
    """

    subject_id: str
    total_count: int = 0
    suspicious_count: int = 0
    large_count: int = 0
    suspicious_transactions: list[Transaction] = field(default_factory=list)
    large_transactions: list[Transaction] = field(default_factory=list)

    handled_count: int = 0
    approved_count: int = 0
    rejected_count: int = 0
    amount_sum: Decimal = Decimal(0)
    handled_transactions: list[Transaction] = field(default_factory=list)

    @property
    def approval_rate(self) -> float | None:
        """approved / handled; None when the subject handled nothing."""
        if self.handled_count == 0:
            return None
        return self.approved_count / self.handled_count

    @property
    def avg_amount(self) -> Decimal | None:
        if self.handled_count == 0:
            return None
        return self.amount_sum / self.handled_count


def aggregate_transactions(
    transactions: Iterable[Transaction],
    *,
    suspicious_amounts: frozenset[Decimal] = DEFAULT_SUSPICIOUS_AMOUNTS,
    large_value_threshold: Decimal = DEFAULT_LARGE_VALUE_THRESHOLD,
) -> dict[str, SubjectAggregate]:
    """
    Single pass over the transactions, producing subject id → SubjectAggregate.

    Transactions must already be validated (subject id and amount present).
    Input records are only read; transaction order is preserved inside the
    reference lists.
    """
    aggregates: dict[str, SubjectAggregate] = {}

    def _get(subject_id: str) -> SubjectAggregate:
        agg = aggregates.get(subject_id)
        if agg is None:
            agg = aggregates[subject_id] = SubjectAggregate(subject_id=subject_id)
        return agg

    count = 0
    for tx in transactions:
        count += 1
        user = _get(tx.subject_id)
        user.total_count += 1
        amount = tx.amount if tx.amount is not None else Decimal(0)
        if amount in suspicious_amounts:
            user.suspicious_count += 1
            user.suspicious_transactions.append(tx)
        if amount > large_value_threshold:
            user.large_count += 1
            user.large_transactions.append(tx)

        if tx.agent_id:
            agent = _get(tx.agent_id)
            agent.handled_count += 1
            agent.amount_sum += amount
            agent.handled_transactions.append(tx)
            if tx.status == TransactionStatus.APPROVED:
                agent.approved_count += 1
            elif tx.status == TransactionStatus.REJECTED:
                agent.rejected_count += 1

    logger.debug("transactions_aggregated", transactions=count, subjects=len(aggregates))
    return aggregates
