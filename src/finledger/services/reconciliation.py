"""Offline consistency sweep over ledger rows, usage counters and debts.

Nothing here runs on the request path. The sweep reports three kinds of
drift; with ``repair=True`` it fixes the first two. Debt balance drift is
only reported because payments recorded as history alone leave it behind
on purpose.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from ..infra.database import SessionFactory
from ..infra.repositories import (
    SQLModelDebtPaymentRepository,
    SQLModelDebtRepository,
    SQLModelTransactionRepository,
    SQLModelUsageRepository,
)
from ..logging_config import get_logger
from .dates import period_key
from .debt_payments import balance_drift

logger = get_logger(__name__)


@dataclass(frozen=True)
class UsageMismatch:
    user_id: int
    period: str
    stored: int
    actual: int


@dataclass(frozen=True)
class DebtDrift:
    debt_id: int
    user_id: int
    drift: float


@dataclass
class ReconciliationReport:
    orphan_transactions: list[int] = field(default_factory=list)
    usage_mismatches: list[UsageMismatch] = field(default_factory=list)
    debt_drift: list[DebtDrift] = field(default_factory=list)
    repaired: bool = False

    @property
    def clean(self) -> bool:
        return not (self.orphan_transactions or self.usage_mismatches or self.debt_drift)


def reconcile(session_factory: SessionFactory, *, repair: bool = False) -> ReconciliationReport:
    report = ReconciliationReport(repaired=repair)
    with session_factory() as session:
        transactions = SQLModelTransactionRepository(session)
        usage = SQLModelUsageRepository(session)

        orphans = transactions.list_orphans()
        report.orphan_transactions = [txn.id for txn in orphans]
        if repair:
            for txn in orphans:
                transactions.delete(txn)

        actual = Counter(
            (user_id, period_key(moment)) for user_id, moment in transactions.list_user_dates()
        )
        stored = {(row.user_id, row.period): row.used for row in usage.list_all()}
        for key in sorted(set(actual) | set(stored)):
            if actual.get(key, 0) != stored.get(key, 0):
                user_id, period = key
                report.usage_mismatches.append(
                    UsageMismatch(user_id, period, stored.get(key, 0), actual.get(key, 0))
                )
                if repair:
                    usage.reset(user_id=user_id, period=period, used=actual.get(key, 0))

        debts = SQLModelDebtRepository(session).list_every_user()
        payments = SQLModelDebtPaymentRepository(session).list_for_debts(debt.id for debt in debts)
        by_debt: dict[int, list] = {}
        for payment in payments:
            by_debt.setdefault(payment.debt_id, []).append(payment)
        for debt in debts:
            drift = balance_drift(debt, by_debt.get(debt.id, []))
            if drift:
                report.debt_drift.append(DebtDrift(debt.id, debt.user_id, drift))

    logger.info(
        "reconcile.finished",
        extra={
            "orphans": len(report.orphan_transactions),
            "usage_mismatches": len(report.usage_mismatches),
            "debt_drift": len(report.debt_drift),
            "repair": repair,
        },
    )
    return report


__all__ = ["DebtDrift", "ReconciliationReport", "UsageMismatch", "reconcile"]
