"""Service module exports."""

from . import (
    dates,
    debt_payments,
    entitlements,
    identity,
    installments,
    ledger_writer,
    plan_renewal,
    reconciliation,
)

__all__ = [
    "dates",
    "debt_payments",
    "entitlements",
    "identity",
    "installments",
    "ledger_writer",
    "plan_renewal",
    "reconciliation",
]
