"""JSON shapes returned by the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from ..models.debt import Debt, DebtPayment
from ..models.projection import Expense, LedgerProjection, Revenue
from ..models.transaction import Transaction
from ..models.user import User
from ..services.dates import as_utc
from ..services.debt_payments import DebtView


def _iso(value: Optional[datetime]) -> Optional[str]:
    return as_utc(value).isoformat() if value is not None else None


def serialize_transaction(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "user_id": txn.user_id,
        "date": _iso(txn.date),
        "description": txn.description,
        "amount": txn.amount,
        "type": txn.type,
        "category": txn.category,
        "subcategory": txn.subcategory,
        "payment_method": txn.payment_method,
        "status": txn.status,
        "notes": txn.notes,
        "is_installment": txn.is_installment,
        "installment_info": txn.installment_info,
        "tags": list(txn.tags or []),
    }


def serialize_projection(projection: LedgerProjection) -> dict[str, Any]:
    data = {
        "id": projection.id,
        "user_id": projection.user_id,
        "transaction_id": projection.transaction_id,
        "date": _iso(projection.date),
        "description": projection.description,
        "amount": projection.amount,
        "category": projection.category,
        "notes": projection.notes,
    }
    if isinstance(projection, Revenue):
        data["source"] = projection.source
    elif isinstance(projection, Expense):
        data["supplier"] = projection.supplier
        data["payment_method"] = projection.payment_method
    return data


def serialize_entry(row: LedgerProjection | Transaction) -> dict[str, Any]:
    """List item for the revenue/expense feeds; installment rows are tagged."""

    if isinstance(row, Transaction):
        data = serialize_transaction(row)
        data["origin"] = "installment"
        return data
    data = serialize_projection(row)
    data["origin"] = "entry"
    return data


def serialize_payment(payment: DebtPayment) -> dict[str, Any]:
    return {
        "id": payment.id,
        "debt_id": payment.debt_id,
        "date": _iso(payment.date),
        "amount": payment.amount,
        "payment_method": payment.payment_method,
        "notes": payment.notes,
    }


def serialize_debt(debt: Debt, payments: Optional[list[DebtPayment]] = None) -> dict[str, Any]:
    """Debt body; ``payments`` is always a list."""

    return {
        "id": debt.id,
        "user_id": debt.user_id,
        "creditor_name": debt.creditor_name,
        "description": debt.description,
        "original_amount": debt.original_amount,
        "current_amount": debt.current_amount,
        "interest_rate": debt.interest_rate,
        "due_date": _iso(debt.due_date),
        "category": debt.category,
        "priority": debt.priority,
        "status": debt.status,
        "payment_method": debt.payment_method,
        "notes": debt.notes,
        "tags": list(debt.tags or []),
        "installments": debt.installments,
        "created_at": _iso(debt.created_at),
        "updated_at": _iso(debt.updated_at),
        "payments": [serialize_payment(payment) for payment in payments or []],
    }


def serialize_debt_view(view: DebtView) -> dict[str, Any]:
    return serialize_debt(view.debt, view.payments)


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "account_type": user.account_type,
        "created_at": _iso(user.created_at),
        "plan_started_at": _iso(user.plan_started_at),
        "plan_next_renewal_at": _iso(user.plan_next_renewal_at),
        "plan_status": user.plan_status,
        "plan_price": user.plan_price,
    }
