"""Debt bookkeeping and payment history.

``record_payment`` only appends to the history; the debt balance is left for
the caller to adjust. ``apply_payment`` does both in one unit of work, with
the balance decrement guarded by a conditional UPDATE so two concurrent
payments can never push ``current_amount`` below zero.
"""

from __future__ import annotations

import math
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from ..errors import NotFound, StorageError, ValidationError
from ..infra.database import SessionFactory
from ..infra.repositories import SQLModelDebtPaymentRepository, SQLModelDebtRepository
from ..infra.repositories.debt import CENT_TOLERANCE
from ..logging_config import get_logger
from ..models.debt import DEBT_STATUSES, Debt, DebtPayment
from ..models.user import User
from .dates import as_utc, utcnow
from .installments import round2

logger = get_logger(__name__)


@dataclass(slots=True)
class DebtDraft:
    creditor_name: str
    original_amount: float
    current_amount: Optional[float] = None
    description: str = ""
    interest_rate: Optional[float] = None
    due_date: Optional[datetime] = None
    category: str = "other"
    priority: str = "medium"
    status: str = "active"
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    installments: Optional[dict[str, Any]] = None


@dataclass(slots=True)
class PaymentDraft:
    amount: float
    date: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None


@dataclass(slots=True)
class DebtView:
    """A debt together with its payment history, newest first."""

    debt: Debt
    payments: list[DebtPayment] = field(default_factory=list)


def _validate_installments(value: Any) -> Optional[dict[str, Any]]:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ValidationError("installments must be an object", field="installments")
    try:
        total = int(value.get("total", 0))
        paid = int(value.get("paid", 0))
        amount = float(value.get("amount", 0))
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError("installments fields must be numeric", field="installments") from exc
    if total < 1 or paid < 0 or paid > total or not math.isfinite(amount) or amount < 0:
        raise ValidationError("installments must satisfy 0 <= paid <= total", field="installments")
    return {"total": total, "paid": paid, "amount": amount}


def _check_balances(original: Optional[float], current: Optional[float]) -> None:
    if original is None or not math.isfinite(original) or original <= 0:
        raise ValidationError("original_amount must be greater than zero", field="original_amount")
    if current is None or not math.isfinite(current) or current < 0:
        raise ValidationError("current_amount cannot be negative", field="current_amount")
    if current > original + CENT_TOLERANCE:
        raise ValidationError("current_amount cannot exceed original_amount", field="current_amount")


def validate_debt(draft: DebtDraft) -> DebtDraft:
    draft.creditor_name = (draft.creditor_name or "").strip()
    if not draft.creditor_name:
        raise ValidationError("creditor_name is required", field="creditor_name")
    if draft.current_amount is None:
        draft.current_amount = draft.original_amount
    _check_balances(draft.original_amount, draft.current_amount)
    if draft.status not in DEBT_STATUSES:
        raise ValidationError("invalid status", field="status")
    if draft.interest_rate is not None and (not math.isfinite(draft.interest_rate) or draft.interest_rate < 0):
        raise ValidationError("interest_rate cannot be negative", field="interest_rate")
    if draft.due_date is not None:
        draft.due_date = as_utc(draft.due_date)
    draft.installments = _validate_installments(draft.installments)
    return draft


def derived_balance(debt: Debt, payments: Iterable[DebtPayment]) -> float:
    """Balance implied by the opening balance and the payment history."""

    opening = debt.original_amount if debt.opening_amount is None else debt.opening_amount
    return max(round2(opening - sum(p.amount for p in payments)), 0.0)


def balance_drift(debt: Debt, payments: Iterable[DebtPayment]) -> float:
    """Stored balance minus the derived one; 0 when both agree."""

    return round2(debt.current_amount - derived_balance(debt, payments))


class DebtTracker:
    """Debt CRUD, payment history and the combined payment operation."""

    _UPDATABLE = (
        "creditor_name",
        "description",
        "original_amount",
        "current_amount",
        "interest_rate",
        "due_date",
        "category",
        "priority",
        "status",
        "payment_method",
        "notes",
        "tags",
        "installments",
    )

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    @contextmanager
    def _unit_of_work(self, action: str, **context: Any) -> Iterator[Session]:
        try:
            with self.session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("debts.storage_error", extra={"action": action, "error": str(exc), **context})
            raise StorageError(f"Storage failure during {action}") from exc

    def create_debt(self, user: User, draft: DebtDraft) -> Debt:
        draft = validate_debt(draft)
        with self._unit_of_work("create_debt", user_id=user.id) as session:
            debt = SQLModelDebtRepository(session).add(
                Debt(
                    creditor_name=draft.creditor_name,
                    description=draft.description or "",
                    original_amount=draft.original_amount,
                    current_amount=draft.current_amount,
                    opening_amount=draft.current_amount,
                    interest_rate=draft.interest_rate,
                    due_date=draft.due_date,
                    category=draft.category,
                    priority=draft.priority,
                    status=draft.status,
                    payment_method=draft.payment_method,
                    notes=draft.notes,
                    tags=list(draft.tags),
                    installments=draft.installments,
                ),
                user_id=user.id,
            )
        logger.info("debts.created", extra={"user_id": user.id, "debt_id": debt.id})
        return debt

    def update_debt(self, user: User, debt_id: int, changes: Mapping[str, Any]) -> Debt:
        with self._unit_of_work("update_debt", user_id=user.id, debt_id=debt_id) as session:
            debts = SQLModelDebtRepository(session)
            debt = debts.get_by_id(debt_id, user_id=user.id)
            if debt is None:
                raise NotFound("debt not found")

            for name in self._UPDATABLE:
                if name not in changes:
                    continue
                value = changes[name]
                if name == "creditor_name":
                    value = (value or "").strip()
                    if not value:
                        raise ValidationError("creditor_name is required", field=name)
                elif name == "status" and value not in DEBT_STATUSES:
                    raise ValidationError("invalid status", field=name)
                elif name == "installments":
                    value = _validate_installments(value)
                elif name == "due_date" and value is not None:
                    value = as_utc(value)
                elif name == "tags":
                    value = list(value or [])
                setattr(debt, name, value)
            _check_balances(debt.original_amount, debt.current_amount)
            if "current_amount" in changes:
                # A manual correction restarts the count from the new balance.
                history = SQLModelDebtPaymentRepository(session).list_for_debts([debt.id])
                paid = sum(payment.amount for payment in history)
                debt.opening_amount = round2(debt.current_amount + paid)
            debt = debts.add(debt, user_id=user.id)
        logger.info("debts.updated", extra={"user_id": user.id, "debt_id": debt_id})
        return debt

    def delete_debt(self, user: User, debt_id: int) -> int:
        with self._unit_of_work("delete_debt", user_id=user.id, debt_id=debt_id) as session:
            debts = SQLModelDebtRepository(session)
            debt = debts.get_by_id(debt_id, user_id=user.id)
            if debt is None:
                raise NotFound("debt not found")
            debts.delete(debt)
        logger.info("debts.deleted", extra={"user_id": user.id, "debt_id": debt_id})
        return debt_id

    def list_debts(self, user: User) -> list[DebtView]:
        """Every debt of ``user`` with its payments attached."""

        with self._unit_of_work("list_debts", user_id=user.id) as session:
            debts = SQLModelDebtRepository(session).list_all(user_id=user.id)
            grouped = self._group_payments(session, [debt.id for debt in debts])
        return [DebtView(debt=debt, payments=grouped[debt.id]) for debt in debts]

    def list_payments(self, debt_ids: Iterable[int]) -> dict[int, list[DebtPayment]]:
        """Payments grouped per debt; ids without payments map to an empty list."""

        ids = list(debt_ids)
        with self._unit_of_work("list_payments") as session:
            return self._group_payments(session, ids)

    @staticmethod
    def _group_payments(session: Session, debt_ids: list[int]) -> dict[int, list[DebtPayment]]:
        grouped: dict[int, list[DebtPayment]] = defaultdict(list)
        for payment in SQLModelDebtPaymentRepository(session).list_for_debts(debt_ids):
            grouped[payment.debt_id].append(payment)
        return {debt_id: grouped[debt_id] for debt_id in debt_ids}

    def record_payment(self, user: User, debt_id: int, draft: PaymentDraft) -> DebtPayment:
        """Append a payment to the history without touching the balance."""

        self._validate_payment(draft)
        with self._unit_of_work("record_payment", user_id=user.id, debt_id=debt_id) as session:
            if SQLModelDebtRepository(session).get_by_id(debt_id, user_id=user.id) is None:
                raise NotFound("debt not found")
            payment = SQLModelDebtPaymentRepository(session).add(self._payment(debt_id, draft))
        logger.info(
            "debts.payment_recorded",
            extra={"user_id": user.id, "debt_id": debt_id, "amount": draft.amount},
        )
        return payment

    def apply_payment(self, user: User, debt_id: int, draft: PaymentDraft) -> tuple[DebtPayment, Debt]:
        """Record a payment and decrement the balance as one operation.

        Paying more than the outstanding balance is rejected. A debt whose
        balance reaches zero is marked ``paid``; when it tracks installments,
        ``installments.paid`` moves forward by one.
        """

        self._validate_payment(draft)
        with self._unit_of_work("apply_payment", user_id=user.id, debt_id=debt_id) as session:
            debts = SQLModelDebtRepository(session)
            debt = debts.get_by_id(debt_id, user_id=user.id)
            if debt is None:
                raise NotFound("debt not found")
            if not debts.decrement_balance(debt_id, draft.amount, user_id=user.id):
                raise ValidationError(
                    "Payment exceeds the outstanding balance of the debt", field="amount"
                )
            session.refresh(debt)

            if debt.current_amount <= CENT_TOLERANCE:
                debt.current_amount = 0.0
                debt.status = "paid"
            else:
                debt.current_amount = round2(debt.current_amount)
            if debt.installments:
                installments = dict(debt.installments)
                installments["paid"] = min(
                    int(installments.get("paid", 0)) + 1, int(installments.get("total", 0))
                )
                debt.installments = installments
            debt = debts.add(debt, user_id=user.id)
            payment = SQLModelDebtPaymentRepository(session).add(self._payment(debt_id, draft))

        logger.info(
            "debts.payment_applied",
            extra={
                "user_id": user.id,
                "debt_id": debt_id,
                "amount": draft.amount,
                "balance": debt.current_amount,
                "status": debt.status,
            },
        )
        return payment, debt

    @staticmethod
    def _validate_payment(draft: PaymentDraft) -> None:
        if draft.amount is None or not math.isfinite(draft.amount) or draft.amount <= 0:
            raise ValidationError("amount must be greater than zero", field="amount")

    @staticmethod
    def _payment(debt_id: int, draft: PaymentDraft) -> DebtPayment:
        return DebtPayment(
            debt_id=debt_id,
            date=as_utc(draft.date or utcnow()),
            amount=round2(draft.amount),
            payment_method=draft.payment_method,
            notes=draft.notes,
        )


__all__ = [
    "DebtDraft",
    "DebtTracker",
    "DebtView",
    "PaymentDraft",
    "balance_drift",
    "derived_balance",
    "validate_debt",
]
