"""SQLModel implementation of the Debt and DebtPayment repositories."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import update
from sqlmodel import Session, select

from ...models.debt import Debt, DebtPayment

# Float balances are compared with a half-cent tolerance.
CENT_TOLERANCE = 0.005


class SQLModelDebtRepository:
    """Debt queries bound to one unit-of-work session."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, debt_id: int, *, user_id: int) -> Optional[Debt]:
        """Retrieve a debt by ID."""
        return self.session.exec(
            select(Debt).where(Debt.id == debt_id, Debt.user_id == user_id)
        ).first()

    def list_all(self, *, user_id: int) -> list[Debt]:
        """List debts newest first."""
        statement = (
            select(Debt)
            .where(Debt.user_id == user_id)
            .order_by(Debt.created_at.desc(), Debt.id.desc())  # type: ignore
        )
        return list(self.session.exec(statement).all())

    def list_every_user(self) -> list[Debt]:
        """All debts across users; used by the reconciliation sweep only."""
        return list(self.session.exec(select(Debt).order_by(Debt.id)).all())  # type: ignore

    def add(self, debt: Debt, *, user_id: int) -> Debt:
        debt.user_id = user_id
        debt.updated_at = datetime.now(timezone.utc)
        self.session.add(debt)
        self.session.flush()
        self.session.refresh(debt)
        return debt

    def delete(self, debt: Debt) -> None:
        self.session.delete(debt)
        self.session.flush()

    def decrement_balance(self, debt_id: int, amount: float, *, user_id: int) -> bool:
        """Subtract ``amount`` from ``current_amount`` in one conditional statement.

        Returns False when the debt is missing, not owned, or its balance is
        smaller than ``amount``.
        """
        statement = (
            update(Debt)
            .where(Debt.id == debt_id)
            .where(Debt.user_id == user_id)
            .where(Debt.current_amount >= amount - CENT_TOLERANCE)
            .values(
                current_amount=Debt.current_amount - amount,
                updated_at=datetime.now(timezone.utc),
            )
        )
        result = self.session.connection().execute(statement)
        return result.rowcount == 1


class SQLModelDebtPaymentRepository:
    """Append-only payment history."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, payment: DebtPayment) -> DebtPayment:
        self.session.add(payment)
        self.session.flush()
        self.session.refresh(payment)
        return payment

    def list_for_debts(self, debt_ids: Iterable[int]) -> list[DebtPayment]:
        """Payments for the given debts, most recent first."""
        ids = list(debt_ids)
        if not ids:
            return []
        statement = (
            select(DebtPayment)
            .where(DebtPayment.debt_id.in_(ids))  # type: ignore[attr-defined]
            .order_by(DebtPayment.date.desc(), DebtPayment.id.desc())  # type: ignore
        )
        return list(self.session.exec(statement).all())
