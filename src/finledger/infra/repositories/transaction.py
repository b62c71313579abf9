"""SQLModel implementation of the Transaction repository."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlmodel import Session, select

from ...models.projection import Expense, Revenue
from ...models.transaction import Transaction


class SQLModelTransactionRepository:
    """Transaction queries bound to one unit-of-work session.

    Every query filters by ``user_id``; rows belonging to another user are
    indistinguishable from missing ones.
    """

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, transaction_id: int, *, user_id: int) -> Optional[Transaction]:
        """Retrieve a transaction by ID."""
        return self.session.exec(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .where(Transaction.user_id == user_id)
        ).first()

    def list_all(
        self,
        *,
        user_id: int,
        txn_type: Optional[str] = None,
        installments_only: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        """List transactions newest first."""
        statement = select(Transaction).where(Transaction.user_id == user_id)
        if txn_type:
            statement = statement.where(Transaction.type == txn_type)
        if installments_only:
            statement = statement.where(Transaction.is_installment == True)  # noqa: E712
        statement = statement.order_by(Transaction.date.desc(), Transaction.id.desc())  # type: ignore
        if offset:
            statement = statement.offset(offset)
        if limit is not None:
            statement = statement.limit(limit)
        return list(self.session.exec(statement).all())

    def count_in_range(self, start: datetime, end: datetime, *, user_id: int) -> int:
        """Count transactions whose ``date`` falls inside ``[start, end]``."""
        statement = (
            select(func.count())
            .select_from(Transaction)
            .where(Transaction.user_id == user_id)
            .where(Transaction.date >= start)
            .where(Transaction.date <= end)
        )
        return int(self.session.exec(statement).one())

    def add(self, transaction: Transaction, *, user_id: int) -> Transaction:
        """Stage a new or modified transaction and flush it to obtain an id."""
        transaction.user_id = user_id
        self.session.add(transaction)
        self.session.flush()
        self.session.refresh(transaction)
        return transaction

    def delete(self, transaction: Transaction) -> None:
        self.session.delete(transaction)
        self.session.flush()

    def list_orphans(self) -> list[Transaction]:
        """Projected transactions whose revenue/expense row is missing."""
        statement = (
            select(Transaction)
            .where(Transaction.projected == True)  # noqa: E712
            .where(~select(Expense.id).where(Expense.transaction_id == Transaction.id).exists())
            .where(~select(Revenue.id).where(Revenue.transaction_id == Transaction.id).exists())
            .order_by(Transaction.id)  # type: ignore
        )
        return list(self.session.exec(statement).all())

    def list_user_dates(self) -> list[tuple[int, datetime]]:
        """``(user_id, date)`` of every transaction; feeds usage recounts."""
        statement = select(Transaction.user_id, Transaction.date).order_by(Transaction.user_id)  # type: ignore
        return [(row[0], row[1]) for row in self.session.exec(statement).all()]
