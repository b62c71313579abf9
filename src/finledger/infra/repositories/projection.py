"""SQLModel implementation of the revenue/expense projection repository."""

from __future__ import annotations

from typing import Generic, Optional, TypeVar

from sqlmodel import Session, select

from ...models.projection import Expense, LedgerProjection, Revenue

P = TypeVar("P", Revenue, Expense)


class SQLModelProjectionRepository(Generic[P]):
    """Repository for one projection table (``Revenue`` or ``Expense``)."""

    def __init__(self, session: Session, model: type[P]):
        self.session = session
        self.model = model

    def get_by_id(self, projection_id: int, *, user_id: int) -> Optional[P]:
        return self.session.exec(
            select(self.model)
            .where(self.model.id == projection_id)
            .where(self.model.user_id == user_id)
        ).first()

    def get_by_transaction(self, transaction_id: int, *, user_id: int) -> Optional[P]:
        return self.session.exec(
            select(self.model)
            .where(self.model.transaction_id == transaction_id)
            .where(self.model.user_id == user_id)
        ).first()

    def list_all(self, *, user_id: int) -> list[P]:
        statement = (
            select(self.model)
            .where(self.model.user_id == user_id)
            .order_by(self.model.date.desc(), self.model.id.desc())  # type: ignore
        )
        return list(self.session.exec(statement).all())

    def add(self, projection: P, *, user_id: int) -> P:
        projection.user_id = user_id
        self.session.add(projection)
        self.session.flush()
        self.session.refresh(projection)
        return projection

    def delete(self, projection: LedgerProjection) -> None:
        self.session.delete(projection)
        self.session.flush()


def projection_model(kind: str) -> type[Revenue] | type[Expense]:
    """Map a transaction type (``revenue``/``expense``) to its projection table."""

    if kind == "revenue":
        return Revenue
    if kind == "expense":
        return Expense
    raise ValueError(f"Unknown projection kind: {kind}")
