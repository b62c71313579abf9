"""Revenue and expense projections of ledger transactions."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover
    from .transaction import Transaction


class LedgerProjection(SQLModel):
    """Columns shared by revenues and expenses.

    ``transaction_id`` is set when the row was created through the ledger
    writer; such rows live and die with their transaction.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    transaction_id: Optional[int] = Field(
        default=None,
        foreign_key="transaction.id",
        ondelete="CASCADE",
        unique=True,
        nullable=True,
    )
    description: str = Field(default="", max_length=255)
    amount: float = Field(nullable=False)
    category: str = Field(default="", max_length=64)
    notes: Optional[str] = Field(default=None)
    date: datetime = Field(nullable=False, index=True)


class Revenue(LedgerProjection, table=True):
    __tablename__: ClassVar[str] = "revenue"

    source: Optional[str] = Field(default=None, max_length=128)

    transaction: "Transaction | None" = Relationship(
        sa_relationship=relationship("Transaction", back_populates="revenue")
    )


class Expense(LedgerProjection, table=True):
    __tablename__: ClassVar[str] = "expense"

    supplier: Optional[str] = Field(default=None, max_length=128)
    payment_method: Optional[str] = Field(default=None, max_length=32)

    transaction: "Transaction | None" = Relationship(
        sa_relationship=relationship("Transaction", back_populates="expense")
    )
