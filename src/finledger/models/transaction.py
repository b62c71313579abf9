"""SQLModel definitions for ledger transactions."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from sqlalchemy import JSON, Column
from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover - import guard for circular dependency
    from .projection import Expense, Revenue
    from .user import User

TRANSACTION_TYPES = ("revenue", "expense")
TRANSACTION_STATUSES = ("completed", "pending", "cancelled")


class Transaction(SQLModel, table=True):
    """Generic ledger row; revenues and expenses project from it 1:1."""

    __tablename__: ClassVar[str] = "transaction"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    date: datetime = Field(nullable=False, index=True)
    description: str = Field(default="", max_length=255)
    amount: float = Field(nullable=False, description="Always positive; direction comes from type")
    type: str = Field(nullable=False, max_length=16, index=True)
    category: str = Field(default="", max_length=64)
    subcategory: Optional[str] = Field(default=None, max_length=64)
    payment_method: Optional[str] = Field(default=None, max_length=32)
    status: str = Field(default="completed", max_length=16)
    notes: Optional[str] = Field(default=None)
    is_installment: bool = Field(default=False, nullable=False, index=True)
    installment_info: Optional[dict[str, Any]] = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # True when the row was written together with a revenue/expense projection.
    projected: bool = Field(default=False, nullable=False)

    user: "User" = Relationship(sa_relationship=relationship("User", back_populates="transactions"))
    # Projections go with their transaction even when the FK cascade is not
    # enforced by the connection (SQLite without PRAGMA foreign_keys).
    expense: "Expense | None" = Relationship(
        sa_relationship=relationship(
            "Expense",
            back_populates="transaction",
            uselist=False,
            cascade="all, delete",
        )
    )
    revenue: "Revenue | None" = Relationship(
        sa_relationship=relationship(
            "Revenue",
            back_populates="transaction",
            uselist=False,
            cascade="all, delete",
        )
    )
