"""Debt and debt payment entities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar, Optional

from sqlalchemy import JSON, Column
from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from .user import User

DEBT_STATUSES = ("active", "pending", "overdue", "paid", "negotiating", "cancelled")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Debt(SQLModel, table=True):
    """Money owed to a creditor, paid down through ``DebtPayment`` rows."""

    __tablename__: ClassVar[str] = "debt"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    creditor_name: str = Field(nullable=False, max_length=128, index=True)
    description: str = Field(default="", max_length=255)
    original_amount: float = Field(nullable=False)
    current_amount: float = Field(nullable=False)
    # Balance the payment history counts down from; None on rows that predate it.
    opening_amount: Optional[float] = Field(default=None)
    interest_rate: Optional[float] = Field(default=None)
    due_date: Optional[datetime] = Field(default=None)
    category: str = Field(default="other", max_length=32)
    priority: str = Field(default="medium", max_length=16)
    status: str = Field(default="active", max_length=16, index=True)
    payment_method: Optional[str] = Field(default=None, max_length=32)
    notes: Optional[str] = Field(default=None)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    installments: Optional[dict[str, Any]] = Field(
        default=None, sa_column=Column(JSON, nullable=True)
    )
    created_at: datetime = Field(default_factory=_utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=_utcnow, nullable=False)

    user: "User" = Relationship(sa_relationship=relationship("User", back_populates="debts"))
    payments: list["DebtPayment"] = Relationship(
        sa_relationship=relationship(
            "DebtPayment", back_populates="debt", cascade="all, delete"
        )
    )


class DebtPayment(SQLModel, table=True):
    """Append-only record of money paid against a debt."""

    __tablename__: ClassVar[str] = "debt_payment"

    id: Optional[int] = Field(default=None, primary_key=True)
    debt_id: int = Field(foreign_key="debt.id", ondelete="CASCADE", nullable=False, index=True)
    date: datetime = Field(nullable=False, index=True)
    amount: float = Field(nullable=False)
    payment_method: Optional[str] = Field(default=None, max_length=32)
    notes: Optional[str] = Field(default=None)

    debt: "Debt" = Relationship(
        sa_relationship=relationship("Debt", back_populates="payments")
    )
