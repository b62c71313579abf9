"""User model carrying subscription plan state."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

ACCOUNT_TYPES = ("personal", "basic", "pro")
PAID_ACCOUNT_TYPES = frozenset({"basic", "pro"})


class User(SQLModel, table=True):
    """Application user and their plan metadata."""

    __tablename__: ClassVar[str] = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(nullable=False, unique=True, index=True, max_length=255)
    account_type: str = Field(default="personal", nullable=False, max_length=16, index=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    plan_started_at: Optional[datetime] = Field(default=None)
    plan_next_renewal_at: Optional[datetime] = Field(default=None)
    plan_status: Optional[str] = Field(default=None, max_length=16)
    plan_price: Optional[float] = Field(default=None)

    transactions = Relationship(
        back_populates="user",
        sa_relationship=relationship("Transaction", back_populates="user"),
    )
    debts = Relationship(
        back_populates="user",
        sa_relationship=relationship("Debt", back_populates="user"),
    )

    @property
    def is_paid(self) -> bool:
        return self.account_type in PAID_ACCOUNT_TYPES
