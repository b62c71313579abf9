"""Per-month transaction counters backing the atomic quota check."""

from __future__ import annotations

from typing import ClassVar, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class MonthlyUsage(SQLModel, table=True):
    """Number of transactions a user has dated within ``period`` (``YYYY-MM``)."""

    __tablename__: ClassVar[str] = "monthly_usage"
    __table_args__ = (UniqueConstraint("user_id", "period", name="uq_monthly_usage_user_period"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    period: str = Field(nullable=False, max_length=7)
    used: int = Field(default=0, nullable=False)
