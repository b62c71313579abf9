"""Monthly usage counters with conditional increments."""

from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy import insert, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import Session, select

from ...models.usage import MonthlyUsage


class SQLModelUsageRepository:
    """Counters are only ever changed through single UPDATE statements so that
    concurrent writers cannot both take the last free slot."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, *, user_id: int, period: str) -> Optional[MonthlyUsage]:
        return self.session.exec(
            select(MonthlyUsage)
            .where(MonthlyUsage.user_id == user_id)
            .where(MonthlyUsage.period == period)
        ).first()

    def ensure(self, *, user_id: int, period: str, seed: Callable[[], int]) -> None:
        """Create the counter row, seeded from ``seed()``, if it does not exist."""
        if self.get(user_id=user_id, period=period) is not None:
            return
        values = {"user_id": user_id, "period": period, "used": int(seed())}
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            statement = sqlite.insert(MonthlyUsage).values(**values).on_conflict_do_nothing()
        elif dialect == "postgresql":
            statement = postgresql.insert(MonthlyUsage).values(**values).on_conflict_do_nothing()
        else:
            statement = insert(MonthlyUsage).values(**values)
        self.session.connection().execute(statement)

    def reserve(
        self,
        *,
        user_id: int,
        period: str,
        limit: Optional[int],
        seed: Callable[[], int],
    ) -> bool:
        """Take one slot; returns False when ``limit`` slots are already used."""
        self.ensure(user_id=user_id, period=period, seed=seed)
        statement = (
            update(MonthlyUsage)
            .where(MonthlyUsage.user_id == user_id)
            .where(MonthlyUsage.period == period)
        )
        if limit is not None:
            statement = statement.where(MonthlyUsage.used < limit)
        statement = statement.values(used=MonthlyUsage.used + 1)
        return self.session.connection().execute(statement).rowcount == 1

    def release(self, *, user_id: int, period: str) -> None:
        statement = (
            update(MonthlyUsage)
            .where(MonthlyUsage.user_id == user_id)
            .where(MonthlyUsage.period == period)
            .where(MonthlyUsage.used > 0)
            .values(used=MonthlyUsage.used - 1)
        )
        self.session.connection().execute(statement)

    def reset(self, *, user_id: int, period: str, used: int) -> None:
        """Overwrite a counter with a recounted value."""
        self.ensure(user_id=user_id, period=period, seed=lambda: used)
        statement = (
            update(MonthlyUsage)
            .where(MonthlyUsage.user_id == user_id)
            .where(MonthlyUsage.period == period)
            .values(used=used)
        )
        self.session.connection().execute(statement)

    def list_all(self) -> list[MonthlyUsage]:
        return list(self.session.exec(select(MonthlyUsage).order_by(MonthlyUsage.id)).all())  # type: ignore
