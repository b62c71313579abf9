"""Lazy expiry and metadata backfill for paid plans.

Plans are never expired by a scheduler on the request path. Instead every
read of a user runs :func:`evaluate_plan` first and persists the result. The
transition is idempotent: an expired user is no longer paid, so a second
evaluation produces no change and no write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import BaseConfig
from ..errors import NotFound, StorageError
from ..infra.database import SessionFactory
from ..infra.repositories import SQLModelUserRepository
from ..logging_config import get_logger
from ..models.user import User
from .dates import as_utc, utcnow

logger = get_logger(__name__)

UNCHANGED = "unchanged"
EXPIRED = "expired"
BACKFILLED = "backfilled"


@dataclass(frozen=True)
class PlanTransition:
    kind: str = UNCHANGED
    changes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


@dataclass(frozen=True)
class PlanRules:
    grace_days: int = BaseConfig.PLAN_GRACE_DAYS
    period_days: int = BaseConfig.PLAN_PERIOD_DAYS
    prices: Mapping[str, float] = field(default_factory=lambda: dict(BaseConfig.PLAN_PRICES))

    @classmethod
    def from_config(cls, config: BaseConfig) -> PlanRules:
        return cls(
            grace_days=config.PLAN_GRACE_DAYS,
            period_days=config.PLAN_PERIOD_DAYS,
            prices=dict(config.PLAN_PRICES),
        )


def evaluate_plan(user: User, now: datetime, rules: Optional[PlanRules] = None) -> PlanTransition:
    """Decide what, if anything, changes on ``user``'s plan at ``now``."""

    rules = rules or PlanRules()
    if not user.is_paid:
        return PlanTransition()

    now = as_utc(now)
    renewal = user.plan_next_renewal_at
    if renewal is not None and now > as_utc(renewal) + timedelta(days=rules.grace_days):
        return PlanTransition(
            kind=EXPIRED,
            changes={"account_type": "personal", "plan_status": "expired", "plan_price": None},
        )

    changes: dict[str, Any] = {}
    if user.plan_started_at is None:
        changes["plan_started_at"] = now
    if renewal is None:
        changes["plan_next_renewal_at"] = now + timedelta(days=rules.period_days)
    if user.plan_status is None:
        changes["plan_status"] = "active"
    if user.plan_price is None:
        price = rules.prices.get(user.account_type)
        if price is not None:
            changes["plan_price"] = price
    if changes:
        return PlanTransition(kind=BACKFILLED, changes=changes)
    return PlanTransition()


class PlanRenewal:
    """Loads users through the plan state machine and persists transitions."""

    def __init__(
        self,
        session_factory: SessionFactory,
        rules: Optional[PlanRules] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.rules = rules or PlanRules()
        self.clock = clock

    def refresh_user_plan(
        self, user: User, now: Optional[datetime] = None, *, persist: bool = True
    ) -> PlanTransition:
        """Apply the transition for ``now`` to ``user`` and optionally save it."""

        transition = evaluate_plan(user, now or self.clock(), self.rules)
        if not transition.changed:
            return transition

        previous = user.account_type
        for name, value in transition.changes.items():
            setattr(user, name, value)
        if persist:
            try:
                with self.session_factory() as session:
                    session.add(user)
                    SQLModelUserRepository(session).save(user)
            except SQLAlchemyError as exc:
                logger.error("plan.persist_failed", extra={"user_id": user.id, "error": str(exc)})
                raise StorageError("Could not persist plan state") from exc
        logger.info(
            f"plan.{transition.kind}",
            extra={"user_id": user.id, "account_type": previous, "fields": sorted(transition.changes)},
        )
        return transition

    def load_user(self, user_id: int, now: Optional[datetime] = None) -> User:
        """Fetch a user by id with its plan state brought up to date."""

        with self.session_factory() as session:
            user = SQLModelUserRepository(session).get_by_id(user_id)
        if user is None:
            raise NotFound("user not found")
        self.refresh_user_plan(user, now)
        return user

    def load_user_by_email(self, email: str, now: Optional[datetime] = None) -> User:
        with self.session_factory() as session:
            user = SQLModelUserRepository(session).get_by_email(email)
        if user is None:
            raise NotFound("user not found")
        self.refresh_user_plan(user, now)
        return user

    def expire_lapsed_plans(self, now: Optional[datetime] = None) -> list[int]:
        """Sweep every paid user; returns the ids that were expired."""

        now = now or self.clock()
        with self.session_factory() as session:
            users = SQLModelUserRepository(session).list_paid()
        expired = []
        for user in users:
            if self.refresh_user_plan(user, now).kind == EXPIRED:
                expired.append(user.id)
        return expired


__all__ = [
    "BACKFILLED",
    "EXPIRED",
    "PlanRenewal",
    "PlanRules",
    "PlanTransition",
    "UNCHANGED",
    "evaluate_plan",
]
