"""Plan entitlement checks run before every mutating ledger operation.

The evaluator is read-only: it inspects a user and the current time (plus, for
the basic tier, how many transactions the user already has this month) and
returns a :class:`Decision`. Translating a denial into an HTTP 403 is the
caller's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional

from ..config import LEDGER_RESOURCES, BaseConfig
from ..errors import Forbidden
from ..logging_config import get_logger
from ..models.user import User
from .dates import as_utc, month_bounds, utcnow

logger = get_logger(__name__)

OPERATIONS = ("create", "update", "delete")
# Resources whose creates insert a Transaction row and therefore count
# against the monthly quota.
QUOTA_RESOURCES = frozenset({"expenses", "revenues", "transactions"})

TRIAL_EXPIRED = "trial_expired"
MONTHLY_LIMIT_REACHED = "monthly_limit_reached"

_DENIAL_MESSAGES = {
    TRIAL_EXPIRED: "Free trial period of {days} days has expired",
    MONTHLY_LIMIT_REACHED: "Monthly transaction limit of the basic plan ({limit}) reached",
}


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of an entitlement check."""

    allowed: bool
    reason: Optional[str] = None
    message: Optional[str] = None

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise Forbidden(self.message or self.reason or "forbidden", reason=self.reason or "forbidden")


ALLOW = Decision(allowed=True)


@dataclass(frozen=True)
class EntitlementPolicy:
    """Tunable limits; built from :class:`BaseConfig` in the app."""

    trial_windows: Mapping[str, int] = field(
        default_factory=lambda: {resource: BaseConfig.DEFAULT_TRIAL_DAYS for resource in LEDGER_RESOURCES}
    )
    default_trial_days: int = BaseConfig.DEFAULT_TRIAL_DAYS
    monthly_transaction_limit: int = BaseConfig.MONTHLY_TRANSACTION_LIMIT

    @classmethod
    def from_config(cls, config: BaseConfig) -> EntitlementPolicy:
        return cls(
            trial_windows=dict(config.TRIAL_WINDOWS),
            default_trial_days=config.DEFAULT_TRIAL_DAYS,
            monthly_transaction_limit=config.MONTHLY_TRANSACTION_LIMIT,
        )

    def trial_days(self, resource: str) -> int:
        return int(self.trial_windows.get(resource, self.default_trial_days))


def trial_started_at(user: User) -> datetime:
    """The free trial starts at ``plan_started_at`` and falls back to sign-up."""

    return as_utc(user.plan_started_at or user.created_at)


def check_trial(user: User, now: datetime, *, window_days: int) -> Decision:
    """Deny free-tier users whose trial window has elapsed; paid tiers pass."""

    if user.account_type != "personal":
        return ALLOW
    elapsed = as_utc(now) - trial_started_at(user)
    if elapsed >= timedelta(days=window_days):
        return Decision(
            allowed=False,
            reason=TRIAL_EXPIRED,
            message=_DENIAL_MESSAGES[TRIAL_EXPIRED].format(days=window_days),
        )
    return ALLOW


def check_monthly_quota(user: User, monthly_count: int, *, limit: int) -> Decision:
    """Deny basic-tier users who already reached ``limit`` transactions this month."""

    if user.account_type != "basic":
        return ALLOW
    if monthly_count >= limit:
        return Decision(
            allowed=False,
            reason=MONTHLY_LIMIT_REACHED,
            message=_DENIAL_MESSAGES[MONTHLY_LIMIT_REACHED].format(limit=limit),
        )
    return ALLOW


def quota_applies(user: User, operation: str, resource: str) -> bool:
    return user.account_type == "basic" and operation == "create" and resource in QUOTA_RESOURCES


def monthly_limit_for(user: User, policy: EntitlementPolicy) -> Optional[int]:
    """Transaction cap for the user's tier, or None when uncapped."""

    if user.account_type == "basic":
        return policy.monthly_transaction_limit
    return None


def evaluate(
    user: User,
    operation: str,
    now: datetime,
    *,
    resource: str,
    policy: EntitlementPolicy,
    monthly_count: Optional[int] = None,
) -> Decision:
    """Pure entitlement decision for ``operation`` on ``resource``."""

    if operation not in OPERATIONS:
        raise ValueError(f"Unknown operation: {operation}")

    decision = check_trial(user, now, window_days=policy.trial_days(resource))
    if not decision.allowed:
        return decision

    if quota_applies(user, operation, resource):
        if monthly_count is None:
            raise ValueError("monthly_count is required for basic-tier creates")
        return check_monthly_quota(user, monthly_count, limit=policy.monthly_transaction_limit)
    return ALLOW


CountTransactions = Callable[[int, datetime, datetime], int]


class EntitlementEvaluator:
    """Binds a policy to a transaction counter so callers only pass the user."""

    def __init__(
        self,
        policy: EntitlementPolicy,
        count_transactions: CountTransactions,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.policy = policy
        self.count_transactions = count_transactions
        self.clock = clock

    def check(
        self,
        user: User,
        operation: str,
        *,
        resource: str,
        now: Optional[datetime] = None,
    ) -> Decision:
        now = now or self.clock()
        monthly_count = None
        if quota_applies(user, operation, resource):
            start, end = month_bounds(now)
            monthly_count = self.count_transactions(user.id, start, end)
        return evaluate(
            user,
            operation,
            now,
            resource=resource,
            policy=self.policy,
            monthly_count=monthly_count,
        )

    def ensure(
        self,
        user: User,
        operation: str,
        *,
        resource: str,
        now: Optional[datetime] = None,
    ) -> Decision:
        """Like :meth:`check` but raises :class:`Forbidden` on denial."""

        decision = self.check(user, operation, resource=resource, now=now)
        if not decision.allowed:
            logger.info(
                "entitlement.denied",
                extra={
                    "user_id": user.id,
                    "account_type": user.account_type,
                    "operation": operation,
                    "resource": resource,
                    "reason": decision.reason,
                },
            )
        decision.raise_for_denial()
        return decision


__all__ = [
    "ALLOW",
    "Decision",
    "EntitlementEvaluator",
    "EntitlementPolicy",
    "MONTHLY_LIMIT_REACHED",
    "TRIAL_EXPIRED",
    "check_monthly_quota",
    "check_trial",
    "evaluate",
    "monthly_limit_for",
]
