"""Tests for plan entitlement decisions."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from finledger.errors import Forbidden
from finledger.models import User
from finledger.services.entitlements import (
    MONTHLY_LIMIT_REACHED,
    TRIAL_EXPIRED,
    EntitlementEvaluator,
    EntitlementPolicy,
    check_monthly_quota,
    evaluate,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _user(account_type: str = "personal", *, age: timedelta = timedelta(0), **fields) -> User:
    return User(id=1, email="u@example.com", account_type=account_type, created_at=NOW - age, **fields)


def test_trial_allows_personal_user_just_before_window_closes():
    user = _user(age=timedelta(days=4, hours=23))

    decision = evaluate(user, "create", NOW, resource="debts", policy=EntitlementPolicy())

    assert decision.allowed


def test_trial_denies_personal_user_after_window():
    user = _user(age=timedelta(days=5, hours=1))

    decision = evaluate(user, "create", NOW, resource="debts", policy=EntitlementPolicy())

    assert not decision.allowed
    assert decision.reason == TRIAL_EXPIRED


def test_trial_boundary_is_inclusive():
    user = _user(age=timedelta(days=5))

    decision = evaluate(user, "delete", NOW, resource="expenses", policy=EntitlementPolicy())

    assert decision.reason == TRIAL_EXPIRED


def test_trial_starts_at_plan_start_when_present():
    user = _user(age=timedelta(days=30), plan_started_at=NOW - timedelta(days=1))

    assert evaluate(user, "update", NOW, resource="revenues", policy=EntitlementPolicy()).allowed


def test_trial_window_is_configured_per_resource():
    policy = EntitlementPolicy(trial_windows={"debts": 5, "expenses": 3})
    user = _user(age=timedelta(days=4))

    assert evaluate(user, "create", NOW, resource="debts", policy=policy).allowed
    denied = evaluate(user, "create", NOW, resource="expenses", policy=policy)
    assert denied.reason == TRIAL_EXPIRED


def test_naive_created_at_is_treated_as_utc():
    user = _user(age=timedelta(days=6))
    user.created_at = user.created_at.replace(tzinfo=None)

    assert not evaluate(user, "create", NOW, resource="debts", policy=EntitlementPolicy()).allowed


@pytest.mark.parametrize("account_type", ["basic", "pro"])
def test_paid_tiers_bypass_trial(account_type):
    user = _user(account_type, age=timedelta(days=400))

    decision = evaluate(
        user, "update", NOW, resource="debts", policy=EntitlementPolicy(), monthly_count=0
    )

    assert decision.allowed


@pytest.mark.parametrize(
    ("count", "allowed"),
    [(0, True), (999, True), (1000, False), (1500, False)],
)
def test_basic_quota_boundary(count, allowed):
    user = _user("basic")

    decision = evaluate(
        user, "create", NOW, resource="expenses", policy=EntitlementPolicy(), monthly_count=count
    )

    assert decision.allowed is allowed
    if not allowed:
        assert decision.reason == MONTHLY_LIMIT_REACHED


def test_quota_ignores_updates_and_non_ledger_resources():
    user = _user("basic")
    policy = EntitlementPolicy()

    assert evaluate(user, "update", NOW, resource="expenses", policy=policy).allowed
    assert evaluate(user, "create", NOW, resource="debts", policy=policy).allowed


def test_pro_has_no_quota():
    assert check_monthly_quota(_user("pro"), 10_000, limit=1000).allowed


def test_basic_create_requires_monthly_count():
    with pytest.raises(ValueError):
        evaluate(_user("basic"), "create", NOW, resource="transactions", policy=EntitlementPolicy())


def test_unknown_operation_is_rejected():
    with pytest.raises(ValueError):
        evaluate(_user(), "archive", NOW, resource="debts", policy=EntitlementPolicy())


def test_evaluator_counts_current_month_window():
    seen = {}

    def count(user_id, start, end):
        seen.update(user_id=user_id, start=start, end=end)
        return 1000

    evaluator = EntitlementEvaluator(EntitlementPolicy(), count, clock=lambda: NOW)
    decision = evaluator.check(_user("basic"), "create", resource="revenues")

    assert decision.reason == MONTHLY_LIMIT_REACHED
    assert seen["user_id"] == 1
    assert seen["start"] == datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert seen["end"] == datetime(2024, 6, 30, 23, 59, 59, 999999, tzinfo=timezone.utc)


def test_evaluator_skips_count_for_personal_users():
    def count(*_args):
        raise AssertionError("quota should not be consulted")

    evaluator = EntitlementEvaluator(EntitlementPolicy(), count, clock=lambda: NOW)

    assert evaluator.check(_user(), "create", resource="expenses").allowed


def test_ensure_raises_forbidden_with_reason(caplog):
    evaluator = EntitlementEvaluator(EntitlementPolicy(), lambda *_: 0, clock=lambda: NOW)
    user = _user(age=timedelta(days=10))

    with caplog.at_level("INFO", logger="finledger"):
        with pytest.raises(Forbidden) as excinfo:
            evaluator.ensure(user, "create", resource="debts")

    assert excinfo.value.status == 403
    assert excinfo.value.to_detail()["code"] == TRIAL_EXPIRED
    assert any(record.getMessage() == "entitlement.denied" for record in caplog.records)
