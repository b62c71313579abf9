"""Tests for the lazy plan expiry/backfill state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session

from finledger.errors import NotFound
from finledger.models import User
from finledger.services.plan_renewal import (
    BACKFILLED,
    EXPIRED,
    UNCHANGED,
    PlanRenewal,
    PlanRules,
    evaluate_plan,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _stored(db_engine, user_id) -> User:
    with Session(db_engine) as session:
        return session.get(User, user_id)


@pytest.fixture
def plans(session_factory) -> PlanRenewal:
    return PlanRenewal(session_factory, PlanRules(), clock=lambda: NOW)


def test_lapsed_plan_expires(plans, user_factory, db_engine):
    user = user_factory(
        "pro",
        plan_started_at=NOW - timedelta(days=40),
        plan_next_renewal_at=NOW - timedelta(days=3),
        plan_status="active",
        plan_price=27.0,
    )

    transition = plans.refresh_user_plan(user)

    assert transition.kind == EXPIRED
    stored = _stored(db_engine, user.id)
    assert stored.account_type == "personal"
    assert stored.plan_status == "expired"
    assert stored.plan_price is None


def test_grace_period_keeps_plan(plans, user_factory):
    user = user_factory(
        "basic",
        plan_started_at=NOW - timedelta(days=31),
        plan_next_renewal_at=NOW - timedelta(days=1, hours=23),
        plan_status="active",
        plan_price=14.9,
    )

    assert plans.refresh_user_plan(user).kind == UNCHANGED
    assert user.account_type == "basic"


def test_second_evaluation_of_expired_user_is_a_no_op(plans, user_factory, monkeypatch):
    user = user_factory("pro", plan_next_renewal_at=NOW - timedelta(days=10))
    plans.refresh_user_plan(user)

    def fail(*_args, **_kwargs):
        raise AssertionError("no write expected")

    monkeypatch.setattr(plans, "session_factory", fail)

    assert plans.refresh_user_plan(user).kind == UNCHANGED


def test_missing_metadata_is_backfilled(plans, user_factory, db_engine):
    user = user_factory("basic")

    transition = plans.refresh_user_plan(user)

    assert transition.kind == BACKFILLED
    stored = _stored(db_engine, user.id)
    assert stored.plan_started_at is not None
    assert stored.plan_next_renewal_at.replace(tzinfo=timezone.utc) == NOW + timedelta(days=30)
    assert stored.plan_status == "active"
    assert stored.plan_price == 14.90


def test_backfill_keeps_existing_values():
    started = NOW - timedelta(days=5)
    user = User(
        email="a@example.com",
        account_type="pro",
        created_at=started,
        plan_started_at=started,
        plan_status="active",
        plan_price=20.0,
    )

    transition = evaluate_plan(user, NOW)

    assert dict(transition.changes) == {"plan_next_renewal_at": NOW + timedelta(days=30)}


def test_future_renewal_is_untouched():
    user = User(
        email="a@example.com",
        account_type="pro",
        created_at=NOW,
        plan_started_at=NOW,
        plan_next_renewal_at=NOW + timedelta(days=20),
        plan_status="active",
        plan_price=27.0,
    )

    assert evaluate_plan(user, NOW).kind == UNCHANGED


def test_personal_users_are_never_touched():
    user = User(email="a@example.com", account_type="personal", created_at=NOW - timedelta(days=90))

    assert not user.is_paid
    assert not evaluate_plan(user, NOW).changed


@pytest.mark.parametrize("account_type", ["basic", "pro"])
def test_paid_tiers_are_paid(account_type):
    assert User(email="a@example.com", account_type=account_type).is_paid


def test_custom_grace_and_period():
    rules = PlanRules(grace_days=0, period_days=7, prices={"pro": 1.0})
    lapsed = User(
        email="a@example.com",
        account_type="pro",
        created_at=NOW,
        plan_next_renewal_at=NOW - timedelta(minutes=1),
    )

    assert evaluate_plan(lapsed, NOW, rules).kind == EXPIRED


def test_load_user_applies_transition(plans, user_factory):
    user = user_factory("pro", plan_next_renewal_at=NOW - timedelta(days=5))

    loaded = plans.load_user(user.id)

    assert loaded.account_type == "personal"


def test_load_missing_user(plans):
    with pytest.raises(NotFound):
        plans.load_user(9999)


def test_expire_lapsed_plans_sweep(plans, user_factory, db_engine):
    lapsed = user_factory("basic", plan_next_renewal_at=NOW - timedelta(days=3))
    current = user_factory("pro", plan_next_renewal_at=NOW + timedelta(days=3))
    user_factory("personal")

    expired = plans.expire_lapsed_plans()

    assert expired == [lapsed.id]
    assert _stored(db_engine, current.id).account_type == "pro"
    assert _stored(db_engine, lapsed.id).account_type == "personal"
