"""Pytest configuration and shared fixtures for Finledger tests.

This module provides database fixtures, test data factories, and a Flask
client with a logged-in session, all backed by a throwaway SQLite file.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import pytest
from sqlmodel import Session

from finledger import create_app
from finledger.config import TestConfig
from finledger.infra.database import create_db_engine, create_session_factory, init_database
from finledger.models import Debt, Transaction, User
from finledger.services.dates import as_utc
from finledger.services.debt_payments import DebtTracker
from finledger.services.entitlements import EntitlementPolicy
from finledger.services.ledger_writer import LedgerWriter

# =============================================================================
# Configuration & Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def config(tmp_path, monkeypatch: pytest.MonkeyPatch) -> TestConfig:
    """Test configuration pointing at a per-test SQLite file."""

    monkeypatch.setenv("FINLEDGER_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("FINLEDGER_DATABASE_URL", f"sqlite:///{tmp_path / 'finledger.db'}")
    monkeypatch.setenv("FINLEDGER_DEV_MODE", "true")
    monkeypatch.delenv("FINLEDGER_IDENTITY_URL", raising=False)
    monkeypatch.delenv("FINLEDGER_MONTHLY_TRANSACTION_LIMIT", raising=False)
    return TestConfig()


@pytest.fixture(scope="function")
def db_engine(config):
    """Create an isolated SQLite database for each test.

    Yields:
        Engine: engine with all tables created and foreign keys enforced
    """
    engine = create_db_engine(config)
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Unit-of-work factory matching what the services expect."""

    return create_session_factory(db_engine)


@pytest.fixture
def writer(session_factory) -> LedgerWriter:
    return LedgerWriter(session_factory, EntitlementPolicy())


@pytest.fixture
def tracker(session_factory) -> DebtTracker:
    return DebtTracker(session_factory)


# =============================================================================
# Test Data Factories
# =============================================================================


def _aware(values: dict[str, Any]) -> dict[str, Any]:
    """Stored datetimes are UTC-aware; naive test values are taken as UTC."""
    return {key: as_utc(value) if isinstance(value, datetime) else value for key, value in values.items()}


def _persist(db_engine, row):
    with Session(db_engine, expire_on_commit=False) as session:
        session.add(row)
        session.commit()
        session.refresh(row)
    return row


@pytest.fixture
def user_factory(db_engine):
    """Factory for creating users on any tier.

    Returns:
        Callable: Function that creates and persists User instances
    """
    counter = {"n": 0}

    def _create_user(
        account_type: str = "pro",
        *,
        email: str | None = None,
        created_at: datetime | None = None,
        **plan: Any,
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            account_type=account_type,
            created_at=as_utc(created_at) if created_at else datetime.now(timezone.utc),
            **_aware(plan),
        )
        return _persist(db_engine, user)

    return _create_user


@pytest.fixture
def user(user_factory) -> User:
    """A pro user; entitlement checks never deny it."""

    return user_factory("pro", email="tester@example.com")


@pytest.fixture
def transaction_factory(db_engine, user):
    """Factory for inserting raw transactions, bypassing the ledger writer."""

    def _create_transaction(
        amount: float = 10.0,
        *,
        date: datetime | None = None,
        type: str = "expense",
        owner: User | None = None,
        **fields: Any,
    ) -> Transaction:
        owner = owner or user
        txn = Transaction(
            user_id=owner.id,
            date=as_utc(date or datetime(2024, 5, 10, 12, 0)),
            description=fields.pop("description", "Test transaction"),
            amount=amount,
            type=type,
            category=fields.pop("category", "General"),
            **_aware(fields),
        )
        return _persist(db_engine, txn)

    return _create_transaction


@pytest.fixture
def debt_factory(db_engine, user):
    """Factory for creating debts with sensible defaults."""

    def _create_debt(
        original_amount: float = 1000.0,
        current_amount: float | None = None,
        *,
        owner: User | None = None,
        **fields: Any,
    ) -> Debt:
        owner = owner or user
        current = original_amount if current_amount is None else current_amount
        debt = Debt(
            user_id=owner.id,
            creditor_name=fields.pop("creditor_name", "Bank"),
            original_amount=original_amount,
            current_amount=current,
            opening_amount=fields.pop("opening_amount", current),
            **_aware(fields),
        )
        return _persist(db_engine, debt)

    return _create_debt


# =============================================================================
# Flask Fixtures
# =============================================================================


@pytest.fixture()
def app(config, db_engine):
    app = create_app(config=config)
    app.config.update(TESTING=True)
    return app


@pytest.fixture()
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture()
def login(client):
    """Put ``user`` into the signed session cookie."""

    def _login(user: User) -> None:
        with client.session_transaction() as flask_session:
            flask_session["user_id"] = user.id

    return _login
