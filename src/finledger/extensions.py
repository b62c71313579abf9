"""Database and service wiring for the Flask app."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import Flask, current_app
from sqlalchemy.engine import Engine

from . import models  # noqa: F401  # ensure models registered with SQLModel metadata
from .config import BaseConfig
from .infra.database import SessionFactory, bootstrap_database
from .infra.repositories import SQLModelTransactionRepository
from .services.debt_payments import DebtTracker
from .services.entitlements import EntitlementEvaluator, EntitlementPolicy
from .services.identity import IdentityClient
from .services.ledger_writer import LedgerWriter
from .services.plan_renewal import PlanRenewal, PlanRules

EXTENSION_KEY = "finledger"


@dataclass
class LedgerServices:
    """Everything a request handler needs, built once per app."""

    engine: Engine
    session_factory: SessionFactory
    evaluator: EntitlementEvaluator
    writer: LedgerWriter
    debts: DebtTracker
    plans: PlanRenewal
    identity: Optional[IdentityClient] = None


def _transaction_counter(session_factory: SessionFactory):
    def count(user_id: int, start, end) -> int:
        with session_factory() as session:
            return SQLModelTransactionRepository(session).count_in_range(start, end, user_id=user_id)

    return count


def build_services(
    config: BaseConfig, *, identity: Optional[IdentityClient] = None
) -> LedgerServices:
    engine, session_factory = bootstrap_database(config)
    policy = EntitlementPolicy.from_config(config)
    return LedgerServices(
        engine=engine,
        session_factory=session_factory,
        evaluator=EntitlementEvaluator(policy, _transaction_counter(session_factory)),
        writer=LedgerWriter(session_factory, policy),
        debts=DebtTracker(session_factory),
        plans=PlanRenewal(session_factory, PlanRules.from_config(config)),
        identity=identity if identity is not None else IdentityClient.from_config(config),
    )


def init_db(app: Flask, *, identity: Optional[IdentityClient] = None) -> LedgerServices:
    """Create the engine, schema and services for ``app``."""

    config: BaseConfig = app.config["FINLEDGER_CONFIG"]
    services = build_services(config, identity=identity)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services(app: Optional[Flask] = None) -> LedgerServices:
    """Return the services bound to ``app`` (defaults to the current app)."""

    target = app or current_app
    services = target.extensions.get(EXTENSION_KEY)
    if services is None:  # pragma: no cover - misconfigured app
        raise RuntimeError("Database engine not initialized")
    return services
