"""Application configuration objects and helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()

LEDGER_RESOURCES = ("debts", "expenses", "revenues", "transactions")


def _env_bool(name: str, default: bool = False) -> bool:
    """Interpret environment variable values as booleans."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


class BaseConfig:
    """Base configuration shared across environments."""

    APP_NAME = "finledger"
    DB_FILENAME = "finledger.db"
    SQLITE_PRAGMAS = {"journal_mode": "wal", "foreign_keys": "on"}

    # Free-trial length per resource. SHORT_TRIAL_DAYS is opt-in through
    # FINLEDGER_TRIAL_DAYS_<RESOURCE>.
    DEFAULT_TRIAL_DAYS = 5
    SHORT_TRIAL_DAYS = 3
    MONTHLY_TRANSACTION_LIMIT = 1000
    PLAN_GRACE_DAYS = 2
    PLAN_PERIOD_DAYS = 30
    PLAN_PRICES = {"basic": 14.90, "pro": 27.00}
    IDENTITY_TIMEOUT_SECONDS = 12.0

    def __init__(self) -> None:
        self.SECRET_KEY = os.getenv("FINLEDGER_SECRET_KEY", "replace-me")
        self.DATA_DIR = self._resolve_data_dir()
        self.DEV_MODE = _env_bool("FINLEDGER_DEV_MODE", default=True)
        self.DATABASE_URL = os.getenv("FINLEDGER_DATABASE_URL", self._build_sqlite_url())
        if not self.DEV_MODE and self.SECRET_KEY == "replace-me":
            raise ValueError("FINLEDGER_SECRET_KEY must be set in non-dev mode.")

        self.TRIAL_WINDOWS = {
            resource: _env_int(
                f"FINLEDGER_TRIAL_DAYS_{resource.upper()}", self.DEFAULT_TRIAL_DAYS
            )
            for resource in LEDGER_RESOURCES
        }
        self.MONTHLY_TRANSACTION_LIMIT = _env_int(
            "FINLEDGER_MONTHLY_TRANSACTION_LIMIT", type(self).MONTHLY_TRANSACTION_LIMIT
        )
        self.PLAN_GRACE_DAYS = _env_int("FINLEDGER_PLAN_GRACE_DAYS", type(self).PLAN_GRACE_DAYS)
        self.PLAN_PERIOD_DAYS = _env_int(
            "FINLEDGER_PLAN_PERIOD_DAYS", type(self).PLAN_PERIOD_DAYS
        )
        self.IDENTITY_URL = os.getenv("FINLEDGER_IDENTITY_URL")
        self.IDENTITY_API_KEY = os.getenv("FINLEDGER_IDENTITY_API_KEY")
        self.IDENTITY_TIMEOUT_SECONDS = _env_float(
            "FINLEDGER_IDENTITY_TIMEOUT", type(self).IDENTITY_TIMEOUT_SECONDS
        )

    def _resolve_data_dir(self) -> Path:
        """Return the directory where the SQLite file and logs live."""

        data_root = os.getenv("FINLEDGER_DATA_DIR", "instance")
        path = Path(data_root).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _build_sqlite_url(self) -> str:
        db_path = self.DATA_DIR / self.DB_FILENAME
        return f"sqlite:///{db_path}"

    def sqlalchemy_engine_options(self) -> dict[str, Any]:
        """Expose engine kwargs for SQLModel to consume."""

        if not self.DATABASE_URL.startswith("sqlite"):
            return {"pool_pre_ping": True}
        return {"connect_args": {"check_same_thread": False}}


class DevConfig(BaseConfig):
    """Development configuration using local SQLite."""

    DEBUG = True
    TESTING = False


class TestConfig(BaseConfig):
    """Configuration used by the test-suite."""

    DEBUG = False
    TESTING = True
