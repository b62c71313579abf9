"""Finledger application factory."""

from __future__ import annotations

from importlib import import_module
from typing import Iterable, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from . import cli as _cli
from .config import BaseConfig, DevConfig, TestConfig
from .errors import LedgerError
from .logging_config import get_logger, setup_logging

_CONFIG_MAP = {
    "development": DevConfig,
    "testing": TestConfig,
    "default": BaseConfig,
}

logger = get_logger(__name__)


def _resolve_config(name: str | None) -> type[BaseConfig]:
    """Return the config class for the provided environment name."""

    if not name:
        return BaseConfig
    return _CONFIG_MAP.get(name.lower(), BaseConfig)


def _blueprint_paths() -> Iterable[str]:
    """Yield blueprint import paths."""

    yield "finledger.blueprints.expenses"
    yield "finledger.blueprints.revenues"
    yield "finledger.blueprints.transactions"
    yield "finledger.blueprints.debts"
    yield "finledger.blueprints.user"
    yield "finledger.blueprints.auth"


def create_app(
    config_name: str | None = None,
    *,
    config: Optional[BaseConfig] = None,
    identity=None,
) -> Flask:
    """Create and configure the Flask application instance.

    ``config`` and ``identity`` let tests inject a prepared configuration
    object and an identity client with a mock transport.
    """

    app = Flask(__name__, instance_relative_config=True)
    config_obj = config or _resolve_config(config_name or app.config.get("ENV"))()
    app.config.from_object(config_obj)
    app.config["FINLEDGER_CONFIG"] = config_obj

    setup_logging(config_obj)

    from .extensions import init_db

    init_db(app, identity=identity)
    _register_blueprints(app)
    _register_error_handlers(app)
    _cli.init_app(app)

    return app


def _register_blueprints(app: Flask) -> None:
    """Import and register all blueprints declared in `_blueprint_paths`."""

    for dotted_path in _blueprint_paths():
        module = import_module(dotted_path)
        blueprint = getattr(module, "bp")
        app.register_blueprint(blueprint)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(LedgerError)
    def _ledger_error(exc: LedgerError):
        return jsonify(exc.to_detail()), exc.status

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        code = (exc.name or "error").lower().replace(" ", "_")
        return jsonify({"error": exc.description, "code": code}), exc.code

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        logger.exception("request.unhandled_error")
        return jsonify({"error": "internal_error", "code": "internal_error"}), 500


__all__ = ["create_app"]
