"""Expense blueprint package."""

from __future__ import annotations

from flask import Blueprint

from ..entries import register_entry_routes

bp = Blueprint("expenses", __name__, url_prefix="/expenses")

register_entry_routes(bp, kind="expense", resource="expenses")

__all__ = ["bp"]
