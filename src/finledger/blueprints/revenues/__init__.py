"""Revenue blueprint package."""

from __future__ import annotations

from flask import Blueprint

from ..entries import register_entry_routes

bp = Blueprint("revenues", __name__, url_prefix="/revenues")

register_entry_routes(bp, kind="revenue", resource="revenues")

__all__ = ["bp"]
