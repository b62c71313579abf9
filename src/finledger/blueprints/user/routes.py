"""User profile routes."""

from __future__ import annotations

from flask import jsonify

from ..common import current_user, ensure_owner, json_body
from ..serializers import serialize_user
from . import bp


@bp.post("/get")
def get_user():
    """Return the caller's profile with plan expiry/backfill applied."""

    data = json_body()
    user = current_user()
    ensure_owner(user, data.get("user_id") or data.get("id"))
    return jsonify({"success": True, "user": serialize_user(user)})
