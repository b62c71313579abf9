"""Password management routes backed by the identity provider."""

from __future__ import annotations

from flask import jsonify

from ...errors import Unauthenticated, UpstreamError, ValidationError
from ...extensions import get_services
from ..common import bearer_token, json_body
from . import bp


@bp.post("/update-password")
def update_password():
    data = json_body()
    password = data.get("password")
    if not isinstance(password, str) or not password:
        raise ValidationError("password is required", field="password")

    token = bearer_token()
    if token is None:
        raise Unauthenticated("bearer token required")
    identity = get_services().identity
    if identity is None:
        raise UpstreamError("identity provider is not configured", status=503)

    identity.update_password(token, password)
    return jsonify({"success": True})
