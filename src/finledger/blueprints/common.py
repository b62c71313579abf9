"""Request helpers: session user resolution, ownership and entitlement gates."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from flask import g, request, session

from ..errors import Forbidden, NotFound, Unauthenticated, ValidationError
from ..extensions import get_services
from ..logging_config import get_logger
from ..models.user import User

logger = get_logger(__name__)


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def current_user() -> User:
    """Resolve the caller and bring their plan state up to date.

    The signed session cookie wins; otherwise a bearer token is resolved
    through the identity provider and matched to a local user by email.
    """

    if "current_user" in g:
        return g.current_user

    services = get_services()
    user_id = session.get("user_id")
    try:
        if user_id is not None:
            user = services.plans.load_user(int(user_id))
        else:
            token = bearer_token()
            if token is None or services.identity is None:
                raise Unauthenticated()
            identity = services.identity.get_user(token)
            user = services.plans.load_user_by_email(identity.email)
    except NotFound as exc:
        raise Unauthenticated("session user does not exist") from exc

    g.current_user = user
    return user


def ensure_owner(user: User, claimed: Any) -> None:
    """Reject a ``user_id`` parameter that names someone else."""

    if claimed in (None, ""):
        return
    if str(claimed) != str(user.id):
        logger.info("auth.owner_mismatch", extra={"user_id": user.id, "claimed": str(claimed)})
        raise Forbidden("user_id does not match the authenticated user")


def gate(user: User, operation: str, resource: str) -> None:
    get_services().evaluator.ensure(user, operation, resource=resource)


def json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_id(source: Mapping[str, Any], name: str = "id", *aliases: str) -> int:
    for key in (name, *aliases):
        raw = source.get(key)
        if raw not in (None, ""):
            break
    else:
        raise ValidationError(f"{name} is required", field=name)
    if isinstance(raw, bool):
        raise ValidationError(f"{name} must be an integer", field=name)
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be an integer", field=name) from exc


def without(data: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    return {key: value for key, value in data.items() if key not in keys}
