"""HTTP client for the hosted identity provider.

Only two calls are needed: resolving a bearer token to a user and changing
that user's password. Both run with an explicit timeout; a timed-out call
surfaces as :class:`UpstreamTimeout` (HTTP 504).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..config import BaseConfig
from ..errors import Unauthenticated, UpstreamError, UpstreamTimeout, ValidationError
from ..logging_config import get_logger

logger = get_logger(__name__)

MIN_PASSWORD_LENGTH = 6


@dataclass(frozen=True)
class IdentityUser:
    id: str
    email: str


class IdentityClient:
    """Thin wrapper over the provider's ``/auth/v1/user`` endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = BaseConfig.IDENTITY_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_config(cls, config: BaseConfig) -> Optional[IdentityClient]:
        if not config.IDENTITY_URL:
            return None
        return cls(
            config.IDENTITY_URL,
            api_key=config.IDENTITY_API_KEY,
            timeout=config.IDENTITY_TIMEOUT_SECONDS,
        )

    def _request(self, method: str, path: str, token: str, *, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {token}"}
        if self.api_key:
            headers["apikey"] = self.api_key
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            logger.warning("identity.timeout", extra={"path": path, "timeout": self.timeout})
            raise UpstreamTimeout("Identity provider did not answer in time") from exc
        except httpx.HTTPError as exc:
            logger.warning("identity.unreachable", extra={"path": path, "error": str(exc)})
            raise UpstreamError("Identity provider is unreachable") from exc

        if response.status_code in (401, 403):
            raise Unauthenticated("invalid or expired session token")
        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"msg": response.text}
            message = payload.get("msg") or payload.get("message") or payload.get("error") or "identity request failed"
            logger.warning(
                "identity.error",
                extra={"path": path, "status_code": response.status_code},
            )
            raise UpstreamError(str(message), status=response.status_code)
        if not response.content:
            return {}
        return response.json()

    def get_user(self, token: str) -> IdentityUser:
        """Resolve ``token`` to the provider's user record."""

        if not token:
            raise Unauthenticated()
        payload = self._request("GET", "/auth/v1/user", token)
        if not payload.get("email"):
            raise Unauthenticated("identity provider returned no user")
        return IdentityUser(id=str(payload.get("id", "")), email=str(payload["email"]).lower())

    def update_password(self, token: str, password: str) -> None:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"password must have at least {MIN_PASSWORD_LENGTH} characters", field="password"
            )
        self._request("PUT", "/auth/v1/user", token, json={"password": password})
        logger.info("identity.password_updated")


__all__ = ["IdentityClient", "IdentityUser", "MIN_PASSWORD_LENGTH"]
