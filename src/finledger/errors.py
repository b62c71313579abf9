"""Error taxonomy shared by services and HTTP handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(eq=False)
class LedgerError(RuntimeError):
    """Base error carrying a machine-readable kind and an HTTP status."""

    message: str
    kind: str = "internal_error"
    status: int = 500
    field: Optional[str] = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)

    def to_detail(self) -> Dict[str, str]:
        detail: Dict[str, str] = {"error": self.message, "code": self.kind}
        if self.field:
            detail["field"] = self.field
        return detail


class ValidationError(LedgerError):
    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message, kind="validation_error", status=400, field=field)


class Unauthenticated(LedgerError):
    def __init__(self, message: str = "unauthenticated") -> None:
        super().__init__(message, kind="unauthenticated", status=401)


class Forbidden(LedgerError):
    """Owner mismatch or an entitlement denial (``trial_expired``, ``monthly_limit_reached``)."""

    def __init__(self, message: str = "forbidden", *, reason: str = "forbidden") -> None:
        super().__init__(message, kind=reason, status=403)


class NotFound(LedgerError):
    """Row missing or not owned by the caller; the two cases are not distinguished."""

    def __init__(self, message: str = "not_found") -> None:
        super().__init__(message, kind="not_found", status=404)


class StorageError(LedgerError):
    def __init__(self, message: str = "storage_error") -> None:
        super().__init__(message, kind="storage_error", status=500)


class UpstreamTimeout(LedgerError):
    def __init__(self, message: str = "timeout") -> None:
        super().__init__(message, kind="timeout", status=504)


class UpstreamError(LedgerError):
    """Non-success answer from the identity provider, status passed through."""

    def __init__(self, message: str, *, status: int = 502) -> None:
        super().__init__(message, kind="upstream_error", status=status)


__all__ = [
    "Forbidden",
    "LedgerError",
    "NotFound",
    "StorageError",
    "Unauthenticated",
    "UpstreamError",
    "UpstreamTimeout",
    "ValidationError",
]
