"""Installment schedule arithmetic for card purchases split into parcels.

An installment-flagged :class:`~finledger.models.Transaction` embeds an
``installment_info`` JSON document (camelCase keys, as stored by the web
client). Everything in it except the three inputs ``totalAmount``,
``totalInstallments`` and ``currentInstallment`` is derived here and never
trusted from the request.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from ..errors import ValidationError
from ..models.transaction import Transaction
from .dates import add_months, as_utc, parse_datetime


def round2(amount: float) -> float:
    """Round to cents, nudging exact halves up."""

    return round(amount + 1e-9, 2)


@dataclass(slots=True)
class InstallmentInfo:
    total_amount: float
    total_installments: int
    current_installment: int
    installment_amount: float
    remaining_amount: float
    next_due_date: Optional[datetime] = None
    # Parcel that absorbs the rounding remainder; equals installment_amount
    # when the total divides evenly.
    last_installment_amount: Optional[float] = None

    def __post_init__(self) -> None:
        if self.last_installment_amount is None:
            self.last_installment_amount = last_parcel(
                self.total_amount, self.installment_amount, self.total_installments
            )

    @property
    def is_final(self) -> bool:
        return self.current_installment >= self.total_installments

    @property
    def paid_amount(self) -> float:
        return round2(self.total_amount - self.remaining_amount)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalAmount": self.total_amount,
            "totalInstallments": self.total_installments,
            "currentInstallment": self.current_installment,
            "installmentAmount": self.installment_amount,
            "remainingAmount": self.remaining_amount,
            "nextDueDate": self.next_due_date.isoformat() if self.next_due_date else None,
            "lastInstallmentAmount": self.last_installment_amount,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> InstallmentInfo:
        """Load a stored document without recomputing it."""

        return cls(
            total_amount=float(data["totalAmount"]),
            total_installments=int(data["totalInstallments"]),
            current_installment=int(data["currentInstallment"]),
            installment_amount=float(data["installmentAmount"]),
            remaining_amount=float(data["remainingAmount"]),
            next_due_date=parse_datetime(data.get("nextDueDate")),
            last_installment_amount=(
                float(data["lastInstallmentAmount"]) if data.get("lastInstallmentAmount") is not None else None
            ),
        )


def validate_schedule(total_amount: float, total_installments: int, current_installment: int) -> None:
    """Reject impossible schedules instead of clamping them."""

    if total_amount is None or not math.isfinite(total_amount) or total_amount <= 0:
        raise ValidationError("totalAmount must be greater than zero", field="totalAmount")
    if total_installments is None or total_installments < 1:
        raise ValidationError("totalInstallments must be at least 1", field="totalInstallments")
    if current_installment is None or current_installment < 1:
        raise ValidationError("currentInstallment must be at least 1", field="currentInstallment")
    if current_installment > total_installments:
        raise ValidationError(
            "currentInstallment cannot exceed totalInstallments", field="currentInstallment"
        )


def last_parcel(total_amount: float, installment_amount: float, total_installments: int) -> float:
    """Amount of the final parcel, so that all parcels sum to ``total_amount``."""

    return round2(total_amount - installment_amount * (total_installments - 1))


def remaining_after(
    total_amount: float, installment_amount: float, current_installment: int, total_installments: int
) -> float:
    """Balance left once ``current_installment`` parcels are paid.

    Zero once the final parcel, which absorbs the rounding remainder, is paid.
    """

    if current_installment >= total_installments:
        return 0.0
    return max(round2(total_amount - installment_amount * current_installment), 0.0)


def build_installment_info(
    total_amount: float,
    total_installments: int,
    current_installment: int = 1,
    *,
    date: datetime,
    next_due_date: Optional[datetime] = None,
) -> InstallmentInfo:
    """Derive the full schedule document from its three inputs."""

    validate_schedule(total_amount, total_installments, current_installment)
    total_amount = round2(float(total_amount))
    installment_amount = round2(total_amount / total_installments)
    return InstallmentInfo(
        total_amount=total_amount,
        total_installments=int(total_installments),
        current_installment=int(current_installment),
        installment_amount=installment_amount,
        remaining_amount=remaining_after(
            total_amount, installment_amount, current_installment, total_installments
        ),
        next_due_date=as_utc(next_due_date) if next_due_date else add_months(as_utc(date), 1),
    )


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload and payload[key] not in (None, ""):
            return payload[key]
    return None


def _as_number(value: Any, field: str, cast: type) -> Any:
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", field=field) from exc
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a finite number", field=field)
    if cast is int:
        if not number.is_integer():
            raise ValidationError(f"{field} must be a whole number", field=field)
        return int(number)
    return number


def installment_info_from_payload(
    payload: Optional[Mapping[str, Any]], *, date: datetime, fallback_total: Optional[float] = None
) -> InstallmentInfo:
    """Validate a client ``installmentInfo`` payload and rebuild it server-side.

    Accepts camelCase or snake_case keys. ``totalAmount`` falls back to the
    transaction amount times the parcel count when omitted.
    """

    if not isinstance(payload, Mapping):
        raise ValidationError("installmentInfo is required for installment transactions", field="installmentInfo")

    total_installments = _as_number(
        _pick(payload, "totalInstallments", "total_installments"), "totalInstallments", int
    )
    current_raw = _pick(payload, "currentInstallment", "current_installment")
    current_installment = 1 if current_raw is None else _as_number(current_raw, "currentInstallment", int)

    total_raw = _pick(payload, "totalAmount", "total_amount")
    if total_raw is None and fallback_total is not None and total_installments >= 1:
        total_raw = fallback_total * total_installments
    total_amount = _as_number(total_raw, "totalAmount", float)

    override = _pick(payload, "nextDueDate", "next_due_date")
    next_due_date = parse_datetime(override) if override is not None else None
    if override is not None and next_due_date is None:
        raise ValidationError("nextDueDate must be an ISO date", field="nextDueDate")

    return build_installment_info(
        total_amount,
        total_installments,
        current_installment,
        date=date,
        next_due_date=next_due_date,
    )


@dataclass(slots=True)
class InstallmentAdvance:
    info: InstallmentInfo
    completed: bool
    status: str


def advance_installment(info: InstallmentInfo, *, date: datetime) -> InstallmentAdvance:
    """Confirm payment of the next parcel.

    The due date moves one month past the previous due date (or ``date``
    when none was recorded); it is cleared once the series completes.
    """

    if info.is_final:
        raise ValidationError("All installments are already paid", field="currentInstallment")

    current = info.current_installment + 1
    completed = current >= info.total_installments
    base_due = info.next_due_date or date
    advanced = InstallmentInfo(
        total_amount=info.total_amount,
        total_installments=info.total_installments,
        current_installment=current,
        installment_amount=info.installment_amount,
        remaining_amount=remaining_after(
            info.total_amount, info.installment_amount, current, info.total_installments
        ),
        next_due_date=None if completed else add_months(as_utc(base_due), 1),
        last_installment_amount=info.last_installment_amount,
    )
    return InstallmentAdvance(
        info=advanced, completed=completed, status="completed" if completed else "pending"
    )


def summarize_installments(transactions: Iterable[Transaction]) -> dict[str, float]:
    """Aggregate every installment-flagged transaction of a user.

    ``totalInstallment`` counts each purchase once, from its first parcel row;
    ``remainingToPay`` and ``alreadyPaid`` sum across all rows.
    """

    total_installment = 0.0
    remaining_to_pay = 0.0
    already_paid = 0.0
    count = 0
    for txn in transactions:
        if not txn.is_installment or not txn.installment_info:
            continue
        info = InstallmentInfo.from_dict(txn.installment_info)
        count += 1
        if info.current_installment == 1:
            total_installment += info.total_amount
        remaining_to_pay += info.remaining_amount
        already_paid += info.paid_amount

    return {
        "totalInstallment": round2(total_installment),
        "remainingToPay": round2(remaining_to_pay),
        "alreadyPaid": round2(already_paid),
        "count": count,
    }
