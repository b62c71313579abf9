"""Date helpers shared by the entitlement, installment and plan services."""

from __future__ import annotations

from calendar import monthrange
from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are assumed to already be UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse ISO strings (``Z`` suffix allowed) into aware UTC datetimes.

    Values without an offset are taken as UTC. Returns None for empty or
    unparseable input.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        if len(raw) == 10:
            parsed = datetime.strptime(raw, "%Y-%m-%d")
        else:
            parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    return as_utc(parsed)


def add_months(value: datetime, months: int = 1) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def month_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Inclusive ``[start, end]`` of the calendar month containing ``moment``.

    Both bounds are aware UTC datetimes.
    """

    moment = as_utc(moment)
    start = datetime(moment.year, moment.month, 1, tzinfo=timezone.utc)
    last_day = monthrange(moment.year, moment.month)[1]
    end = datetime(moment.year, moment.month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return start, end


def period_key(moment: datetime) -> str:
    """``YYYY-MM`` label of the month containing ``moment``."""

    return as_utc(moment).strftime("%Y-%m")


def period_bounds(period: str) -> tuple[datetime, datetime]:
    year, month = (int(part) for part in period.split("-", 1))
    return month_bounds(datetime(year, month, 1, tzinfo=timezone.utc))
