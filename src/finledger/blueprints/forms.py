"""JSON payload validation helpers shared by the API blueprints."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar

from ..errors import ValidationError
from ..services.dates import parse_datetime
from ..services.debt_payments import DebtDraft, PaymentDraft
from ..services.ledger_writer import EntryDraft, TransactionDraft


def _text(raw: Any) -> str | None:
    if raw is None:
        return None
    return str(raw).strip()


def _finite(raw: Any, message: str) -> float | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ValueError(message)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(message) from exc
    # float() accepts "nan" and "inf", and so does Flask's JSON parser.
    if not math.isfinite(value):
        raise ValueError(message)
    return value


def _amount(raw: Any) -> float | None:
    return _finite(raw, "Enter a valid number for the amount.")


def _number(raw: Any) -> float | None:
    return _finite(raw, "Enter a valid number.")


def _date(raw: Any):
    if raw is None or raw == "":
        return None
    parsed = parse_datetime(raw)
    if parsed is None:
        raise ValueError("Enter a valid date (YYYY-MM-DD).")
    return parsed


def parse_flag(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return bool(raw)
    if isinstance(raw, str) and raw.strip().lower() in {"1", "true", "yes", "on"}:
        return True
    if raw is None or (isinstance(raw, str) and raw.strip().lower() in {"", "0", "false", "no", "off"}):
        return False
    raise ValueError("Enter true or false.")


def _object(raw: Any) -> dict[str, Any] | None:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ValueError("Must be an object.")
    return dict(raw)


def _tags(raw: Any) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ValueError("Tags must be a list.")
    return [str(tag).strip() for tag in raw if str(tag).strip()]


@dataclass(frozen=True)
class FormField:
    name: str
    parse: Callable[[Any], Any]
    aliases: tuple[str, ...] = ()
    required: bool = False

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").capitalize()


@dataclass
class JsonForm:
    """Binds a JSON body, accepting snake_case or camelCase keys.

    In ``partial`` mode (updates) missing fields are skipped instead of
    reported, and ``values`` only holds the keys the client sent.
    """

    partial: bool = False
    values: dict[str, Any] = field(default_factory=dict, init=False)
    errors: dict[str, list[str]] = field(default_factory=dict, init=False)
    raw_data: dict[str, Any] = field(default_factory=dict, init=False)

    fields: ClassVar[tuple[FormField, ...]] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, partial: bool = False):
        """Create a form populated from request data."""

        form = cls(partial=partial)
        form.load(data)
        return form

    def load(self, data: Mapping[str, Any]) -> None:
        self.raw_data = {}
        for form_field in self.fields:
            for key in (form_field.name, *form_field.aliases):
                if key in data:
                    self.raw_data[form_field.name] = data[key]
                    break

    def validate(self) -> bool:
        """Validate the bound data and populate ``values``."""

        self.errors.clear()
        self.values = {}
        for form_field in self.fields:
            raw = self.raw_data.get(form_field.name)
            missing = form_field.name not in self.raw_data or raw is None or raw == ""
            if missing and form_field.required and not self.partial:
                self._add_error(form_field.name, f"{form_field.label} is required.")
                continue
            if form_field.name not in self.raw_data:
                continue
            try:
                self.values[form_field.name] = form_field.parse(raw)
            except ValueError as exc:
                self._add_error(form_field.name, str(exc))
        return not self.errors

    def ensure_valid(self) -> dict[str, Any]:
        """Return the parsed values or raise the first error as a ValidationError."""

        if not self.validate():
            name, messages = next(iter(self.errors.items()))
            raise ValidationError(messages[0], field=name)
        return self.values

    def _add_error(self, field: str, message: str) -> None:
        """Accumulate validation errors for a specific field."""

        self.errors.setdefault(field, []).append(message)


_ENTRY_FIELDS = (
    FormField("description", _text, required=True),
    FormField("amount", _amount, required=True),
    FormField("date", _date, required=True),
    FormField("category", _text),
    FormField("subcategory", _text),
    FormField("notes", _text),
    FormField("payment_method", _text, aliases=("paymentMethod",)),
    FormField("tags", _tags),
)


@dataclass
class EntryForm(JsonForm):
    """Revenue or expense payload; ``source``/``supplier`` both land in ``counterparty``."""

    fields: ClassVar[tuple[FormField, ...]] = _ENTRY_FIELDS + (
        FormField("counterparty", _text, aliases=("source", "supplier")),
    )

    def to_draft(self) -> EntryDraft:
        values = self.ensure_valid()
        return EntryDraft(
            description=values["description"],
            amount=values["amount"],
            date=values["date"],
            category=values.get("category") or "",
            notes=values.get("notes"),
            payment_method=values.get("payment_method"),
            counterparty=values.get("counterparty"),
            subcategory=values.get("subcategory"),
            tags=values.get("tags", []),
        )


@dataclass
class TransactionForm(JsonForm):
    fields: ClassVar[tuple[FormField, ...]] = _ENTRY_FIELDS + (
        FormField("type", _text, required=True),
        FormField("status", _text),
        FormField("is_installment", parse_flag, aliases=("isInstallment",)),
        FormField("installment_info", _object, aliases=("installmentInfo",)),
    )

    def to_draft(self) -> TransactionDraft:
        values = self.ensure_valid()
        entry = EntryDraft(
            description=values["description"],
            amount=values["amount"],
            date=values["date"],
            category=values.get("category") or "",
            notes=values.get("notes"),
            payment_method=values.get("payment_method"),
            subcategory=values.get("subcategory"),
            tags=values.get("tags", []),
        )
        return TransactionDraft(
            type=values["type"],
            entry=entry,
            status=values.get("status") or "completed",
            is_installment=values.get("is_installment", False),
            installment_payload=values.get("installment_info"),
        )


@dataclass
class DebtForm(JsonForm):
    fields: ClassVar[tuple[FormField, ...]] = (
        FormField("creditor_name", _text, aliases=("creditorName",), required=True),
        FormField("original_amount", _amount, aliases=("originalAmount",), required=True),
        FormField("current_amount", _amount, aliases=("currentAmount",)),
        FormField("description", _text),
        FormField("interest_rate", _number, aliases=("interestRate",)),
        FormField("due_date", _date, aliases=("dueDate",)),
        FormField("category", _text),
        FormField("priority", _text),
        FormField("status", _text),
        FormField("payment_method", _text, aliases=("paymentMethod",)),
        FormField("notes", _text),
        FormField("tags", _tags),
        FormField("installments", _object),
    )

    def to_draft(self) -> DebtDraft:
        values = self.ensure_valid()
        return DebtDraft(
            creditor_name=values["creditor_name"],
            original_amount=values["original_amount"],
            current_amount=values.get("current_amount"),
            description=values.get("description") or "",
            interest_rate=values.get("interest_rate"),
            due_date=values.get("due_date"),
            category=values.get("category") or "other",
            priority=values.get("priority") or "medium",
            status=values.get("status") or "active",
            payment_method=values.get("payment_method"),
            notes=values.get("notes"),
            tags=values.get("tags", []),
            installments=values.get("installments"),
        )


@dataclass
class PaymentForm(JsonForm):
    fields: ClassVar[tuple[FormField, ...]] = (
        FormField("amount", _amount, required=True),
        FormField("date", _date),
        FormField("payment_method", _text, aliases=("paymentMethod",)),
        FormField("notes", _text),
    )

    def to_draft(self) -> PaymentDraft:
        values = self.ensure_valid()
        return PaymentDraft(
            amount=values["amount"],
            date=values.get("date"),
            payment_method=values.get("payment_method"),
            notes=values.get("notes"),
        )
