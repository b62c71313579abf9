"""Debt and debt payment routes."""

from __future__ import annotations

from flask import jsonify, request

from ...errors import ValidationError
from ...extensions import get_services
from ..common import current_user, ensure_owner, gate, json_body, require_id, without
from ..forms import DebtForm, PaymentForm
from ..serializers import serialize_debt, serialize_debt_view, serialize_payment
from . import bp

RESOURCE = "debts"


@bp.post("/create")
def create_debt():
    data = json_body()
    user = current_user()
    ensure_owner(user, data.get("user_id"))
    draft = DebtForm.from_mapping(data).to_draft()
    gate(user, "create", RESOURCE)

    debt = get_services().debts.create_debt(user, draft)
    return jsonify({"success": True, "debt": serialize_debt(debt, [])})


@bp.get("/get")
def get_debts():
    """List the caller's debts, each with its payment history attached."""

    user_id = request.args.get("user_id")
    if not user_id:
        raise ValidationError("user_id is required", field="user_id")
    user = current_user()
    ensure_owner(user, user_id)

    views = get_services().debts.list_debts(user)
    return jsonify({"success": True, "debts": [serialize_debt_view(view) for view in views]})


@bp.put("/update")
def update_debt():
    data = json_body()
    user = current_user()
    ensure_owner(user, data.get("user_id"))
    debt_id = require_id(data)
    changes = DebtForm.from_mapping(without(data, "id", "user_id"), partial=True).ensure_valid()
    gate(user, "update", RESOURCE)

    services = get_services()
    debt = services.debts.update_debt(user, debt_id, changes)
    payments = services.debts.list_payments([debt.id])[debt.id]
    return jsonify({"success": True, "debt": serialize_debt(debt, payments)})


@bp.delete("/delete")
def delete_debt():
    user = current_user()
    ensure_owner(user, request.args.get("user_id"))
    debt_id = require_id(request.args)
    gate(user, "delete", RESOURCE)

    deleted = get_services().debts.delete_debt(user, debt_id)
    return jsonify({"success": True, "deleted": deleted})


@bp.post("/payments/create")
def record_payment():
    """Append to the payment history; the debt balance is left untouched."""

    data = json_body()
    user = current_user()
    ensure_owner(user, data.get("user_id"))
    debt_id = require_id(data, "debt_id", "debtId")
    draft = PaymentForm.from_mapping(data).to_draft()
    gate(user, "create", RESOURCE)

    payment = get_services().debts.record_payment(user, debt_id, draft)
    return jsonify({"success": True, "payment": serialize_payment(payment)})


@bp.post("/payments/apply")
def apply_payment():
    """Record a payment and decrement the balance in one step."""

    data = json_body()
    user = current_user()
    ensure_owner(user, data.get("user_id"))
    debt_id = require_id(data, "debt_id", "debtId")
    draft = PaymentForm.from_mapping(data).to_draft()
    gate(user, "create", RESOURCE)

    services = get_services()
    payment, debt = services.debts.apply_payment(user, debt_id, draft)
    payments = services.debts.list_payments([debt.id])[debt.id]
    return jsonify(
        {
            "success": True,
            "payment": serialize_payment(payment),
            "debt": serialize_debt(debt, payments),
        }
    )
