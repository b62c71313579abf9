"""Transaction routes."""

from __future__ import annotations

from flask import jsonify, request

from ...errors import ValidationError
from ...extensions import get_services
from ...models.transaction import TRANSACTION_TYPES
from ..common import current_user, ensure_owner, gate, json_body, require_id, without
from ..forms import TransactionForm, parse_flag
from ..serializers import serialize_projection, serialize_transaction
from . import bp

RESOURCE = "transactions"


@bp.post("/create")
def create_transaction():
    """Create a transaction; plain ones also get their revenue/expense row."""

    data = json_body()
    user = current_user()
    ensure_owner(user, data.get("user_id"))
    draft = TransactionForm.from_mapping(data).to_draft()
    gate(user, "create", RESOURCE)

    result = get_services().writer.create_transaction(user, draft)
    payload = {"success": True, "transaction": serialize_transaction(result.transaction)}
    if result.projection is not None:
        payload[result.transaction.type] = serialize_projection(result.projection)
    return jsonify(payload)


@bp.get("/get")
def get_transactions():
    user = current_user()
    ensure_owner(user, request.args.get("user_id"))
    writer = get_services().writer

    if request.args.get("id"):
        txn = writer.get_transaction(user, require_id(request.args))
        return jsonify({"success": True, "transaction": serialize_transaction(txn)})

    txn_type = request.args.get("type") or None
    if txn_type is not None and txn_type not in TRANSACTION_TYPES:
        raise ValidationError("type must be revenue or expense", field="type")
    try:
        installments_only = parse_flag(request.args.get("installments"))
    except ValueError as exc:
        raise ValidationError(str(exc), field="installments") from exc
    rows = writer.list_transactions(user, txn_type=txn_type, installments_only=installments_only)
    return jsonify({"success": True, "transactions": [serialize_transaction(txn) for txn in rows]})


@bp.put("/update")
def update_transaction():
    data = json_body()
    user = current_user()
    ensure_owner(user, data.get("user_id"))
    transaction_id = require_id(data)
    changes = TransactionForm.from_mapping(without(data, "id", "user_id"), partial=True).ensure_valid()
    gate(user, "update", RESOURCE)

    result = get_services().writer.update_transaction(user, transaction_id, changes)
    return jsonify({"success": True, "transaction": serialize_transaction(result.transaction)})


@bp.delete("/delete")
def delete_transaction():
    user = current_user()
    ensure_owner(user, request.args.get("user_id"))
    transaction_id = require_id(request.args)
    gate(user, "delete", RESOURCE)

    result = get_services().writer.delete_transaction(user, transaction_id)
    return jsonify({"success": True, "deleted": result.deleted, "cascade": result.cascade})


@bp.get("/installments/summary")
def installment_summary():
    user = current_user()
    ensure_owner(user, request.args.get("user_id"))
    summary = get_services().writer.installment_summary(user)
    return jsonify({"success": True, "summary": summary})


@bp.post("/installments/confirm")
def confirm_installment():
    """Mark the next installment of a series as paid."""

    data = json_body()
    user = current_user()
    ensure_owner(user, data.get("user_id"))
    transaction_id = require_id(data, "id", "transaction_id", "transactionId")
    gate(user, "update", RESOURCE)

    txn, advance = get_services().writer.confirm_installment(user, transaction_id)
    return jsonify(
        {
            "success": True,
            "transaction": serialize_transaction(txn),
            "completed": advance.completed,
        }
    )
