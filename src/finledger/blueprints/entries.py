"""Routes shared by the revenue and expense blueprints."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..extensions import get_services
from .common import current_user, ensure_owner, gate, json_body, require_id, without
from .forms import EntryForm
from .serializers import serialize_entry, serialize_projection, serialize_transaction


def register_entry_routes(bp: Blueprint, *, kind: str, resource: str) -> None:
    """Attach list/create/update/delete handlers for ``kind`` to ``bp``.

    ``kind`` is the transaction type (``revenue``/``expense``) and
    ``resource`` the plural used for entitlement windows and response keys.
    """

    @bp.get("/")
    def list_entries():
        user = current_user()
        ensure_owner(user, request.args.get("user_id"))
        rows = get_services().writer.list_entries(user, kind)
        return jsonify({"success": True, resource: [serialize_entry(row) for row in rows]})

    @bp.post("/create")
    def create_entry():
        data = json_body()
        user = current_user()
        ensure_owner(user, data.get("user_id"))
        draft = EntryForm.from_mapping(data).to_draft()
        gate(user, "create", resource)

        result = get_services().writer.create_entry(user, kind, draft)
        return jsonify(
            {
                "success": True,
                kind: serialize_projection(result.projection),
                "transaction": serialize_transaction(result.transaction),
            }
        )

    @bp.put("/update")
    def update_entry():
        data = json_body()
        user = current_user()
        ensure_owner(user, data.get("user_id"))
        entry_id = require_id(data)
        form = EntryForm.from_mapping(without(data, "id", "user_id"), partial=True)
        changes = form.ensure_valid()
        gate(user, "update", resource)

        result = get_services().writer.update_entry(user, kind, entry_id, changes)
        return jsonify({"success": True, kind: serialize_projection(result.projection)})

    @bp.delete("/delete")
    def delete_entry():
        user = current_user()
        ensure_owner(user, request.args.get("user_id"))
        entry_id = require_id(request.args)
        gate(user, "delete", resource)

        result = get_services().writer.delete_entry(user, kind, entry_id)
        return jsonify({"success": True, "deleted": result.deleted, "cascade": result.cascade})
