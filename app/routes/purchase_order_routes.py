from __future__ import annotations

from flask import Blueprint, jsonify, request

from app.contexts.purchasing.application.service import PurchaseOrderService
from app.db import get_db, get_read_db
from app.domain.contracts import (
    ChargesInput,
    PurchaseOrderCreateInput,
    PurchaseOrderItemInput,
    PurchaseOrderItemUpdateInput,
)
from app.tenant import current_tenant_context
from app.ui_strings import success_message


purchase_orders_bp = Blueprint("purchase_orders", __name__)

_SERVICE = PurchaseOrderService()


def _payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _ok(order: dict, status_code: int = 200):
    return jsonify(order | {"message": success_message("order_saved")}), status_code


@purchase_orders_bp.route("/api/purchase-orders", methods=["POST"])
def create_purchase_order():
    db = get_db()
    order = _SERVICE.create_manual(db, current_tenant_context(), PurchaseOrderCreateInput.from_payload(_payload()))
    db.commit()
    return _ok(order, 201)


@purchase_orders_bp.route("/api/purchase-orders/<int:po_id>", methods=["GET"])
def purchase_order_detail(po_id: int):
    return jsonify(_SERVICE.get_detail(get_read_db(), current_tenant_context(), po_id))


@purchase_orders_bp.route("/api/purchase-orders/<int:po_id>/items", methods=["POST"])
def add_purchase_order_item(po_id: int):
    db = get_db()
    order = _SERVICE.add_item(db, current_tenant_context(), po_id, PurchaseOrderItemInput.from_payload(_payload()))
    db.commit()
    return _ok(order, 201)


@purchase_orders_bp.route("/api/purchase-orders/<int:po_id>/items/<int:item_id>", methods=["PATCH"])
def update_purchase_order_item(po_id: int, item_id: int):
    db = get_db()
    order = _SERVICE.update_item(
        db,
        current_tenant_context(),
        po_id,
        item_id,
        PurchaseOrderItemUpdateInput.from_payload(_payload()),
    )
    db.commit()
    return _ok(order)


@purchase_orders_bp.route("/api/purchase-orders/<int:po_id>/items/<int:item_id>", methods=["DELETE"])
def remove_purchase_order_item(po_id: int, item_id: int):
    db = get_db()
    order = _SERVICE.remove_item(db, current_tenant_context(), po_id, item_id)
    db.commit()
    return _ok(order)


@purchase_orders_bp.route("/api/purchase-orders/<int:po_id>/charges", methods=["PATCH"])
def update_purchase_order_charges(po_id: int):
    db = get_db()
    order = _SERVICE.update_charges(db, current_tenant_context(), po_id, ChargesInput.from_payload(_payload()))
    db.commit()
    return _ok(order)


@purchase_orders_bp.route("/api/purchase-orders/<int:po_id>/status", methods=["POST"])
def change_purchase_order_status(po_id: int):
    db = get_db()
    order = _SERVICE.change_status(db, current_tenant_context(), po_id, _payload().get("status"))
    db.commit()
    return _ok(order)
