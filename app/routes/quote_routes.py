from __future__ import annotations

from typing import Dict

from flask import Blueprint, jsonify, request

from app.contexts.purchasing.application.generator import PurchaseOrderGenerator
from app.contexts.purchasing.application.service import PurchaseOrderService
from app.contexts.quoting.application.quote_service import QuoteService
from app.contexts.quoting.application.response_service import SupplierResponseService
from app.contexts.quoting.application.winner_service import WinnerResolutionService
from app.contexts.quoting.infrastructure.repositories import QuoteRepository
from app.db import get_db, get_read_db
from app.domain.contracts import ManualWinnerInput, QuoteCreateInput, QuoteItemInput, SupplierResponseInput
from app.errors import NotFoundError, ValidationError
from app.tenant import current_tenant_context
from app.ui_strings import error_message, success_message


quotes_bp = Blueprint("quotes", __name__)

_WINNER_SERVICE = WinnerResolutionService()
_QUOTE_SERVICE = QuoteService(winner_service=_WINNER_SERVICE)
_RESPONSE_SERVICE = SupplierResponseService()
_GENERATOR = PurchaseOrderGenerator()
_PURCHASE_ORDERS = PurchaseOrderService()


def _payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _int_field(payload: dict, key: str, code: str) -> int:
    try:
        return int(payload.get(key))
    except (TypeError, ValueError) as exc:
        raise ValidationError(code=code, payload={key: payload.get(key)}) from exc


def _parse_tie_choices(raw) -> Dict[int, int]:
    if not raw:
        return {}
    choices: Dict[int, int] = {}
    try:
        if isinstance(raw, dict):
            for item_id, supplier_id in raw.items():
                choices[int(item_id)] = int(supplier_id)
        elif isinstance(raw, list):
            for entry in raw:
                choices[int(entry["quote_item_id"])] = int(entry["supplier_id"])
        else:
            raise TypeError("tie_choices must be an object or a list")
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError(code="invalid_selection", details=str(exc)) from exc
    return choices


@quotes_bp.route("/api/suppliers", methods=["POST"])
def create_supplier():
    db = get_db()
    payload = _payload()
    supplier = _QUOTE_SERVICE.create_supplier(
        db,
        current_tenant_context(),
        name=payload.get("name") or "",
        email=payload.get("email"),
    )
    db.commit()
    return jsonify(supplier), 201


@quotes_bp.route("/api/products", methods=["POST"])
def create_product():
    db = get_db()
    product = _QUOTE_SERVICE.create_product(db, current_tenant_context(), name=_payload().get("name") or "")
    db.commit()
    return jsonify(product), 201


@quotes_bp.route("/api/quotes", methods=["POST"])
def create_quote():
    db = get_db()
    result = _QUOTE_SERVICE.create_quote(db, current_tenant_context(), QuoteCreateInput.from_payload(_payload()))
    db.commit()
    return jsonify(result | {"message": success_message("quote_created")}), 201


@quotes_bp.route("/api/quotes/<int:quote_id>", methods=["GET"])
def quote_detail(quote_id: int):
    return jsonify(_QUOTE_SERVICE.get_quote_detail(get_read_db(), current_tenant_context(), quote_id))


@quotes_bp.route("/api/quotes/<int:quote_id>", methods=["DELETE"])
def delete_quote(quote_id: int):
    db = get_db()
    _QUOTE_SERVICE.delete_quote(db, current_tenant_context(), quote_id)
    db.commit()
    return jsonify({"id": quote_id, "deleted": True})


@quotes_bp.route("/api/quotes/<int:quote_id>/items", methods=["POST"])
def add_quote_item(quote_id: int):
    db = get_db()
    result = _QUOTE_SERVICE.add_item(db, current_tenant_context(), quote_id, QuoteItemInput.from_payload(_payload()))
    db.commit()
    return jsonify(result), 201


@quotes_bp.route("/api/quotes/<int:quote_id>/suppliers", methods=["POST"])
def invite_supplier(quote_id: int):
    db = get_db()
    supplier_id = _int_field(_payload(), "supplier_id", "supplier_not_found")
    result = _QUOTE_SERVICE.invite_supplier(db, current_tenant_context(), quote_id, supplier_id)
    db.commit()
    return jsonify(result), 201 if result.get("created") else 200


@quotes_bp.route("/api/quotes/<int:quote_id>/open", methods=["POST"])
def open_quote(quote_id: int):
    db = get_db()
    result = _QUOTE_SERVICE.open_quote(db, current_tenant_context(), quote_id)
    db.commit()
    return jsonify(result | {"message": success_message("quote_opened")})


@quotes_bp.route("/api/quotes/<int:quote_id>/cancel", methods=["POST"])
def cancel_quote(quote_id: int):
    db = get_db()
    result = _QUOTE_SERVICE.cancel_quote(db, current_tenant_context(), quote_id)
    db.commit()
    return jsonify(result | {"message": success_message("quote_cancelled")})


@quotes_bp.route("/api/quotes/<int:quote_id>/close", methods=["POST"])
def close_quote(quote_id: int):
    db = get_db()
    tie_choices = _parse_tie_choices(_payload().get("tie_choices"))
    result = _QUOTE_SERVICE.close_quote(db, current_tenant_context(), quote_id, tie_choices=tie_choices)
    db.commit()
    return jsonify(result | {"message": success_message("quote_closed")})


@quotes_bp.route("/api/quotes/<int:quote_id>/suppliers/<int:quote_supplier_id>/view", methods=["POST"])
def view_invitation(quote_id: int, quote_supplier_id: int):
    db = get_db()
    result = _RESPONSE_SERVICE.mark_viewed(db, current_tenant_context(), quote_id, quote_supplier_id)
    db.commit()
    return jsonify(result)


@quotes_bp.route(
    "/api/quotes/<int:quote_id>/suppliers/<int:quote_supplier_id>/responses/<int:item_id>",
    methods=["PUT"],
)
def save_response(quote_id: int, quote_supplier_id: int, item_id: int):
    db = get_db()
    result = _RESPONSE_SERVICE.save_response(
        db,
        current_tenant_context(),
        quote_id,
        quote_supplier_id,
        item_id,
        SupplierResponseInput.from_payload(_payload()),
    )
    db.commit()
    return jsonify(result | {"message": success_message("response_saved")})


@quotes_bp.route("/api/quotes/<int:quote_id>/suppliers/<int:quote_supplier_id>/submit", methods=["POST"])
def submit_quote(quote_id: int, quote_supplier_id: int):
    db = get_db()
    result = _RESPONSE_SERVICE.submit(db, current_tenant_context(), quote_id, quote_supplier_id)
    db.commit()
    return jsonify(result | {"message": success_message("quote_submitted")})


@quotes_bp.route("/api/quotes/<int:quote_id>/items/<int:item_id>/lowest-price", methods=["GET"])
def lowest_price(quote_id: int, item_id: int):
    return jsonify(_WINNER_SERVICE.lowest_price(get_read_db(), current_tenant_context(), quote_id, item_id))


@quotes_bp.route("/api/quotes/<int:quote_id>/ties", methods=["GET"])
def quote_ties(quote_id: int):
    only_undecided = (request.args.get("only_undecided") or "").strip().lower() in {"1", "true", "yes"}
    groups = _WINNER_SERVICE.detect_ties(
        get_read_db(),
        current_tenant_context(),
        quote_id,
        only_undecided=only_undecided,
    )
    return jsonify({"quote_id": quote_id, "ties": [group.to_dict() for group in groups]})


@quotes_bp.route("/api/quotes/<int:quote_id>/winners/auto-select", methods=["POST"])
def auto_select_winners(quote_id: int):
    db = get_db()
    tie_choices = _parse_tie_choices(_payload().get("tie_choices"))
    assigned = _WINNER_SERVICE.auto_select_winners(db, current_tenant_context(), quote_id, tie_choices=tie_choices)
    db.commit()
    return jsonify(
        {
            "quote_id": quote_id,
            "assigned": assigned,
            "message": success_message("winners_auto_selected"),
        }
    )


@quotes_bp.route("/api/quotes/<int:quote_id>/items/<int:item_id>/tie-break", methods=["POST"])
def resolve_tie(quote_id: int, item_id: int):
    db = get_db()
    payload = _payload()
    supplier_id = _int_field(payload, "supplier_id", "supplier_not_found")
    kwargs = {}
    if "expected_response_id" in payload:
        raw_expected = payload.get("expected_response_id")
        kwargs["expected_response_id"] = None if raw_expected is None else _int_field(
            payload, "expected_response_id", "status_invalid"
        )
    ctx = current_tenant_context()
    _ensure_item_in_quote(db, ctx, quote_id, item_id)
    assignment = _WINNER_SERVICE.resolve_tie(db, ctx, item_id, supplier_id, **kwargs)
    db.commit()
    return jsonify(assignment.to_dict() | {"message": success_message("winner_saved")})


@quotes_bp.route("/api/quotes/<int:quote_id>/items/<int:item_id>/winner", methods=["PUT"])
def set_winner(quote_id: int, item_id: int):
    db = get_db()
    data = ManualWinnerInput.from_payload(_payload())
    kwargs = {}
    if data.has_expected:
        kwargs["expected_response_id"] = data.expected_response_id
    ctx = current_tenant_context()
    _ensure_item_in_quote(db, ctx, quote_id, item_id)
    assignment = _WINNER_SERVICE.set_winner_manually(
        db,
        ctx,
        item_id,
        data.supplier_id,
        data.reason,
        data.custom_reason,
        **kwargs,
    )
    db.commit()
    return jsonify(assignment.to_dict() | {"message": success_message("winner_saved")})


@quotes_bp.route("/api/quotes/<int:quote_id>/winners/summary", methods=["GET"])
def winners_summary(quote_id: int):
    return jsonify(_WINNER_SERVICE.winners_summary(get_read_db(), current_tenant_context(), quote_id))


@quotes_bp.route("/api/quotes/<int:quote_id>/purchase-orders/validation", methods=["GET"])
def validate_purchase_orders(quote_id: int):
    result = _GENERATOR.validate_for_generation(get_read_db(), current_tenant_context(), quote_id)
    return jsonify(result.to_dict())


@quotes_bp.route("/api/quotes/<int:quote_id>/purchase-orders", methods=["GET"])
def list_quote_purchase_orders(quote_id: int):
    orders = _PURCHASE_ORDERS.list_for_quote(get_read_db(), current_tenant_context(), quote_id)
    return jsonify({"quote_id": quote_id, "purchase_orders": orders})


@quotes_bp.route("/api/quotes/<int:quote_id>/purchase-orders", methods=["POST"])
def generate_purchase_orders(quote_id: int):
    db = get_db()
    result = _GENERATOR.generate(db, current_tenant_context(), quote_id)
    db.commit()
    if not result.success:
        return jsonify(result.to_dict() | {"message": error_message("po_generation_failed")}), 422
    message_key = "purchase_orders_partially_generated" if result.failures else "purchase_orders_generated"
    return jsonify(result.to_dict() | {"message": success_message(message_key)}), 201


def _ensure_item_in_quote(db, ctx, quote_id: int, item_id: int) -> None:
    item = QuoteRepository(context=ctx).get_item(db, item_id)
    if not item or int(item["quote_id"]) != int(quote_id):
        raise NotFoundError(code="item_not_found", payload={"quote_item_id": item_id})
