from __future__ import annotations

import logging
from typing import Any, Dict, List

from flask import current_app, has_app_context

from app.contexts.purchasing.domain.models import PURCHASE_ORDER_STATUSES, PurchaseOrder, line_total
from app.contexts.purchasing.infrastructure.repositories import PoNumberAllocator, PurchaseOrderRepository
from app.contexts.quoting.domain.models import decimal_to_json
from app.contexts.quoting.domain.pricing import quantize_money, to_decimal
from app.contexts.quoting.infrastructure.repositories import ProductRepository, SupplierRepository
from app.core import EventBus, PurchaseOrderStatusChanged, get_event_bus
from app.domain.contracts import (
    ChargesInput,
    PurchaseOrderCreateInput,
    PurchaseOrderItemInput,
    PurchaseOrderItemUpdateInput,
)
from app.errors import ConcurrencyConflict, NotFoundError, ValidationError
from app.infrastructure.repositories.status_events import StatusEventRepository
from app.procurement.flow_policy import PURCHASE_ORDER_TRANSITION_ACTIONS, flow_meta, require_action
from app.tenant import TenantContext
from app.ui_strings import status_label


LOGGER = logging.getLogger("app")


class PurchaseOrderService:
    """Manual purchase orders and maintenance of draft orders."""

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self.event_bus = event_bus or get_event_bus()

    @staticmethod
    def _load(db, ctx: TenantContext, po_id: int) -> PurchaseOrder:
        order = PurchaseOrderRepository(context=ctx).load(db, po_id)
        if order is None:
            raise NotFoundError(code="purchase_order_not_found", payload={"purchase_order_id": po_id})
        return order

    def get_detail(self, db, ctx: TenantContext, po_id: int) -> Dict[str, Any]:
        order = self._load(db, ctx, po_id)
        payload = order.to_dict()
        payload["status_label"] = status_label("ordem_compra", order.status)
        payload["flow"] = flow_meta("ordem_compra", order.status)
        payload["history"] = StatusEventRepository(context=ctx).list_for_entity(
            db,
            entity="purchase_order",
            entity_id=po_id,
        )
        return payload

    def list_for_quote(self, db, ctx: TenantContext, quote_id: int) -> List[Dict[str, Any]]:
        rows = PurchaseOrderRepository(context=ctx).list_for_quote(db, quote_id)
        return [
            {
                "id": int(row["id"]),
                "po_number": row["po_number"],
                "supplier_id": int(row["supplier_id"]),
                "status": row["status"],
                "status_label": status_label("ordem_compra", row["status"]),
                "total_amount": decimal_to_json(quantize_money(row["total_amount"])),
            }
            for row in rows
        ]

    def create_manual(self, db, ctx: TenantContext, data: PurchaseOrderCreateInput) -> Dict[str, Any]:
        if not SupplierRepository(context=ctx).get_by_id(db, data.supplier_id):
            raise NotFoundError(code="supplier_not_found", payload={"supplier_id": data.supplier_id})
        config = current_app.config if has_app_context() else {}
        allocator = PoNumberAllocator(
            context=ctx,
            prefix=config.get("PO_NUMBER_PREFIX", "PO"),
            padding=int(config.get("PO_NUMBER_PADDING", 4)),
            start=int(config.get("PO_NUMBER_START", 1000)),
        )
        po_id = PurchaseOrderRepository(context=ctx).create(
            db,
            po_number=allocator.next_number(db),
            supplier_id=data.supplier_id,
            quote_id=None,
            notes=data.notes,
            created_by=ctx.actor_id,
        )
        StatusEventRepository(context=ctx).add_event(
            db,
            entity="purchase_order",
            entity_id=po_id,
            from_status=None,
            to_status="draft",
            reason="po_created_manually",
            actor_id=ctx.actor_id,
        )
        LOGGER.info("purchase_order_created", extra={"tenant_id": ctx.tenant_id, "purchase_order_id": po_id})
        return self._load(db, ctx, po_id).to_dict()

    def add_item(self, db, ctx: TenantContext, po_id: int, data: PurchaseOrderItemInput) -> Dict[str, Any]:
        order = self._load(db, ctx, po_id)
        require_action("ordem_compra", order.status, "edit_order")
        if not ProductRepository(context=ctx).get_by_id(db, data.product_id):
            raise NotFoundError(code="product_not_found", payload={"product_id": data.product_id})
        repository = PurchaseOrderRepository(context=ctx)
        repository.add_item(
            db,
            po_id=po_id,
            product_id=data.product_id,
            qty=str(data.qty),
            unit_price=str(data.unit_price),
            total_price=str(line_total(data.qty, data.unit_price)),
            delivery_days=data.delivery_days,
            notes=data.notes,
        )
        repository.recompute_totals(db, po_id)
        return self._load(db, ctx, po_id).to_dict()

    def update_item(
        self,
        db,
        ctx: TenantContext,
        po_id: int,
        item_id: int,
        data: PurchaseOrderItemUpdateInput,
    ) -> Dict[str, Any]:
        order = self._load(db, ctx, po_id)
        require_action("ordem_compra", order.status, "edit_order")
        repository = PurchaseOrderRepository(context=ctx)
        current = repository.get_item(db, po_id, item_id)
        if not current:
            raise NotFoundError(code="purchase_order_item_not_found", payload={"item_id": item_id})

        qty = data.qty if "qty" in data.fields else to_decimal(current["qty"])
        unit_price = data.unit_price if "unit_price" in data.fields else to_decimal(current["unit_price"])
        delivery_days = data.delivery_days if "delivery_days" in data.fields else current["delivery_days"]
        notes = data.notes if "notes" in data.fields else current["notes"]
        repository.update_item(
            db,
            po_id=po_id,
            item_id=item_id,
            qty=str(qty),
            unit_price=str(unit_price),
            total_price=str(line_total(qty, unit_price)),
            delivery_days=delivery_days,
            notes=notes,
        )
        repository.recompute_totals(db, po_id)
        return self._load(db, ctx, po_id).to_dict()

    def remove_item(self, db, ctx: TenantContext, po_id: int, item_id: int) -> Dict[str, Any]:
        order = self._load(db, ctx, po_id)
        require_action("ordem_compra", order.status, "edit_order")
        repository = PurchaseOrderRepository(context=ctx)
        if not repository.get_item(db, po_id, item_id):
            raise NotFoundError(code="purchase_order_item_not_found", payload={"item_id": item_id})
        repository.delete_item(db, po_id=po_id, item_id=item_id)
        repository.recompute_totals(db, po_id)
        return self._load(db, ctx, po_id).to_dict()

    def update_charges(self, db, ctx: TenantContext, po_id: int, data: ChargesInput) -> Dict[str, Any]:
        order = self._load(db, ctx, po_id)
        require_action("ordem_compra", order.status, "edit_order")
        repository = PurchaseOrderRepository(context=ctx)
        repository.update_charges(
            db,
            po_id,
            tax_amount=None if data.tax_amount is None else str(data.tax_amount),
            shipping_cost=None if data.shipping_cost is None else str(data.shipping_cost),
        )
        repository.recompute_totals(db, po_id)
        return self._load(db, ctx, po_id).to_dict()

    def change_status(self, db, ctx: TenantContext, po_id: int, to_status: str) -> Dict[str, Any]:
        to_status = str(to_status or "").strip()
        if to_status not in PURCHASE_ORDER_STATUSES or to_status not in PURCHASE_ORDER_TRANSITION_ACTIONS:
            raise ValidationError(code="status_invalid", payload={"status": to_status})
        order = self._load(db, ctx, po_id)
        require_action("ordem_compra", order.status, PURCHASE_ORDER_TRANSITION_ACTIONS[to_status])

        repository = PurchaseOrderRepository(context=ctx)
        if not repository.update_status(db, po_id, from_status=order.status, to_status=to_status):
            raise ConcurrencyConflict(code="purchase_order_status_changed", payload={"purchase_order_id": po_id})
        StatusEventRepository(context=ctx).add_event(
            db,
            entity="purchase_order",
            entity_id=po_id,
            from_status=order.status,
            to_status=to_status,
            reason="po_status_changed",
            actor_id=ctx.actor_id,
        )
        LOGGER.info(
            "purchase_order_status_changed",
            extra={
                "tenant_id": ctx.tenant_id,
                "purchase_order_id": po_id,
                "from_status": order.status,
                "to_status": to_status,
            },
        )
        self.event_bus.publish(
            PurchaseOrderStatusChanged(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                purchase_order_id=po_id,
                from_status=order.status,
                to_status=to_status,
            )
        )
        return self._load(db, ctx, po_id).to_dict() | {"flow": flow_meta("ordem_compra", to_status)}
