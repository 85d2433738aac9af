from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from app.contexts.quoting.domain.pricing import dump_pricing_tiers
from app.contexts.quoting.infrastructure.repositories import QuoteRepository, QuoteSupplierRepository, ResponseRepository
from app.core import EventBus, SupplierResponseSaved, get_event_bus
from app.domain.contracts import SupplierResponseInput
from app.errors import NotFoundError, ValidationError
from app.infrastructure.repositories.status_events import StatusEventRepository
from app.tenant import TenantContext


LOGGER = logging.getLogger("app")


def _deadline_passed(deadline_at, now: datetime | None = None) -> bool:
    if not deadline_at:
        return False
    if isinstance(deadline_at, datetime):
        deadline = deadline_at
    else:
        deadline = datetime.fromisoformat(str(deadline_at).strip().replace("Z", "+00:00"))
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return deadline < (now or datetime.now(timezone.utc))


class SupplierResponseService:
    """Supplier side of a quote: open the invitation, fill prices, submit."""

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self.event_bus = event_bus or get_event_bus()

    def _load_invitation(self, db, ctx: TenantContext, quote_id: int, quote_supplier_id: int) -> tuple[dict, dict]:
        invitation = QuoteSupplierRepository(context=ctx).get_by_id(db, quote_supplier_id)
        if not invitation or int(invitation["quote_id"]) != int(quote_id):
            raise NotFoundError(code="quote_supplier_not_found", payload={"quote_supplier_id": quote_supplier_id})
        quote = QuoteRepository(context=ctx).get_by_id(db, quote_id)
        if not quote:
            raise NotFoundError(code="quote_not_found", payload={"quote_id": quote_id})
        return quote, invitation

    @staticmethod
    def _ensure_accepting(quote: dict) -> None:
        if quote["status"] != "open":
            raise ValidationError(
                code="quote_closed_for_responses",
                payload={"quote_id": quote["id"], "status": quote["status"]},
            )
        if _deadline_passed(quote.get("deadline_at")):
            raise ValidationError(
                code="quote_deadline_passed",
                payload={"quote_id": quote["id"], "deadline_at": str(quote.get("deadline_at"))},
            )

    def mark_viewed(self, db, ctx: TenantContext, quote_id: int, quote_supplier_id: int) -> Dict[str, Any]:
        _quote, invitation = self._load_invitation(db, ctx, quote_id, quote_supplier_id)
        if QuoteSupplierRepository(context=ctx).mark_viewed(db, quote_supplier_id):
            StatusEventRepository(context=ctx).add_event(
                db,
                entity="quote_supplier",
                entity_id=quote_supplier_id,
                from_status=invitation["status"],
                to_status="viewed",
                reason="invite_viewed",
                actor_id=ctx.actor_id,
            )
        return QuoteSupplierRepository(context=ctx).get_by_id(db, quote_supplier_id)

    def save_response(
        self,
        db,
        ctx: TenantContext,
        quote_id: int,
        quote_supplier_id: int,
        item_id: int,
        data: SupplierResponseInput,
    ) -> Dict[str, Any]:
        quote, invitation = self._load_invitation(db, ctx, quote_id, quote_supplier_id)
        self._ensure_accepting(quote)
        item = QuoteRepository(context=ctx).get_item(db, item_id)
        if not item or int(item["quote_id"]) != int(quote_id):
            raise NotFoundError(code="item_not_found", payload={"quote_item_id": item_id})

        response_id = ResponseRepository(context=ctx).upsert(
            db,
            quote_item_id=item_id,
            quote_supplier_id=quote_supplier_id,
            price=None if data.price is None else str(data.price),
            min_qty=None if data.min_qty is None else str(data.min_qty),
            delivery_days=data.delivery_days,
            notes=data.notes,
            pricing_tiers=dump_pricing_tiers(data.pricing_tiers),
        )
        if QuoteSupplierRepository(context=ctx).mark_partial(db, quote_supplier_id):
            StatusEventRepository(context=ctx).add_event(
                db,
                entity="quote_supplier",
                entity_id=quote_supplier_id,
                from_status=invitation["status"],
                to_status="partial",
                reason="response_saved",
                actor_id=ctx.actor_id,
            )

        LOGGER.info(
            "supplier_response_saved",
            extra={
                "tenant_id": ctx.tenant_id,
                "quote_id": quote_id,
                "quote_item_id": item_id,
                "quote_supplier_id": quote_supplier_id,
                "response_id": response_id,
            },
        )
        self.event_bus.publish(
            SupplierResponseSaved(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                quote_id=quote_id,
                quote_item_id=item_id,
                quote_supplier_id=quote_supplier_id,
                response_id=response_id,
            )
        )
        response = ResponseRepository(context=ctx).get_by_id(db, response_id)
        return response.to_dict()

    def submit(self, db, ctx: TenantContext, quote_id: int, quote_supplier_id: int) -> Dict[str, Any]:
        quote, invitation = self._load_invitation(db, ctx, quote_id, quote_supplier_id)
        self._ensure_accepting(quote)
        repository = QuoteSupplierRepository(context=ctx)
        repository.mark_submitted(db, quote_supplier_id)
        StatusEventRepository(context=ctx).add_event(
            db,
            entity="quote_supplier",
            entity_id=quote_supplier_id,
            from_status=invitation["status"],
            to_status="submitted",
            reason="quote_submitted",
            actor_id=ctx.actor_id,
        )
        LOGGER.info(
            "supplier_quote_submitted",
            extra={"tenant_id": ctx.tenant_id, "quote_id": quote_id, "quote_supplier_id": quote_supplier_id},
        )
        return repository.get_by_id(db, quote_supplier_id)
