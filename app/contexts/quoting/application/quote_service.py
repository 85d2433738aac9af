from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from app.contexts.quoting.application.winner_service import WinnerResolutionService
from app.contexts.quoting.domain.pricing import detect_ties
from app.contexts.quoting.infrastructure.repositories import (
    ProductRepository,
    QuoteRepository,
    QuoteSupplierRepository,
    SupplierRepository,
)
from app.core import EventBus, QuoteClosed, get_event_bus
from app.domain.contracts import QuoteCreateInput, QuoteItemInput
from app.errors import ConcurrencyConflict, NotFoundError, ValidationError
from app.infrastructure.repositories.status_events import StatusEventRepository
from app.procurement.flow_policy import (
    QUOTE_TRANSITION_ACTIONS,
    build_process_steps,
    flow_meta,
    require_action,
    stage_for_quote_status,
)
from app.tenant import TenantContext
from app.ui_strings import status_label, winner_reason_label


LOGGER = logging.getLogger("app")


class QuoteService:
    def __init__(
        self,
        winner_service: WinnerResolutionService | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.event_bus = event_bus or get_event_bus()
        self.winner_service = winner_service or WinnerResolutionService(event_bus=self.event_bus)

    def create_supplier(self, db, ctx: TenantContext, *, name: str, email: str | None = None) -> Dict[str, Any]:
        name = str(name or "").strip()
        if not name:
            raise ValidationError(code="supplier_name_required")
        supplier_id = SupplierRepository(context=ctx).create(db, name=name, email=(email or "").strip() or None)
        return {"id": supplier_id, "name": name, "email": (email or "").strip() or None}

    def create_product(self, db, ctx: TenantContext, *, name: str) -> Dict[str, Any]:
        name = str(name or "").strip()
        if not name:
            raise ValidationError(code="product_name_required")
        product_id = ProductRepository(context=ctx).create(db, name=name)
        return {"id": product_id, "name": name}

    def create_quote(self, db, ctx: TenantContext, data: QuoteCreateInput) -> Dict[str, Any]:
        quote_id = QuoteRepository(context=ctx).create(
            db,
            title=data.title,
            description=data.description,
            deadline_at=data.deadline_at,
            created_by=ctx.actor_id,
        )
        StatusEventRepository(context=ctx).add_event(
            db,
            entity="quote",
            entity_id=quote_id,
            from_status=None,
            to_status="draft",
            reason="quote_created",
            actor_id=ctx.actor_id,
        )
        LOGGER.info("quote_created", extra={"tenant_id": ctx.tenant_id, "quote_id": quote_id})
        return {"id": quote_id, "title": data.title, "status": "draft", "deadline_at": data.deadline_at}

    def get_quote_detail(self, db, ctx: TenantContext, quote_id: int) -> Dict[str, Any]:
        quote = self.winner_service.load_quote(db, ctx, quote_id)
        payload = quote.to_dict()
        payload["status_label"] = status_label("cotacao", quote.status)
        for item in payload["items"]:
            item["winner_reason_label"] = winner_reason_label(item["winner_reason"]) if item["winner_reason"] else None
        payload["flow"] = flow_meta("cotacao", quote.status)
        payload["process_steps"] = build_process_steps(stage_for_quote_status(quote.status))
        payload["ties"] = [group.to_dict() for group in detect_ties(quote)]
        return payload

    def add_item(self, db, ctx: TenantContext, quote_id: int, data: QuoteItemInput) -> Dict[str, Any]:
        quote = self._quote_row(db, ctx, quote_id)
        require_action("cotacao", quote["status"], "add_item")
        if not ProductRepository(context=ctx).get_by_id(db, data.product_id):
            raise NotFoundError(code="product_not_found", payload={"product_id": data.product_id})

        repository = QuoteRepository(context=ctx)
        item_id = repository.add_item(
            db,
            quote_id=quote_id,
            product_id=data.product_id,
            requested_qty=None if data.requested_qty is None else str(data.requested_qty),
            sort_order=repository.next_sort_order(db, quote_id),
            package_id=data.package_id,
            package_multiplier=None if data.package_multiplier is None else str(data.package_multiplier),
            notes=data.notes,
        )
        return {"id": item_id, "quote_id": quote_id, "product_id": data.product_id}

    def invite_supplier(self, db, ctx: TenantContext, quote_id: int, supplier_id: int) -> Dict[str, Any]:
        quote = self._quote_row(db, ctx, quote_id)
        require_action("cotacao", quote["status"], "invite_supplier")
        if not SupplierRepository(context=ctx).get_by_id(db, supplier_id):
            raise NotFoundError(code="supplier_not_found", payload={"supplier_id": supplier_id})

        repository = QuoteSupplierRepository(context=ctx)
        created_id = repository.create(db, quote_id=quote_id, supplier_id=supplier_id)
        invitation = repository.get_by_pair(db, quote_id=quote_id, supplier_id=supplier_id)
        return dict(invitation) | {"created": created_id is not None}

    def open_quote(self, db, ctx: TenantContext, quote_id: int) -> Dict[str, Any]:
        return self._transition(db, ctx, quote_id, "open", reason="quote_opened")

    def cancel_quote(self, db, ctx: TenantContext, quote_id: int) -> Dict[str, Any]:
        return self._transition(db, ctx, quote_id, "cancelled", reason="quote_cancelled")

    def close_quote(
        self,
        db,
        ctx: TenantContext,
        quote_id: int,
        tie_choices: Mapping[int, int] | None = None,
    ) -> Dict[str, Any]:
        """Encerrar cotacao: aplica desempates, auto-seleciona e fecha."""
        quote = self.winner_service.load_quote(db, ctx, quote_id)
        require_action("cotacao", quote.status, "close_quote")

        choices = {int(key): int(value) for key, value in dict(tie_choices or {}).items()}
        pending = [group for group in detect_ties(quote, only_undecided=True) if group.quote_item_id not in choices]
        if pending:
            raise ValidationError(
                code="unresolved_ties",
                payload={
                    "quote_id": quote.id,
                    "unresolved_items": [group.quote_item_id for group in pending],
                    "ties": [group.to_dict() for group in pending],
                },
            )

        assigned = self.winner_service.auto_select_winners(db, ctx, quote_id, tie_choices=choices)
        result = self._transition(db, ctx, quote_id, "closed", reason="quote_closed")

        closed = self.winner_service.load_quote(db, ctx, quote_id)
        items_with_winners = sum(1 for item in closed.items if item.has_winner)
        self.event_bus.publish(
            QuoteClosed(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                quote_id=quote_id,
                items_with_winners=items_with_winners,
                total_items=len(closed.items),
            )
        )
        return result | {
            "winners_assigned": assigned,
            "items_with_winners": items_with_winners,
            "total_items": len(closed.items),
        }

    def delete_quote(self, db, ctx: TenantContext, quote_id: int) -> None:
        self._quote_row(db, ctx, quote_id)
        QuoteRepository(context=ctx).delete(db, quote_id)
        LOGGER.info("quote_deleted", extra={"tenant_id": ctx.tenant_id, "quote_id": quote_id})

    @staticmethod
    def _quote_row(db, ctx: TenantContext, quote_id: int) -> dict:
        row = QuoteRepository(context=ctx).get_by_id(db, quote_id)
        if not row:
            raise NotFoundError(code="quote_not_found", payload={"quote_id": quote_id})
        return row

    def _transition(self, db, ctx: TenantContext, quote_id: int, to_status: str, *, reason: str) -> Dict[str, Any]:
        quote = self._quote_row(db, ctx, quote_id)
        from_status = str(quote["status"])
        require_action("cotacao", from_status, QUOTE_TRANSITION_ACTIONS[to_status])
        if not QuoteRepository(context=ctx).update_status(db, quote_id, from_status=from_status, to_status=to_status):
            raise ConcurrencyConflict(code="quote_status_changed", payload={"quote_id": quote_id})
        StatusEventRepository(context=ctx).add_event(
            db,
            entity="quote",
            entity_id=quote_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            actor_id=ctx.actor_id,
        )
        LOGGER.info(
            "quote_status_changed",
            extra={"tenant_id": ctx.tenant_id, "quote_id": quote_id, "from_status": from_status, "to_status": to_status},
        )
        return {"id": quote_id, "status": to_status, "flow": flow_meta("cotacao", to_status)}
