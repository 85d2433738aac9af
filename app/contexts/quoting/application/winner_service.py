from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Mapping

from flask import current_app, has_app_context

from app.contexts.quoting.domain.models import WINNER_REASONS, Quote, QuoteItem, TieGroup, WinnerAssignment
from app.contexts.quoting.domain.pricing import (
    detect_ties,
    find_lowest_price,
    lowest_price_responses,
    ordered_items,
    price_for_quantity,
    quantize_money,
    tie_group_for_item,
    unique_lowest_response,
)
from app.contexts.quoting.infrastructure.repositories import QuoteRepository
from app.core import EventBus, WinnerAssigned, get_event_bus
from app.errors import ConcurrencyConflict, InvalidSelection, NoResponseFound, NotFoundError, ValidationError
from app.infrastructure.repositories.status_events import StatusEventRepository
from app.observability import observe_winner_assigned, observe_winner_conflict
from app.procurement.flow_policy import require_action
from app.tenant import TenantContext


LOGGER = logging.getLogger("app")

_UNSET: Any = object()


def default_requested_qty() -> Decimal:
    if has_app_context():
        return Decimal(str(current_app.config.get("DEFAULT_REQUESTED_QTY", 1)))
    return Decimal("1")


def effective_qty(item: QuoteItem) -> Decimal:
    if item.requested_qty is not None and item.requested_qty > 0:
        return item.requested_qty
    return default_requested_qty()


class WinnerResolutionService:
    """Decides which supplier wins each quote item.

    Every write is conditional: automatic selection only fills empty items and
    overwrites compare against the winner the caller last saw.
    """

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self.event_bus = event_bus or get_event_bus()

    @staticmethod
    def load_quote(db, ctx: TenantContext, quote_id: int) -> Quote:
        quote = QuoteRepository(context=ctx).load(db, quote_id)
        if quote is None:
            raise NotFoundError(code="quote_not_found", payload={"quote_id": quote_id})
        return quote

    def _load_item(self, db, ctx: TenantContext, item_id: int) -> tuple[Quote, QuoteItem]:
        row = QuoteRepository(context=ctx).get_item(db, item_id)
        if not row:
            raise NotFoundError(code="item_not_found", payload={"quote_item_id": item_id})
        quote = self.load_quote(db, ctx, int(row["quote_id"]))
        item = quote.item(item_id)
        if item is None:
            raise NotFoundError(code="item_not_found", payload={"quote_item_id": item_id})
        return quote, item

    def lowest_price(self, db, ctx: TenantContext, quote_id: int, item_id: int) -> Dict[str, Any]:
        quote = self.load_quote(db, ctx, quote_id)
        item = quote.item(item_id)
        if item is None:
            raise NotFoundError(code="item_not_found", payload={"quote_item_id": item_id})
        lowest = find_lowest_price(item)
        return {
            "quote_item_id": item.id,
            "lowest_price": None if lowest is None else str(lowest),
            "supplier_ids": [response.supplier_id for response in lowest_price_responses(item)],
        }

    def detect_ties(self, db, ctx: TenantContext, quote_id: int, *, only_undecided: bool = False) -> List[TieGroup]:
        quote = self.load_quote(db, ctx, quote_id)
        return detect_ties(quote, only_undecided=only_undecided)

    def auto_select_winners(
        self,
        db,
        ctx: TenantContext,
        quote_id: int,
        tie_choices: Mapping[int, int] | None = None,
    ) -> int:
        quote = self.load_quote(db, ctx, quote_id)
        require_action("cotacao", quote.status, "auto_select_winners")

        # Todas as escolhas sao validadas antes da primeira gravacao.
        planned: List[WinnerAssignment] = []
        for item_id, supplier_id in dict(tie_choices or {}).items():
            item = quote.item(int(item_id))
            if item is None:
                raise NotFoundError(code="item_not_found", payload={"quote_item_id": int(item_id)})
            candidate = self._tie_group_or_fail(quote, item, int(supplier_id)).candidate(int(supplier_id))
            if item.winner_supplier_id is not None:
                LOGGER.info(
                    "tie_choice_ignored_item_decided",
                    extra={"tenant_id": ctx.tenant_id, "quote_id": quote.id, "quote_item_id": item.id},
                )
                continue
            planned.append(
                WinnerAssignment(
                    quote_item_id=item.id,
                    supplier_id=candidate.supplier_id,
                    response_id=candidate.response_id,
                    reason="lowest_price",
                    source="tie_break",
                    set_by=ctx.actor_id,
                )
            )

        chosen = {assignment.quote_item_id for assignment in planned}
        for item in ordered_items(quote):
            if item.winner_supplier_id is not None or item.id in chosen:
                continue
            response = unique_lowest_response(item)
            if response is None:
                continue
            planned.append(
                WinnerAssignment(
                    quote_item_id=item.id,
                    supplier_id=response.supplier_id,
                    response_id=response.id,
                    reason="lowest_price",
                    source="auto",
                    set_by=ctx.actor_id,
                )
            )

        assigned = sum(1 for assignment in planned if self._fill_if_unset(db, ctx, quote, assignment))
        LOGGER.info(
            "winners_auto_selected",
            extra={"tenant_id": ctx.tenant_id, "quote_id": quote.id, "assigned": assigned},
        )
        return assigned

    def _fill_if_unset(self, db, ctx: TenantContext, quote: Quote, assignment: WinnerAssignment) -> bool:
        written = QuoteRepository(context=ctx).assign_winner_if_unset(
            db,
            item_id=assignment.quote_item_id,
            supplier_id=assignment.supplier_id,
            response_id=assignment.response_id,
            reason=assignment.reason,
            set_by=ctx.actor_id,
        )
        if not written:
            observe_winner_conflict()
            LOGGER.warning(
                "winner_assignment_conflict",
                extra={"tenant_id": ctx.tenant_id, "quote_id": quote.id, "quote_item_id": assignment.quote_item_id},
            )
            return False
        self._after_assignment(db, ctx, quote, assignment, metric_reason="lowest_price", previous_supplier_id=None)
        return True

    def resolve_tie(
        self,
        db,
        ctx: TenantContext,
        item_id: int,
        supplier_id: int,
        *,
        expected_response_id: int | None = _UNSET,
    ) -> WinnerAssignment:
        quote, item = self._load_item(db, ctx, item_id)
        require_action("cotacao", quote.status, "assign_winner")
        group = self._tie_group_or_fail(quote, item, supplier_id)
        candidate = group.candidate(supplier_id)
        expected = item.winner_response_id if expected_response_id is _UNSET else expected_response_id
        return self._overwrite(
            db,
            ctx,
            quote,
            item,
            supplier_id=candidate.supplier_id,
            response_id=candidate.response_id,
            reason="lowest_price",
            metric_reason="lowest_price",
            source="tie_break",
            expected_response_id=expected,
        )

    def set_winner_manually(
        self,
        db,
        ctx: TenantContext,
        item_id: int,
        supplier_id: int,
        reason_code: str,
        custom_reason: str | None = None,
        *,
        expected_response_id: int | None = _UNSET,
    ) -> WinnerAssignment:
        reason_code = str(reason_code or "").strip()
        if reason_code not in WINNER_REASONS:
            raise ValidationError(
                code="winner_reason_invalid",
                payload={"reason": reason_code, "allowed_reasons": list(WINNER_REASONS)},
            )
        quote, item = self._load_item(db, ctx, item_id)
        require_action("cotacao", quote.status, "assign_winner")

        response = item.response_for_supplier(int(supplier_id))
        if response is None:
            raise NoResponseFound(payload={"quote_item_id": item.id, "supplier_id": int(supplier_id)})

        stored_reason = reason_code
        custom_text = str(custom_reason or "").strip()
        if reason_code == "manual" and custom_text:
            stored_reason = custom_text

        expected = item.winner_response_id if expected_response_id is _UNSET else expected_response_id
        return self._overwrite(
            db,
            ctx,
            quote,
            item,
            supplier_id=response.supplier_id,
            response_id=response.id,
            reason=stored_reason,
            metric_reason=reason_code,
            source="manual",
            expected_response_id=expected,
        )

    def winners_summary(self, db, ctx: TenantContext, quote_id: int) -> Dict[str, Any]:
        quote = self.load_quote(db, ctx, quote_id)
        by_supplier: Dict[int, Dict[str, Any]] = {}
        items_with_winners = 0
        total_value = Decimal("0")
        for item in ordered_items(quote):
            if not item.has_winner:
                continue
            items_with_winners += 1
            response = item.response_by_id(item.winner_response_id)
            qty = effective_qty(item)
            entry = by_supplier.setdefault(
                int(item.winner_supplier_id),
                {
                    "supplier_id": int(item.winner_supplier_id),
                    "supplier_name": quote.supplier_name(item.winner_supplier_id),
                    "items": 0,
                    "total_value": Decimal("0"),
                    "tiered_total_value": Decimal("0"),
                },
            )
            entry["items"] += 1
            if response is None or response.price is None:
                continue
            line_value = quantize_money(response.price * qty)
            tier_price = price_for_quantity(response, qty) or response.price
            entry["total_value"] += line_value
            entry["tiered_total_value"] += quantize_money(tier_price * qty)
            total_value += line_value

        suppliers = []
        for entry in by_supplier.values():
            suppliers.append(
                entry
                | {
                    "total_value": str(quantize_money(entry["total_value"])),
                    "tiered_total_value": str(quantize_money(entry["tiered_total_value"])),
                }
            )
        total_items = len(quote.items)
        return {
            "quote_id": quote.id,
            "items_with_winners": items_with_winners,
            "total_items": total_items,
            "complete": total_items > 0 and items_with_winners == total_items,
            "total_value": str(quantize_money(total_value)),
            "suppliers": suppliers,
        }

    @staticmethod
    def _tie_group_or_fail(quote: Quote, item: QuoteItem, supplier_id: int) -> TieGroup:
        group = tie_group_for_item(quote, item)
        if group is None:
            raise InvalidSelection(
                code="no_tie_for_item",
                payload={"quote_item_id": item.id, "supplier_id": supplier_id},
            )
        if group.candidate(supplier_id) is None:
            raise InvalidSelection(
                payload={
                    "quote_item_id": item.id,
                    "supplier_id": supplier_id,
                    "tied_supplier_ids": group.supplier_ids,
                },
            )
        return group

    def _overwrite(
        self,
        db,
        ctx: TenantContext,
        quote: Quote,
        item: QuoteItem,
        *,
        supplier_id: int,
        response_id: int,
        reason: str,
        metric_reason: str,
        source: str,
        expected_response_id: int | None,
    ) -> WinnerAssignment:
        written = QuoteRepository(context=ctx).replace_winner(
            db,
            item_id=item.id,
            expected_response_id=expected_response_id,
            supplier_id=supplier_id,
            response_id=response_id,
            reason=reason,
            set_by=ctx.actor_id,
        )
        if not written:
            observe_winner_conflict()
            LOGGER.warning(
                "winner_assignment_conflict",
                extra={
                    "tenant_id": ctx.tenant_id,
                    "quote_id": quote.id,
                    "quote_item_id": item.id,
                    "expected_response_id": expected_response_id,
                },
            )
            raise ConcurrencyConflict(payload={"quote_item_id": item.id})

        assignment = WinnerAssignment(
            quote_item_id=item.id,
            supplier_id=supplier_id,
            response_id=response_id,
            reason=reason,
            source=source,
            set_by=ctx.actor_id,
        )
        self._after_assignment(
            db,
            ctx,
            quote,
            assignment,
            metric_reason=metric_reason,
            previous_supplier_id=item.winner_supplier_id,
        )
        return assignment

    def _after_assignment(
        self,
        db,
        ctx: TenantContext,
        quote: Quote,
        assignment: WinnerAssignment,
        *,
        metric_reason: str,
        previous_supplier_id: int | None,
    ) -> None:
        StatusEventRepository(context=ctx).add_event(
            db,
            entity="quote_item",
            entity_id=assignment.quote_item_id,
            from_status=None if previous_supplier_id is None else f"supplier:{previous_supplier_id}",
            to_status=f"supplier:{assignment.supplier_id}",
            reason=assignment.reason,
            actor_id=ctx.actor_id,
        )
        observe_winner_assigned(assignment.source, metric_reason)
        LOGGER.info(
            "winner_assigned",
            extra={
                "tenant_id": ctx.tenant_id,
                "quote_id": quote.id,
                "quote_item_id": assignment.quote_item_id,
                "supplier_id": assignment.supplier_id,
                "response_id": assignment.response_id,
                "winner_source": assignment.source,
                "winner_reason": metric_reason,
            },
        )
        self.event_bus.publish(
            WinnerAssigned(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.actor_id,
                quote_id=quote.id,
                quote_item_id=assignment.quote_item_id,
                supplier_id=assignment.supplier_id,
                response_id=assignment.response_id,
                reason=assignment.reason,
                source=assignment.source,
            )
        )
