from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Tuple

from flask import current_app, has_app_context

from app.contexts.purchasing.domain.models import (
    GeneratedPO,
    GenerationFailure,
    GenerationResult,
    ValidationResult,
    line_total,
)
from app.contexts.purchasing.infrastructure.repositories import (
    GenerationRunRepository,
    PoNumberAllocator,
    PurchaseOrderRepository,
)
from app.contexts.quoting.application.winner_service import WinnerResolutionService, effective_qty
from app.contexts.quoting.domain.models import QuoteItem, Response
from app.contexts.quoting.domain.pricing import ordered_items
from app.contexts.quoting.infrastructure.repositories import ResponseRepository
from app.core import EventBus, PurchaseOrderGenerated, get_event_bus
from app.errors import ConcurrencyConflict, MissingResponseData, ValidationError
from app.infrastructure.repositories.status_events import StatusEventRepository
from app.observability import observe_po_generation, observe_po_group_rollback
from app.procurement.flow_policy import require_action
from app.tenant import TenantContext
from app.ui_strings import get_message


LOGGER = logging.getLogger("app")

AUTO_NOTE_TEMPLATE = "PO gerado automaticamente da cotacao #{quote_id}"


class GroupGenerationError(Exception):
    def __init__(self, code: str, **context) -> None:
        self.code = code
        self.context = context
        super().__init__(code)


def _setting(name: str, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


class PurchaseOrderGenerator:
    """Turns the winners of a quote into one draft purchase order per supplier."""

    def __init__(
        self,
        event_bus: EventBus | None = None,
        order_repository_factory: Callable[..., PurchaseOrderRepository] = PurchaseOrderRepository,
    ) -> None:
        self.event_bus = event_bus or get_event_bus()
        self.order_repository_factory = order_repository_factory

    def validate_for_generation(self, db, ctx: TenantContext, quote_id: int) -> ValidationResult:
        quote = WinnerResolutionService.load_quote(db, ctx, quote_id)
        total_items = len(quote.items)
        items_with_winners = sum(1 for item in quote.items if item.has_winner)

        if total_items == 0:
            return ValidationResult(
                valid=False,
                items_with_winners=0,
                total_items=0,
                message=get_message("generation", "quote_without_items"),
            )
        if items_with_winners == 0:
            return ValidationResult(
                valid=False,
                items_with_winners=0,
                total_items=total_items,
                message=get_message("generation", "no_winners"),
            )
        if items_with_winners < total_items:
            return ValidationResult(
                valid=True,
                items_with_winners=items_with_winners,
                total_items=total_items,
                message=get_message("generation", "partial_winners").format(
                    items_with_winners=items_with_winners,
                    total_items=total_items,
                ),
                complete=False,
            )
        return ValidationResult(
            valid=True,
            items_with_winners=items_with_winners,
            total_items=total_items,
            message=get_message("generation", "all_winners").format(total_items=total_items),
            complete=True,
        )

    def generate(self, db, ctx: TenantContext, quote_id: int) -> GenerationResult:
        started = time.perf_counter()
        quote = WinnerResolutionService.load_quote(db, ctx, quote_id)
        require_action("cotacao", quote.status, "generate_purchase_orders")

        winner_items = [
            item
            for item in ordered_items(quote)
            if item.winner_supplier_id is not None and item.winner_response_id is not None
        ]
        if not winner_items:
            raise ValidationError(code="no_winner_items", payload={"quote_id": quote.id})

        groups = self._group_by_supplier(db, ctx, quote.id, winner_items)

        runs = GenerationRunRepository(context=ctx)
        blocked = runs.claim(
            db,
            quote.id,
            started_by=ctx.actor_id,
            stale_seconds=int(_setting("PO_GENERATION_STALE_SECONDS", 300)),
        )
        if blocked == "completed":
            raise ConcurrencyConflict(code="purchase_orders_already_generated", payload={"quote_id": quote.id})
        if blocked is not None:
            raise ConcurrencyConflict(code="po_generation_in_progress", payload={"quote_id": quote.id})
        db.commit()

        generated: List[GeneratedPO] = []
        failures: List[GenerationFailure] = []
        already_ordered: set[int] = set()
        try:
            orders = self.order_repository_factory(context=ctx)
            # Rodada anterior parcial: itens que ja viraram pedido ficam de fora.
            already_ordered = orders.ordered_quote_item_ids(db, quote.id)
            pending = self._without_ordered_items(groups, already_ordered)
            if not pending:
                runs.finish(db, quote.id, status="completed")
                db.commit()
                raise ConcurrencyConflict(code="purchase_orders_already_generated", payload={"quote_id": quote.id})
            allocator = PoNumberAllocator(
                context=ctx,
                prefix=_setting("PO_NUMBER_PREFIX", "PO"),
                padding=int(_setting("PO_NUMBER_PADDING", 4)),
                start=int(_setting("PO_NUMBER_START", 1000)),
            )
            for supplier_id, entries in pending.items():
                supplier_name = quote.supplier_name(supplier_id)
                outcome = self._generate_group(db, ctx, orders, allocator, quote.id, supplier_id, supplier_name, entries)
                if isinstance(outcome, GeneratedPO):
                    generated.append(outcome)
                else:
                    failures.append(outcome)
        except ConcurrencyConflict:
            raise
        except Exception:
            runs.finish(db, quote.id, status="partial" if already_ordered else "failed")
            db.commit()
            observe_po_generation("error", (time.perf_counter() - started) * 1000.0)
            raise

        success = bool(generated)
        if not failures:
            run_status = "completed"
        elif generated or already_ordered:
            run_status = "partial"
        else:
            run_status = "failed"
        runs.finish(db, quote.id, status=run_status)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        outcome_label = "failed"
        if success:
            outcome_label = "partial" if failures else "success"
        observe_po_generation(outcome_label, elapsed_ms)

        log_extra = {
            "tenant_id": ctx.tenant_id,
            "quote_id": quote.id,
            "purchase_orders": [po.po_number for po in generated],
            "failed_supplier_ids": [failure.supplier_id for failure in failures],
            "duration_ms": round(elapsed_ms, 2),
        }
        if success:
            LOGGER.info("purchase_orders_generated", extra=log_extra)
            self.event_bus.publish(
                PurchaseOrderGenerated(
                    tenant_id=ctx.tenant_id,
                    actor_id=ctx.actor_id,
                    quote_id=quote.id,
                    purchase_order_ids=tuple(po.po_id for po in generated),
                    failed_supplier_ids=tuple(failure.supplier_id for failure in failures),
                )
            )
        else:
            LOGGER.error("purchase_order_generation_failed", extra=log_extra)

        return GenerationResult(success=success, purchase_orders=tuple(generated), failures=tuple(failures))

    @staticmethod
    def _without_ordered_items(
        groups: Dict[int, List[Tuple[QuoteItem, Response]]],
        ordered_item_ids: set[int],
    ) -> Dict[int, List[Tuple[QuoteItem, Response]]]:
        pending: Dict[int, List[Tuple[QuoteItem, Response]]] = {}
        for supplier_id, entries in groups.items():
            remaining = [(item, response) for item, response in entries if item.id not in ordered_item_ids]
            if remaining:
                pending[supplier_id] = remaining
        return pending

    def _group_by_supplier(
        self,
        db,
        ctx: TenantContext,
        quote_id: int,
        winner_items: List[QuoteItem],
    ) -> Dict[int, List[Tuple[QuoteItem, Response]]]:
        responses = ResponseRepository(context=ctx).get_many(db, [int(item.winner_response_id) for item in winner_items])

        missing: List[int] = []
        groups: Dict[int, List[Tuple[QuoteItem, Response]]] = {}
        for item in winner_items:
            response = responses.get(int(item.winner_response_id))
            if (
                response is None
                or response.quote_item_id != item.id
                or response.supplier_id != item.winner_supplier_id
            ):
                missing.append(item.id)
                continue
            groups.setdefault(int(item.winner_supplier_id), []).append((item, response))

        if missing:
            LOGGER.error(
                "winner_response_missing",
                extra={"tenant_id": ctx.tenant_id, "quote_id": quote_id, "quote_item_ids": missing},
            )
            raise MissingResponseData(payload={"quote_id": quote_id, "quote_item_ids": missing})
        return groups

    def _generate_group(
        self,
        db,
        ctx: TenantContext,
        orders: PurchaseOrderRepository,
        allocator: PoNumberAllocator,
        quote_id: int,
        supplier_id: int,
        supplier_name: str,
        entries: List[Tuple[QuoteItem, Response]],
    ) -> GeneratedPO | GenerationFailure:
        po_id: int | None = None
        try:
            po_number = allocator.next_number(db)
            po_id = orders.create(
                db,
                po_number=po_number,
                supplier_id=supplier_id,
                quote_id=quote_id,
                notes=AUTO_NOTE_TEMPLATE.format(quote_id=quote_id),
                created_by=ctx.actor_id,
            )
            for item, response in entries:
                if response.price is None:
                    raise GroupGenerationError("winner_price_missing", quote_item_id=item.id, response_id=response.id)
                qty = effective_qty(item)
                orders.add_item(
                    db,
                    po_id=po_id,
                    product_id=item.product_id,
                    qty=str(qty),
                    unit_price=str(response.price),
                    total_price=str(line_total(qty, response.price)),
                    package_id=item.package_id,
                    quote_item_id=item.id,
                    quote_response_id=response.id,
                    delivery_days=response.delivery_days,
                )
            totals = orders.recompute_totals(db, po_id)
            StatusEventRepository(context=ctx).add_event(
                db,
                entity="purchase_order",
                entity_id=po_id,
                from_status=None,
                to_status="draft",
                reason="po_generated_from_quote",
                actor_id=ctx.actor_id,
            )
        except GroupGenerationError as exc:
            self._rollback_group(db, orders, quote_id, supplier_id, po_id)
            LOGGER.warning(
                "po_group_rolled_back",
                extra={
                    "tenant_id": ctx.tenant_id,
                    "quote_id": quote_id,
                    "supplier_id": supplier_id,
                    "error_code": exc.code,
                    **exc.context,
                },
            )
            return GenerationFailure(supplier_id=supplier_id, supplier_name=supplier_name, error=exc.code)
        except Exception:  # noqa: BLE001
            self._rollback_group(db, orders, quote_id, supplier_id, po_id)
            LOGGER.exception(
                "po_group_rolled_back",
                extra={
                    "tenant_id": ctx.tenant_id,
                    "quote_id": quote_id,
                    "supplier_id": supplier_id,
                    "error_code": "po_group_failed",
                },
            )
            return GenerationFailure(supplier_id=supplier_id, supplier_name=supplier_name, error="po_group_failed")

        return GeneratedPO(
            po_id=po_id,
            po_number=po_number,
            supplier_id=supplier_id,
            supplier_name=supplier_name,
            items_count=len(entries),
            total_amount=totals.total_amount,
        )

    @staticmethod
    def _rollback_group(db, orders: PurchaseOrderRepository, quote_id: int, supplier_id: int, po_id: int | None) -> None:
        observe_po_group_rollback()
        if po_id is None:
            return
        # Compensacao: remove o pedido e os itens ja gravados deste fornecedor.
        orders.delete(db, po_id)
        LOGGER.info(
            "po_group_compensated",
            extra={"quote_id": quote_id, "supplier_id": supplier_id, "purchase_order_id": po_id},
        )
