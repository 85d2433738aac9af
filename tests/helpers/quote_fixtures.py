from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from app.contexts.purchasing.application.generator import PurchaseOrderGenerator
from app.contexts.quoting.application.quote_service import QuoteService
from app.contexts.quoting.application.response_service import SupplierResponseService
from app.contexts.quoting.application.winner_service import WinnerResolutionService
from app.core import EventBus
from app.db import get_db
from app.domain.contracts import QuoteCreateInput, QuoteItemInput, SupplierResponseInput
from app.tenant import TenantContext


@dataclass
class QuoteHandle:
    quote_id: int
    item_ids: List[int] = field(default_factory=list)
    supplier_ids: Dict[str, int] = field(default_factory=dict)
    invitations: Dict[str, int] = field(default_factory=dict)


class QuoteFixture:
    """Builds quotes through the services. Must be used inside an app context."""

    def __init__(self, tenant_id: str = "tenant-test", actor_id: str = "buyer-1", event_bus: EventBus | None = None):
        self.ctx = TenantContext(tenant_id=tenant_id, actor_id=actor_id)
        self.bus = event_bus or EventBus()
        self.winners = WinnerResolutionService(event_bus=self.bus)
        self.quotes = QuoteService(winner_service=self.winners, event_bus=self.bus)
        self.responses = SupplierResponseService(event_bus=self.bus)
        self.generator = PurchaseOrderGenerator(event_bus=self.bus)

    @property
    def db(self):
        return get_db()

    def supplier(self, name: str) -> int:
        return int(self.quotes.create_supplier(self.db, self.ctx, name=name)["id"])

    def product(self, name: str) -> int:
        return int(self.quotes.create_product(self.db, self.ctx, name=name)["id"])

    def open_quote(
        self,
        items: Sequence[Tuple[str, object]],
        suppliers: Sequence[str],
        *,
        title: str = "Cotacao de teste",
        deadline_at: str | None = None,
        open_it: bool = True,
    ) -> QuoteHandle:
        """``items`` is a list of (product name, requested qty or None)."""
        db = self.db
        created = self.quotes.create_quote(
            db,
            self.ctx,
            QuoteCreateInput.from_payload({"title": title, "deadline_at": deadline_at}),
        )
        handle = QuoteHandle(quote_id=int(created["id"]))
        for product_name, qty in items:
            item = self.quotes.add_item(
                db,
                self.ctx,
                handle.quote_id,
                QuoteItemInput.from_payload({"product_id": self.product(product_name), "requested_qty": qty}),
            )
            handle.item_ids.append(int(item["id"]))
        for name in suppliers:
            supplier_id = self.supplier(name)
            invitation = self.quotes.invite_supplier(db, self.ctx, handle.quote_id, supplier_id)
            handle.supplier_ids[name] = supplier_id
            handle.invitations[name] = int(invitation["id"])
        if open_it:
            self.quotes.open_quote(db, self.ctx, handle.quote_id)
        db.commit()
        return handle

    def respond(self, handle: QuoteHandle, supplier: str, item_index: int, price, **extra) -> int:
        payload = {"price": price} | extra
        saved = self.responses.save_response(
            self.db,
            self.ctx,
            handle.quote_id,
            handle.invitations[supplier],
            handle.item_ids[item_index],
            SupplierResponseInput.from_payload(payload),
        )
        self.db.commit()
        return int(saved["id"])

    def item(self, handle: QuoteHandle, item_index: int):
        quote = self.winners.load_quote(self.db, self.ctx, handle.quote_id)
        return quote.item(handle.item_ids[item_index])
