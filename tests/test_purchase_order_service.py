import unittest
from decimal import Decimal

from app.contexts.purchasing.application.service import PurchaseOrderService
from app.core import EventBus, PurchaseOrderStatusChanged
from app.db import close_db, get_db
from app.domain.contracts import (
    ChargesInput,
    PurchaseOrderCreateInput,
    PurchaseOrderItemInput,
    PurchaseOrderItemUpdateInput,
)
from app.errors import NotFoundError, ValidationError
from tests.helpers.quote_fixtures import QuoteFixture
from tests.helpers.temp_db import TempDbSandbox


class PurchaseOrderServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="po_service")
        self.app = self._temp_db.build_app()
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.fx = QuoteFixture()
        self.bus = EventBus()
        self.service = PurchaseOrderService(event_bus=self.bus)
        self.supplier_id = self.fx.supplier("Fornecedor Manual")
        self.product_id = self.fx.product("Cabo 2,5mm")

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def _create_order(self) -> dict:
        return self.service.create_manual(
            get_db(),
            self.fx.ctx,
            PurchaseOrderCreateInput.from_payload({"supplier_id": self.supplier_id, "notes": "Pedido avulso"}),
        )

    def _add_line(self, po_id: int, qty, unit_price) -> dict:
        return self.service.add_item(
            get_db(),
            self.fx.ctx,
            po_id,
            PurchaseOrderItemInput.from_payload({"product_id": self.product_id, "qty": qty, "unit_price": unit_price}),
        )

    def test_manual_order_starts_as_draft_without_quote(self) -> None:
        order = self._create_order()
        self.assertEqual(order["status"], "draft")
        self.assertIsNone(order["quote_id"])
        self.assertRegex(order["po_number"], r"^PO-\d{8}-1000$")
        self.assertEqual(order["total_amount"], "0.00")

    def test_item_changes_recompute_totals(self) -> None:
        po_id = self._create_order()["id"]
        order = self._add_line(po_id, "3", "2.50")
        order = self._add_line(po_id, "1.5", "10")
        self.assertEqual(Decimal(order["subtotal"]), Decimal("22.50"))

        first_item_id = order["items"][0]["id"]
        order = self.service.update_item(
            get_db(),
            self.fx.ctx,
            po_id,
            first_item_id,
            PurchaseOrderItemUpdateInput.from_payload({"qty": "4"}),
        )
        self.assertEqual(Decimal(order["items"][0]["total_price"]), Decimal("10.00"))
        self.assertEqual(Decimal(order["subtotal"]), Decimal("25.00"))

        order = self.service.update_charges(
            get_db(),
            self.fx.ctx,
            po_id,
            ChargesInput.from_payload({"tax_amount": "2.55", "shipping_cost": "12"}),
        )
        self.assertEqual(Decimal(order["total_amount"]), Decimal("39.55"))

        order = self.service.remove_item(get_db(), self.fx.ctx, po_id, first_item_id)
        self.assertEqual(len(order["items"]), 1)
        self.assertEqual(Decimal(order["subtotal"]), Decimal("15.00"))
        self.assertEqual(Decimal(order["total_amount"]), Decimal("29.55"))

    def test_status_flow_and_edit_lock(self) -> None:
        published = []
        self.bus.subscribe(PurchaseOrderStatusChanged, published.append)
        po_id = self._create_order()["id"]
        self._add_line(po_id, "1", "5")

        order = self.service.change_status(get_db(), self.fx.ctx, po_id, "sent")
        self.assertEqual(order["status"], "sent")
        self.assertEqual(order["flow"]["primary_action"], "confirm_order")

        with self.assertRaises(ValidationError) as ctx:
            self._add_line(po_id, "1", "5")
        self.assertEqual(ctx.exception.code, "action_not_allowed_for_status")

        with self.assertRaises(ValidationError) as ctx:
            self.service.change_status(get_db(), self.fx.ctx, po_id, "delivered")
        self.assertEqual(ctx.exception.code, "action_not_allowed_for_status")

        self.service.change_status(get_db(), self.fx.ctx, po_id, "confirmed")
        self.service.change_status(get_db(), self.fx.ctx, po_id, "delivered")
        self.assertEqual([(e.from_status, e.to_status) for e in published], [
            ("draft", "sent"),
            ("sent", "confirmed"),
            ("confirmed", "delivered"),
        ])

        detail = self.service.get_detail(get_db(), self.fx.ctx, po_id)
        self.assertEqual(detail["status"], "delivered")
        self.assertEqual(detail["history"][0]["to_status"], "delivered")

    def test_unknown_status_is_rejected(self) -> None:
        po_id = self._create_order()["id"]
        with self.assertRaises(ValidationError) as ctx:
            self.service.change_status(get_db(), self.fx.ctx, po_id, "archived")
        self.assertEqual(ctx.exception.code, "status_invalid")

    def test_missing_order_and_item(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.get_detail(get_db(), self.fx.ctx, 4242)
        po_id = self._create_order()["id"]
        with self.assertRaises(NotFoundError) as ctx:
            self.service.remove_item(get_db(), self.fx.ctx, po_id, 999)
        self.assertEqual(ctx.exception.code, "purchase_order_item_not_found")

    def test_invalid_inputs(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            PurchaseOrderItemInput.from_payload({"product_id": 1, "qty": "0", "unit_price": "1"})
        self.assertEqual(ctx.exception.code, "quantity_invalid")
        with self.assertRaises(ValidationError) as ctx:
            PurchaseOrderItemUpdateInput.from_payload({})
        self.assertEqual(ctx.exception.code, "no_changes")
        with self.assertRaises(ValidationError) as ctx:
            ChargesInput.from_payload({"tax_amount": "-1"})
        self.assertEqual(ctx.exception.code, "charges_invalid")


if __name__ == "__main__":
    unittest.main()
