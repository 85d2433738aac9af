import re
import unittest
from decimal import Decimal

from app.contexts.purchasing.application.generator import AUTO_NOTE_TEMPLATE, PurchaseOrderGenerator
from app.contexts.purchasing.infrastructure.repositories import (
    GenerationRunRepository,
    PurchaseOrderRepository,
)
from app.core import PurchaseOrderGenerated
from app.db import close_db, get_db
from app.errors import ConcurrencyConflict, MissingResponseData, ValidationError
from app.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.quote_fixtures import QuoteFixture
from tests.helpers.temp_db import TempDbSandbox


def _failing_repository_factory(failing_supplier_ids):
    class FailingPurchaseOrderRepository(PurchaseOrderRepository):
        """Blows up while inserting items of selected suppliers."""

        def __init__(self, **kwargs) -> None:
            super().__init__(**kwargs)
            self._supplier_by_po = {}

        def create(self, db, **kwargs) -> int:
            po_id = super().create(db, **kwargs)
            self._supplier_by_po[po_id] = kwargs["supplier_id"]
            return po_id

        def add_item(self, db, **kwargs) -> int:
            item_id = super().add_item(db, **kwargs)
            if self._supplier_by_po.get(kwargs["po_id"]) in failing_supplier_ids:
                raise RuntimeError("disk full")
            return item_id

    return FailingPurchaseOrderRepository


class PurchaseOrderGenerationTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="po_generation")
        self.app = self._temp_db.build_app()
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.fx = QuoteFixture()
        self.published = []
        self.fx.bus.subscribe(PurchaseOrderGenerated, self.published.append)

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def _aggregation_quote(self):
        # A ganha X ($5 x 2), B ganha X ($3 x 1), C ganha Y ($10 x 1).
        handle = self.fx.open_quote(
            items=[("Item A", 2), ("Item B", 1), ("Item C", 1)],
            suppliers=["X", "Y"],
        )
        self.fx.respond(handle, "X", 0, "5")
        self.fx.respond(handle, "Y", 0, "6")
        self.fx.respond(handle, "X", 1, "3")
        self.fx.respond(handle, "Y", 1, "3.50")
        self.fx.respond(handle, "X", 2, "11")
        self.fx.respond(handle, "Y", 2, "10")
        self.fx.winners.auto_select_winners(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()
        return handle

    def _orders(self, quote_id: int):
        repository = PurchaseOrderRepository(context=self.fx.ctx)
        return [repository.load(get_db(), int(row["id"])) for row in repository.list_for_quote(get_db(), quote_id)]

    def test_one_order_per_supplier_with_totals(self) -> None:
        handle = self._aggregation_quote()

        result = self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()

        self.assertTrue(result.success)
        self.assertEqual(result.failures, ())
        by_supplier = {po.supplier_id: po for po in result.purchase_orders}
        x_po = by_supplier[handle.supplier_ids["X"]]
        y_po = by_supplier[handle.supplier_ids["Y"]]
        self.assertEqual((x_po.items_count, x_po.total_amount), (2, Decimal("13.00")))
        self.assertEqual((y_po.items_count, y_po.total_amount), (1, Decimal("10.00")))
        self.assertEqual(x_po.supplier_name, "X")
        self.assertEqual([po.supplier_id for po in result.purchase_orders], [handle.supplier_ids["X"], handle.supplier_ids["Y"]])

        orders = {order.supplier_id: order for order in self._orders(handle.quote_id)}
        x_order = orders[handle.supplier_ids["X"]]
        self.assertEqual(x_order.status, "draft")
        self.assertEqual(x_order.quote_id, handle.quote_id)
        self.assertEqual(x_order.notes, AUTO_NOTE_TEMPLATE.format(quote_id=handle.quote_id))
        self.assertEqual(x_order.subtotal, Decimal("13.00"))
        lines = sorted((item.qty, item.unit_price, item.total_price) for item in x_order.items)
        self.assertEqual(
            lines,
            [
                (Decimal("1"), Decimal("3"), Decimal("3.00")),
                (Decimal("2"), Decimal("5"), Decimal("10.00")),
            ],
        )
        first_line = next(item for item in x_order.items if item.quote_item_id == handle.item_ids[0])
        self.assertIsNotNone(first_line.quote_response_id)

        self.assertEqual(len(self.published), 1)
        self.assertEqual(set(self.published[0].purchase_order_ids), {x_po.po_id, y_po.po_id})
        self.assertEqual(metrics_snapshot()["purchase_orders"]["generation_total"], {"success": 1})

        revalidated = self.fx.generator.validate_for_generation(get_db(), self.fx.ctx, handle.quote_id)
        self.assertEqual(revalidated.items_with_winners, revalidated.total_items)
        self.assertTrue(revalidated.complete)

    def test_po_number_format_and_counter(self) -> None:
        handle = self._aggregation_quote()
        result = self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)

        numbers = [po.po_number for po in result.purchase_orders]
        for number in numbers:
            self.assertRegex(number, r"^PO-\d{8}-\d{4}$")
        counters = [int(re.split("-", number)[-1]) for number in numbers]
        self.assertEqual(counters, [1000, 1001])

    def test_failed_group_is_rolled_back_and_others_survive(self) -> None:
        handle = self._aggregation_quote()
        generator = PurchaseOrderGenerator(
            event_bus=self.fx.bus,
            order_repository_factory=_failing_repository_factory({handle.supplier_ids["X"]}),
        )

        result = generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()

        self.assertTrue(result.success)
        self.assertEqual([po.supplier_id for po in result.purchase_orders], [handle.supplier_ids["Y"]])
        self.assertEqual(result.missing_supplier_ids, [handle.supplier_ids["X"]])
        self.assertEqual(result.failures[0].error, "po_group_failed")
        self.assertEqual(result.failures[0].supplier_name, "X")

        orders = self._orders(handle.quote_id)
        self.assertEqual([order.supplier_id for order in orders], [handle.supplier_ids["Y"]])
        orphan_items = get_db().execute(
            "SELECT COUNT(*) AS total FROM purchase_order_items WHERE po_id NOT IN (SELECT id FROM purchase_orders)"
        ).fetchone()
        self.assertEqual(int(orphan_items["total"]), 0)
        self.assertEqual(metrics_snapshot()["purchase_orders"]["group_rollback_total"], 1)
        self.assertEqual(metrics_snapshot()["purchase_orders"]["generation_total"], {"partial": 1})

    def test_all_groups_failing_reports_failure_and_allows_retry(self) -> None:
        handle = self._aggregation_quote()
        generator = PurchaseOrderGenerator(
            event_bus=self.fx.bus,
            order_repository_factory=_failing_repository_factory(set(handle.supplier_ids.values())),
        )

        result = generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()

        self.assertFalse(result.success)
        self.assertEqual(len(result.failures), 2)
        self.assertEqual(self._orders(handle.quote_id), [])
        self.assertEqual(self.published, [])
        run = GenerationRunRepository(context=self.fx.ctx).get(get_db(), handle.quote_id)
        self.assertEqual(run["status"], "failed")

        retry = self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        self.assertTrue(retry.success)
        self.assertEqual(len(retry.purchase_orders), 2)

    def test_winner_without_price_fails_only_its_group(self) -> None:
        handle = self.fx.open_quote(items=[("Item 1", 1), ("Item 2", 1)], suppliers=["A", "B"])
        self.fx.respond(handle, "A", 0, "20")
        self.fx.respond(handle, "B", 1, None, notes="preco a combinar")
        self.fx.winners.auto_select_winners(get_db(), self.fx.ctx, handle.quote_id)
        self.fx.winners.set_winner_manually(
            get_db(), self.fx.ctx, handle.item_ids[1], handle.supplier_ids["B"], "preferred_supplier"
        )

        result = self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)

        self.assertTrue(result.success)
        self.assertEqual([po.supplier_id for po in result.purchase_orders], [handle.supplier_ids["A"]])
        self.assertEqual([(f.supplier_id, f.error) for f in result.failures], [(handle.supplier_ids["B"], "winner_price_missing")])
        self.assertEqual(len(self._orders(handle.quote_id)), 1)

    def test_failed_group_can_be_generated_after_fixing_data(self) -> None:
        handle = self.fx.open_quote(items=[("Item 1", 1), ("Item 2", 2)], suppliers=["A", "B"])
        self.fx.respond(handle, "A", 0, "20")
        self.fx.respond(handle, "B", 1, None, notes="preco a combinar")
        self.fx.winners.auto_select_winners(get_db(), self.fx.ctx, handle.quote_id)
        self.fx.winners.set_winner_manually(
            get_db(), self.fx.ctx, handle.item_ids[1], handle.supplier_ids["B"], "preferred_supplier"
        )
        first = self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()
        self.assertEqual(first.missing_supplier_ids, [handle.supplier_ids["B"]])
        runs = GenerationRunRepository(context=self.fx.ctx)
        self.assertEqual(runs.get(get_db(), handle.quote_id)["status"], "partial")

        self.fx.respond(handle, "B", 1, "15")
        second = self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()

        self.assertTrue(second.success)
        self.assertEqual(second.failures, ())
        self.assertEqual([po.supplier_id for po in second.purchase_orders], [handle.supplier_ids["B"]])
        self.assertEqual(second.purchase_orders[0].total_amount, Decimal("30.00"))
        self.assertEqual(
            sorted(order.supplier_id for order in self._orders(handle.quote_id)),
            sorted(handle.supplier_ids.values()),
        )
        self.assertEqual(runs.get(get_db(), handle.quote_id)["status"], "completed")

        with self.assertRaises(ConcurrencyConflict) as ctx:
            self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        self.assertEqual(ctx.exception.code, "purchase_orders_already_generated")

    def test_retry_after_rollback_only_creates_missing_orders(self) -> None:
        handle = self._aggregation_quote()
        failing = PurchaseOrderGenerator(
            event_bus=self.fx.bus,
            order_repository_factory=_failing_repository_factory({handle.supplier_ids["X"]}),
        )
        failing.generate(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()

        retry = self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()

        self.assertEqual([po.supplier_id for po in retry.purchase_orders], [handle.supplier_ids["X"]])
        self.assertEqual(retry.purchase_orders[0].items_count, 2)
        orders = self._orders(handle.quote_id)
        self.assertEqual(len(orders), 2)
        self.assertEqual(sum(len(order.items) for order in orders), 3)

    def test_second_generation_is_refused(self) -> None:
        handle = self._aggregation_quote()
        self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        get_db().commit()

        with self.assertRaises(ConcurrencyConflict) as ctx:
            self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)

        self.assertEqual(ctx.exception.code, "purchase_orders_already_generated")
        self.assertEqual(len(self._orders(handle.quote_id)), 2)

    def test_running_marker_blocks_concurrent_generation(self) -> None:
        handle = self._aggregation_quote()
        runs = GenerationRunRepository(context=self.fx.ctx)
        self.assertIsNone(runs.claim(get_db(), handle.quote_id, started_by="outra-sessao", stale_seconds=300))
        get_db().commit()

        with self.assertRaises(ConcurrencyConflict) as ctx:
            self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        self.assertEqual(ctx.exception.code, "po_generation_in_progress")
        self.assertEqual(self._orders(handle.quote_id), [])

    def test_missing_winner_response_aborts_before_writing(self) -> None:
        handle = self._aggregation_quote()
        get_db().execute(
            "UPDATE quote_items SET winner_response_id = ? WHERE id = ?",
            (987654, handle.item_ids[2]),
        )
        get_db().commit()

        with self.assertRaises(MissingResponseData) as ctx:
            self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)

        self.assertEqual(ctx.exception.payload["quote_item_ids"], [handle.item_ids[2]])
        self.assertTrue(ctx.exception.critical)
        self.assertEqual(self._orders(handle.quote_id), [])
        self.assertIsNone(GenerationRunRepository(context=self.fx.ctx).get(get_db(), handle.quote_id))

    def test_default_quantity_is_used_when_item_has_none(self) -> None:
        handle = self.fx.open_quote(items=[("Sem quantidade", None)], suppliers=["A"])
        self.fx.respond(handle, "A", 0, "7.25")
        self.fx.winners.auto_select_winners(get_db(), self.fx.ctx, handle.quote_id)

        result = self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)

        order = self._orders(handle.quote_id)[0]
        self.assertEqual(order.items[0].qty, Decimal("1"))
        self.assertEqual(result.purchase_orders[0].total_amount, Decimal("7.25"))

    def test_no_winner_items_is_a_validation_error(self) -> None:
        handle = self.fx.open_quote(items=[("Item", 1)], suppliers=["A"])
        with self.assertRaises(ValidationError) as ctx:
            self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        self.assertEqual(ctx.exception.code, "no_winner_items")

    def test_generation_requires_open_or_closed_quote(self) -> None:
        handle = self.fx.open_quote(items=[("Item", 1)], suppliers=["A"], open_it=False)
        with self.assertRaises(ValidationError) as ctx:
            self.fx.generator.generate(get_db(), self.fx.ctx, handle.quote_id)
        self.assertEqual(ctx.exception.code, "action_not_allowed_for_status")


class GenerationValidationTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="po_validation")
        self.app = self._temp_db.build_app()
        self._ctx = self.app.app_context()
        self._ctx.push()
        self.fx = QuoteFixture()

    def tearDown(self) -> None:
        close_db()
        self._ctx.pop()
        self._temp_db.cleanup()

    def test_quote_without_items(self) -> None:
        handle = self.fx.open_quote(items=[], suppliers=["A"])
        result = self.fx.generator.validate_for_generation(get_db(), self.fx.ctx, handle.quote_id)
        self.assertFalse(result.valid)
        self.assertEqual(result.message, "Cotacao nao possui itens.")

    def test_no_winners(self) -> None:
        handle = self.fx.open_quote(items=[("Item", 1)], suppliers=["A"])
        result = self.fx.generator.validate_for_generation(get_db(), self.fx.ctx, handle.quote_id)
        self.assertFalse(result.valid)
        self.assertEqual((result.items_with_winners, result.total_items), (0, 1))

    def test_partial_and_complete_winners(self) -> None:
        handle = self.fx.open_quote(items=[("Item 1", 1), ("Item 2", 1)], suppliers=["A"])
        self.fx.respond(handle, "A", 0, "10")
        self.fx.winners.auto_select_winners(get_db(), self.fx.ctx, handle.quote_id)

        partial = self.fx.generator.validate_for_generation(get_db(), self.fx.ctx, handle.quote_id)
        self.assertTrue(partial.valid)
        self.assertFalse(partial.complete)
        self.assertTrue(partial.message.startswith("1 de 2 itens tem vencedores"))

        self.fx.respond(handle, "A", 1, "12")
        self.fx.winners.auto_select_winners(get_db(), self.fx.ctx, handle.quote_id)
        complete = self.fx.generator.validate_for_generation(get_db(), self.fx.ctx, handle.quote_id)
        self.assertTrue(complete.complete)
        self.assertEqual(complete.message, "Todos os 2 itens tem vencedores selecionados.")


if __name__ == "__main__":
    unittest.main()
