import unittest
from decimal import Decimal

from tests.helpers.temp_db import TempDbSandbox


HEADERS = {"X-Tenant-Id": "tenant-api", "X-Actor-Id": "comprador-1"}


class QuoteRoutesTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="quote_routes")
        self.app = self._temp_db.build_app()
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def _post(self, path: str, payload: dict | None = None, headers: dict | None = None):
        return self.client.post(path, json=payload or {}, headers=headers or HEADERS)

    def _put(self, path: str, payload: dict):
        return self.client.put(path, json=payload, headers=HEADERS)

    def _get(self, path: str, headers: dict | None = None):
        return self.client.get(path, headers=headers or HEADERS)

    def _build_scenario(self) -> dict:
        supplier_a = self._post("/api/suppliers", {"name": "Fornecedor A"}).get_json()["id"]
        supplier_b = self._post("/api/suppliers", {"name": "Fornecedor B"}).get_json()["id"]
        parafuso = self._post("/api/products", {"name": "Parafuso"}).get_json()["id"]
        porca = self._post("/api/products", {"name": "Porca"}).get_json()["id"]

        created = self._post("/api/quotes", {"title": "Cotacao de fixadores"})
        self.assertEqual(created.status_code, 201)
        quote_id = created.get_json()["id"]

        item_1 = self._post(f"/api/quotes/{quote_id}/items", {"product_id": parafuso}).get_json()["id"]
        item_2 = self._post(f"/api/quotes/{quote_id}/items", {"product_id": porca}).get_json()["id"]
        invite_a = self._post(f"/api/quotes/{quote_id}/suppliers", {"supplier_id": supplier_a})
        self.assertEqual(invite_a.status_code, 201)
        invite_b = self._post(f"/api/quotes/{quote_id}/suppliers", {"supplier_id": supplier_b})
        self.assertEqual(self._post(f"/api/quotes/{quote_id}/open").status_code, 200)

        qs_a = invite_a.get_json()["id"]
        qs_b = invite_b.get_json()["id"]
        base = f"/api/quotes/{quote_id}/suppliers"
        self.assertEqual(self._put(f"{base}/{qs_a}/responses/{item_1}", {"price": "100", "delivery_days": 5}).status_code, 200)
        self._put(f"{base}/{qs_b}/responses/{item_1}", {"price": "120", "delivery_days": 3})
        self._put(f"{base}/{qs_a}/responses/{item_2}", {"price": "55"})
        self._put(f"{base}/{qs_b}/responses/{item_2}", {"price": "50", "delivery_days": 2})

        return {
            "quote_id": quote_id,
            "items": [item_1, item_2],
            "suppliers": {"A": supplier_a, "B": supplier_b},
            "invitations": {"A": qs_a, "B": qs_b},
        }

    def test_quote_to_purchase_orders(self) -> None:
        scenario = self._build_scenario()
        quote_id = scenario["quote_id"]

        lowest = self._get(f"/api/quotes/{quote_id}/items/{scenario['items'][0]}/lowest-price").get_json()
        self.assertEqual(Decimal(lowest["lowest_price"]), Decimal("100"))
        self.assertEqual(lowest["supplier_ids"], [scenario["suppliers"]["A"]])

        auto = self._post(f"/api/quotes/{quote_id}/winners/auto-select")
        self.assertEqual(auto.status_code, 200)
        self.assertEqual(auto.get_json()["assigned"], 2)

        validation = self._get(f"/api/quotes/{quote_id}/purchase-orders/validation").get_json()
        self.assertTrue(validation["valid"])
        self.assertTrue(validation["complete"])

        generated = self._post(f"/api/quotes/{quote_id}/purchase-orders")
        self.assertEqual(generated.status_code, 201)
        body = generated.get_json()
        self.assertTrue(body["success"])
        totals = {po["supplier_id"]: Decimal(po["total_amount"]) for po in body["purchase_orders"]}
        self.assertEqual(totals, {
            scenario["suppliers"]["A"]: Decimal("100.00"),
            scenario["suppliers"]["B"]: Decimal("50.00"),
        })

        po_id = body["purchase_orders"][0]["po_id"]
        detail = self._get(f"/api/purchase-orders/{po_id}").get_json()
        self.assertEqual(detail["quote_id"], quote_id)
        self.assertEqual(len(detail["items"]), 1)

        listed = self._get(f"/api/quotes/{quote_id}/purchase-orders").get_json()["purchase_orders"]
        self.assertEqual(sorted(order["total_amount"] for order in listed), ["100.00", "50.00"])
        self.assertEqual({order["status"] for order in listed}, {"draft"})

        again = self._post(f"/api/quotes/{quote_id}/purchase-orders")
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"], "purchase_orders_already_generated")

    def test_manual_winner_and_summary(self) -> None:
        scenario = self._build_scenario()
        quote_id = scenario["quote_id"]
        item_1 = scenario["items"][0]

        response = self._put(
            f"/api/quotes/{quote_id}/items/{item_1}/winner",
            {"supplier_id": scenario["suppliers"]["B"], "reason": "best_delivery"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["reason"], "best_delivery")

        summary = self._get(f"/api/quotes/{quote_id}/winners/summary").get_json()
        self.assertEqual(summary["items_with_winners"], 1)
        self.assertFalse(summary["complete"])
        self.assertEqual(Decimal(summary["total_value"]), Decimal("120.00"))

        # Escrita condicional perde quando o vencedor ja mudou.
        stale = self._put(
            f"/api/quotes/{quote_id}/items/{item_1}/winner",
            {"supplier_id": scenario["suppliers"]["A"], "reason": "negotiated", "expected_response_id": None},
        )
        self.assertEqual(stale.status_code, 409)
        self.assertEqual(stale.get_json()["error"], "already_decided")

    def test_ties_listing_and_tie_break(self) -> None:
        scenario = self._build_scenario()
        quote_id = scenario["quote_id"]
        item_2 = scenario["items"][1]
        base = f"/api/quotes/{quote_id}/suppliers"
        self._put(f"{base}/{scenario['invitations']['A']}/responses/{item_2}", {"price": "50"})

        ties = self._get(f"/api/quotes/{quote_id}/ties?only_undecided=1").get_json()["ties"]
        self.assertEqual(len(ties), 1)
        self.assertEqual(ties[0]["quote_item_id"], item_2)
        self.assertFalse(ties[0]["decided"])

        outsider = self._post(
            f"/api/quotes/{quote_id}/items/{scenario['items'][0]}/tie-break",
            {"supplier_id": scenario["suppliers"]["B"]},
        )
        self.assertEqual(outsider.status_code, 400)
        self.assertEqual(outsider.get_json()["error"], "no_tie_for_item")

        resolved = self._post(
            f"/api/quotes/{quote_id}/items/{item_2}/tie-break",
            {"supplier_id": scenario["suppliers"]["A"]},
        )
        self.assertEqual(resolved.status_code, 200)
        self.assertEqual(resolved.get_json()["source"], "tie_break")
        self.assertEqual(self._get(f"/api/quotes/{quote_id}/ties?only_undecided=true").get_json()["ties"], [])

    def test_close_requires_tie_choices(self) -> None:
        scenario = self._build_scenario()
        quote_id = scenario["quote_id"]
        item_2 = scenario["items"][1]
        base = f"/api/quotes/{quote_id}/suppliers"
        self._put(f"{base}/{scenario['invitations']['A']}/responses/{item_2}", {"price": "50"})

        refused = self._post(f"/api/quotes/{quote_id}/close")
        self.assertEqual(refused.status_code, 400)
        self.assertEqual(refused.get_json()["error"], "unresolved_ties")

        closed = self._post(
            f"/api/quotes/{quote_id}/close",
            {"tie_choices": [{"quote_item_id": item_2, "supplier_id": scenario["suppliers"]["B"]}]},
        )
        self.assertEqual(closed.status_code, 200)
        self.assertEqual(closed.get_json()["status"], "closed")

        bad = self._post(f"/api/quotes/{quote_id}/winners/auto-select", {"tie_choices": "B"})
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(bad.get_json()["error"], "invalid_selection")

    def test_error_payload_shape(self) -> None:
        missing = self._get("/api/quotes/9999")
        self.assertEqual(missing.status_code, 404)
        body = missing.get_json()
        self.assertEqual(body["error"], "quote_not_found")
        self.assertTrue(body["message"])
        self.assertEqual(body["request_id"], missing.headers["X-Request-Id"])

        invalid = self._post("/api/quotes", {"title": "   "})
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.get_json()["error"], "title_required")

    def test_other_tenant_cannot_see_quote(self) -> None:
        scenario = self._build_scenario()
        other = {"X-Tenant-Id": "tenant-outro"}
        response = self._get(f"/api/quotes/{scenario['quote_id']}", headers=other)
        self.assertEqual(response.status_code, 404)

        generated = self._post(f"/api/quotes/{scenario['quote_id']}/purchase-orders", headers=other)
        self.assertEqual(generated.status_code, 404)

    def test_status_gate_on_draft_quote(self) -> None:
        quote_id = self._post("/api/quotes", {"title": "Rascunho"}).get_json()["id"]
        response = self._post(f"/api/quotes/{quote_id}/winners/auto-select")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["error"], "action_not_allowed_for_status")

        cancelled = self._post(f"/api/quotes/{quote_id}/cancel")
        self.assertEqual(cancelled.get_json()["status"], "cancelled")

        deleted = self.client.delete(f"/api/quotes/{quote_id}", headers=HEADERS)
        self.assertTrue(deleted.get_json()["deleted"])
        self.assertEqual(self._get(f"/api/quotes/{quote_id}").status_code, 404)

    def test_quote_detail_exposes_flow(self) -> None:
        scenario = self._build_scenario()
        detail = self._get(f"/api/quotes/{scenario['quote_id']}").get_json()
        self.assertEqual(detail["status"], "open")
        self.assertIn("auto_select_winners", detail["flow"]["allowed_actions"])
        self.assertEqual(len(detail["items"]), 2)
        self.assertEqual(detail["process_steps"][0], {"key": "cotacao", "label": "Cotacao", "state": "current"})
        self.assertEqual(detail["flow"]["primary_action_label"], "Encerrar cotacao")


if __name__ == "__main__":
    unittest.main()
