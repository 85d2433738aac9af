import unittest
from unittest.mock import patch

from app.db import close_db
from app.errors import AppError, ConcurrencyConflict, MissingResponseData, NoResponseFound, NotFoundError
from app.routes import quote_routes
from app.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox


class AppErrorPayloadTest(unittest.TestCase):
    def test_payload_carries_code_message_and_request_id(self) -> None:
        error = NotFoundError(code="quote_not_found", payload={"quote_id": 9})
        payload = error.to_response_payload("req-123")

        self.assertEqual(payload["error"], "quote_not_found")
        self.assertEqual(payload["message"], error_message("quote_not_found"))
        self.assertEqual(payload["request_id"], "req-123")
        self.assertEqual(payload["quote_id"], 9)
        self.assertEqual(error.http_status, 404)
        self.assertFalse(error.critical)

    def test_error_kinds_map_to_status_codes(self) -> None:
        self.assertEqual(ConcurrencyConflict().http_status, 409)
        self.assertEqual(NoResponseFound().http_status, 422)
        self.assertEqual(MissingResponseData().http_status, 422)
        self.assertTrue(MissingResponseData().critical)

    def test_unknown_message_key_falls_back(self) -> None:
        error = AppError(code="codigo_inexistente")
        self.assertEqual(error.user_message(), error_message("unexpected_error"))


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = self._temp_db.build_app(PROPAGATE_EXCEPTIONS=False)
        self.client = self.app.test_client()
        self.headers = {"X-Tenant-Id": "tenant-error-api"}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_validation_error_for_invalid_flow_action(self) -> None:
        quote_id = self.client.post("/api/quotes", headers=self.headers, json={"title": "Rascunho"}).get_json()["id"]
        self.client.post(f"/api/quotes/{quote_id}/cancel", headers=self.headers)

        response = self.client.post(f"/api/quotes/{quote_id}/open", headers=self.headers)
        self.assertEqual(response.status_code, 409)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "action_not_allowed_for_status")
        self.assertEqual(payload.get("message"), error_message("action_not_allowed_for_status"))
        self.assertEqual(payload.get("allowed_actions"), ["view_history"])
        self.assertTrue((payload.get("request_id") or "").strip())

    def test_request_id_header_is_echoed(self) -> None:
        response = self.client.get("/api/quotes/777", headers=self.headers | {"X-Request-Id": "req-externo-1"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.headers["X-Request-Id"], "req-externo-1")
        self.assertEqual(response.get_json()["request_id"], "req-externo-1")

    def test_stack_trace_not_exposed_for_unhandled_error(self) -> None:
        with patch.object(
            quote_routes._QUOTE_SERVICE,
            "get_quote_detail",
            side_effect=RuntimeError("stack_secret_token"),
        ):
            response = self.client.get("/api/quotes/1", headers=self.headers)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("stack_secret_token", body)

    def test_http_errors_keep_werkzeug_status(self) -> None:
        response = self.client.get("/api/nao-existe", headers=self.headers)
        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":
    unittest.main()
