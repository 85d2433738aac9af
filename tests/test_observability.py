import json
import logging
import unittest

from app import create_app
from app.config import Config
from app.core import QuoteClosed, get_event_bus, reset_event_bus_for_tests
from app.db import close_db
from app.observability import (
    JsonLogFormatter,
    metrics_snapshot,
    observe_po_generation,
    reset_metrics_for_tests,
    set_log_request_id,
)
from tests.helpers.temp_db import TempDbSandbox


class _MetricsConfig(Config):
    DB_AUTO_INIT = False


class ObservabilityPrometheusTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="observability_metrics")
        cfg = self._temp_db.make_config(_MetricsConfig, TESTING=False)
        self.app = create_app(cfg)
        self.client = self.app.test_client()
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()
        reset_event_bus_for_tests()

    def test_metrics_endpoint_exposes_prometheus_metrics(self) -> None:
        self.client.get("/api/unknown")
        get_event_bus().publish(QuoteClosed(tenant_id="tenant-metrics", quote_id=99))
        observe_po_generation("partial", 42.0)

        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)
        content_type = response.headers.get("Content-Type") or ""
        self.assertIn("text/plain", content_type)

        payload = response.get_data(as_text=True)
        self.assertIn("http_request_total", payload)
        self.assertIn("http_request_duration_ms_bucket", payload)
        self.assertIn("winner_assigned_total", payload)
        self.assertIn("winner_conflict_total 0", payload)
        self.assertIn('po_generation_total{result="partial"} 1', payload)
        self.assertIn("po_group_rollback_total", payload)
        self.assertIn("po_generation_duration_ms_bucket", payload)
        self.assertIn('event_type="QuoteClosed"', payload)

    def test_http_requests_are_counted(self) -> None:
        self.client.get("/api/unknown")
        snapshot = metrics_snapshot()
        self.assertEqual(snapshot["requests_total"], 1)
        self.assertEqual(snapshot["errors_total"], 1)

    def test_log_formatter_includes_request_id_outside_request_context(self) -> None:
        set_log_request_id("worker-req-123")
        formatter = JsonLogFormatter()
        record = logging.LogRecord(
            name="app",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="po_generation_finished",
            args=(),
            exc_info=None,
        )
        record.quote_id = 12
        parsed = json.loads(formatter.format(record))
        self.assertEqual(parsed.get("request_id"), "worker-req-123")
        self.assertEqual(parsed.get("message"), "po_generation_finished")
        self.assertEqual(parsed.get("quote_id"), 12)

    def test_health_reports_database(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.get_json() or {}
        self.assertEqual(payload.get("status"), "ok")
        self.assertEqual(payload.get("db"), "sqlite")
        self.assertFalse(payload.get("schema_ready"))
        self.assertIn("http", payload.get("metrics") or {})


if __name__ == "__main__":
    unittest.main()
