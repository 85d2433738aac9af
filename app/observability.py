from __future__ import annotations

import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable

from flask import g, has_request_context, request


HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)
PO_GENERATION_BUCKETS_MS = (10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0)

# request_id fora de um request Flask (CLI, geracao disparada por teste).
_request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")

_RESERVED_LOG_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


def _clean(value: object, fallback: str = "unknown") -> str:
    return str(value or "").strip() or fallback


def set_log_request_id(request_id: str | None) -> None:
    _request_id_var.set(_clean(request_id, "n/a"))


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        bound = _clean(getattr(g, "request_id", ""), "")
        if bound:
            return bound
    return _clean(_request_id_var.get(), default or "n/a")


def ensure_request_id() -> str:
    request_id = _clean(getattr(g, "request_id", ""), "")
    if not request_id:
        request_id = _clean(request.headers.get("X-Request-Id"), "") or str(uuid.uuid4())
        g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


class JsonLogFormatter(logging.Formatter):
    """Uma linha JSON por registro; campos de `extra=` entram no topo do objeto."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            entry["request_id"] = current_request_id()
            entry["method"] = request.method
            entry["path"] = request.path
            if request.url_rule is not None:
                entry["route"] = request.url_rule.rule
        else:
            entry["request_id"] = _clean(getattr(record, "request_id", ""), "") or current_request_id()

        for key, value in vars(record).items():
            if key in _RESERVED_LOG_ATTRS or key.startswith("_") or key in entry or callable(value):
                continue
            entry[key] = value

        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not app.config.get("LOG_JSON", True):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).strip().upper(), logging.INFO))
    app.logger.handlers = []
    app.logger.propagate = True


class _Histogram:
    def __init__(self, limits: tuple[float, ...]) -> None:
        self.limits = limits
        self.count = 0
        self.total = 0.0
        self.hits = [0] * len(limits)

    def observe(self, value: float) -> None:
        value = max(0.0, float(value))
        self.count += 1
        self.total += value
        for index, limit in enumerate(self.limits):
            if value <= limit:
                self.hits[index] += 1

    def buckets(self) -> list[tuple[str, int]]:
        labelled = [(f"{limit:g}", hits) for limit, hits in zip(self.limits, self.hits)]
        return labelled + [("+Inf", self.count)]


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._http_requests: Dict[tuple[str, str, str], int] = {}
            self._http_latency: Dict[tuple[str, str], _Histogram] = {}
            self._http_latency_max: Dict[tuple[str, str], float] = {}
            self._events: Dict[str, int] = {}
            self._winners: Dict[tuple[str, str], int] = {}
            self._winner_conflicts = 0
            self._po_runs: Dict[str, int] = {}
            self._po_rollbacks = 0
            self._po_duration = _Histogram(PO_GENERATION_BUCKETS_MS)

    @staticmethod
    def _bump(counter: dict, key, amount: int = 1) -> None:
        counter[key] = counter.get(key, 0) + amount

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        key = (_clean(method, "GET").upper(), _clean(route))
        with self._lock:
            self._bump(self._http_requests, key + (str(int(status_code)),))
            if key not in self._http_latency:
                self._http_latency[key] = _Histogram(HTTP_DURATION_BUCKETS_MS)
            self._http_latency[key].observe(duration_ms)
            self._http_latency_max[key] = max(self._http_latency_max.get(key, 0.0), float(duration_ms))

    def observe_domain_event_emitted(self, event_type: str) -> None:
        with self._lock:
            self._bump(self._events, _clean(event_type))

    def observe_winner_assigned(self, source: str, reason: str) -> None:
        with self._lock:
            self._bump(self._winners, (_clean(source), _clean(reason)))

    def observe_winner_conflict(self, count: int = 1) -> None:
        with self._lock:
            self._winner_conflicts += max(0, int(count or 0))

    def observe_po_generation(self, result: str, duration_ms: float) -> None:
        with self._lock:
            self._bump(self._po_runs, _clean(result).lower())
            self._po_duration.observe(duration_ms)

    def observe_po_group_rollback(self, count: int = 1) -> None:
        with self._lock:
            self._po_rollbacks += max(0, int(count or 0))

    def snapshot(self) -> dict:
        with self._lock:
            per_route: Dict[tuple[str, str], list[int]] = {}
            for (method, route, status), value in self._http_requests.items():
                totals = per_route.setdefault((method, route), [0, 0])
                totals[0] += value
                if int(status) >= 400:
                    totals[1] += value
            by_route = [
                {
                    "route": f"{method} {route}",
                    "requests": requests_count,
                    "errors": errors,
                    "avg_latency_ms": round(self._http_latency[(method, route)].total / requests_count, 2),
                    "max_latency_ms": round(self._http_latency_max[(method, route)], 2),
                }
                for (method, route), (requests_count, errors) in per_route.items()
            ]
            by_route.sort(key=lambda row: row["requests"], reverse=True)
            return {
                "requests_total": sum(row["requests"] for row in by_route),
                "errors_total": sum(row["errors"] for row in by_route),
                "by_route": by_route[:40],
                "winners": {
                    "assigned_total": sum(self._winners.values()),
                    "conflict_total": self._winner_conflicts,
                },
                "purchase_orders": {
                    "generation_total": dict(sorted(self._po_runs.items())),
                    "group_rollback_total": self._po_rollbacks,
                },
            }

    def prometheus_lines(self) -> list[str]:
        with self._lock:
            lines: list[str] = []
            _describe(lines, "http_request_total", "counter", "Total HTTP requests by method, route and status.")
            for (method, route, status), value in sorted(self._http_requests.items()):
                lines.append(_sample("http_request_total", value, method=method, route=route, status=status))

            _describe(lines, "http_request_duration_ms", "histogram", "HTTP request duration in milliseconds.")
            for (method, route), histogram in sorted(self._http_latency.items()):
                lines.extend(_histogram_samples("http_request_duration_ms", histogram, method=method, route=route))

            _describe(lines, "domain_event_emitted_total", "counter", "Domain events published on the event bus.")
            for event_type, value in sorted(self._events.items()):
                lines.append(_sample("domain_event_emitted_total", value, event_type=event_type))

            _describe(lines, "winner_assigned_total", "counter", "Winner assignments by source and reason.")
            for (source, reason), value in sorted(self._winners.items()):
                lines.append(_sample("winner_assigned_total", value, source=source, reason=reason))

            _describe(
                lines,
                "winner_conflict_total",
                "counter",
                "Conditional winner writes lost to a concurrent writer.",
            )
            lines.append(_sample("winner_conflict_total", self._winner_conflicts))

            _describe(lines, "po_generation_total", "counter", "Purchase order generation runs by result.")
            for result, value in sorted(self._po_runs.items()):
                lines.append(_sample("po_generation_total", value, result=result))

            _describe(lines, "po_group_rollback_total", "counter", "Supplier groups rolled back during generation.")
            lines.append(_sample("po_group_rollback_total", self._po_rollbacks))

            _describe(
                lines,
                "po_generation_duration_ms",
                "histogram",
                "Purchase order generation duration in milliseconds.",
            )
            lines.extend(_histogram_samples("po_generation_duration_ms", self._po_duration))
            return lines


def _escape_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _sample(name: str, value: int | float, **labels: object) -> str:
    if not labels:
        return f"{name} {value}"
    rendered = ",".join(f'{key}="{_escape_label(val)}"' for key, val in sorted(labels.items()))
    return f"{name}{{{rendered}}} {value}"


def _describe(lines: list[str], name: str, kind: str, help_text: str) -> None:
    lines.append(f"# HELP {name} {help_text}")
    lines.append(f"# TYPE {name} {kind}")


def _histogram_samples(name: str, histogram: _Histogram, **labels: object) -> Iterable[str]:
    for le, hits in histogram.buckets():
        yield _sample(f"{name}_bucket", hits, **labels, le=le)
    yield _sample(f"{name}_sum", histogram.total, **labels)
    yield _sample(f"{name}_count", histogram.count, **labels)


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = getattr(g, "_request_started_at", None)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, response.status_code, elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def prometheus_metrics_text() -> str:
    return "\n".join(_METRICS.prometheus_lines()) + "\n"


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_domain_event_emitted(event_type)


def observe_winner_assigned(source: str, reason: str) -> None:
    _METRICS.observe_winner_assigned(source, reason)


def observe_winner_conflict(count: int = 1) -> None:
    _METRICS.observe_winner_conflict(count)


def observe_po_generation(result: str, duration_ms: float) -> None:
    _METRICS.observe_po_generation(result, duration_ms)


def observe_po_group_rollback(count: int = 1) -> None:
    _METRICS.observe_po_group_rollback(count)


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)
