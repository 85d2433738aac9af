import os

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from app.config import Config
from app.db import close_db, get_read_db, init_db, table_exists
from app.db_migrations import register_db_cli
from app.errors import AppError, SystemError
from app.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)
from app.tenant import load_tenant_from_request


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    if app.config.get("DATABASE_DIR"):
        os.makedirs(app.config["DATABASE_DIR"], exist_ok=True)

    _register_request_hooks(app)
    _register_error_handlers(app)
    _register_blueprints(app)
    _register_ops_routes(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    app.teardown_appcontext(close_db)
    return app


def _maybe_init_schema(app: Flask) -> None:
    # Testes sempre criam o schema; fora deles so com DB_AUTO_INIT em development.
    if not app.testing:
        if not app.config.get("DB_AUTO_INIT"):
            return
        flask_env = (os.environ.get("FLASK_ENV") or "development").strip().lower()
        if flask_env != "development":
            app.logger.warning("db_auto_init_ignored", extra={"flask_env": flask_env})
            return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from app.routes.purchase_order_routes import purchase_orders_bp
    from app.routes.quote_routes import quotes_bp

    app.register_blueprint(quotes_bp)
    app.register_blueprint(purchase_orders_bp)


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _start_request() -> None:
        ensure_request_id()
        mark_request_start()
        load_tenant_from_request()

    @app.after_request
    def _finish_request(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)


def _error_response(app: Flask, error: AppError, *, log_event: str):
    request_id = ensure_request_id()
    log = app.logger.error if error.critical else app.logger.warning
    log(
        log_event,
        extra={
            "request_id": request_id,
            "error_code": error.code,
            "http_status": error.http_status,
            "details": error.details,
            "request_path": request.path,
            "http_method": request.method,
        },
        exc_info=error.critical,
    )
    return jsonify(error.to_response_payload(request_id)), error.http_status


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        return _error_response(app, exc, log_event="application_error")

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        # Detalhe fica no log; o cliente recebe so a mensagem generica.
        mapped = SystemError(code="unexpected_error", message_key="unexpected_error", details=str(exc))
        return _error_response(app, mapped, log_event="unexpected_exception")


def _register_ops_routes(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = str(app.config.get("DB_PATH") or "")
        payload = {
            "status": "ok",
            "db": "postgres" if db_path.startswith("postgres") else "sqlite",
            "metrics": {"http": metrics_snapshot()},
        }
        try:
            db = get_read_db()
            db.execute("SELECT 1").fetchone()
            payload["schema_ready"] = table_exists(db, "quotes")
        except Exception:  # noqa: BLE001
            app.logger.exception("health_db_check_failed")
            payload["status"] = "degraded"
        return payload, 200

    @app.route("/metrics")
    def metrics():
        return Response(prometheus_metrics_text(), mimetype="text/plain; version=0.0.4")
