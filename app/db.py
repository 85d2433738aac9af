import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - psycopg2 so e exigido com DB_PATH postgres
    psycopg2 = None

from flask import current_app, g


class Database:
    """Conexao unica para SQLite e Postgres; o SQL dos repositorios usa sempre `?`."""

    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    @property
    def is_postgres(self) -> bool:
        return self.backend == "postgres"

    def execute(self, sql: str, params: Iterable | None = None):
        if not self.is_postgres:
            return self._conn.execute(sql, params or ())
        cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        if params:
            cursor.execute(sql.replace("?", "%s"), list(params))
        else:
            cursor.execute(sql)
        return cursor

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def connect(url: str) -> Database:
    if not url.lower().startswith("postgres"):
        connection = sqlite3.connect(url)
        connection.row_factory = sqlite3.Row
        return Database("sqlite", connection)
    if psycopg2 is None:
        raise RuntimeError("psycopg2 nao instalado; necessario para DB_PATH postgres.")
    connection = psycopg2.connect(url)
    connection.autocommit = True
    return Database("postgres", connection)


# Conexoes abertas por request, fechadas no teardown do app.
_CONNECTION_KEYS = ("db", "db_read")


def _request_connection(key: str, url: str) -> Database:
    if key not in g:
        setattr(g, key, connect(url))
    return getattr(g, key)


def get_db() -> Database:
    return _request_connection("db", current_app.config["DB_PATH"])


def get_read_db() -> Database:
    url = current_app.config.get("DATABASE_READ_URL") or current_app.config["DB_PATH"]
    return _request_connection("db_read", url)


def close_db(_error=None):
    for key in _CONNECTION_KEYS:
        connection = g.pop(key, None)
        if connection is not None:
            connection.close()


def init_db():
    db = get_db()
    create_schema(db)
    if not db.is_postgres:
        db.commit()


def create_schema(db) -> None:
    """Cria tabelas e indices (idempotente). Tambem usado pela migration inicial."""
    for statement in _schema_statements(_POSTGRES_TYPES if db.is_postgres else _SQLITE_TYPES):
        db.execute(statement)
    if db.is_postgres:
        _install_updated_at_triggers(db)


# Valores monetarios: TEXT no SQLite para preservar o decimal exato, NUMERIC no Postgres.
_SQLITE_TYPES = {
    "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "fk": "INTEGER",
    "price": "TEXT",
    "money": "TEXT",
    "qty": "TEXT",
    "ts": "TEXT",
    "now": "CURRENT_TIMESTAMP",
}

_POSTGRES_TYPES = {
    "pk": "BIGSERIAL PRIMARY KEY",
    "fk": "BIGINT",
    "price": "NUMERIC(12,4)",
    "money": "NUMERIC(12,2)",
    "qty": "NUMERIC(12,3)",
    "ts": "TIMESTAMPTZ",
    "now": "CURRENT_TIMESTAMP",
}


def _schema_statements(t: dict) -> List[str]:
    statements = [
        """
        CREATE TABLE IF NOT EXISTS tenants (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT {now}
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS suppliers (
            id {pk},
            name TEXT NOT NULL,
            email TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT {now},
            updated_at {ts} NOT NULL DEFAULT {now}
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS products (
            id {pk},
            name TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT {now}
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS quotes (
            id {pk},
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (
                status IN ('draft','open','closed','cancelled')
            ),
            deadline_at {ts},
            created_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT {now},
            updated_at {ts} NOT NULL DEFAULT {now}
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS quote_items (
            id {pk},
            quote_id {fk} NOT NULL,
            product_id {fk} NOT NULL,
            package_id {fk},
            package_multiplier {qty},
            requested_qty {qty},
            sort_order INTEGER NOT NULL DEFAULT 0,
            notes TEXT,
            winner_supplier_id {fk},
            winner_response_id {fk},
            winner_reason TEXT,
            winner_set_at {ts},
            winner_set_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT {now},
            updated_at {ts} NOT NULL DEFAULT {now}
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS quote_suppliers (
            id {pk},
            quote_id {fk} NOT NULL,
            supplier_id {fk} NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (
                status IN ('pending','viewed','partial','submitted')
            ),
            public_token TEXT NOT NULL,
            viewed_at {ts},
            submitted_at {ts},
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT {now},
            updated_at {ts} NOT NULL DEFAULT {now},
            UNIQUE (quote_id, supplier_id)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS quote_responses (
            id {pk},
            quote_item_id {fk} NOT NULL,
            quote_supplier_id {fk} NOT NULL,
            price {price},
            min_qty {qty},
            delivery_days INTEGER,
            notes TEXT,
            pricing_tiers TEXT,
            filled_at {ts} NOT NULL DEFAULT {now},
            tenant_id TEXT NOT NULL,
            UNIQUE (quote_item_id, quote_supplier_id)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS purchase_orders (
            id {pk},
            quote_id {fk},
            po_number TEXT NOT NULL,
            supplier_id {fk} NOT NULL,
            status TEXT NOT NULL DEFAULT 'draft' CHECK (
                status IN ('draft','sent','confirmed','delivered','cancelled')
            ),
            subtotal {money} NOT NULL DEFAULT 0,
            tax_amount {money} NOT NULL DEFAULT 0,
            shipping_cost {money} NOT NULL DEFAULT 0,
            total_amount {money} NOT NULL DEFAULT 0,
            notes TEXT,
            created_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT {now},
            updated_at {ts} NOT NULL DEFAULT {now},
            UNIQUE (tenant_id, po_number)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS purchase_order_items (
            id {pk},
            po_id {fk} NOT NULL,
            product_id {fk} NOT NULL,
            package_id {fk},
            quote_item_id {fk},
            quote_response_id {fk},
            qty {qty} NOT NULL,
            unit_price {price} NOT NULL,
            total_price {money} NOT NULL,
            delivery_days INTEGER,
            notes TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT {now},
            updated_at {ts} NOT NULL DEFAULT {now}
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS document_sequences (
            name TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            next_value INTEGER NOT NULL,
            PRIMARY KEY (name, tenant_id)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS po_generation_runs (
            quote_id {fk} NOT NULL,
            tenant_id TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('running','partial','completed','failed')),
            started_by TEXT,
            started_at {ts} NOT NULL DEFAULT {now},
            finished_at {ts},
            PRIMARY KEY (quote_id, tenant_id)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS status_events (
            id {pk},
            entity TEXT NOT NULL CHECK (
                entity IN ('quote','quote_item','quote_supplier','purchase_order')
            ),
            entity_id {fk} NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            actor_id TEXT,
            occurred_at {ts} NOT NULL DEFAULT {now},
            tenant_id TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_quote_items_quote ON quote_items (quote_id, tenant_id)",
        "CREATE INDEX IF NOT EXISTS idx_quote_items_winner ON quote_items (winner_supplier_id)",
        "CREATE INDEX IF NOT EXISTS idx_quote_suppliers_quote ON quote_suppliers (quote_id, tenant_id)",
        "CREATE INDEX IF NOT EXISTS idx_quote_responses_item ON quote_responses (quote_item_id)",
        "CREATE INDEX IF NOT EXISTS idx_purchase_orders_quote ON purchase_orders (quote_id, tenant_id)",
        "CREATE INDEX IF NOT EXISTS idx_purchase_order_items_po ON purchase_order_items (po_id)",
    ]
    return [statement.format(**t) for statement in statements]


SCHEMA_TABLES = [
    "status_events",
    "po_generation_runs",
    "document_sequences",
    "purchase_order_items",
    "purchase_orders",
    "quote_responses",
    "quote_suppliers",
    "quote_items",
    "quotes",
    "products",
    "suppliers",
    "tenants",
]


_UPDATED_AT_TABLES = (
    "suppliers",
    "quotes",
    "quote_items",
    "quote_suppliers",
    "purchase_orders",
    "purchase_order_items",
)


def _install_updated_at_triggers(db: Database) -> None:
    db.execute(
        """
        CREATE OR REPLACE FUNCTION touch_updated_at() RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at := CURRENT_TIMESTAMP;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    for table in _UPDATED_AT_TABLES:
        trigger = f"{table}_touch_updated_at"
        db.execute(f"DROP TRIGGER IF EXISTS {trigger} ON {table}")
        db.execute(
            f"CREATE TRIGGER {trigger} BEFORE UPDATE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION touch_updated_at()"
        )


def table_exists(db: Database, table: str) -> bool:
    if db.is_postgres:
        sql = "SELECT 1 FROM information_schema.tables WHERE table_schema = current_schema() AND table_name = ?"
    else:
        sql = "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?"
    return db.execute(sql, (table,)).fetchone() is not None
