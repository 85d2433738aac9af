"""Initial quoting and purchasing schema

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from __future__ import annotations

from typing import Iterable, Sequence, Union

from alembic import op
from sqlalchemy.engine import Connection

from app.db import SCHEMA_TABLES, create_schema


# revision identifiers, used by Alembic.
revision: str = "20261018_000001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


class _BindAdapter:
    """Expoe o bind do Alembic com a mesma interface de app.db.Database."""

    def __init__(self, connection: Connection):
        self._connection = connection
        self.is_postgres = (connection.dialect.name or "").lower().startswith("postgres")
        self.backend = "postgres" if self.is_postgres else "sqlite"

    def execute(self, sql: str, params: Iterable | None = None):
        if params is None:
            return self._connection.exec_driver_sql(sql)
        if self.is_postgres:
            sql = sql.replace("?", "%s")
        return self._connection.exec_driver_sql(sql, tuple(params))


def upgrade() -> None:
    create_schema(_BindAdapter(op.get_bind()))


def downgrade() -> None:
    if _BindAdapter(op.get_bind()).is_postgres:
        op.execute("DROP FUNCTION IF EXISTS touch_updated_at() CASCADE")
    for table in SCHEMA_TABLES:
        op.execute(f"DROP TABLE IF EXISTS {table}")
