from __future__ import annotations

from typing import Any, Iterable

from app.tenant import TenantContext


class TenantScopeRequiredError(ValueError):
    """Raised when a repository is instantiated without tenant scope."""


class BaseRepository:
    """Every query of a repository is filtered by ``self.tenant_id``."""

    def __init__(self, *, tenant_id: str | None = None, context: TenantContext | None = None) -> None:
        scope = str((context.tenant_id if context is not None else tenant_id) or "").strip()
        if not scope:
            raise TenantScopeRequiredError("tenant_id is required for repository access")
        self.tenant_id = scope

    @staticmethod
    def rows_to_dicts(rows: Iterable[Any]) -> list[dict]:
        return [dict(row) for row in rows]

    @staticmethod
    def returned_id(cursor) -> int:
        # sqlite3.Row no SQLite, dict (RealDictCursor) no Postgres.
        row = cursor.fetchone()
        return int(row["id"] if isinstance(row, dict) else row[0])
