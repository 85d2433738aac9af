from __future__ import annotations

from app.infrastructure.repositories.base import BaseRepository


class GenerationRunRepository(BaseRepository):
    """Per-quote marker guarding purchase order generation."""

    def get(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT quote_id, status, started_by, started_at, finished_at, tenant_id
            FROM po_generation_runs
            WHERE quote_id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def claim(self, db, quote_id: int, *, started_by: str | None, stale_seconds: int) -> str | None:
        """Try to mark the quote as ``running``.

        Returns None when the claim was acquired, otherwise the status that
        blocked it (``running`` or ``completed``). ``failed`` and ``partial``
        runs can be claimed again.
        """
        cursor = db.execute(
            """
            INSERT INTO po_generation_runs (quote_id, tenant_id, status, started_by)
            VALUES (?, ?, 'running', ?)
            ON CONFLICT (quote_id, tenant_id) DO NOTHING
            RETURNING quote_id
            """,
            (quote_id, self.tenant_id, started_by),
        )
        if cursor.fetchone() is not None:
            return None

        if db.backend == "postgres":
            stale_clause = "started_at < CURRENT_TIMESTAMP - (? * INTERVAL '1 second')"
            stale_param: object = int(stale_seconds)
        else:
            stale_clause = "started_at < datetime('now', ?)"
            stale_param = f"-{int(stale_seconds)} seconds"

        cursor = db.execute(
            f"""
            UPDATE po_generation_runs
            SET status = 'running', started_by = ?, started_at = CURRENT_TIMESTAMP, finished_at = NULL
            WHERE quote_id = ? AND tenant_id = ?
              AND (status IN ('failed', 'partial') OR (status = 'running' AND {stale_clause}))
            """,
            (started_by, quote_id, self.tenant_id, stale_param),
        )
        if int(cursor.rowcount or 0) == 1:
            return None

        current = self.get(db, quote_id)
        return str(current["status"]) if current else "running"

    def finish(self, db, quote_id: int, *, status: str) -> None:
        db.execute(
            """
            UPDATE po_generation_runs
            SET status = ?, finished_at = CURRENT_TIMESTAMP
            WHERE quote_id = ? AND tenant_id = ?
            """,
            (status, quote_id, self.tenant_id),
        )
