from __future__ import annotations

import secrets

from app.infrastructure.repositories.base import BaseRepository


class QuoteSupplierRepository(BaseRepository):
    _columns = "id, quote_id, supplier_id, status, public_token, viewed_at, submitted_at, tenant_id"

    def get_by_id(self, db, quote_supplier_id: int) -> dict | None:
        row = db.execute(
            f"""
            SELECT {self._columns}
            FROM quote_suppliers
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_supplier_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def get_by_pair(self, db, *, quote_id: int, supplier_id: int) -> dict | None:
        row = db.execute(
            f"""
            SELECT {self._columns}
            FROM quote_suppliers
            WHERE quote_id = ? AND supplier_id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, supplier_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def create(self, db, *, quote_id: int, supplier_id: int) -> int | None:
        """Insert the invitation; returns None when the pair is already invited."""
        cursor = db.execute(
            """
            INSERT INTO quote_suppliers (quote_id, supplier_id, status, public_token, tenant_id)
            VALUES (?, ?, 'pending', ?, ?)
            ON CONFLICT (quote_id, supplier_id) DO NOTHING
            RETURNING id
            """,
            (quote_id, supplier_id, secrets.token_urlsafe(24), self.tenant_id),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return int(row["id"] if isinstance(row, dict) else row[0])

    def mark_viewed(self, db, quote_supplier_id: int) -> bool:
        cursor = db.execute(
            """
            UPDATE quote_suppliers
            SET status = 'viewed', viewed_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = 'pending'
            """,
            (quote_supplier_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0) == 1

    def mark_partial(self, db, quote_supplier_id: int) -> bool:
        cursor = db.execute(
            """
            UPDATE quote_suppliers
            SET status = 'partial', updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status IN ('pending', 'viewed')
            """,
            (quote_supplier_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0) == 1

    def mark_submitted(self, db, quote_supplier_id: int) -> None:
        db.execute(
            """
            UPDATE quote_suppliers
            SET status = 'submitted', submitted_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ?
            """,
            (quote_supplier_id, self.tenant_id),
        )
