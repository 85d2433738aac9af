from __future__ import annotations

from app.infrastructure.repositories.base import BaseRepository


class SupplierRepository(BaseRepository):
    def create(self, db, *, name: str, email: str | None = None) -> int:
        cursor = db.execute(
            """
            INSERT INTO suppliers (name, email, tenant_id)
            VALUES (?, ?, ?)
            RETURNING id
            """,
            (name, email, self.tenant_id),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, supplier_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, name, email, tenant_id
            FROM suppliers
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (supplier_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None


class ProductRepository(BaseRepository):
    def create(self, db, *, name: str) -> int:
        cursor = db.execute(
            """
            INSERT INTO products (name, tenant_id)
            VALUES (?, ?)
            RETURNING id
            """,
            (name, self.tenant_id),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, product_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, name, tenant_id
            FROM products
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (product_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None
