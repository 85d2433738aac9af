from __future__ import annotations

from app.contexts.quoting.domain.models import Response
from app.contexts.quoting.infrastructure.repositories.quote_repository import response_from_row
from app.infrastructure.repositories.base import BaseRepository


class ResponseRepository(BaseRepository):
    def upsert(
        self,
        db,
        *,
        quote_item_id: int,
        quote_supplier_id: int,
        price: str | None,
        min_qty: str | None,
        delivery_days: int | None,
        notes: str | None,
        pricing_tiers: str | None,
    ) -> int:
        # Ultima escrita vence para o par (item, convite).
        cursor = db.execute(
            """
            INSERT INTO quote_responses (
                quote_item_id, quote_supplier_id, price, min_qty, delivery_days, notes, pricing_tiers, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (quote_item_id, quote_supplier_id) DO UPDATE SET
                price = excluded.price,
                min_qty = excluded.min_qty,
                delivery_days = excluded.delivery_days,
                notes = excluded.notes,
                pricing_tiers = excluded.pricing_tiers,
                filled_at = CURRENT_TIMESTAMP
            RETURNING id
            """,
            (quote_item_id, quote_supplier_id, price, min_qty, delivery_days, notes, pricing_tiers, self.tenant_id),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, response_id: int) -> Response | None:
        row = db.execute(
            """
            SELECT r.id, r.quote_item_id, r.quote_supplier_id, qs.supplier_id, r.price, r.min_qty,
                   r.delivery_days, r.notes, r.pricing_tiers, r.filled_at
            FROM quote_responses r
            JOIN quote_suppliers qs ON qs.id = r.quote_supplier_id AND qs.tenant_id = r.tenant_id
            WHERE r.id = ? AND r.tenant_id = ?
            LIMIT 1
            """,
            (response_id, self.tenant_id),
        ).fetchone()
        return response_from_row(dict(row)) if row else None

    def get_many(self, db, response_ids: list[int]) -> dict[int, Response]:
        if not response_ids:
            return {}
        placeholders = ", ".join("?" for _ in response_ids)
        rows = db.execute(
            f"""
            SELECT r.id, r.quote_item_id, r.quote_supplier_id, qs.supplier_id, r.price, r.min_qty,
                   r.delivery_days, r.notes, r.pricing_tiers, r.filled_at
            FROM quote_responses r
            JOIN quote_suppliers qs ON qs.id = r.quote_supplier_id AND qs.tenant_id = r.tenant_id
            WHERE r.id IN ({placeholders}) AND r.tenant_id = ?
            """,
            (*response_ids, self.tenant_id),
        ).fetchall()
        responses = [response_from_row(dict(row)) for row in rows]
        return {response.id: response for response in responses}
