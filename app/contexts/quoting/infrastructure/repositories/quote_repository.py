from __future__ import annotations

from typing import Dict, List

from app.contexts.quoting.domain.models import Quote, QuoteItem, QuoteSupplier, Response
from app.contexts.quoting.domain.pricing import parse_pricing_tiers, to_decimal
from app.infrastructure.repositories.base import BaseRepository


def _optional_int(value) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def response_from_row(row: dict) -> Response:
    return Response(
        id=int(row["id"]),
        quote_item_id=int(row["quote_item_id"]),
        quote_supplier_id=int(row["quote_supplier_id"]),
        supplier_id=int(row["supplier_id"]),
        price=to_decimal(row.get("price")),
        min_qty=to_decimal(row.get("min_qty")),
        delivery_days=_optional_int(row.get("delivery_days")),
        notes=row.get("notes"),
        pricing_tiers=parse_pricing_tiers(row.get("pricing_tiers")),
        filled_at=row.get("filled_at"),
    )


class QuoteRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        title: str,
        description: str | None,
        deadline_at: str | None,
        created_by: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO quotes (title, description, status, deadline_at, created_by, tenant_id)
            VALUES (?, ?, 'draft', ?, ?, ?)
            RETURNING id
            """,
            (title, description, deadline_at, created_by, self.tenant_id),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, title, description, status, deadline_at, created_by, created_at, updated_at, tenant_id
            FROM quotes
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def load(self, db, quote_id: int) -> Quote | None:
        """Load the quote aggregate: items (with responses) and invitations."""
        row = self.get_by_id(db, quote_id)
        if not row:
            return None

        invitation_rows = db.execute(
            """
            SELECT qs.id, qs.quote_id, qs.supplier_id, s.name AS supplier_name, qs.status,
                   qs.public_token, qs.viewed_at, qs.submitted_at
            FROM quote_suppliers qs
            LEFT JOIN suppliers s ON s.id = qs.supplier_id AND s.tenant_id = qs.tenant_id
            WHERE qs.quote_id = ? AND qs.tenant_id = ?
            ORDER BY qs.id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        suppliers = [
            QuoteSupplier(
                id=int(item["id"]),
                quote_id=int(item["quote_id"]),
                supplier_id=int(item["supplier_id"]),
                supplier_name=str(item["supplier_name"] or ""),
                status=str(item["status"]),
                public_token=str(item["public_token"] or ""),
                viewed_at=item["viewed_at"],
                submitted_at=item["submitted_at"],
            )
            for item in invitation_rows
        ]

        responses_by_item: Dict[int, List[Response]] = {}
        for response in self.list_responses_for_quote(db, quote_id):
            responses_by_item.setdefault(response.quote_item_id, []).append(response)

        item_rows = db.execute(
            """
            SELECT qi.id, qi.quote_id, qi.product_id, p.name AS product_name, qi.package_id,
                   qi.package_multiplier, qi.requested_qty, qi.sort_order, qi.notes,
                   qi.winner_supplier_id, qi.winner_response_id, qi.winner_reason,
                   qi.winner_set_at, qi.winner_set_by
            FROM quote_items qi
            LEFT JOIN products p ON p.id = qi.product_id AND p.tenant_id = qi.tenant_id
            WHERE qi.quote_id = ? AND qi.tenant_id = ?
            ORDER BY qi.sort_order ASC, qi.id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        items = [
            QuoteItem(
                id=int(item["id"]),
                quote_id=int(item["quote_id"]),
                product_id=int(item["product_id"]),
                product_name=str(item["product_name"] or ""),
                package_id=_optional_int(item["package_id"]),
                package_multiplier=to_decimal(item["package_multiplier"]),
                requested_qty=to_decimal(item["requested_qty"]),
                sort_order=int(item["sort_order"] or 0),
                notes=item["notes"],
                winner_supplier_id=_optional_int(item["winner_supplier_id"]),
                winner_response_id=_optional_int(item["winner_response_id"]),
                winner_reason=item["winner_reason"],
                winner_set_at=item["winner_set_at"],
                winner_set_by=item["winner_set_by"],
                responses=responses_by_item.get(int(item["id"]), []),
            )
            for item in item_rows
        ]

        return Quote(
            id=int(row["id"]),
            title=str(row["title"]),
            description=row.get("description"),
            status=str(row["status"]),
            tenant_id=str(row["tenant_id"]),
            deadline_at=row.get("deadline_at"),
            created_by=row.get("created_by"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            items=items,
            suppliers=suppliers,
        )

    def list_responses_for_quote(self, db, quote_id: int) -> List[Response]:
        rows = db.execute(
            """
            SELECT r.id, r.quote_item_id, r.quote_supplier_id, qs.supplier_id, r.price, r.min_qty,
                   r.delivery_days, r.notes, r.pricing_tiers, r.filled_at
            FROM quote_responses r
            JOIN quote_items qi ON qi.id = r.quote_item_id AND qi.tenant_id = r.tenant_id
            JOIN quote_suppliers qs ON qs.id = r.quote_supplier_id AND qs.tenant_id = r.tenant_id
            WHERE qi.quote_id = ? AND r.tenant_id = ?
            ORDER BY qs.id ASC, r.id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return [response_from_row(dict(row)) for row in rows]

    def get_item(self, db, item_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, quote_id, product_id, requested_qty, sort_order,
                   winner_supplier_id, winner_response_id, winner_reason, tenant_id
            FROM quote_items
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (item_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def next_sort_order(self, db, quote_id: int) -> int:
        row = db.execute(
            """
            SELECT MAX(sort_order) AS max_order
            FROM quote_items
            WHERE quote_id = ? AND tenant_id = ?
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        current = row["max_order"] if row else None
        return 0 if current is None else int(current) + 1

    def add_item(
        self,
        db,
        *,
        quote_id: int,
        product_id: int,
        requested_qty: str | None,
        sort_order: int,
        package_id: int | None = None,
        package_multiplier: str | None = None,
        notes: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO quote_items (
                quote_id, product_id, package_id, package_multiplier, requested_qty, sort_order, notes, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (quote_id, product_id, package_id, package_multiplier, requested_qty, sort_order, notes, self.tenant_id),
        )
        return self.returned_id(cursor)

    def update_status(self, db, quote_id: int, *, from_status: str, to_status: str) -> bool:
        cursor = db.execute(
            """
            UPDATE quotes
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = ?
            """,
            (to_status, quote_id, self.tenant_id, from_status),
        )
        return int(cursor.rowcount or 0) == 1

    def assign_winner_if_unset(
        self,
        db,
        *,
        item_id: int,
        supplier_id: int,
        response_id: int,
        reason: str,
        set_by: str | None,
    ) -> bool:
        cursor = db.execute(
            """
            UPDATE quote_items
            SET winner_supplier_id = ?, winner_response_id = ?, winner_reason = ?,
                winner_set_at = CURRENT_TIMESTAMP, winner_set_by = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND winner_supplier_id IS NULL
            """,
            (supplier_id, response_id, reason, set_by, item_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0) == 1

    def replace_winner(
        self,
        db,
        *,
        item_id: int,
        expected_response_id: int | None,
        supplier_id: int,
        response_id: int,
        reason: str,
        set_by: str | None,
    ) -> bool:
        params: list = [supplier_id, response_id, reason, set_by, item_id, self.tenant_id]
        if expected_response_id is None:
            guard = "winner_response_id IS NULL"
        else:
            guard = "winner_response_id = ?"
            params.append(expected_response_id)
        cursor = db.execute(
            f"""
            UPDATE quote_items
            SET winner_supplier_id = ?, winner_response_id = ?, winner_reason = ?,
                winner_set_at = CURRENT_TIMESTAMP, winner_set_by = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND {guard}
            """,
            tuple(params),
        )
        return int(cursor.rowcount or 0) == 1

    def delete(self, db, quote_id: int) -> None:
        # Pedidos sobrevivem a exclusao da cotacao, apenas perdem a referencia.
        db.execute(
            "UPDATE purchase_orders SET quote_id = NULL WHERE quote_id = ? AND tenant_id = ?",
            (quote_id, self.tenant_id),
        )
        db.execute(
            """
            DELETE FROM quote_responses
            WHERE tenant_id = ? AND quote_item_id IN (
                SELECT id FROM quote_items WHERE quote_id = ? AND tenant_id = ?
            )
            """,
            (self.tenant_id, quote_id, self.tenant_id),
        )
        db.execute("DELETE FROM quote_suppliers WHERE quote_id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
        db.execute("DELETE FROM quote_items WHERE quote_id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
        db.execute("DELETE FROM po_generation_runs WHERE quote_id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
        db.execute("DELETE FROM quotes WHERE id = ? AND tenant_id = ?", (quote_id, self.tenant_id))
