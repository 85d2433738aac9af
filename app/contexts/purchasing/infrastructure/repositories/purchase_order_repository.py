from __future__ import annotations

from typing import List

from app.contexts.purchasing.domain.models import OrderTotals, PurchaseOrder, PurchaseOrderItem
from app.contexts.quoting.domain.pricing import quantize_money, to_decimal
from app.infrastructure.repositories.base import BaseRepository


def _optional_int(value) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


class PurchaseOrderRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        po_number: str,
        supplier_id: int,
        quote_id: int | None,
        notes: str | None,
        created_by: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO purchase_orders (
                quote_id, po_number, supplier_id, status, subtotal, tax_amount, shipping_cost, total_amount,
                notes, created_by, tenant_id
            )
            VALUES (?, ?, ?, 'draft', '0.00', '0.00', '0.00', '0.00', ?, ?, ?)
            RETURNING id
            """,
            (quote_id, po_number, supplier_id, notes, created_by, self.tenant_id),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, po_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT po.id, po.quote_id, po.po_number, po.supplier_id, s.name AS supplier_name, po.status,
                   po.subtotal, po.tax_amount, po.shipping_cost, po.total_amount, po.notes, po.created_by,
                   po.created_at, po.updated_at, po.tenant_id
            FROM purchase_orders po
            LEFT JOIN suppliers s ON s.id = po.supplier_id AND s.tenant_id = po.tenant_id
            WHERE po.id = ? AND po.tenant_id = ?
            LIMIT 1
            """,
            (po_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def load(self, db, po_id: int) -> PurchaseOrder | None:
        row = self.get_by_id(db, po_id)
        if not row:
            return None
        return PurchaseOrder(
            id=int(row["id"]),
            po_number=str(row["po_number"]),
            supplier_id=int(row["supplier_id"]),
            status=str(row["status"]),
            subtotal=quantize_money(row["subtotal"]),
            tax_amount=quantize_money(row["tax_amount"]),
            shipping_cost=quantize_money(row["shipping_cost"]),
            total_amount=quantize_money(row["total_amount"]),
            tenant_id=str(row["tenant_id"]),
            quote_id=_optional_int(row["quote_id"]),
            supplier_name=str(row["supplier_name"] or ""),
            notes=row["notes"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            items=self.list_items(db, po_id),
        )

    def list_for_quote(self, db, quote_id: int) -> List[dict]:
        rows = db.execute(
            """
            SELECT id, po_number, supplier_id, status, total_amount, tenant_id
            FROM purchase_orders
            WHERE quote_id = ? AND tenant_id = ?
            ORDER BY id ASC
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def ordered_quote_item_ids(self, db, quote_id: int) -> set[int]:
        rows = db.execute(
            """
            SELECT i.quote_item_id
            FROM purchase_order_items i
            JOIN purchase_orders po ON po.id = i.po_id AND po.tenant_id = i.tenant_id
            WHERE po.quote_id = ? AND po.tenant_id = ? AND i.quote_item_id IS NOT NULL
            """,
            (quote_id, self.tenant_id),
        ).fetchall()
        return {int(row["quote_item_id"]) for row in rows}

    def list_items(self, db, po_id: int) -> List[PurchaseOrderItem]:
        rows = db.execute(
            """
            SELECT i.id, i.po_id, i.product_id, p.name AS product_name, i.package_id, i.quote_item_id,
                   i.quote_response_id, i.qty, i.unit_price, i.total_price, i.delivery_days, i.notes
            FROM purchase_order_items i
            LEFT JOIN products p ON p.id = i.product_id AND p.tenant_id = i.tenant_id
            WHERE i.po_id = ? AND i.tenant_id = ?
            ORDER BY i.id ASC
            """,
            (po_id, self.tenant_id),
        ).fetchall()
        return [
            PurchaseOrderItem(
                id=int(row["id"]),
                po_id=int(row["po_id"]),
                product_id=int(row["product_id"]),
                product_name=str(row["product_name"] or ""),
                package_id=_optional_int(row["package_id"]),
                quote_item_id=_optional_int(row["quote_item_id"]),
                quote_response_id=_optional_int(row["quote_response_id"]),
                qty=to_decimal(row["qty"]),
                unit_price=to_decimal(row["unit_price"]),
                total_price=quantize_money(row["total_price"]),
                delivery_days=_optional_int(row["delivery_days"]),
                notes=row["notes"],
            )
            for row in rows
        ]

    def get_item(self, db, po_id: int, item_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT id, po_id, product_id, qty, unit_price, total_price, delivery_days, notes
            FROM purchase_order_items
            WHERE id = ? AND po_id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (item_id, po_id, self.tenant_id),
        ).fetchone()
        return dict(row) if row else None

    def add_item(
        self,
        db,
        *,
        po_id: int,
        product_id: int,
        qty: str,
        unit_price: str,
        total_price: str,
        package_id: int | None = None,
        quote_item_id: int | None = None,
        quote_response_id: int | None = None,
        delivery_days: int | None = None,
        notes: str | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO purchase_order_items (
                po_id, product_id, package_id, quote_item_id, quote_response_id,
                qty, unit_price, total_price, delivery_days, notes, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                po_id,
                product_id,
                package_id,
                quote_item_id,
                quote_response_id,
                qty,
                unit_price,
                total_price,
                delivery_days,
                notes,
                self.tenant_id,
            ),
        )
        return self.returned_id(cursor)

    def update_item(
        self,
        db,
        *,
        po_id: int,
        item_id: int,
        qty: str,
        unit_price: str,
        total_price: str,
        delivery_days: int | None,
        notes: str | None,
    ) -> None:
        db.execute(
            """
            UPDATE purchase_order_items
            SET qty = ?, unit_price = ?, total_price = ?, delivery_days = ?, notes = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND po_id = ? AND tenant_id = ?
            """,
            (qty, unit_price, total_price, delivery_days, notes, item_id, po_id, self.tenant_id),
        )

    def delete_item(self, db, *, po_id: int, item_id: int) -> None:
        db.execute(
            "DELETE FROM purchase_order_items WHERE id = ? AND po_id = ? AND tenant_id = ?",
            (item_id, po_id, self.tenant_id),
        )

    def delete(self, db, po_id: int) -> None:
        db.execute("DELETE FROM purchase_order_items WHERE po_id = ? AND tenant_id = ?", (po_id, self.tenant_id))
        db.execute("DELETE FROM purchase_orders WHERE id = ? AND tenant_id = ?", (po_id, self.tenant_id))

    def update_charges(self, db, po_id: int, *, tax_amount: str | None, shipping_cost: str | None) -> None:
        assignments = []
        params: list = []
        if tax_amount is not None:
            assignments.append("tax_amount = ?")
            params.append(tax_amount)
        if shipping_cost is not None:
            assignments.append("shipping_cost = ?")
            params.append(shipping_cost)
        if not assignments:
            return
        db.execute(
            f"""
            UPDATE purchase_orders
            SET {", ".join(assignments)}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ?
            """,
            (*params, po_id, self.tenant_id),
        )

    def recompute_totals(self, db, po_id: int) -> OrderTotals:
        """Recalcula subtotal e total a partir dos itens gravados."""
        order = db.execute(
            "SELECT tax_amount, shipping_cost FROM purchase_orders WHERE id = ? AND tenant_id = ?",
            (po_id, self.tenant_id),
        ).fetchone()
        if order is None:
            raise LookupError(f"purchase order {po_id} not found")
        rows = db.execute(
            "SELECT total_price FROM purchase_order_items WHERE po_id = ? AND tenant_id = ?",
            (po_id, self.tenant_id),
        ).fetchall()
        totals = OrderTotals.compute(
            (to_decimal(row["total_price"]) or 0 for row in rows),
            tax_amount=order["tax_amount"],
            shipping_cost=order["shipping_cost"],
        )
        db.execute(
            """
            UPDATE purchase_orders
            SET subtotal = ?, tax_amount = ?, shipping_cost = ?, total_amount = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ?
            """,
            (
                str(totals.subtotal),
                str(totals.tax_amount),
                str(totals.shipping_cost),
                str(totals.total_amount),
                po_id,
                self.tenant_id,
            ),
        )
        return totals

    def update_status(self, db, po_id: int, *, from_status: str, to_status: str) -> bool:
        cursor = db.execute(
            """
            UPDATE purchase_orders
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = ?
            """,
            (to_status, po_id, self.tenant_id, from_status),
        )
        return int(cursor.rowcount or 0) == 1
