from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Tuple

from app.contexts.quoting.domain.models import decimal_to_json
from app.contexts.quoting.domain.pricing import quantize_money


PURCHASE_ORDER_STATUSES: Tuple[str, ...] = ("draft", "sent", "confirmed", "delivered", "cancelled")


def line_total(qty: Decimal, unit_price: Decimal) -> Decimal:
    return quantize_money(qty * unit_price)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    total_amount: Decimal

    @classmethod
    def compute(cls, line_totals: Iterable[Decimal], tax_amount=None, shipping_cost=None) -> "OrderTotals":
        subtotal = quantize_money(sum((Decimal(value) for value in line_totals), Decimal("0")))
        tax = quantize_money(tax_amount)
        shipping = quantize_money(shipping_cost)
        return cls(
            subtotal=subtotal,
            tax_amount=tax,
            shipping_cost=shipping,
            total_amount=quantize_money(subtotal + tax + shipping),
        )


@dataclass(frozen=True)
class PurchaseOrderItem:
    id: int
    po_id: int
    product_id: int
    qty: Decimal
    unit_price: Decimal
    total_price: Decimal
    product_name: str = ""
    package_id: int | None = None
    quote_item_id: int | None = None
    quote_response_id: int | None = None
    delivery_days: int | None = None
    notes: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "po_id": self.po_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "package_id": self.package_id,
            "quote_item_id": self.quote_item_id,
            "quote_response_id": self.quote_response_id,
            "qty": decimal_to_json(self.qty),
            "unit_price": decimal_to_json(self.unit_price),
            "total_price": decimal_to_json(self.total_price),
            "delivery_days": self.delivery_days,
            "notes": self.notes,
        }


@dataclass
class PurchaseOrder:
    id: int
    po_number: str
    supplier_id: int
    status: str
    subtotal: Decimal
    tax_amount: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    tenant_id: str
    quote_id: int | None = None
    supplier_name: str = ""
    notes: str | None = None
    created_by: str | None = None
    created_at: Any = None
    updated_at: Any = None
    items: List[PurchaseOrderItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "po_number": self.po_number,
            "quote_id": self.quote_id,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "status": self.status,
            "subtotal": decimal_to_json(self.subtotal),
            "tax_amount": decimal_to_json(self.tax_amount),
            "shipping_cost": decimal_to_json(self.shipping_cost),
            "total_amount": decimal_to_json(self.total_amount),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    items_with_winners: int
    total_items: int
    message: str
    complete: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "items_with_winners": self.items_with_winners,
            "total_items": self.total_items,
            "message": self.message,
            "complete": self.complete,
        }


@dataclass(frozen=True)
class GeneratedPO:
    po_id: int
    po_number: str
    supplier_id: int
    supplier_name: str
    items_count: int
    total_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "po_id": self.po_id,
            "po_number": self.po_number,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "items_count": self.items_count,
            "total_amount": decimal_to_json(self.total_amount),
        }


@dataclass(frozen=True)
class GenerationFailure:
    supplier_id: int
    supplier_name: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"supplier_id": self.supplier_id, "supplier_name": self.supplier_name, "error": self.error}


@dataclass(frozen=True)
class GenerationResult:
    success: bool
    purchase_orders: Tuple[GeneratedPO, ...] = ()
    failures: Tuple[GenerationFailure, ...] = ()

    @property
    def missing_supplier_ids(self) -> List[int]:
        return [failure.supplier_id for failure in self.failures]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "purchase_orders": [po.to_dict() for po in self.purchase_orders],
            "failures": [failure.to_dict() for failure in self.failures],
            "missing_supplier_ids": self.missing_supplier_ids,
        }
