from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Tuple

from app.contexts.quoting.domain.models import PricingTier
from app.contexts.quoting.domain.pricing import parse_pricing_tiers, quantize_money, to_price, to_qty
from app.errors import ValidationError


def _optional_text(value) -> str | None:
    text = str(value or "").strip()
    return text or None


def _parse_int(value, *, code: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(code=code, payload={"value": value})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(code=code, payload={"value": value}) from exc


def _parse_price(value, *, code: str = "price_invalid") -> Decimal | None:
    try:
        price = to_price(value)
    except ValueError as exc:
        raise ValidationError(code=code, payload={"value": value}) from exc
    if price is not None and price < 0:
        raise ValidationError(code=code, payload={"value": value})
    return price


def _parse_qty(value, *, required: bool = False) -> Decimal | None:
    try:
        qty = to_qty(value)
    except ValueError as exc:
        raise ValidationError(code="quantity_invalid", payload={"value": value}) from exc
    if qty is None:
        if required:
            raise ValidationError(code="quantity_invalid", payload={"value": value})
        return None
    if qty <= 0:
        raise ValidationError(code="quantity_invalid", payload={"value": value})
    return qty


def _parse_delivery_days(value) -> int | None:
    days = _parse_int(value, code="delivery_days_invalid")
    if days is not None and days < 0:
        raise ValidationError(code="delivery_days_invalid", payload={"value": value})
    return days


def parse_deadline(value) -> str | None:
    raw = str(value or "").strip()
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(code="deadline_invalid", payload={"value": raw}) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


@dataclass(frozen=True)
class QuoteCreateInput:
    title: str
    description: str | None = None
    deadline_at: str | None = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "QuoteCreateInput":
        title = str(payload.get("title") or "").strip()
        if not title:
            raise ValidationError(code="title_required")
        return cls(
            title=title,
            description=_optional_text(payload.get("description")),
            deadline_at=parse_deadline(payload.get("deadline_at")),
        )


@dataclass(frozen=True)
class QuoteItemInput:
    product_id: int
    requested_qty: Decimal | None = None
    package_id: int | None = None
    package_multiplier: Decimal | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "QuoteItemInput":
        product_id = _parse_int(payload.get("product_id"), code="product_not_found")
        if product_id is None:
            raise ValidationError(code="product_not_found")
        return cls(
            product_id=product_id,
            requested_qty=_parse_qty(payload.get("requested_qty")),
            package_id=_parse_int(payload.get("package_id"), code="status_invalid"),
            package_multiplier=_parse_qty(payload.get("package_multiplier")),
            notes=_optional_text(payload.get("notes")),
        )


@dataclass(frozen=True)
class SupplierResponseInput:
    price: Decimal | None = None
    min_qty: Decimal | None = None
    delivery_days: int | None = None
    notes: str | None = None
    pricing_tiers: Tuple[PricingTier, ...] = field(default_factory=tuple)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SupplierResponseInput":
        return cls(
            price=_parse_price(payload.get("price")),
            min_qty=_parse_qty(payload.get("min_qty")),
            delivery_days=_parse_delivery_days(payload.get("delivery_days")),
            notes=_optional_text(payload.get("notes")),
            pricing_tiers=parse_pricing_tiers(payload.get("pricing_tiers")),
        )


@dataclass(frozen=True)
class ManualWinnerInput:
    supplier_id: int
    reason: str
    custom_reason: str | None = None
    expected_response_id: int | None = None
    has_expected: bool = False

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ManualWinnerInput":
        supplier_id = _parse_int(payload.get("supplier_id"), code="supplier_not_found")
        if supplier_id is None:
            raise ValidationError(code="supplier_not_found")
        return cls(
            supplier_id=supplier_id,
            reason=str(payload.get("reason") or "").strip(),
            custom_reason=_optional_text(payload.get("custom_reason")),
            expected_response_id=_parse_int(payload.get("expected_response_id"), code="status_invalid"),
            has_expected="expected_response_id" in payload,
        )


@dataclass(frozen=True)
class PurchaseOrderCreateInput:
    supplier_id: int
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PurchaseOrderCreateInput":
        supplier_id = _parse_int(payload.get("supplier_id"), code="supplier_not_found")
        if supplier_id is None:
            raise ValidationError(code="supplier_not_found")
        return cls(supplier_id=supplier_id, notes=_optional_text(payload.get("notes")))


@dataclass(frozen=True)
class PurchaseOrderItemInput:
    product_id: int
    qty: Decimal
    unit_price: Decimal
    delivery_days: int | None = None
    notes: str | None = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PurchaseOrderItemInput":
        product_id = _parse_int(payload.get("product_id"), code="product_not_found")
        if product_id is None:
            raise ValidationError(code="product_not_found")
        unit_price = _parse_price(payload.get("unit_price"))
        if unit_price is None:
            raise ValidationError(code="price_invalid")
        return cls(
            product_id=product_id,
            qty=_parse_qty(payload.get("qty"), required=True),
            unit_price=unit_price,
            delivery_days=_parse_delivery_days(payload.get("delivery_days")),
            notes=_optional_text(payload.get("notes")),
        )


@dataclass(frozen=True)
class PurchaseOrderItemUpdateInput:
    qty: Decimal | None = None
    unit_price: Decimal | None = None
    delivery_days: int | None = None
    notes: str | None = None
    fields: Tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PurchaseOrderItemUpdateInput":
        fields = tuple(key for key in ("qty", "unit_price", "delivery_days", "notes") if key in payload)
        if not fields:
            raise ValidationError(code="no_changes")
        unit_price = _parse_price(payload.get("unit_price")) if "unit_price" in payload else None
        if "unit_price" in payload and unit_price is None:
            raise ValidationError(code="price_invalid")
        return cls(
            qty=_parse_qty(payload.get("qty"), required=True) if "qty" in payload else None,
            unit_price=unit_price,
            delivery_days=_parse_delivery_days(payload.get("delivery_days")),
            notes=_optional_text(payload.get("notes")),
            fields=fields,
        )


@dataclass(frozen=True)
class ChargesInput:
    tax_amount: Decimal | None = None
    shipping_cost: Decimal | None = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ChargesInput":
        values: Dict[str, Decimal | None] = {}
        for key in ("tax_amount", "shipping_cost"):
            if key not in payload:
                values[key] = None
                continue
            try:
                amount = quantize_money(payload.get(key))
            except ValueError as exc:
                raise ValidationError(code="charges_invalid", payload={key: payload.get(key)}) from exc
            if amount < 0:
                raise ValidationError(code="charges_invalid", payload={key: payload.get(key)})
            values[key] = amount
        if values["tax_amount"] is None and values["shipping_cost"] is None:
            raise ValidationError(code="no_changes")
        return cls(tax_amount=values["tax_amount"], shipping_cost=values["shipping_cost"])
