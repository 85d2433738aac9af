from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Tuple


WINNER_REASONS: Tuple[str, ...] = (
    "lowest_price",
    "preferred_supplier",
    "best_delivery",
    "negotiated",
    "manual",
)

QUOTE_STATUSES: Tuple[str, ...] = ("draft", "open", "closed", "cancelled")
INVITATION_STATUSES: Tuple[str, ...] = ("pending", "viewed", "partial", "submitted")


def decimal_to_json(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class PricingTier:
    min_qty: Decimal
    price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"min_qty": decimal_to_json(self.min_qty), "price": decimal_to_json(self.price)}


@dataclass(frozen=True)
class Response:
    id: int
    quote_item_id: int
    quote_supplier_id: int
    supplier_id: int
    price: Decimal | None = None
    min_qty: Decimal | None = None
    delivery_days: int | None = None
    notes: str | None = None
    pricing_tiers: Tuple[PricingTier, ...] = ()
    filled_at: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quote_item_id": self.quote_item_id,
            "quote_supplier_id": self.quote_supplier_id,
            "supplier_id": self.supplier_id,
            "price": decimal_to_json(self.price),
            "min_qty": decimal_to_json(self.min_qty),
            "delivery_days": self.delivery_days,
            "notes": self.notes,
            "pricing_tiers": [tier.to_dict() for tier in self.pricing_tiers],
            "filled_at": self.filled_at,
        }


@dataclass(frozen=True)
class QuoteSupplier:
    id: int
    quote_id: int
    supplier_id: int
    supplier_name: str = ""
    status: str = "pending"
    public_token: str = ""
    viewed_at: Any = None
    submitted_at: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "status": self.status,
            "public_token": self.public_token,
            "viewed_at": self.viewed_at,
            "submitted_at": self.submitted_at,
        }


@dataclass
class QuoteItem:
    id: int
    quote_id: int
    product_id: int
    product_name: str = ""
    package_id: int | None = None
    package_multiplier: Decimal | None = None
    requested_qty: Decimal | None = None
    sort_order: int = 0
    notes: str | None = None
    winner_supplier_id: int | None = None
    winner_response_id: int | None = None
    winner_reason: str | None = None
    winner_set_at: Any = None
    winner_set_by: str | None = None
    responses: List[Response] = field(default_factory=list)

    @property
    def has_winner(self) -> bool:
        return self.winner_supplier_id is not None and self.winner_response_id is not None

    def response_for_supplier(self, supplier_id: int) -> Response | None:
        for response in self.responses:
            if response.supplier_id == supplier_id:
                return response
        return None

    def response_by_id(self, response_id: int | None) -> Response | None:
        if response_id is None:
            return None
        for response in self.responses:
            if response.id == response_id:
                return response
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "quote_id": self.quote_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "package_id": self.package_id,
            "package_multiplier": decimal_to_json(self.package_multiplier),
            "requested_qty": decimal_to_json(self.requested_qty),
            "sort_order": self.sort_order,
            "notes": self.notes,
            "winner_supplier_id": self.winner_supplier_id,
            "winner_response_id": self.winner_response_id,
            "winner_reason": self.winner_reason,
            "winner_set_at": self.winner_set_at,
            "winner_set_by": self.winner_set_by,
            "responses": [response.to_dict() for response in self.responses],
        }


@dataclass
class Quote:
    id: int
    title: str
    status: str
    tenant_id: str
    description: str | None = None
    deadline_at: Any = None
    created_by: str | None = None
    created_at: Any = None
    updated_at: Any = None
    items: List[QuoteItem] = field(default_factory=list)
    suppliers: List[QuoteSupplier] = field(default_factory=list)

    def item(self, item_id: int) -> QuoteItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def supplier_name(self, supplier_id: int | None) -> str:
        for invitation in self.suppliers:
            if invitation.supplier_id == supplier_id:
                return invitation.supplier_name
        return ""

    def invitation_rank(self, supplier_id: int) -> int:
        for idx, invitation in enumerate(self.suppliers):
            if invitation.supplier_id == supplier_id:
                return idx
        return len(self.suppliers)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "deadline_at": self.deadline_at,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "items": [item.to_dict() for item in self.items],
            "suppliers": [invitation.to_dict() for invitation in self.suppliers],
        }


@dataclass(frozen=True)
class TieCandidate:
    supplier_id: int
    supplier_name: str
    response_id: int
    price: Decimal
    delivery_days: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "response_id": self.response_id,
            "price": decimal_to_json(self.price),
            "delivery_days": self.delivery_days,
        }


@dataclass(frozen=True)
class TieGroup:
    quote_item_id: int
    product_name: str
    price: Decimal
    candidates: Tuple[TieCandidate, ...]
    winner_supplier_id: int | None = None

    @property
    def supplier_ids(self) -> List[int]:
        return [candidate.supplier_id for candidate in self.candidates]

    @property
    def decided(self) -> bool:
        return self.winner_supplier_id is not None

    def candidate(self, supplier_id: int) -> TieCandidate | None:
        for candidate in self.candidates:
            if candidate.supplier_id == supplier_id:
                return candidate
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quote_item_id": self.quote_item_id,
            "product_name": self.product_name,
            "price": decimal_to_json(self.price),
            "candidates": [candidate.to_dict() for candidate in self.candidates],
            "winner_supplier_id": self.winner_supplier_id,
            "decided": self.decided,
        }


@dataclass(frozen=True)
class WinnerAssignment:
    quote_item_id: int
    supplier_id: int
    response_id: int
    reason: str
    source: str
    set_by: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quote_item_id": self.quote_item_id,
            "supplier_id": self.supplier_id,
            "response_id": self.response_id,
            "reason": self.reason,
            "source": self.source,
            "set_by": self.set_by,
        }
