from __future__ import annotations

import json
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, List, Tuple

from app.contexts.quoting.domain.models import PricingTier, Quote, QuoteItem, Response, TieCandidate, TieGroup
from app.errors import ValidationError


PRICE_PLACES = Decimal("0.0001")
MONEY_PLACES = Decimal("0.01")
QTY_PLACES = Decimal("0.001")


def to_decimal(value) -> Decimal | None:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, float):
        value = repr(value)
    raw = str(value).strip().replace(",", ".")
    if not raw:
        return None
    try:
        parsed = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"invalid decimal: {value!r}") from exc
    if not parsed.is_finite():
        raise ValueError(f"invalid decimal: {value!r}")
    return parsed


def to_price(value) -> Decimal | None:
    parsed = to_decimal(value)
    if parsed is None:
        return None
    return parsed.quantize(PRICE_PLACES, rounding=ROUND_HALF_UP)


def to_qty(value) -> Decimal | None:
    parsed = to_decimal(value)
    if parsed is None:
        return None
    return parsed.quantize(QTY_PLACES, rounding=ROUND_HALF_UP)


def quantize_money(value) -> Decimal:
    parsed = to_decimal(value)
    if parsed is None:
        parsed = Decimal("0")
    return parsed.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def is_priced(response: Response) -> bool:
    """True when the response is a real offer: price present and above zero."""
    return response.price is not None and response.price > 0


def find_lowest_price(item: QuoteItem) -> Decimal | None:
    prices = [response.price for response in item.responses if is_priced(response)]
    if not prices:
        return None
    return min(prices)


def lowest_price_responses(item: QuoteItem) -> List[Response]:
    lowest = find_lowest_price(item)
    if lowest is None:
        return []
    return [response for response in item.responses if is_priced(response) and response.price == lowest]


def unique_lowest_response(item: QuoteItem) -> Response | None:
    """Single response holding the lowest price, or None when absent or tied."""
    holders = lowest_price_responses(item)
    supplier_ids = {response.supplier_id for response in holders}
    if len(supplier_ids) != 1:
        return None
    return holders[0]


def ordered_items(quote: Quote) -> List[QuoteItem]:
    return sorted(quote.items, key=lambda item: (item.sort_order, item.id))


def tie_group_for_item(quote: Quote, item: QuoteItem) -> TieGroup | None:
    holders = lowest_price_responses(item)
    if len({response.supplier_id for response in holders}) < 2:
        return None
    holders.sort(key=lambda response: (quote.invitation_rank(response.supplier_id), response.id))
    candidates = tuple(
        TieCandidate(
            supplier_id=response.supplier_id,
            supplier_name=quote.supplier_name(response.supplier_id),
            response_id=response.id,
            price=response.price,
            delivery_days=response.delivery_days,
        )
        for response in holders
    )
    return TieGroup(
        quote_item_id=item.id,
        product_name=item.product_name,
        price=holders[0].price,
        candidates=candidates,
        winner_supplier_id=item.winner_supplier_id,
    )


def detect_ties(quote: Quote, *, only_undecided: bool = False) -> List[TieGroup]:
    groups: List[TieGroup] = []
    for item in ordered_items(quote):
        group = tie_group_for_item(quote, item)
        if group is None:
            continue
        if only_undecided and item.has_winner:
            continue
        groups.append(group)
    return groups


def price_for_quantity(response: Response, qty) -> Decimal | None:
    """Tiered price for ``qty``: largest tier with min_qty <= qty, else the base price."""
    quantity = to_decimal(qty)
    if quantity is None:
        return response.price
    selected: PricingTier | None = None
    for tier in response.pricing_tiers:
        if tier.min_qty <= quantity and (selected is None or tier.min_qty > selected.min_qty):
            selected = tier
    if selected is None:
        return response.price
    return selected.price


def parse_pricing_tiers(raw) -> Tuple[PricingTier, ...]:
    if raw is None or raw == "":
        return ()
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as exc:
            raise ValidationError(code="pricing_tiers_invalid", details=str(exc)) from exc
    if not isinstance(raw, (list, tuple)):
        raise ValidationError(code="pricing_tiers_invalid", details="pricing_tiers must be a list")

    tiers: List[PricingTier] = []
    seen: set[Decimal] = set()
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValidationError(code="pricing_tiers_invalid", details="tier must be an object")
        try:
            min_qty = to_qty(entry.get("min_qty"))
            price = to_price(entry.get("price"))
        except ValueError as exc:
            raise ValidationError(code="pricing_tiers_invalid", details=str(exc)) from exc
        if min_qty is None or min_qty <= 0 or price is None or price <= 0:
            raise ValidationError(code="pricing_tiers_invalid", details="tier needs positive min_qty and price")
        if min_qty in seen:
            raise ValidationError(code="pricing_tiers_invalid", details="duplicated min_qty")
        seen.add(min_qty)
        tiers.append(PricingTier(min_qty=min_qty, price=price))
    tiers.sort(key=lambda tier: tier.min_qty)
    return tuple(tiers)


def dump_pricing_tiers(tiers: Iterable[PricingTier]) -> str | None:
    payload = [{"min_qty": str(tier.min_qty), "price": str(tier.price)} for tier in tiers]
    if not payload:
        return None
    return json.dumps(payload, separators=(",", ":"))
