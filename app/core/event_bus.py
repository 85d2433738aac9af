from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from threading import RLock
from typing import Callable, Dict, List, Tuple, Type

from app.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _json_value(value: object) -> object:
    if isinstance(value, datetime):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, tuple):
        return list(value)
    return value


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    tenant_id: str = ""
    actor_id: str | None = None

    def __post_init__(self) -> None:
        occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "event_id", str(self.event_id or "").strip() or uuid.uuid4().hex)
        object.__setattr__(self, "occurred_at", occurred_at.astimezone(timezone.utc))
        object.__setattr__(self, "tenant_id", str(self.tenant_id or "").strip() or "unknown")

    def to_payload(self) -> Dict[str, object]:
        """Forma JSON do evento, usada no log `domain_event_published`."""
        payload: Dict[str, object] = {"event_type": type(self).__name__}
        for item in fields(self):
            payload[item.name] = _json_value(getattr(self, item.name))
        return payload


@dataclass(frozen=True, kw_only=True)
class WinnerAssigned(DomainEvent):
    quote_id: int
    quote_item_id: int
    supplier_id: int
    response_id: int
    reason: str
    source: str = "auto"


@dataclass(frozen=True, kw_only=True)
class QuoteClosed(DomainEvent):
    quote_id: int
    items_with_winners: int = 0
    total_items: int = 0


@dataclass(frozen=True, kw_only=True)
class SupplierResponseSaved(DomainEvent):
    quote_id: int
    quote_item_id: int
    quote_supplier_id: int
    response_id: int


@dataclass(frozen=True, kw_only=True)
class PurchaseOrderGenerated(DomainEvent):
    quote_id: int
    purchase_order_ids: Tuple[int, ...] = ()
    failed_supplier_ids: Tuple[int, ...] = ()


@dataclass(frozen=True, kw_only=True)
class PurchaseOrderStatusChanged(DomainEvent):
    purchase_order_id: int
    from_status: str
    to_status: str


class EventBus:
    """Entrega sincrona por tipo exato de evento; falha de um handler nao interrompe os demais."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("app")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def publish(self, event: DomainEvent) -> None:
        event_type = type(event).__name__
        observe_domain_event_emitted(event_type)
        self._logger.debug("domain_event_published", extra={"event": event.to_payload()})
        with self._lock:
            handlers = tuple(self._handlers.get(type(event), ()))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": event_type})

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
