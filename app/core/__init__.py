from app.core.event_bus import (
    DomainEvent,
    EventBus,
    PurchaseOrderGenerated,
    PurchaseOrderStatusChanged,
    QuoteClosed,
    SupplierResponseSaved,
    WinnerAssigned,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "WinnerAssigned",
    "QuoteClosed",
    "SupplierResponseSaved",
    "PurchaseOrderGenerated",
    "PurchaseOrderStatusChanged",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
