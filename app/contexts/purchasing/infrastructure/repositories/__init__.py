from app.contexts.purchasing.infrastructure.repositories.generation_run_repository import GenerationRunRepository
from app.contexts.purchasing.infrastructure.repositories.purchase_order_repository import PurchaseOrderRepository
from app.contexts.purchasing.infrastructure.repositories.sequence_repository import PoNumberAllocator

__all__ = [
    "GenerationRunRepository",
    "PoNumberAllocator",
    "PurchaseOrderRepository",
]
