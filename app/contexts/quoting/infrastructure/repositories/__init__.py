from app.contexts.quoting.infrastructure.repositories.catalog_repository import ProductRepository, SupplierRepository
from app.contexts.quoting.infrastructure.repositories.invitation_repository import QuoteSupplierRepository
from app.contexts.quoting.infrastructure.repositories.quote_repository import QuoteRepository
from app.contexts.quoting.infrastructure.repositories.response_repository import ResponseRepository

__all__ = [
    "ProductRepository",
    "QuoteRepository",
    "QuoteSupplierRepository",
    "ResponseRepository",
    "SupplierRepository",
]
