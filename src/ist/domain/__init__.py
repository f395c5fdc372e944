from .models import Item, Sale, Category, SaleReceipt
from .errors import (
    ValidationError,
    NotFoundError,
    InsufficientStockError,
    StaleDataError,
    TransactionConflictError,
    StoreUnavailableError,
)

__all__ = [
    "Item",
    "Sale",
    "Category",
    "SaleReceipt",
    "ValidationError",
    "NotFoundError",
    "InsufficientStockError",
    "StaleDataError",
    "TransactionConflictError",
    "StoreUnavailableError",
]
