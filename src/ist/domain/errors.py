class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    def __init__(self, item_name: str, available: int, requested: int, message: str | None = None):
        self.item_name = item_name
        self.available = int(available)
        self.requested = int(requested)
        super().__init__(message or f"Not enough stock. Only {self.available} {item_name}(s) available.")


class StaleDataError(AppError):
    pass


class TransactionConflictError(AppError):
    """Read set changed before commit, or retries ran out."""


class StoreUnavailableError(AppError):
    """Store failed mid-operation; the outcome is unknown."""


class StoreUsageError(AppError):
    pass
