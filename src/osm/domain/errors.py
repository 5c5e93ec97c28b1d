from __future__ import annotations


class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    """Demand for a product exceeds its delivered stock."""

    def __init__(self, product, requested: int, available: int):
        self.product = product
        self.requested = int(requested)
        self.available = int(available)
        super().__init__(
            f"Not enough stock for {product}. Available: {self.available}, requested: {self.requested}"
        )

    @property
    def shortfall(self) -> int:
        return self.requested - self.available


class InvalidStateError(AppError):
    pass


class StorageError(AppError):
    """The transaction could not be committed; nothing was written."""


class BusyError(StorageError):
    pass
