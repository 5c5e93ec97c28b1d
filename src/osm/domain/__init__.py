from .models import (
    AvailabilityReport,
    Cart,
    CartLine,
    CoverageMode,
    InsurancePlan,
    Invoice,
    InvoiceStatus,
    LotStatus,
    Payment,
    PaymentMethod,
    PaymentReceipt,
    Product,
    ProductKind,
    ProductRef,
    Reservation,
    Sale,
    SaleLine,
    SaleReceipt,
    SaleStatus,
    StockLot,
)
from .errors import (
    AppError,
    BusyError,
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)

__all__ = [
    "AvailabilityReport",
    "Cart",
    "CartLine",
    "CoverageMode",
    "InsurancePlan",
    "Invoice",
    "InvoiceStatus",
    "LotStatus",
    "Payment",
    "PaymentMethod",
    "PaymentReceipt",
    "Product",
    "ProductKind",
    "ProductRef",
    "Reservation",
    "Sale",
    "SaleLine",
    "SaleReceipt",
    "SaleStatus",
    "StockLot",
    "AppError",
    "BusyError",
    "InsufficientStockError",
    "InvalidStateError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
]
