from .catalog_service import CartBuilder, CatalogService
from .excel_service import ExcelService
from .insurance_service import InsuranceService
from .inventory_service import InventoryLedger
from .invoice_service import InvoiceIssuer
from .payment_service import PaymentLedger
from .sales_service import SalesService

__all__ = [
    "CartBuilder",
    "CatalogService",
    "ExcelService",
    "InsuranceService",
    "InventoryLedger",
    "InvoiceIssuer",
    "PaymentLedger",
    "SalesService",
]
