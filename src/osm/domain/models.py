from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from osm.domain.errors import ValidationError


class ProductKind(str, Enum):
    FRAME = "frame"
    LENS = "lens"


@dataclass(frozen=True)
class ProductRef:
    """Polymorphic product reference: a frame or a lens, by catalog id."""

    kind: ProductKind
    id: int

    @classmethod
    def frame(cls, product_id: int) -> "ProductRef":
        return cls(ProductKind.FRAME, int(product_id))

    @classmethod
    def lens(cls, product_id: int) -> "ProductRef":
        return cls(ProductKind.LENS, int(product_id))

    @classmethod
    def parse(cls, kind: str | ProductKind, product_id: object) -> "ProductRef":
        try:
            k = kind if isinstance(kind, ProductKind) else ProductKind(str(kind).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown product kind: {kind!r}.") from None
        try:
            pid = int(product_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid product id: {product_id!r}.") from None
        if pid <= 0:
            raise ValidationError("Product id must be >= 1.")
        return cls(k, pid)

    def __str__(self) -> str:
        return f"{self.kind.value} #{self.id}"


@dataclass(frozen=True)
class Product:
    ref: ProductRef
    label: str
    sale_price: float
    active: int = 1


class LotStatus(str, Enum):
    REQUESTED = "requested"
    ORDERED = "ordered"
    DELIVERED = "delivered"


@dataclass(frozen=True)
class StockLot:
    id: int
    product: ProductRef
    status: LotStatus
    quantity: int
    unit_cost: float
    supplier_id: Optional[int]
    delivered_at: Optional[str]
    created_at: str


@dataclass(frozen=True)
class Reservation:
    lot_id: int
    product: ProductRef
    quantity: int


@dataclass(frozen=True)
class StockDemand:
    product: ProductRef
    requested: int
    available: int

    @property
    def shortfall(self) -> int:
        return max(0, self.requested - self.available)


@dataclass(frozen=True)
class AvailabilityReport:
    demands: tuple[StockDemand, ...]

    @property
    def ok(self) -> bool:
        return all(d.shortfall == 0 for d in self.demands)

    @property
    def shortages(self) -> tuple[StockDemand, ...]:
        return tuple(d for d in self.demands if d.shortfall > 0)


class CoverageMode(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


@dataclass(frozen=True)
class InsurancePlan:
    id: int
    name: str
    mode: CoverageMode
    value: float
    ceiling: float
    active: int = 1
    notes: Optional[str] = None


@dataclass(frozen=True)
class CartLine:
    product: ProductRef
    qty: int
    unit_price: float
    discount_pct: float = 0.0
    vat_pct: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        """
        data: {kind, product_id, qty, unit_price, discount_pct?, vat_pct?}
        """
        try:
            return cls(
                product=ProductRef.parse(data["kind"], data["product_id"]),
                qty=int(data["qty"]),
                unit_price=float(data["unit_price"]),
                discount_pct=float(data.get("discount_pct", 0) or 0),
                vat_pct=float(data.get("vat_pct", 0) or 0),
            )
        except KeyError as exc:
            raise ValidationError(f"Cart line is missing '{exc.args[0]}'.") from None
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid cart line: {exc}") from None


@dataclass(frozen=True)
class Cart:
    client_id: Optional[int]
    seller_id: Optional[int]
    lines: tuple[CartLine, ...] = field(default_factory=tuple)
    insurance_plan_id: Optional[int] = None
    upfront_payment: float = 0.0
    payment_method: str = "cash"
    payment_reference: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Cart":
        lines = tuple(
            line if isinstance(line, CartLine) else CartLine.from_dict(line)
            for line in (data.get("lines") or [])
        )
        try:
            return cls(
                client_id=_opt_int(data.get("client_id")),
                seller_id=_opt_int(data.get("seller_id")),
                lines=lines,
                insurance_plan_id=_opt_int(data.get("insurance_plan_id")),
                upfront_payment=float(data.get("upfront_payment", 0) or 0),
                payment_method=str(data.get("payment_method") or "cash"),
                payment_reference=data.get("payment_reference"),
                notes=data.get("notes"),
            )
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid cart: {exc}") from None


def _opt_int(value: object) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


class SaleStatus(str, Enum):
    OPEN = "open"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Sale:
    id: int
    created_at: str
    client_id: int
    seller_id: int
    insurance_plan_id: Optional[int]
    status: SaleStatus
    total_excl_tax: float
    total_incl_tax: float
    insurance_covered: float
    client_due: float
    amount_paid: float
    balance_due: float
    notes: Optional[str] = None


@dataclass(frozen=True)
class SaleLine:
    id: int
    sale_id: int
    product: ProductRef
    qty: int
    unit_price: float
    discount_pct: float
    vat_pct: float
    line_total: float


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    CHEQUE = "cheque"
    TRANSFER = "transfer"


@dataclass(frozen=True)
class Payment:
    id: int
    sale_id: int
    amount: float
    method: PaymentMethod
    reference: Optional[str]
    paid_at: str


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Invoice:
    id: int
    sale_id: int
    seller_id: int
    number: str
    total_incl_tax: float
    issued_at: str
    status: InvoiceStatus


@dataclass(frozen=True)
class SaleReceipt:
    sale: Sale
    lines: tuple[SaleLine, ...]
    invoice: Invoice


@dataclass(frozen=True)
class PaymentReceipt:
    payment: Payment
    sale: Sale
    invoice: Invoice

    @property
    def balance_due(self) -> float:
        return self.sale.balance_due
