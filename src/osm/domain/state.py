"""Sale and invoice lifecycles.

Sale:     open -> finalized, open -> cancelled, finalized -> cancelled
Invoice:  mirrors the sale; its status is derived, never set by hand.
"""
from __future__ import annotations

from osm.domain.errors import InvalidStateError
from osm.domain.models import InvoiceStatus, Sale, SaleStatus

SALE_TRANSITIONS: dict[SaleStatus, frozenset[SaleStatus]] = {
    SaleStatus.OPEN: frozenset({SaleStatus.OPEN, SaleStatus.FINALIZED, SaleStatus.CANCELLED}),
    SaleStatus.FINALIZED: frozenset({SaleStatus.CANCELLED}),
    SaleStatus.CANCELLED: frozenset(),
}

INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.PENDING: frozenset(
        {InvoiceStatus.PENDING, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.PARTIALLY_PAID: frozenset(
        {InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.PAID: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.CANCELLED: frozenset(),
}


def ensure_sale_transition(current: SaleStatus, target: SaleStatus) -> None:
    if target not in SALE_TRANSITIONS[current]:
        raise InvalidStateError(f"Sale cannot move from '{current.value}' to '{target.value}'.")


def ensure_invoice_transition(current: InvoiceStatus, target: InvoiceStatus) -> None:
    if target not in INVOICE_TRANSITIONS[current]:
        raise InvalidStateError(f"Invoice cannot move from '{current.value}' to '{target.value}'.")


def ensure_editable(sale: Sale) -> None:
    if sale.status != SaleStatus.OPEN:
        raise InvalidStateError(f"Sale {sale.id} is {sale.status.value}; only open sales can be edited.")


def ensure_payable(sale: Sale) -> None:
    if sale.status == SaleStatus.CANCELLED:
        raise InvalidStateError(f"Sale {sale.id} is cancelled; payments are not accepted.")


def sale_status_for_balance(current: SaleStatus, balance_due: float) -> SaleStatus:
    if current == SaleStatus.OPEN and balance_due <= 0:
        return SaleStatus.FINALIZED
    return current


def invoice_status_for(sale_status: SaleStatus, balance_due: float, amount_paid: float) -> InvoiceStatus:
    if sale_status == SaleStatus.CANCELLED:
        return InvoiceStatus.CANCELLED
    if balance_due <= 0:
        return InvoiceStatus.PAID
    if amount_paid > 0:
        return InvoiceStatus.PARTIALLY_PAID
    return InvoiceStatus.PENDING
