from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable, Iterable, Optional

from osm.domain.errors import NotFoundError, ValidationError
from osm.domain.models import (
    AvailabilityReport,
    Cart,
    CartLine,
    InsurancePlan,
    Invoice,
    Payment,
    PaymentReceipt,
    Sale,
    SaleReceipt,
    SaleStatus,
)
from osm.domain.pricing import line_total, settle
from osm.domain.state import ensure_editable, ensure_sale_transition
from osm.repositories.unit_of_work import UnitOfWork
from osm.services.inventory_service import InventoryLedger
from osm.services.invoice_service import InvoiceIssuer
from osm.services.payment_service import PaymentLedger, parse_amount, parse_method

log = logging.getLogger("osm.sales")


class SalesService:
    """Checkout, edit, cancellation and payment of optical sales.

    Every public write runs in exactly one unit of work: stock, sale, lines,
    invoice and payment rows change together or not at all.
    """

    def __init__(
        self,
        uow_factory: Callable[..., UnitOfWork],
        inventory: InventoryLedger,
        invoices: InvoiceIssuer,
        payments: PaymentLedger,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.uow_factory = uow_factory
        self.inventory = inventory
        self.invoices = invoices
        self.payments = payments
        self.now = now

    # ---------- Boundary operations ----------
    def check_availability(self, lines: Iterable[CartLine | dict]) -> AvailabilityReport:
        cart_lines = [ln if isinstance(ln, CartLine) else CartLine.from_dict(ln) for ln in lines]
        with self.uow_factory(read_only=True) as uow:
            return self.inventory.check_availability(uow, cart_lines)

    def create_sale(self, cart: Cart | dict) -> SaleReceipt:
        cart = self._as_cart(cart)
        self._validate_cart(cart)
        upfront = parse_amount(cart.upfront_payment) if cart.upfront_payment else 0.0
        method = parse_method(cart.payment_method) if upfront else None

        with self.uow_factory() as uow:
            self.inventory.check_availability(uow, cart.lines)
            plan = self._plan(uow, cart.insurance_plan_id)
            figures = settle(cart.lines, plan)
            if upfront > figures.client_due:
                raise ValidationError(
                    f"Upfront payment {upfront:.2f} exceeds the client due of {figures.client_due:.2f}."
                )

            stamp = self._stamp()
            sale_id = uow.sales.add(
                stamp,
                cart.client_id,
                cart.seller_id,
                cart.insurance_plan_id,
                figures.total_excl_tax,
                figures.total_incl_tax,
                figures.insurance_covered,
                figures.client_due,
                cart.notes,
            )
            uow.sales.add_lines(sale_id, self._line_rows(cart.lines))
            reservations = self.inventory.reserve(uow, cart.lines)
            uow.lots.record_reservations(sale_id, reservations)

            sale = uow.sales.get(sale_id)
            if upfront:
                _payment, sale = self.payments.record(uow, sale, upfront, method, cart.payment_reference)
            else:
                sale = self.payments.rebalance(uow, sale, stamp)
            invoice = self.invoices.issue(uow, sale)
            receipt = SaleReceipt(sale=sale, lines=tuple(uow.sales.lines(sale_id)), invoice=invoice)

        log.info(
            "sale_created sale_id=%s invoice=%s lines=%s total=%.2f covered=%.2f due=%.2f seller=%s",
            sale_id,
            invoice.number,
            len(cart.lines),
            sale.total_incl_tax,
            sale.insurance_covered,
            sale.client_due,
            cart.seller_id,
        )
        return receipt

    def update_sale(self, sale_id: int, cart: Cart | dict) -> Sale:
        cart = self._as_cart(cart)
        self._validate_cart(cart)
        if cart.upfront_payment:
            raise ValidationError("Record payments on an existing sale with record_payment.")

        with self.uow_factory() as uow:
            sale = self._sale(uow, sale_id)
            ensure_editable(sale)

            self._put_back_stock(uow, sale.id)
            self.inventory.check_availability(uow, cart.lines)
            plan = self._plan(uow, cart.insurance_plan_id)
            figures = settle(cart.lines, plan)

            stamp = self._stamp()
            uow.sales.update_header(
                sale.id,
                cart.client_id,
                cart.seller_id,
                cart.insurance_plan_id,
                figures.total_excl_tax,
                figures.total_incl_tax,
                figures.insurance_covered,
                figures.client_due,
                cart.notes,
                stamp,
            )
            uow.sales.delete_lines(sale.id)
            uow.sales.add_lines(sale.id, self._line_rows(cart.lines))
            reservations = self.inventory.reserve(uow, cart.lines)
            uow.lots.record_reservations(sale.id, reservations)

            updated = self.payments.rebalance(uow, uow.sales.get(sale.id), stamp)
            self.invoices.sync(uow, updated)

        log.info(
            "sale_updated sale_id=%s lines=%s total=%.2f due=%.2f balance=%.2f status=%s",
            sale_id,
            len(cart.lines),
            updated.total_incl_tax,
            updated.client_due,
            updated.balance_due,
            updated.status.value,
        )
        return updated

    def cancel_sale(self, sale_id: int) -> Sale:
        with self.uow_factory() as uow:
            sale = self._sale(uow, sale_id)
            ensure_sale_transition(sale.status, SaleStatus.CANCELLED)

            self._put_back_stock(uow, sale.id)
            uow.sales.set_status(sale.id, SaleStatus.CANCELLED, self._stamp())
            cancelled = uow.sales.get(sale.id)
            self.invoices.sync(uow, cancelled)

        log.info("sale_cancelled sale_id=%s previous_status=%s", sale_id, sale.status.value)
        return cancelled

    def record_payment(
        self, sale_id: int, amount: float, method: str, reference: Optional[str] = None
    ) -> PaymentReceipt:
        with self.uow_factory() as uow:
            sale = self._sale(uow, sale_id)
            payment, updated = self.payments.record(uow, sale, amount, method, reference)
            invoice = self.invoices.sync(uow, updated)

        if updated.status != sale.status:
            log.info("sale_status sale_id=%s %s->%s", sale_id, sale.status.value, updated.status.value)
        return PaymentReceipt(payment=payment, sale=updated, invoice=invoice)

    def list_payments(self, sale_id: int) -> list[Payment]:
        with self.uow_factory(read_only=True) as uow:
            self._sale(uow, sale_id)
            return self.payments.list_payments(uow, sale_id)

    # ---------- Lookups ----------
    def get_sale(self, sale_id: int) -> SaleReceipt:
        with self.uow_factory(read_only=True) as uow:
            sale = self._sale(uow, sale_id)
            invoice = uow.invoices.for_sale(sale.id)
            if invoice is None:
                raise NotFoundError(f"No invoice for sale {sale.id}.")
            return SaleReceipt(sale=sale, lines=tuple(uow.sales.lines(sale.id)), invoice=invoice)

    def list_sales(
        self,
        seller_id: Optional[int] = None,
        client_id: Optional[int] = None,
        status: Optional[SaleStatus | str] = None,
    ) -> list[Sale]:
        try:
            wanted = SaleStatus(status) if status is not None else None
        except ValueError:
            raise ValidationError(f"Unknown sale status {status!r}.") from None
        with self.uow_factory(read_only=True) as uow:
            return uow.sales.list_sales(seller_id=seller_id, client_id=client_id, status=wanted)

    def get_invoice(self, invoice_id: int) -> Invoice:
        with self.uow_factory(read_only=True) as uow:
            invoice = uow.invoices.get(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found.")
        return invoice

    def invoice_for_sale(self, sale_id: int) -> Invoice:
        with self.uow_factory(read_only=True) as uow:
            self._sale(uow, sale_id)
            invoice = uow.invoices.for_sale(sale_id)
        if not invoice:
            raise NotFoundError(f"No invoice for sale {sale_id}.")
        return invoice

    # ---------- Internals ----------
    def _put_back_stock(self, uow: UnitOfWork, sale_id: int) -> None:
        reservations = uow.lots.reservations_for_sale(sale_id)
        if reservations:
            self.inventory.release(uow, reservations)
        else:
            self.inventory.restore(uow, uow.sales.lines(sale_id))
        uow.lots.clear_reservations(sale_id)

    @staticmethod
    def _as_cart(cart: Cart | dict) -> Cart:
        if isinstance(cart, Cart):
            return cart
        if isinstance(cart, dict):
            return Cart.from_dict(cart)
        raise ValidationError("Cart must be a Cart or a dict.")

    @staticmethod
    def _validate_cart(cart: Cart) -> None:
        if not cart.client_id:
            raise ValidationError("Client is required.")
        if not cart.seller_id:
            raise ValidationError("Seller is required.")
        if not cart.lines:
            raise ValidationError("Cart is empty.")
        for ln in cart.lines:
            if ln.qty <= 0:
                raise ValidationError("Qty must be >= 1.")
            if not all(math.isfinite(v) for v in (ln.unit_price, ln.discount_pct, ln.vat_pct)):
                raise ValidationError("Unit price, discount and VAT must be finite numbers.")
            if ln.unit_price < 0:
                raise ValidationError("Unit price must be >= 0.")
            if not 0 <= ln.discount_pct <= 100:
                raise ValidationError("Discount must be between 0 and 100%.")
            if not 0 <= ln.vat_pct <= 100:
                raise ValidationError("VAT must be between 0 and 100%.")
        if not math.isfinite(cart.upfront_payment):
            raise ValidationError("Upfront payment must be a finite number.")
        if cart.upfront_payment < 0:
            raise ValidationError("Upfront payment must be >= 0.")

    @staticmethod
    def _plan(uow: UnitOfWork, plan_id: Optional[int]) -> Optional[InsurancePlan]:
        if plan_id is None:
            return None
        plan = uow.plans.get(plan_id)
        if not plan or not plan.active:
            raise ValidationError("Insurance plan not found or inactive.")
        return plan

    @staticmethod
    def _sale(uow: UnitOfWork, sale_id: int) -> Sale:
        try:
            key = int(sale_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid sale id: {sale_id!r}.") from None
        sale = uow.sales.get(key)
        if not sale:
            raise NotFoundError(f"Sale {sale_id} not found.")
        return sale

    @staticmethod
    def _line_rows(lines: Iterable[CartLine]) -> list[tuple]:
        return [
            (
                ln.product,
                ln.qty,
                ln.unit_price,
                ln.discount_pct,
                ln.vat_pct,
                line_total(ln.qty, ln.unit_price, ln.discount_pct, ln.vat_pct),
            )
            for ln in lines
        ]

    def _stamp(self) -> str:
        return self.now().replace(microsecond=0).isoformat(sep=" ")


__all__ = ["SalesService"]
