from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Callable, Optional

from osm.domain.errors import InvalidStateError, ValidationError
from osm.domain.models import Payment, PaymentMethod, Sale
from osm.domain.pricing import balance, money
from osm.domain.state import ensure_payable, ensure_sale_transition, sale_status_for_balance
from osm.repositories.unit_of_work import UnitOfWork

log = logging.getLogger("osm.sales")


def parse_method(method: str | PaymentMethod) -> PaymentMethod:
    try:
        return PaymentMethod(str(method.value if isinstance(method, PaymentMethod) else method).strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in PaymentMethod)
        raise ValidationError(f"Unknown payment method {method!r}. Use one of: {allowed}.") from None


def parse_amount(amount: object) -> float:
    try:
        raw = float(amount)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid payment amount: {amount!r}.") from None
    if not math.isfinite(raw):
        raise ValidationError(f"Invalid payment amount: {amount!r}.")
    value = money(raw)
    if value <= 0:
        raise ValidationError("Payment amount must be > 0.")
    return value


class PaymentLedger:
    """Append-only payments; the sale's paid amount is always their sum."""

    def __init__(self, now: Callable[[], datetime] = datetime.now):
        self.now = now

    def record(
        self,
        uow: UnitOfWork,
        sale: Sale,
        amount: object,
        method: str | PaymentMethod,
        reference: Optional[str] = None,
    ) -> tuple[Payment, Sale]:
        value = parse_amount(amount)
        pay_method = parse_method(method)
        ensure_payable(sale)
        if value > sale.balance_due:
            raise InvalidStateError(
                f"Payment of {value:.2f} exceeds the balance due of {sale.balance_due:.2f} on sale {sale.id}."
            )

        stamp = self.now().replace(microsecond=0).isoformat(sep=" ")
        ref = (reference or "").strip() or None
        payment_id = uow.payments.add(sale.id, value, pay_method, ref, stamp)
        updated = self.rebalance(uow, sale, stamp)

        log.info(
            "payment_recorded payment_id=%s sale_id=%s amount=%.2f method=%s balance=%.2f",
            payment_id,
            sale.id,
            value,
            pay_method.value,
            updated.balance_due,
        )
        payment = next(p for p in uow.payments.for_sale(sale.id) if p.id == payment_id)
        return payment, updated

    def rebalance(self, uow: UnitOfWork, sale: Sale, stamp: Optional[str] = None) -> Sale:
        """Recompute paid amount and balance from the payment rows and settle the sale when nothing is due."""
        paid = money(uow.payments.total_for_sale(sale.id))
        remaining = balance(sale.client_due, paid)
        if remaining < 0:
            raise InvalidStateError(
                f"Sale {sale.id} would be overpaid: paid {paid:.2f}, due {sale.client_due:.2f}."
            )
        status = sale_status_for_balance(sale.status, remaining)
        ensure_sale_transition(sale.status, status)
        uow.sales.update_balance(
            sale.id, paid, remaining, status, stamp or self.now().replace(microsecond=0).isoformat(sep=" ")
        )
        return uow.sales.get(sale.id)

    def list_payments(self, uow: UnitOfWork, sale_id: int) -> list[Payment]:
        return uow.payments.for_sale(sale_id)
