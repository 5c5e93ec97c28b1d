from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from osm.domain.errors import NotFoundError
from osm.domain.models import Invoice, Sale
from osm.domain.state import ensure_invoice_transition, invoice_status_for
from osm.repositories.unit_of_work import UnitOfWork

log = logging.getLogger("osm.sales")

SEQUENCE_WIDTH = 6


def format_invoice_number(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}-{int(year)}-{int(sequence):0{SEQUENCE_WIDTH}d}"


class InvoiceIssuer:
    """Issues one invoice per sale and keeps its status in step with the sale.

    Numbers look like FACT-2025-000042: the year of issue plus a running
    sequence shared by every invoice ever issued (it does not restart with the
    year). The sequence is drawn from a counter row updated inside the caller's
    transaction, so two sales can never get the same number.
    """

    def __init__(self, prefix: str = "FACT", now: Callable[[], datetime] = datetime.now):
        self.prefix = prefix
        self.now = now

    def issue(self, uow: UnitOfWork, sale: Sale) -> Invoice:
        issued = self.now().replace(microsecond=0)
        number = format_invoice_number(self.prefix, issued.year, uow.invoices.next_sequence())
        status = invoice_status_for(sale.status, sale.balance_due, sale.amount_paid)
        invoice_id = uow.invoices.add(
            sale.id, sale.seller_id, number, sale.total_incl_tax, issued.isoformat(sep=" "), status
        )
        log.info("invoice_issued invoice_id=%s number=%s sale_id=%s status=%s", invoice_id, number, sale.id, status.value)
        return uow.invoices.get(invoice_id)

    def sync(self, uow: UnitOfWork, sale: Sale) -> Invoice:
        """Mirror the sale's current total and status onto its invoice."""
        invoice = uow.invoices.for_sale(sale.id)
        if invoice is None:
            raise NotFoundError(f"No invoice for sale {sale.id}.")
        target = invoice_status_for(sale.status, sale.balance_due, sale.amount_paid)
        ensure_invoice_transition(invoice.status, target)
        uow.invoices.update(
            invoice.id, sale.total_incl_tax, target, self.now().replace(microsecond=0).isoformat(sep=" ")
        )
        if target != invoice.status:
            log.info("invoice_status invoice_id=%s %s->%s", invoice.id, invoice.status.value, target.value)
        return uow.invoices.get(invoice.id)
