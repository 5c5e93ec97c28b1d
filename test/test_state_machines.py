import pytest

from osm.domain.errors import InvalidStateError
from osm.domain.models import InvoiceStatus, SaleStatus
from osm.domain.state import (
    ensure_invoice_transition,
    ensure_sale_transition,
    invoice_status_for,
    sale_status_for_balance,
)


@pytest.mark.parametrize(
    "current,target",
    [
        (SaleStatus.OPEN, SaleStatus.FINALIZED),
        (SaleStatus.OPEN, SaleStatus.CANCELLED),
        (SaleStatus.FINALIZED, SaleStatus.CANCELLED),
    ],
)
def test_allowed_sale_transitions(current, target):
    ensure_sale_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (SaleStatus.CANCELLED, SaleStatus.CANCELLED),
        (SaleStatus.CANCELLED, SaleStatus.OPEN),
        (SaleStatus.FINALIZED, SaleStatus.OPEN),
    ],
)
def test_rejected_sale_transitions(current, target):
    with pytest.raises(InvalidStateError):
        ensure_sale_transition(current, target)


def test_cancelled_invoice_is_terminal():
    with pytest.raises(InvalidStateError):
        ensure_invoice_transition(InvoiceStatus.CANCELLED, InvoiceStatus.PAID)


def test_open_sale_finalizes_when_nothing_is_due():
    assert sale_status_for_balance(SaleStatus.OPEN, 0.0) == SaleStatus.FINALIZED
    assert sale_status_for_balance(SaleStatus.OPEN, 10.0) == SaleStatus.OPEN


def test_invoice_status_follows_balance():
    assert invoice_status_for(SaleStatus.OPEN, 80.0, 0.0) == InvoiceStatus.PENDING
    assert invoice_status_for(SaleStatus.OPEN, 30.0, 50.0) == InvoiceStatus.PARTIALLY_PAID
    assert invoice_status_for(SaleStatus.FINALIZED, 0.0, 80.0) == InvoiceStatus.PAID
    assert invoice_status_for(SaleStatus.CANCELLED, 30.0, 50.0) == InvoiceStatus.CANCELLED
