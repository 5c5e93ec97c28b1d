import re

import pytest

from conftest import cart, count_rows, deliver, frame_line
from osm.domain.errors import (
    InsufficientStockError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from osm.domain.models import InvoiceStatus, ProductRef, SaleStatus

FRAME = ProductRef.frame(1)
LENS = ProductRef.lens(2)

WRITE_TABLES = ["sales", "sale_lines", "invoices", "payments", "stock_reservations"]


def _lens_line(product_id: int = 2, qty: int = 2, unit_price: float = 30.0) -> dict:
    return {"kind": "lens", "product_id": product_id, "qty": qty, "unit_price": unit_price, "vat_pct": 20}


def test_scenario_a_sale_without_insurance(container):
    deliver(container, FRAME, 5)

    receipt = container.sales.create_sale(cart(frame_line(1)))

    assert receipt.sale.total_excl_tax == 100.0
    assert receipt.sale.total_incl_tax == 120.0
    assert receipt.sale.client_due == 120.0
    assert receipt.sale.balance_due == 120.0
    assert receipt.sale.status == SaleStatus.OPEN
    assert receipt.invoice.status == InvoiceStatus.PENDING
    assert re.fullmatch(r"FACT-\d{4}-000001", receipt.invoice.number)
    assert [ln.line_total for ln in receipt.lines] == [120.0]
    assert container.inventory.stock_level(FRAME) == 4


def test_scenario_b_insurance_capped_by_ceiling(container):
    deliver(container, FRAME, 5)
    plan_id = container.insurance.add_plan("Mutuelle CNSS", "percentage", 50, 40)

    sale = container.sales.create_sale(cart(frame_line(1), plan_id=plan_id)).sale

    assert sale.insurance_covered == 40.0
    assert sale.client_due == 80.0
    assert sale.insurance_covered + sale.client_due == pytest.approx(sale.total_incl_tax, abs=0.005)


def test_scenario_c_insufficient_stock_writes_nothing(container):
    deliver(container, FRAME, 3)

    with pytest.raises(InsufficientStockError) as info:
        container.sales.create_sale(cart(frame_line(1, qty=5)))

    assert info.value.shortfall == 2
    for table in WRITE_TABLES:
        assert count_rows(container.repo, table) == 0, table
    assert container.inventory.stock_level(FRAME) == 3


def test_scenario_d_full_payment_finalizes_sale(container):
    deliver(container, FRAME, 5)
    plan_id = container.insurance.add_plan("Mutuelle", "percentage", 50, 40)
    sale = container.sales.create_sale(cart(frame_line(1), plan_id=plan_id)).sale

    receipt = container.sales.record_payment(sale.id, 80, "card", "TPE-0042")

    assert receipt.balance_due == 0.0
    assert receipt.sale.amount_paid == 80.0
    assert receipt.sale.status == SaleStatus.FINALIZED
    assert receipt.invoice.status == InvoiceStatus.PAID
    assert receipt.payment.reference == "TPE-0042"


def test_scenario_e_cancel_finalized_sale_restores_stock(container):
    deliver(container, FRAME, 5)
    receipt = container.sales.create_sale(cart(frame_line(1, qty=5), upfront=600.0))
    assert receipt.sale.status == SaleStatus.FINALIZED
    assert receipt.invoice.status == InvoiceStatus.PAID
    assert container.inventory.stock_level(FRAME) == 0

    cancelled = container.sales.cancel_sale(receipt.sale.id)

    assert cancelled.status == SaleStatus.CANCELLED
    assert container.sales.invoice_for_sale(receipt.sale.id).status == InvoiceStatus.CANCELLED
    assert container.inventory.stock_level(FRAME) == 5


def test_double_cancel_is_rejected_without_stock_change(container):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1, qty=2))).sale
    container.sales.cancel_sale(sale.id)
    assert container.inventory.stock_level(FRAME) == 5

    with pytest.raises(InvalidStateError):
        container.sales.cancel_sale(sale.id)
    assert container.inventory.stock_level(FRAME) == 5


def test_cancel_returns_units_to_their_original_lots(container):
    older = deliver(container, FRAME, 2, delivered_at="2025-01-01 09:00:00")
    newer = deliver(container, FRAME, 4, delivered_at="2025-02-01 09:00:00")
    sale = container.sales.create_sale(cart(frame_line(1, qty=3))).sale

    container.sales.cancel_sale(sale.id)

    lots = {lot.id: lot.quantity for lot in container.inventory.list_lots(FRAME)}
    assert lots == {older: 2, newer: 4}


def test_partial_payments_accumulate(container):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1))).sale

    first = container.sales.record_payment(sale.id, 50, "cash")
    assert first.sale.status == SaleStatus.OPEN
    assert first.invoice.status == InvoiceStatus.PARTIALLY_PAID
    assert first.balance_due == 70.0

    second = container.sales.record_payment(sale.id, 70, "cheque", "CHQ-881")
    assert second.sale.amount_paid == 120.0
    assert second.sale.status == SaleStatus.FINALIZED
    assert second.invoice.status == InvoiceStatus.PAID

    payments = container.sales.list_payments(sale.id)
    assert sorted(p.amount for p in payments) == [50.0, 70.0]


def test_payment_validation(container):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1))).sale

    with pytest.raises(ValidationError):
        container.sales.record_payment(sale.id, 0, "cash")
    with pytest.raises(ValidationError, match="Unknown payment method"):
        container.sales.record_payment(sale.id, 10, "bitcoin")
    with pytest.raises(InvalidStateError, match="exceeds the balance"):
        container.sales.record_payment(sale.id, 120.01, "cash")
    with pytest.raises(NotFoundError):
        container.sales.record_payment(999, 10, "cash")
    assert count_rows(container.repo, "payments") == 0


@pytest.mark.parametrize("amount", ["inf", "nan", "-inf", float("inf"), float("nan")])
def test_non_finite_payment_amounts_are_rejected(container, amount):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1))).sale

    with pytest.raises(ValidationError, match="Invalid payment amount"):
        container.sales.record_payment(sale.id, amount, "cash")

    assert count_rows(container.repo, "payments") == 0
    after = container.sales.get_sale(sale.id)
    assert after.sale.amount_paid == 0.0
    assert after.sale.status == SaleStatus.OPEN
    assert after.invoice.status == InvoiceStatus.PENDING


def test_payment_on_cancelled_sale_is_rejected(container):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1))).sale
    container.sales.cancel_sale(sale.id)

    with pytest.raises(InvalidStateError, match="cancelled"):
        container.sales.record_payment(sale.id, 10, "cash")


def test_partial_upfront_payment_is_recorded(container):
    deliver(container, FRAME, 5)

    receipt = container.sales.create_sale(cart(frame_line(1), upfront=20, method="card"))

    assert receipt.sale.amount_paid == 20.0
    assert receipt.sale.balance_due == 100.0
    assert receipt.invoice.status == InvoiceStatus.PARTIALLY_PAID
    [payment] = container.sales.list_payments(receipt.sale.id)
    assert payment.method.value == "card"


def test_upfront_above_client_due_is_rejected(container):
    deliver(container, FRAME, 5)

    with pytest.raises(ValidationError, match="exceeds the client due"):
        container.sales.create_sale(cart(frame_line(1), upfront=500))
    for table in WRITE_TABLES:
        assert count_rows(container.repo, table) == 0, table
    assert container.inventory.stock_level(FRAME) == 5


@pytest.mark.parametrize(
    "payload,match",
    [
        (cart(frame_line(1), client_id=None), "Client"),
        (cart(frame_line(1), seller_id=None), "Seller"),
        (cart(), "empty"),
        (cart(frame_line(1, qty=0)), "Qty"),
        (cart(frame_line(1, discount_pct=120)), "Discount"),
        (cart(frame_line(1, unit_price=float("inf"))), "finite"),
        (cart(frame_line(1, unit_price=float("nan"))), "finite"),
        (cart(frame_line(1, vat_pct=float("nan"))), "finite"),
        (cart(frame_line(1), upfront=float("inf")), "finite"),
        (cart(frame_line(1), upfront=float("nan")), "finite"),
    ],
)
def test_invalid_carts_are_rejected(container, payload, match):
    deliver(container, FRAME, 5)
    with pytest.raises(ValidationError, match=match):
        container.sales.create_sale(payload)
    for table in WRITE_TABLES:
        assert count_rows(container.repo, table) == 0, table
    assert container.inventory.stock_level(FRAME) == 5


def test_inactive_plan_is_rejected(container):
    deliver(container, FRAME, 5)
    plan_id = container.insurance.add_plan("Old plan", "fixed", 30, 30)
    container.insurance.deactivate_plan(plan_id)

    with pytest.raises(ValidationError, match="inactive"):
        container.sales.create_sale(cart(frame_line(1), plan_id=plan_id))


def test_update_sale_replaces_lines_and_stock(container):
    deliver(container, FRAME, 5)
    deliver(container, LENS, 10)
    sale = container.sales.create_sale(cart(frame_line(1, qty=2))).sale
    assert container.inventory.stock_level(FRAME) == 3

    updated = container.sales.update_sale(sale.id, cart(frame_line(1, qty=1), _lens_line(qty=2)))

    assert container.inventory.stock_level(FRAME) == 4
    assert container.inventory.stock_level(LENS) == 8
    assert updated.total_incl_tax == 192.0
    assert updated.balance_due == 192.0
    receipt = container.sales.get_sale(sale.id)
    assert sorted((ln.product.kind.value, ln.qty) for ln in receipt.lines) == [("frame", 1), ("lens", 2)]
    assert receipt.invoice.total_incl_tax == 192.0


def test_update_sale_keeps_payments_and_can_finalize(container):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1, qty=2))).sale
    container.sales.record_payment(sale.id, 120, "cash")

    updated = container.sales.update_sale(sale.id, cart(frame_line(1, qty=1)))

    assert updated.amount_paid == 120.0
    assert updated.balance_due == 0.0
    assert updated.status == SaleStatus.FINALIZED
    assert container.sales.invoice_for_sale(sale.id).status == InvoiceStatus.PAID


def test_update_below_amount_paid_rolls_back(container):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1, qty=2))).sale
    container.sales.record_payment(sale.id, 200, "cash")

    with pytest.raises(InvalidStateError, match="overpaid"):
        container.sales.update_sale(sale.id, cart(frame_line(1, qty=1)))

    assert container.inventory.stock_level(FRAME) == 3
    receipt = container.sales.get_sale(sale.id)
    assert [ln.qty for ln in receipt.lines] == [2]
    assert receipt.sale.total_incl_tax == 240.0


def test_update_rules(container):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1), upfront=120)).sale

    with pytest.raises(InvalidStateError, match="only open sales"):
        container.sales.update_sale(sale.id, cart(frame_line(1, qty=2)))
    with pytest.raises(NotFoundError):
        container.sales.update_sale(999, cart(frame_line(1)))
    with pytest.raises(ValidationError, match="record_payment"):
        container.sales.update_sale(sale.id, cart(frame_line(1), upfront=10))


def test_update_with_insufficient_stock_keeps_original_sale(container):
    deliver(container, FRAME, 3)
    sale = container.sales.create_sale(cart(frame_line(1, qty=2))).sale

    with pytest.raises(InsufficientStockError):
        container.sales.update_sale(sale.id, cart(frame_line(1, qty=4)))

    assert container.inventory.stock_level(FRAME) == 1
    assert [ln.qty for ln in container.sales.get_sale(sale.id).lines] == [2]


def test_invoice_numbers_are_sequential(container):
    deliver(container, FRAME, 5)
    first = container.sales.create_sale(cart(frame_line(1))).invoice
    second = container.sales.create_sale(cart(frame_line(1))).invoice

    assert first.number.endswith("-000001")
    assert second.number.endswith("-000002")
    assert container.sales.get_invoice(second.id).sale_id != first.sale_id


def test_list_sales_filters(container):
    deliver(container, FRAME, 5)
    a = container.sales.create_sale(cart(frame_line(1), seller_id=2)).sale
    b = container.sales.create_sale(cart(frame_line(1), seller_id=3)).sale
    container.sales.cancel_sale(b.id)

    assert [s.id for s in container.sales.list_sales(seller_id=2)] == [a.id]
    assert [s.id for s in container.sales.list_sales(status="cancelled")] == [b.id]


def test_unknown_status_filter_is_a_validation_error(container):
    with pytest.raises(ValidationError, match="Unknown sale status"):
        container.sales.list_sales(status="archived")


def test_lookups_raise_not_found(container):
    with pytest.raises(NotFoundError):
        container.sales.get_sale(1)
    with pytest.raises(NotFoundError):
        container.sales.list_payments(1)
    with pytest.raises(NotFoundError):
        container.sales.get_invoice(1)


@pytest.mark.parametrize("sale_id", ["abc", None, "1.5"])
def test_malformed_sale_ids_are_validation_errors(container, sale_id):
    with pytest.raises(ValidationError, match="Invalid sale id"):
        container.sales.get_sale(sale_id)
    with pytest.raises(ValidationError, match="Invalid sale id"):
        container.sales.cancel_sale(sale_id)
    with pytest.raises(ValidationError, match="Invalid sale id"):
        container.sales.record_payment(sale_id, 10, "cash")


def test_payments_are_append_only(container):
    deliver(container, FRAME, 5)
    sale = container.sales.create_sale(cart(frame_line(1))).sale
    container.sales.record_payment(sale.id, 10, "cash")

    with pytest.raises(StorageError, match="append-only"):
        with container.repo.unit_of_work() as uow:
            uow.conn.execute("DELETE FROM payments")
    assert len(container.sales.list_payments(sale.id)) == 1
