"""Sale pricing and insurance coverage.

Pure functions only: nothing here reads or writes storage.

    line_total = qty * unit_price * (1 - discount/100) * (1 + vat/100)

Insurance coverage is computed once against the sale's tax-inclusive total,
never per line, and is capped by the plan ceiling and by the total itself.

Amounts are floats rounded half-up to the cent. total_incl_tax equals
insurance_covered + client_due to the cent, not bit for bit.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Protocol

from osm.domain.errors import ValidationError
from osm.domain.models import CoverageMode, InsurancePlan

_CENT = Decimal("0.01")


class PricedLine(Protocol):
    qty: int
    unit_price: float
    discount_pct: float
    vat_pct: float


@dataclass(frozen=True)
class Totals:
    total_excl_tax: float
    total_incl_tax: float


@dataclass(frozen=True)
class Settlement:
    total_excl_tax: float
    total_incl_tax: float
    insurance_covered: float
    client_due: float


def money(value: float) -> float:
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def _check_line_inputs(qty: float, unit_price: float, discount_pct: float, vat_pct: float) -> None:
    if not all(math.isfinite(float(v)) for v in (qty, unit_price, discount_pct, vat_pct)):
        raise ValidationError("Line amounts must be finite numbers.")
    if qty < 0 or unit_price < 0:
        raise ValidationError("Quantity and unit price must be >= 0.")
    if not 0 <= discount_pct <= 100:
        raise ValidationError("Discount must be between 0 and 100%.")
    if not 0 <= vat_pct <= 100:
        raise ValidationError("VAT must be between 0 and 100%.")


def line_total_excl_tax(qty: float, unit_price: float, discount_pct: float) -> float:
    _check_line_inputs(qty, unit_price, discount_pct, 0.0)
    return float(qty) * float(unit_price) * (1 - float(discount_pct) / 100)


def line_total(qty: float, unit_price: float, discount_pct: float, vat_pct: float) -> float:
    _check_line_inputs(qty, unit_price, discount_pct, vat_pct)
    return money(line_total_excl_tax(qty, unit_price, discount_pct) * (1 + float(vat_pct) / 100))


def sale_totals(lines: Iterable[PricedLine]) -> Totals:
    excl = 0.0
    incl = 0.0
    for ln in lines:
        _check_line_inputs(ln.qty, ln.unit_price, ln.discount_pct, ln.vat_pct)
        ht = line_total_excl_tax(ln.qty, ln.unit_price, ln.discount_pct)
        excl += ht
        incl += ht * (1 + float(ln.vat_pct) / 100)
    return Totals(total_excl_tax=money(excl), total_incl_tax=money(incl))


def insurance_coverage(total_incl_tax: float, plan: Optional[InsurancePlan]) -> float:
    if plan is None:
        return 0.0
    if total_incl_tax < 0:
        raise ValidationError("Sale total must be >= 0.")
    if not (math.isfinite(plan.value) and math.isfinite(plan.ceiling)):
        raise ValidationError("Insurance plan value and ceiling must be finite numbers.")
    if plan.value < 0 or plan.ceiling < 0:
        raise ValidationError("Insurance plan value and ceiling must be >= 0.")

    if plan.mode == CoverageMode.PERCENTAGE:
        amount = float(total_incl_tax) * float(plan.value) / 100
    else:
        amount = float(plan.value)

    return money(min(amount, float(plan.ceiling), float(total_incl_tax)))


def settle(lines: Iterable[PricedLine], plan: Optional[InsurancePlan]) -> Settlement:
    totals = sale_totals(lines)
    covered = insurance_coverage(totals.total_incl_tax, plan)
    return Settlement(
        total_excl_tax=totals.total_excl_tax,
        total_incl_tax=totals.total_incl_tax,
        insurance_covered=covered,
        client_due=money(totals.total_incl_tax - covered),
    )


def balance(client_due: float, amount_paid: float) -> float:
    return money(float(client_due) - float(amount_paid))
