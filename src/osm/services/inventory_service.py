from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

from osm.domain.errors import InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
from osm.domain.models import (
    AvailabilityReport,
    LotStatus,
    ProductRef,
    Reservation,
    StockDemand,
    StockLot,
)
from osm.repositories.unit_of_work import UnitOfWork

log = logging.getLogger("osm.stock")

_NEXT_STATUSES = {
    LotStatus.REQUESTED: {LotStatus.ORDERED, LotStatus.DELIVERED},
    LotStatus.ORDERED: {LotStatus.DELIVERED},
    LotStatus.DELIVERED: set(),
}


class StockLine(Protocol):
    product: ProductRef
    qty: int


def _now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


def demand_by_product(lines: Iterable[StockLine]) -> dict[ProductRef, int]:
    demand: Counter[ProductRef] = Counter()
    for ln in lines:
        demand[ln.product] += int(ln.qty)
    return dict(demand)


class InventoryLedger:
    """Delivered stock lots per (kind, id) product bucket.

    The transactional methods (check_availability, reserve, restore, release)
    take the caller's unit of work and never commit on their own. Lot
    administration methods open a unit of work per call.
    """

    def __init__(self, uow_factory: Callable[..., UnitOfWork], clock: Callable[[], str] = _now_iso):
        self.uow_factory = uow_factory
        self.clock = clock

    # ---------- Availability / reservation ----------
    def check_availability(self, uow: UnitOfWork, lines: Iterable[StockLine]) -> AvailabilityReport:
        demands = tuple(
            StockDemand(product=ref, requested=qty, available=uow.lots.delivered_quantity(ref))
            for ref, qty in demand_by_product(lines).items()
        )
        report = AvailabilityReport(demands=demands)
        if not report.ok:
            first = report.shortages[0]
            raise InsufficientStockError(first.product, first.requested, first.available)
        return report

    def reserve(self, uow: UnitOfWork, lines: Iterable[StockLine]) -> list[Reservation]:
        """Take stock oldest delivery first. Call after check_availability, in the same unit of work."""
        taken: list[Reservation] = []
        for ref, qty in demand_by_product(lines).items():
            remaining = qty
            for lot in uow.lots.reservable_lots(ref):
                if remaining <= 0:
                    break
                portion = min(remaining, lot.quantity)
                uow.lots.adjust_quantity(lot.id, -portion)
                taken.append(Reservation(lot_id=lot.id, product=ref, quantity=portion))
                remaining -= portion
            if remaining > 0:
                # Stock moved between check and reserve: abort the whole unit of work.
                raise InsufficientStockError(ref, qty, qty - remaining)
        return taken

    def restore(self, uow: UnitOfWork, lines: Iterable[StockLine]) -> None:
        """Put quantities back on the most recently delivered lot of each product.

        Keeps the per-product total right; the lot a unit lands on may differ
        from the one it was taken from.
        """
        for ref, qty in demand_by_product(lines).items():
            lot_id = uow.lots.latest_delivered_lot_id(ref)
            if lot_id is None:
                lot_id = uow.lots.add(ref, LotStatus.DELIVERED, 0, 0.0, None, self.clock())
                log.warning("restore_created_lot product=%s lot_id=%s", ref, lot_id)
            uow.lots.adjust_quantity(lot_id, qty)

    def release(self, uow: UnitOfWork, reservations: Iterable[Reservation]) -> None:
        """Reverse recorded reservations lot by lot."""
        orphans = []
        for res in reservations:
            if uow.lots.get(res.lot_id) is None:
                orphans.append(res)
                continue
            uow.lots.adjust_quantity(res.lot_id, res.quantity)
        if orphans:
            self.restore(uow, [_Returned(r.product, r.quantity) for r in orphans])

    def stock_level(self, product: ProductRef) -> int:
        with self.uow_factory(read_only=True) as uow:
            return uow.lots.delivered_quantity(product)

    # ---------- Lot administration ----------
    def request_lot(
        self, product: ProductRef, quantity: int, unit_cost: float = 0.0, supplier_id: Optional[int] = None
    ) -> int:
        self._validate_lot(quantity, unit_cost)
        with self.uow_factory() as uow:
            lot_id = uow.lots.add(product, LotStatus.REQUESTED, int(quantity), float(unit_cost), supplier_id, None)
        log.info("lot_requested lot_id=%s product=%s qty=%s", lot_id, product, quantity)
        return lot_id

    def receive_delivery(
        self,
        product: ProductRef,
        quantity: int,
        unit_cost: float = 0.0,
        supplier_id: Optional[int] = None,
        delivered_at: Optional[str] = None,
    ) -> int:
        self._validate_lot(quantity, unit_cost)
        with self.uow_factory() as uow:
            lot_id = uow.lots.add(
                product, LotStatus.DELIVERED, int(quantity), float(unit_cost), supplier_id, delivered_at or self.clock()
            )
        log.info("lot_delivered lot_id=%s product=%s qty=%s", lot_id, product, quantity)
        return lot_id

    def mark_ordered(self, lot_id: int) -> StockLot:
        return self._advance(lot_id, LotStatus.ORDERED, None)

    def mark_delivered(self, lot_id: int, delivered_at: Optional[str] = None) -> StockLot:
        return self._advance(lot_id, LotStatus.DELIVERED, delivered_at or self.clock())

    def list_lots(self, product: Optional[ProductRef] = None, status: Optional[LotStatus] = None) -> list[StockLot]:
        with self.uow_factory(read_only=True) as uow:
            return uow.lots.list_lots(product, status)

    def _advance(self, lot_id: int, target: LotStatus, delivered_at: Optional[str]) -> StockLot:
        with self.uow_factory() as uow:
            lot = uow.lots.get(lot_id)
            if not lot:
                raise NotFoundError("Stock lot not found.")
            if target not in _NEXT_STATUSES[lot.status]:
                raise InvalidStateError(f"Lot {lot_id} cannot move from '{lot.status.value}' to '{target.value}'.")
            uow.lots.set_status(lot_id, target, delivered_at)
            updated = uow.lots.get(lot_id)
        log.info("lot_status lot_id=%s status=%s", lot_id, target.value)
        return updated

    @staticmethod
    def _validate_lot(quantity: int, unit_cost: float) -> None:
        if int(quantity) <= 0:
            raise ValidationError("Quantity must be >= 1.")
        if float(unit_cost) < 0:
            raise ValidationError("Unit cost must be >= 0.")


@dataclass(frozen=True)
class _Returned:
    product: ProductRef
    qty: int
