from __future__ import annotations

import logging
import math
from typing import Callable, Optional

from osm.domain.errors import NotFoundError, ValidationError
from osm.domain.models import CoverageMode, InsurancePlan
from osm.repositories.unit_of_work import UnitOfWork

log = logging.getLogger("osm.sales")


def parse_mode(mode: str | CoverageMode) -> CoverageMode:
    try:
        return CoverageMode(str(mode.value if isinstance(mode, CoverageMode) else mode).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown coverage mode {mode!r}. Use 'percentage' or 'fixed'.") from None


class InsuranceService:
    def __init__(self, uow_factory: Callable[..., UnitOfWork]):
        self.uow_factory = uow_factory

    def add_plan(
        self,
        name: str,
        mode: str | CoverageMode,
        value: float,
        ceiling: float,
        notes: Optional[str] = None,
    ) -> int:
        name, cov_mode, value, ceiling = self._validate(name, mode, value, ceiling)
        with self.uow_factory() as uow:
            plan_id = uow.plans.add(name, cov_mode, value, ceiling, notes)
        log.info("plan_added plan_id=%s name=%s mode=%s value=%s ceiling=%s", plan_id, name, cov_mode.value, value, ceiling)
        return plan_id

    def update_plan(
        self,
        plan_id: int,
        name: str,
        mode: str | CoverageMode,
        value: float,
        ceiling: float,
        notes: Optional[str] = None,
    ) -> InsurancePlan:
        name, cov_mode, value, ceiling = self._validate(name, mode, value, ceiling)
        with self.uow_factory() as uow:
            if not uow.plans.update(int(plan_id), name, cov_mode, value, ceiling, notes):
                raise NotFoundError("Insurance plan not found.")
            plan = uow.plans.get(int(plan_id))
        log.info("plan_updated plan_id=%s", plan_id)
        return plan

    def get_plan(self, plan_id: int) -> InsurancePlan:
        with self.uow_factory(read_only=True) as uow:
            plan = uow.plans.get(int(plan_id))
        if not plan:
            raise NotFoundError("Insurance plan not found.")
        return plan

    def list_plans(self, active: Optional[bool] = None) -> list[InsurancePlan]:
        with self.uow_factory(read_only=True) as uow:
            return uow.plans.list_plans(active)

    def deactivate_plan(self, plan_id: int) -> None:
        self._set_active(plan_id, False)

    def reactivate_plan(self, plan_id: int) -> None:
        self._set_active(plan_id, True)

    def _set_active(self, plan_id: int, active: bool) -> None:
        with self.uow_factory() as uow:
            if not uow.plans.set_active(int(plan_id), active):
                raise NotFoundError("Insurance plan not found.")
        log.info("plan_active plan_id=%s active=%s", plan_id, int(active))

    @staticmethod
    def _validate(name: str, mode: str | CoverageMode, value: float, ceiling: float) -> tuple[str, CoverageMode, float, float]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Plan name is required.")
        cov_mode = parse_mode(mode)
        try:
            value = float(value)
            ceiling = float(ceiling)
        except (TypeError, ValueError):
            raise ValidationError("Coverage value and ceiling must be numbers.") from None
        if not (math.isfinite(value) and math.isfinite(ceiling)):
            raise ValidationError("Coverage value and ceiling must be finite numbers.")
        if value < 0:
            raise ValidationError("Coverage value must be >= 0.")
        if ceiling < 0:
            raise ValidationError("Ceiling must be >= 0.")
        if cov_mode == CoverageMode.PERCENTAGE and value > 100:
            raise ValidationError("Coverage percentage must be <= 100.")
        return name, cov_mode, value, ceiling
