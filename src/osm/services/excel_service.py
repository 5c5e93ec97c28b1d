from __future__ import annotations

import logging
from datetime import date, datetime

from openpyxl import load_workbook

from osm.domain.errors import ValidationError
from osm.domain.models import ProductRef
from osm.services.inventory_service import InventoryLedger

log = logging.getLogger("osm.stock")

REQUIRED_COLUMNS = ["kind", "product_id", "quantity", "unit_cost"]


class ExcelService:
    def __init__(self, inventory: InventoryLedger):
        self.inventory = inventory

    def import_deliveries_excel(self, path: str) -> tuple[int, int]:
        """
        Each row is a delivered lot added to stock (never an absolute level).
        Headers:
          kind | product_id | quantity | unit_cost | supplier_id | delivery_date
        supplier_id and delivery_date are optional.
        """
        wb = load_workbook(path, read_only=True, data_only=True)
        try:
            ws = wb.active
            rows = ws.iter_rows(values_only=True)
            header_row = next(rows, None) or ()
            headers = {
                str(v).strip().lower(): idx for idx, v in enumerate(header_row) if isinstance(v, str)
            }
            for r in REQUIRED_COLUMNS:
                if r not in headers:
                    raise ValidationError(f"Missing column header: {r}")

            ok = 0
            skipped = 0
            for row_no, values in enumerate(rows, start=2):
                if all(v is None for v in values):
                    continue

                def cell(name: str, values=values) -> object:
                    idx = headers.get(name)
                    return values[idx] if idx is not None and idx < len(values) else None

                try:
                    ref = ProductRef.parse(cell("kind"), cell("product_id"))
                    quantity = int(float(cell("quantity")))
                    unit_cost = float(cell("unit_cost") or 0)
                    supplier = cell("supplier_id")
                    supplier_id = int(float(supplier)) if supplier not in (None, "") else None
                    self.inventory.receive_delivery(
                        ref,
                        quantity,
                        unit_cost,
                        supplier_id=supplier_id,
                        delivered_at=_delivery_stamp(cell("delivery_date")),
                    )
                    ok += 1
                except (ValidationError, TypeError, ValueError) as e:
                    log.warning("delivery_import_skipped row=%s error=%s", row_no, e)
                    skipped += 1
        finally:
            wb.close()

        log.info("delivery_import path=%s ok=%s skipped=%s", path, ok, skipped)
        return ok, skipped


def _delivery_stamp(value: object) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.replace(microsecond=0).isoformat(sep=" ")
    if isinstance(value, date):
        return f"{value.isoformat()} 00:00:00"
    text = str(value).strip()
    parsed = datetime.fromisoformat(text)
    return parsed.replace(microsecond=0).isoformat(sep=" ")
