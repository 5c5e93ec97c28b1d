from pathlib import Path

import pytest
from openpyxl import Workbook

from osm.domain.errors import ValidationError
from osm.domain.models import ProductRef


def _sheet(path: Path, header: list, rows: list) -> Path:
    wb = Workbook()
    ws = wb.active
    ws.append(header)
    for row in rows:
        ws.append(row)
    wb.save(path)
    return path


HEADER = ["kind", "product_id", "quantity", "unit_cost", "supplier_id", "delivery_date"]


def test_import_adds_delivered_lots_and_skips_bad_rows(container, tmp_path: Path):
    container.inventory.receive_delivery(ProductRef.frame(1), 2)
    path = _sheet(
        tmp_path / "deliveries.xlsx",
        HEADER,
        [
            ["frame", 1, 5, 40.0, 3, "2025-01-05"],
            ["Lens", 2, 10, 12.5, None, None],
            ["glasses", 1, 1, 1.0, None, None],
            ["frame", 1, -2, 40.0, None, None],
            ["lens", "abc", 1, 1.0, None, None],
        ],
    )

    ok, skipped = container.excel.import_deliveries_excel(str(path))

    assert (ok, skipped) == (2, 3)
    assert container.inventory.stock_level(ProductRef.frame(1)) == 7
    assert container.inventory.stock_level(ProductRef.lens(2)) == 10
    imported = [lot for lot in container.inventory.list_lots(ProductRef.frame(1)) if lot.supplier_id == 3]
    assert imported[0].delivered_at == "2025-01-05 00:00:00"


def test_import_requires_headers(container, tmp_path: Path):
    path = _sheet(tmp_path / "bad.xlsx", ["kind", "product_id", "qty"], [["frame", 1, 1]])

    with pytest.raises(ValidationError, match="Missing column header"):
        container.excel.import_deliveries_excel(str(path))
