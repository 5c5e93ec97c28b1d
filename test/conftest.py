import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@pytest.fixture
def container(tmp_path: Path):
    from osm.application.container import build_container

    return build_container(tmp_path / "shop.db")


def deliver(container, ref, qty: int, delivered_at: str = "2025-01-10 09:00:00", unit_cost: float = 40.0) -> int:
    return container.inventory.receive_delivery(ref, qty, unit_cost, delivered_at=delivered_at)


def cart(*lines, plan_id=None, upfront=0.0, method="cash", client_id=7, seller_id=2) -> dict:
    return {
        "client_id": client_id,
        "seller_id": seller_id,
        "insurance_plan_id": plan_id,
        "upfront_payment": upfront,
        "payment_method": method,
        "lines": list(lines),
    }


def frame_line(product_id: int, qty: int = 1, unit_price: float = 100.0, vat_pct: float = 20.0, discount_pct: float = 0.0) -> dict:
    return {
        "kind": "frame",
        "product_id": product_id,
        "qty": qty,
        "unit_price": unit_price,
        "discount_pct": discount_pct,
        "vat_pct": vat_pct,
    }


def count_rows(repo, table: str) -> int:
    conn = repo._conn()
    try:
        return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
    finally:
        conn.close()
