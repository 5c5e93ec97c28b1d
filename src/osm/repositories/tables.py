from __future__ import annotations

import sqlite3
from typing import Iterable, Optional

from osm.domain.models import (
    CoverageMode,
    InsurancePlan,
    Invoice,
    InvoiceStatus,
    LotStatus,
    Payment,
    PaymentMethod,
    Product,
    ProductKind,
    ProductRef,
    Reservation,
    Sale,
    SaleLine,
    SaleStatus,
    StockLot,
)

_CATALOG_TABLES = {
    ProductKind.FRAME: ("frames", "reference || COALESCE(' ' || brand, '')"),
    ProductKind.LENS: ("lenses", "reference || COALESCE(' ' || lens_type, '')"),
}


class _Table:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn


class CatalogTable(_Table):
    def add_frame(self, reference: str, brand: Optional[str], sale_price: float) -> int:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO frames (reference, brand, sale_price) VALUES (?, ?, ?)",
            (reference, brand, float(sale_price)),
        )
        return int(cur.lastrowid)

    def add_lens(
        self, reference: str, lens_type: Optional[str], refractive_index: Optional[float], sale_price: float
    ) -> int:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO lenses (reference, lens_type, refractive_index, sale_price) VALUES (?, ?, ?, ?)",
            (reference, lens_type, refractive_index, float(sale_price)),
        )
        return int(cur.lastrowid)

    def get(self, ref: ProductRef) -> Optional[Product]:
        table, label = _CATALOG_TABLES[ref.kind]
        cur = self.conn.cursor()
        cur.execute(f"SELECT id, {label}, sale_price, active FROM {table} WHERE id=?", (int(ref.id),))
        r = cur.fetchone()
        if not r:
            return None
        return Product(ref=ProductRef(ref.kind, int(r[0])), label=str(r[1]), sale_price=float(r[2]), active=int(r[3]))

    def set_active(self, ref: ProductRef, active: bool) -> bool:
        table, _ = _CATALOG_TABLES[ref.kind]
        cur = self.conn.cursor()
        cur.execute(f"UPDATE {table} SET active=? WHERE id=?", (1 if active else 0, int(ref.id)))
        return cur.rowcount > 0


class InsurancePlanTable(_Table):
    _COLS = "id, name, coverage_mode, coverage_value, ceiling, active, notes"

    @staticmethod
    def _row(r) -> InsurancePlan:
        return InsurancePlan(
            id=int(r[0]),
            name=str(r[1]),
            mode=CoverageMode(r[2]),
            value=float(r[3]),
            ceiling=float(r[4]),
            active=int(r[5]),
            notes=(r[6] if r[6] is not None else None),
        )

    def add(self, name: str, mode: CoverageMode, value: float, ceiling: float, notes: Optional[str]) -> int:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO insurance_plans (name, coverage_mode, coverage_value, ceiling, notes)
            VALUES (?, ?, ?, ?, ?)
            """,
            (name, mode.value, float(value), float(ceiling), notes),
        )
        return int(cur.lastrowid)

    def update(self, plan_id: int, name: str, mode: CoverageMode, value: float, ceiling: float, notes: Optional[str]) -> bool:
        cur = self.conn.cursor()
        cur.execute(
            """
            UPDATE insurance_plans
            SET name=?, coverage_mode=?, coverage_value=?, ceiling=?, notes=?
            WHERE id=?
            """,
            (name, mode.value, float(value), float(ceiling), notes, int(plan_id)),
        )
        return cur.rowcount > 0

    def get(self, plan_id: int) -> Optional[InsurancePlan]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {self._COLS} FROM insurance_plans WHERE id=?", (int(plan_id),))
        r = cur.fetchone()
        return self._row(r) if r else None

    def list_plans(self, active: Optional[bool] = None) -> list[InsurancePlan]:
        cur = self.conn.cursor()
        if active is None:
            cur.execute(f"SELECT {self._COLS} FROM insurance_plans ORDER BY name")
        else:
            cur.execute(
                f"SELECT {self._COLS} FROM insurance_plans WHERE active=? ORDER BY name",
                (1 if active else 0,),
            )
        return [self._row(r) for r in cur.fetchall()]

    def set_active(self, plan_id: int, active: bool) -> bool:
        cur = self.conn.cursor()
        cur.execute("UPDATE insurance_plans SET active=? WHERE id=?", (1 if active else 0, int(plan_id)))
        return cur.rowcount > 0


class StockLotTable(_Table):
    _COLS = "id, product_kind, product_id, status, quantity, unit_cost, supplier_id, delivered_at, created_at"

    @staticmethod
    def _row(r) -> StockLot:
        return StockLot(
            id=int(r[0]),
            product=ProductRef(ProductKind(r[1]), int(r[2])),
            status=LotStatus(r[3]),
            quantity=int(r[4]),
            unit_cost=float(r[5]),
            supplier_id=(int(r[6]) if r[6] is not None else None),
            delivered_at=(str(r[7]) if r[7] is not None else None),
            created_at=str(r[8]),
        )

    def add(
        self,
        product: ProductRef,
        status: LotStatus,
        quantity: int,
        unit_cost: float,
        supplier_id: Optional[int],
        delivered_at: Optional[str],
    ) -> int:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO stock_lots (product_kind, product_id, status, quantity, unit_cost, supplier_id, delivered_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (product.kind.value, int(product.id), status.value, int(quantity), float(unit_cost), supplier_id, delivered_at),
        )
        return int(cur.lastrowid)

    def get(self, lot_id: int) -> Optional[StockLot]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {self._COLS} FROM stock_lots WHERE id=?", (int(lot_id),))
        r = cur.fetchone()
        return self._row(r) if r else None

    def list_lots(self, product: Optional[ProductRef] = None, status: Optional[LotStatus] = None) -> list[StockLot]:
        where = []
        params: list = []
        if product is not None:
            where.append("product_kind=? AND product_id=?")
            params += [product.kind.value, int(product.id)]
        if status is not None:
            where.append("status=?")
            params.append(status.value)
        sql = f"SELECT {self._COLS} FROM stock_lots"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC, id DESC"
        cur = self.conn.cursor()
        cur.execute(sql, params)
        return [self._row(r) for r in cur.fetchall()]

    def set_status(self, lot_id: int, status: LotStatus, delivered_at: Optional[str] = None) -> bool:
        cur = self.conn.cursor()
        cur.execute(
            "UPDATE stock_lots SET status=?, delivered_at=COALESCE(?, delivered_at) WHERE id=?",
            (status.value, delivered_at, int(lot_id)),
        )
        return cur.rowcount > 0

    def delivered_quantity(self, product: ProductRef) -> int:
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT COALESCE(SUM(quantity), 0)
            FROM stock_lots
            WHERE product_kind=? AND product_id=? AND status='delivered'
            """,
            (product.kind.value, int(product.id)),
        )
        return int(cur.fetchone()[0])

    def reservable_lots(self, product: ProductRef) -> list[StockLot]:
        """Delivered lots with stock left, oldest delivery first."""
        cur = self.conn.cursor()
        cur.execute(
            f"""
            SELECT {self._COLS}
            FROM stock_lots
            WHERE product_kind=? AND product_id=? AND status='delivered' AND quantity > 0
            ORDER BY delivered_at ASC, id ASC
            """,
            (product.kind.value, int(product.id)),
        )
        return [self._row(r) for r in cur.fetchall()]

    def latest_delivered_lot_id(self, product: ProductRef) -> Optional[int]:
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT id FROM stock_lots
            WHERE product_kind=? AND product_id=? AND status='delivered'
            ORDER BY delivered_at DESC, id DESC
            LIMIT 1
            """,
            (product.kind.value, int(product.id)),
        )
        r = cur.fetchone()
        return int(r[0]) if r else None

    def adjust_quantity(self, lot_id: int, delta: int) -> None:
        cur = self.conn.cursor()
        cur.execute("UPDATE stock_lots SET quantity = quantity + ? WHERE id=?", (int(delta), int(lot_id)))

    # ---------- Reservations ----------
    def record_reservations(self, sale_id: int, reservations: Iterable[Reservation]) -> None:
        cur = self.conn.cursor()
        cur.executemany(
            """
            INSERT INTO stock_reservations (sale_id, lot_id, product_kind, product_id, quantity)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (int(sale_id), int(r.lot_id), r.product.kind.value, int(r.product.id), int(r.quantity))
                for r in reservations
            ],
        )

    def reservations_for_sale(self, sale_id: int) -> list[Reservation]:
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT lot_id, product_kind, product_id, quantity
            FROM stock_reservations
            WHERE sale_id=?
            ORDER BY id
            """,
            (int(sale_id),),
        )
        return [
            Reservation(lot_id=int(r[0]), product=ProductRef(ProductKind(r[1]), int(r[2])), quantity=int(r[3]))
            for r in cur.fetchall()
        ]

    def clear_reservations(self, sale_id: int) -> None:
        cur = self.conn.cursor()
        cur.execute("DELETE FROM stock_reservations WHERE sale_id=?", (int(sale_id),))


class SaleTable(_Table):
    _COLS = (
        "id, created_at, client_id, seller_id, insurance_plan_id, status, total_excl_tax, total_incl_tax, "
        "insurance_covered, client_due, amount_paid, balance_due, notes"
    )

    @staticmethod
    def _row(r) -> Sale:
        return Sale(
            id=int(r[0]),
            created_at=str(r[1]),
            client_id=int(r[2]),
            seller_id=int(r[3]),
            insurance_plan_id=(int(r[4]) if r[4] is not None else None),
            status=SaleStatus(r[5]),
            total_excl_tax=float(r[6]),
            total_incl_tax=float(r[7]),
            insurance_covered=float(r[8]),
            client_due=float(r[9]),
            amount_paid=float(r[10]),
            balance_due=float(r[11]),
            notes=(r[12] if r[12] is not None else None),
        )

    def add(
        self,
        created_at: str,
        client_id: int,
        seller_id: int,
        insurance_plan_id: Optional[int],
        total_excl_tax: float,
        total_incl_tax: float,
        insurance_covered: float,
        client_due: float,
        notes: Optional[str],
    ) -> int:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO sales (
                created_at, client_id, seller_id, insurance_plan_id, status,
                total_excl_tax, total_incl_tax, insurance_covered, client_due,
                amount_paid, balance_due, notes
            ) VALUES (?, ?, ?, ?, 'open', ?, ?, ?, ?, 0, ?, ?)
            """,
            (
                created_at,
                int(client_id),
                int(seller_id),
                insurance_plan_id,
                float(total_excl_tax),
                float(total_incl_tax),
                float(insurance_covered),
                float(client_due),
                float(client_due),
                notes,
            ),
        )
        return int(cur.lastrowid)

    def get(self, sale_id: int) -> Optional[Sale]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {self._COLS} FROM sales WHERE id=?", (int(sale_id),))
        r = cur.fetchone()
        return self._row(r) if r else None

    def list_sales(
        self,
        seller_id: Optional[int] = None,
        client_id: Optional[int] = None,
        status: Optional[SaleStatus] = None,
    ) -> list[Sale]:
        where = []
        params: list = []
        if seller_id is not None:
            where.append("seller_id=?")
            params.append(int(seller_id))
        if client_id is not None:
            where.append("client_id=?")
            params.append(int(client_id))
        if status is not None:
            where.append("status=?")
            params.append(status.value)
        sql = f"SELECT {self._COLS} FROM sales"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql += " ORDER BY created_at DESC, id DESC"
        cur = self.conn.cursor()
        cur.execute(sql, params)
        return [self._row(r) for r in cur.fetchall()]

    def update_header(
        self,
        sale_id: int,
        client_id: int,
        seller_id: int,
        insurance_plan_id: Optional[int],
        total_excl_tax: float,
        total_incl_tax: float,
        insurance_covered: float,
        client_due: float,
        notes: Optional[str],
        updated_at: str,
    ) -> None:
        cur = self.conn.cursor()
        cur.execute(
            """
            UPDATE sales
            SET client_id=?, seller_id=?, insurance_plan_id=?,
                total_excl_tax=?, total_incl_tax=?, insurance_covered=?, client_due=?,
                notes=?, updated_at=?
            WHERE id=?
            """,
            (
                int(client_id),
                int(seller_id),
                insurance_plan_id,
                float(total_excl_tax),
                float(total_incl_tax),
                float(insurance_covered),
                float(client_due),
                notes,
                updated_at,
                int(sale_id),
            ),
        )

    def update_balance(
        self, sale_id: int, amount_paid: float, balance_due: float, status: SaleStatus, updated_at: str
    ) -> None:
        cur = self.conn.cursor()
        cur.execute(
            "UPDATE sales SET amount_paid=?, balance_due=?, status=?, updated_at=? WHERE id=?",
            (float(amount_paid), float(balance_due), status.value, updated_at, int(sale_id)),
        )

    def set_status(self, sale_id: int, status: SaleStatus, updated_at: str) -> None:
        cur = self.conn.cursor()
        cur.execute("UPDATE sales SET status=?, updated_at=? WHERE id=?", (status.value, updated_at, int(sale_id)))

    # ---------- Lines ----------
    def add_lines(self, sale_id: int, lines: Iterable[tuple]) -> None:
        """
        lines: [(product_ref, qty, unit_price, discount_pct, vat_pct, line_total)]
        """
        cur = self.conn.cursor()
        cur.executemany(
            """
            INSERT INTO sale_lines (sale_id, product_kind, product_id, qty, unit_price, discount_pct, vat_pct, line_total)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (int(sale_id), ref.kind.value, int(ref.id), int(qty), float(pu), float(disc), float(vat), float(total))
                for ref, qty, pu, disc, vat, total in lines
            ],
        )

    def lines(self, sale_id: int) -> list[SaleLine]:
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT id, sale_id, product_kind, product_id, qty, unit_price, discount_pct, vat_pct, line_total
            FROM sale_lines
            WHERE sale_id=?
            ORDER BY id
            """,
            (int(sale_id),),
        )
        return [
            SaleLine(
                id=int(r[0]),
                sale_id=int(r[1]),
                product=ProductRef(ProductKind(r[2]), int(r[3])),
                qty=int(r[4]),
                unit_price=float(r[5]),
                discount_pct=float(r[6]),
                vat_pct=float(r[7]),
                line_total=float(r[8]),
            )
            for r in cur.fetchall()
        ]

    def delete_lines(self, sale_id: int) -> None:
        cur = self.conn.cursor()
        cur.execute("DELETE FROM sale_lines WHERE sale_id=?", (int(sale_id),))


class PaymentTable(_Table):
    def add(self, sale_id: int, amount: float, method: PaymentMethod, reference: Optional[str], paid_at: str) -> int:
        cur = self.conn.cursor()
        cur.execute(
            "INSERT INTO payments (sale_id, amount, method, reference, paid_at) VALUES (?, ?, ?, ?, ?)",
            (int(sale_id), float(amount), method.value, reference, paid_at),
        )
        return int(cur.lastrowid)

    def total_for_sale(self, sale_id: int) -> float:
        cur = self.conn.cursor()
        cur.execute("SELECT COALESCE(SUM(amount), 0) FROM payments WHERE sale_id=?", (int(sale_id),))
        return float(cur.fetchone()[0])

    def for_sale(self, sale_id: int) -> list[Payment]:
        cur = self.conn.cursor()
        cur.execute(
            """
            SELECT id, sale_id, amount, method, reference, paid_at
            FROM payments
            WHERE sale_id=?
            ORDER BY paid_at DESC, id DESC
            """,
            (int(sale_id),),
        )
        return [
            Payment(
                id=int(r[0]),
                sale_id=int(r[1]),
                amount=float(r[2]),
                method=PaymentMethod(r[3]),
                reference=(r[4] if r[4] is not None else None),
                paid_at=str(r[5]),
            )
            for r in cur.fetchall()
        ]


class InvoiceTable(_Table):
    _COLS = "id, sale_id, seller_id, number, total_incl_tax, issued_at, status"

    @staticmethod
    def _row(r) -> Invoice:
        return Invoice(
            id=int(r[0]),
            sale_id=int(r[1]),
            seller_id=int(r[2]),
            number=str(r[3]),
            total_incl_tax=float(r[4]),
            issued_at=str(r[5]),
            status=InvoiceStatus(r[6]),
        )

    def next_sequence(self) -> int:
        cur = self.conn.cursor()
        cur.execute("UPDATE invoice_sequence SET last_value = last_value + 1 WHERE id = 1")
        cur.execute("SELECT last_value FROM invoice_sequence WHERE id = 1")
        return int(cur.fetchone()[0])

    def add(
        self, sale_id: int, seller_id: int, number: str, total_incl_tax: float, issued_at: str, status: InvoiceStatus
    ) -> int:
        cur = self.conn.cursor()
        cur.execute(
            """
            INSERT INTO invoices (sale_id, seller_id, number, total_incl_tax, issued_at, status)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(sale_id), int(seller_id), number, float(total_incl_tax), issued_at, status.value),
        )
        return int(cur.lastrowid)

    def get(self, invoice_id: int) -> Optional[Invoice]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {self._COLS} FROM invoices WHERE id=?", (int(invoice_id),))
        r = cur.fetchone()
        return self._row(r) if r else None

    def for_sale(self, sale_id: int) -> Optional[Invoice]:
        cur = self.conn.cursor()
        cur.execute(f"SELECT {self._COLS} FROM invoices WHERE sale_id=?", (int(sale_id),))
        r = cur.fetchone()
        return self._row(r) if r else None

    def update(self, invoice_id: int, total_incl_tax: float, status: InvoiceStatus, updated_at: str) -> None:
        cur = self.conn.cursor()
        cur.execute(
            "UPDATE invoices SET total_incl_tax=?, status=?, updated_at=? WHERE id=?",
            (float(total_incl_tax), status.value, updated_at, int(invoice_id)),
        )
