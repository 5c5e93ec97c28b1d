from __future__ import annotations

import logging
import shutil
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from osm.domain.errors import StorageError
from osm.domain.models import Product, ProductRef
from osm.repositories.unit_of_work import SqliteUnitOfWork

log = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5000


class SqliteRepository:
    def __init__(self, db_path: Path | str, busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS):
        self.db_path = str(db_path)
        self.busy_timeout_ms = int(busy_timeout_ms)

    def _conn(self) -> sqlite3.Connection:
        # Transactions are opened explicitly by the unit of work.
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_ms / 1000, isolation_level=None)
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms};")
        return conn

    def unit_of_work(self, read_only: bool = False) -> SqliteUnitOfWork:
        return SqliteUnitOfWork(self._conn, read_only=read_only)

    def resolve(self, ref: ProductRef) -> Optional[Product]:
        with self.unit_of_work(read_only=True) as uow:
            return uow.catalog.get(ref)

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        migrations = [
            (1, self._migration_v1_base),
            (2, self._migration_v2_reservations_and_invoice_sequence),
        ]
        conn = self._conn()
        backup_path = None
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            pending = [(v, m) for v, m in migrations if v > current_version]
            if pending and current_version > 0:
                backup_path = self._create_pre_migration_backup()

            for version, migration in pending:
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
                log.info("schema_migrated version=%s db=%s", version, self.db_path)
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise StorageError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def schema_version(self) -> int:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            return int(cur.fetchone()[0])
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS frames (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                reference TEXT NOT NULL,
                brand TEXT,
                sale_price REAL NOT NULL CHECK(sale_price >= 0),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS lenses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                reference TEXT NOT NULL,
                lens_type TEXT,
                refractive_index REAL,
                sale_price REAL NOT NULL CHECK(sale_price >= 0),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS insurance_plans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                coverage_mode TEXT NOT NULL CHECK(coverage_mode IN ('percentage','fixed')),
                coverage_value REAL NOT NULL CHECK(coverage_value >= 0),
                ceiling REAL NOT NULL DEFAULT 0 CHECK(ceiling >= 0),
                notes TEXT,
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_lots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_kind TEXT NOT NULL CHECK(product_kind IN ('frame','lens')),
                product_id INTEGER NOT NULL,
                status TEXT NOT NULL CHECK(status IN ('requested','ordered','delivered')),
                quantity INTEGER NOT NULL CHECK(quantity >= 0),
                unit_cost REAL NOT NULL DEFAULT 0 CHECK(unit_cost >= 0),
                supplier_id INTEGER,
                delivered_at TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS ix_stock_lots_product ON stock_lots (product_kind, product_id, status)"
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sales (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                created_at TEXT NOT NULL,
                updated_at TEXT,
                client_id INTEGER NOT NULL,
                seller_id INTEGER NOT NULL,
                insurance_plan_id INTEGER REFERENCES insurance_plans(id),
                status TEXT NOT NULL CHECK(status IN ('open','finalized','cancelled')),
                total_excl_tax REAL NOT NULL CHECK(total_excl_tax >= 0),
                total_incl_tax REAL NOT NULL CHECK(total_incl_tax >= 0),
                insurance_covered REAL NOT NULL DEFAULT 0 CHECK(insurance_covered >= 0),
                client_due REAL NOT NULL CHECK(client_due >= 0),
                amount_paid REAL NOT NULL DEFAULT 0 CHECK(amount_paid >= 0),
                balance_due REAL NOT NULL CHECK(balance_due >= 0),
                notes TEXT
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS sale_lines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                product_kind TEXT NOT NULL CHECK(product_kind IN ('frame','lens')),
                product_id INTEGER NOT NULL,
                qty INTEGER NOT NULL CHECK(qty > 0),
                unit_price REAL NOT NULL CHECK(unit_price >= 0),
                discount_pct REAL NOT NULL DEFAULT 0 CHECK(discount_pct BETWEEN 0 AND 100),
                vat_pct REAL NOT NULL DEFAULT 0 CHECK(vat_pct BETWEEN 0 AND 100),
                line_total REAL NOT NULL CHECK(line_total >= 0),
                FOREIGN KEY(sale_id) REFERENCES sales(id) ON DELETE CASCADE
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS payments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                amount REAL NOT NULL CHECK(amount > 0),
                method TEXT NOT NULL CHECK(method IN ('cash','card','cheque','transfer')),
                reference TEXT,
                paid_at TEXT NOT NULL,
                FOREIGN KEY(sale_id) REFERENCES sales(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS invoices (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL UNIQUE,
                seller_id INTEGER NOT NULL,
                number TEXT NOT NULL,
                total_incl_tax REAL NOT NULL CHECK(total_incl_tax >= 0),
                issued_at TEXT NOT NULL,
                updated_at TEXT,
                status TEXT NOT NULL CHECK(status IN ('pending','partially_paid','paid','cancelled')),
                FOREIGN KEY(sale_id) REFERENCES sales(id)
            )
            """
        )

    def _migration_v2_reservations_and_invoice_sequence(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS stock_reservations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sale_id INTEGER NOT NULL,
                lot_id INTEGER NOT NULL,
                product_kind TEXT NOT NULL CHECK(product_kind IN ('frame','lens')),
                product_id INTEGER NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                FOREIGN KEY(sale_id) REFERENCES sales(id),
                FOREIGN KEY(lot_id) REFERENCES stock_lots(id)
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS ix_stock_reservations_sale ON stock_reservations (sale_id)")

        # Existing invoice numbers keep their place: the counter starts at count(*).
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS invoice_sequence (
                id INTEGER PRIMARY KEY CHECK(id = 1),
                last_value INTEGER NOT NULL CHECK(last_value >= 0)
            )
            """
        )
        cur.execute("INSERT OR IGNORE INTO invoice_sequence (id, last_value) SELECT 1, COUNT(*) FROM invoices")
        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS ux_invoices_number ON invoices (number)")

        cur.execute(
            """
            CREATE TRIGGER IF NOT EXISTS payments_no_update
            BEFORE UPDATE ON payments
            BEGIN
                SELECT RAISE(ABORT, 'payments are append-only');
            END
            """
        )
        cur.execute(
            """
            CREATE TRIGGER IF NOT EXISTS payments_no_delete
            BEFORE DELETE ON payments
            BEGIN
                SELECT RAISE(ABORT, 'payments are append-only');
            END
            """
        )
