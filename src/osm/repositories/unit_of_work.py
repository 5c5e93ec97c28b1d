from __future__ import annotations

import logging
import sqlite3
from typing import Callable, Optional, Protocol

from osm.domain.errors import BusyError, StorageError
from osm.repositories.tables import (
    CatalogTable,
    InsurancePlanTable,
    InvoiceTable,
    PaymentTable,
    SaleTable,
    StockLotTable,
)

log = logging.getLogger(__name__)


class UnitOfWork(Protocol):
    catalog: CatalogTable
    plans: InsurancePlanTable
    lots: StockLotTable
    sales: SaleTable
    payments: PaymentTable
    invoices: InvoiceTable

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...


def storage_error(exc: sqlite3.Error) -> StorageError:
    msg = str(exc)
    if isinstance(exc, sqlite3.OperationalError) and ("locked" in msg or "busy" in msg):
        return BusyError(f"Database is busy, try again: {msg}")
    return StorageError(f"Storage failure: {msg}")


class SqliteUnitOfWork:
    """One SQLite transaction, scoped to a single service call.

    Opens its own connection on enter and takes the write lock up front
    (BEGIN IMMEDIATE) so every read inside the call sees the snapshot it will
    write against. Commits on a clean exit, rolls back on any exception and
    always closes the connection. sqlite3 errors surface as StorageError.
    """

    def __init__(self, connect: Callable[[], sqlite3.Connection], read_only: bool = False):
        self._connect = connect
        self.read_only = read_only
        self.conn: Optional[sqlite3.Connection] = None

    def __enter__(self) -> "SqliteUnitOfWork":
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise storage_error(exc) from exc
        try:
            conn.execute("BEGIN" if self.read_only else "BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            conn.close()
            raise storage_error(exc) from exc

        self.conn = conn
        self.catalog = CatalogTable(conn)
        self.plans = InsurancePlanTable(conn)
        self.lots = StockLotTable(conn)
        self.sales = SaleTable(conn)
        self.payments = PaymentTable(conn)
        self.invoices = InvoiceTable(conn)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn = self.conn
        self.conn = None
        if conn is None:
            return None
        try:
            if exc_type is None and not self.read_only:
                try:
                    conn.commit()
                except sqlite3.Error as commit_exc:
                    conn.rollback()
                    raise storage_error(commit_exc) from commit_exc
            else:
                conn.rollback()
        finally:
            conn.close()

        if exc is not None and isinstance(exc, sqlite3.Error):
            log.error("uow_rolled_back error=%s", exc)
            raise storage_error(exc) from exc
        return None
