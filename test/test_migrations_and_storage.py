import sqlite3
from pathlib import Path

import pytest

from osm.domain.errors import BusyError, StorageError
from osm.domain.models import CoverageMode
from osm.repositories.sqlite_repo import SqliteRepository


def test_init_db_is_idempotent(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "m.db")
    repo.init_db()
    repo.init_db()

    assert repo.schema_version() == 2
    conn = repo._conn()
    try:
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        seq = conn.execute("SELECT last_value FROM invoice_sequence").fetchone()[0]
    finally:
        conn.close()
    assert {"stock_lots", "sales", "sale_lines", "payments", "invoices", "stock_reservations"} <= tables
    assert seq == 0


def test_read_only_unit_of_work_discards_writes(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "ro.db")
    repo.init_db()

    with repo.unit_of_work(read_only=True) as uow:
        uow.plans.add("Plan", CoverageMode.FIXED, 10, 10, None)

    with repo.unit_of_work(read_only=True) as uow:
        assert uow.plans.list_plans() == []


def test_write_lock_timeout_surfaces_as_busy_error(tmp_path: Path):
    db = tmp_path / "busy.db"
    SqliteRepository(db).init_db()
    impatient = SqliteRepository(db, busy_timeout_ms=100)

    holder = sqlite3.connect(db, isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    try:
        with pytest.raises(BusyError):
            with impatient.unit_of_work():
                pass
    finally:
        holder.rollback()
        holder.close()

    with impatient.unit_of_work():
        pass


def test_constraint_violation_is_a_storage_error(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "c.db")
    repo.init_db()

    with pytest.raises(StorageError) as info:
        with repo.unit_of_work() as uow:
            uow.conn.execute(
                "INSERT INTO payments (sale_id, amount, method, paid_at) VALUES (1, -5, 'cash', '2025-01-01')"
            )
    assert not isinstance(info.value, BusyError)
    assert isinstance(info.value.__cause__, sqlite3.Error)
