from pathlib import Path

import pytest

from lima.db import Database
from lima.errors import StorageFault


REQUIRED_TABLES = {
    "projects",
    "assets",
    "tags",
    "project_tags",
    "projects_fts",
}


def test_schema_tables_exist(tmp_path: Path) -> None:
    db = Database(tmp_path / "lima.sqlite3")
    db.initialize()
    with db.connect() as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type IN ('table','view')"
        ).fetchall()
    names = {r["name"] for r in rows}
    assert REQUIRED_TABLES.issubset(names)
    db.close()


def test_initialize_is_idempotent(tmp_path: Path) -> None:
    db = Database(tmp_path / "lima.sqlite3")
    db.initialize()
    db.initialize()
    with db.connect() as conn:
        fk = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    assert fk == 1
    db.close()


def test_transaction_rolls_back_on_error(tmp_path: Path) -> None:
    db = Database(tmp_path / "lima.sqlite3")
    db.initialize()
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO tags(id, name, color, created_at, updated_at) VALUES('t1', 'red', '#000000', 'x', 'x')"
            )
            raise RuntimeError("boom")
    with db.connect() as conn:
        assert conn.execute("SELECT COUNT(*) FROM tags").fetchone()[0] == 0
    db.close()


def test_sqlite_errors_surface_as_storage_fault(tmp_path: Path) -> None:
    db = Database(tmp_path / "lima.sqlite3")
    db.initialize()
    with pytest.raises(StorageFault):
        with db.connect() as conn:
            conn.execute("SELECT * FROM no_such_table")
    db.close()


def test_pool_exhaustion_times_out(tmp_path: Path) -> None:
    db = Database(tmp_path / "lima.sqlite3", pool_size=1, acquire_timeout=0.05)
    db.initialize()
    held = db.acquire()
    try:
        with pytest.raises(StorageFault):
            db.acquire()
    finally:
        db.release(held)
    # Released connection is reusable.
    with db.connect() as conn:
        assert conn.execute("SELECT 1").fetchone()[0] == 1
    db.close()
