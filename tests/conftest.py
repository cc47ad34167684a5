from __future__ import annotations

from contextlib import contextmanager
import sqlite3
from typing import Iterator

import pytest

from lima.db import Database


class _CommitFails:
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn

    def __getattr__(self, name: str):
        return getattr(self._conn, name)

    def commit(self) -> None:
        raise sqlite3.OperationalError("disk I/O error")


class CommitFailingDatabase(Database):
    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with super().transaction() as conn:
            yield _CommitFails(conn)  # type: ignore[misc]


@pytest.fixture()
def failing_commit_db() -> type[Database]:
    """Database class whose transactions blow up at commit time."""
    return CommitFailingDatabase
