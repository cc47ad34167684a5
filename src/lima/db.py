from __future__ import annotations

from contextlib import contextmanager
import logging
from pathlib import Path
from queue import Empty, Full, Queue
import sqlite3
import threading
from typing import Any, Iterable, Iterator

from lima.errors import StorageFault

SETUP_SQL = Path(__file__).resolve().with_name("setup.sql")

logger = logging.getLogger(__name__)


class Database:
    """Pooled SQLite handle shared by every request in the process.

    Connections run in autocommit mode. ``connect()`` lends one for reads,
    ``transaction()`` wraps the block in ``BEGIN IMMEDIATE`` and commits on a
    clean exit. A block may call ``conn.commit()`` itself when it must observe a
    commit failure before its own cleanup runs; the exit then has nothing left
    to commit.
    """

    def __init__(
        self,
        path: Path,
        pool_size: int = 5,
        acquire_timeout: float = 10.0,
        busy_timeout_ms: int = 5000,
    ):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.pool_size = max(1, pool_size)
        self.acquire_timeout = acquire_timeout
        self.busy_timeout_ms = busy_timeout_ms
        self._idle: Queue[sqlite3.Connection] = Queue(maxsize=self.pool_size)
        self._lock = threading.Lock()
        self._opened = 0
        self._closed = False

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        return conn

    def acquire(self) -> sqlite3.Connection:
        if self._closed:
            raise StorageFault("database handle is closed")
        try:
            return self._idle.get_nowait()
        except Empty:
            pass

        with self._lock:
            grow = self._opened < self.pool_size
            if grow:
                self._opened += 1
        if grow:
            try:
                return self._open()
            except sqlite3.Error as exc:
                with self._lock:
                    self._opened -= 1
                raise StorageFault(f"failed to open database {self.path}") from exc

        try:
            return self._idle.get(timeout=self.acquire_timeout)
        except Empty:
            logger.warning("connection pool exhausted after %.1fs", self.acquire_timeout)
            raise StorageFault(
                f"timed out acquiring a database connection after {self.acquire_timeout:.1f}s"
            ) from None

    def release(self, conn: sqlite3.Connection) -> None:
        try:
            if conn.in_transaction:
                conn.rollback()
        except sqlite3.Error:
            logger.exception("dropping connection that failed to roll back")
            self._discard(conn)
            return
        if self._closed:
            self._discard(conn)
            return
        try:
            self._idle.put_nowait(conn)
        except Full:
            self._discard(conn)

    def _discard(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            self._opened -= 1
        try:
            conn.close()
        except sqlite3.Error:
            logger.exception("error closing connection")

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = self.acquire()
        try:
            yield conn
        except sqlite3.Error as exc:
            raise StorageFault(f"database error: {exc}") from exc
        finally:
            self.release(conn)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if conn.in_transaction:
                    conn.rollback()
                raise
            if conn.in_transaction:
                conn.commit()

    def initialize(self) -> None:
        sql = SETUP_SQL.read_text()
        with self.connect() as conn:
            conn.executescript(sql)

    def close(self) -> None:
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except Empty:
                break
            self._discard(conn)


def fetch_all(conn: sqlite3.Connection, query: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
    return [dict(row) for row in conn.execute(query, tuple(params)).fetchall()]


def fetch_one(conn: sqlite3.Connection, query: str, params: Iterable[Any] = ()) -> dict[str, Any] | None:
    row = conn.execute(query, tuple(params)).fetchone()
    return dict(row) if row else None
