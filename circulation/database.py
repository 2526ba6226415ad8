import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from circulation.exceptions import NotFoundError, TransactionConflictError
from circulation.store import KINDS, check_fields, new_id

logger = logging.getLogger(__name__)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class SQLiteTransaction:
    """Reads and writes bound to one connection inside ``BEGIN IMMEDIATE``."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        check_fields(collection, ())
        row = self._conn.execute(f"SELECT * FROM {collection} WHERE id = ?", (doc_id,)).fetchone()
        return dict(row) if row else None

    def query(self, collection: str, where: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return _select(self._conn, collection, where)

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        check_fields(collection, fields)
        if "id" in fields:
            raise ValueError("Document id cannot be changed.")
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        cursor = self._conn.execute(
            f"UPDATE {collection} SET {assignments} WHERE id = ?",
            (*fields.values(), doc_id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(KINDS[collection], doc_id)

    def insert(self, collection: str, data: Dict[str, Any]) -> str:
        doc = dict(data)
        doc_id = doc.pop("id", None) or new_id()
        check_fields(collection, doc)
        columns = ["id", *doc]
        placeholders = ", ".join("?" for _ in columns)
        self._conn.execute(
            f"INSERT INTO {collection} ({', '.join(columns)}) VALUES ({placeholders})",
            (doc_id, *doc.values()),
        )
        return doc_id

    def delete(self, collection: str, doc_id: str) -> bool:
        check_fields(collection, ())
        cursor = self._conn.execute(f"DELETE FROM {collection} WHERE id = ?", (doc_id,))
        return cursor.rowcount > 0


def _select(conn: sqlite3.Connection, collection: str, where: Optional[Dict[str, Any]] = None,
            order_by: Optional[str] = None, descending: bool = False) -> List[Dict[str, Any]]:
    where = where or {}
    check_fields(collection, list(where) + ([order_by] if order_by else []))
    sql = f"SELECT * FROM {collection}"
    if where:
        sql += " WHERE " + " AND ".join(f"{name} = ?" for name in where)
    if order_by:
        sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
    rows = conn.execute(sql, tuple(where.values())).fetchall()
    return [dict(row) for row in rows]


class SQLiteStore:
    """Document store backed by a SQLite file.

    Each transaction opens its own connection and starts with ``BEGIN IMMEDIATE``,
    which takes the database write lock before the first read. Concurrent
    writers are therefore serialised: a second transaction waits up to
    ``busy_timeout`` seconds for the lock and then fails with
    ``TransactionConflictError`` having applied nothing.
    """

    def __init__(self, db_file: str, busy_timeout: float = 5.0) -> None:
        if db_file == ":memory:":
            raise ValueError("SQLiteStore needs a file path; use MemoryStore for an in-process store.")
        self.db_file = db_file
        self.busy_timeout = busy_timeout

    def connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are started and ended explicitly
        conn = sqlite3.connect(self.db_file, timeout=self.busy_timeout,
                               isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Create the tables and indexes if they do not exist yet."""
        conn = self.connect()
        try:
            # WAL lets readers proceed while a borrow or return holds the write lock
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS books (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    category TEXT NOT NULL DEFAULT '',
                    isbn TEXT NOT NULL DEFAULT '',
                    total_stock INTEGER NOT NULL DEFAULT 0 CHECK(total_stock >= 0),
                    available_stock INTEGER NOT NULL DEFAULT 0 CHECK(available_stock >= 0),
                    damaged_stock INTEGER NOT NULL DEFAULT 0 CHECK(damaged_stock >= 0),
                    image_url TEXT,
                    arrival_date TEXT,
                    created_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS borrows (
                    id TEXT PRIMARY KEY,
                    book_id TEXT NOT NULL,
                    book_title TEXT NOT NULL,
                    book_isbn TEXT NOT NULL DEFAULT '',
                    borrower_name TEXT NOT NULL,
                    qty INTEGER NOT NULL CHECK(qty >= 1),
                    borrow_date TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    return_date TEXT,
                    status TEXT NOT NULL CHECK(status IN ('borrowed', 'returned', 'overdue'))
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS categories (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    created_at TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_books_created_at ON books(created_at)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_borrows_borrow_date ON borrows(borrow_date DESC)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_borrows_borrower ON borrows(borrower_name, borrow_date DESC)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_borrows_status ON borrows(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_categories_name ON categories(name)")
            logger.debug(f"SQLite store initialized at {self.db_file}")
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[SQLiteTransaction]:
        conn = self.connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if _is_lock_error(e):
                    raise TransactionConflictError("Could not acquire the write lock; try again.") from e
                raise
            try:
                yield SQLiteTransaction(conn)
                conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                if _is_lock_error(e):
                    raise TransactionConflictError("Concurrent modification detected; try again.") from e
                raise
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        finally:
            conn.close()

    def find(self, collection: str, where: Optional[Dict[str, Any]] = None,
             order_by: Optional[str] = None, descending: bool = False) -> List[Dict[str, Any]]:
        conn = self.connect()
        try:
            return _select(conn, collection, where, order_by, descending)
        finally:
            conn.close()

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
