"""SQLite management utilities."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

from repo_index.core.errors import StorageError

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA temp_store=MEMORY;",
)


class SQLiteDatabase:
    """Single-connection sqlite3 wrapper used by the catalog.

    All access happens on the event loop thread; a transaction never spans an
    ``await`` so concurrent ingestion tasks cannot interleave inside one.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path.expanduser()
        self._connection: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        if self._connection is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.db_path)
            self._connection.row_factory = sqlite3.Row
            for pragma in DEFAULT_PRAGMAS:
                self._connection.execute(pragma)
        return self._connection

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        return self.connect().execute(sql, params or [])

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def scalar(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        row = self.query_one(sql, params)
        return row[0] if row is not None else None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        """Run a block atomically; sqlite failures surface as ``StorageError``."""
        conn = self.connect()
        if conn.in_transaction:
            conn.commit()
        cursor = conn.cursor()
        try:
            cursor.execute("BEGIN IMMEDIATE")
            yield cursor
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(str(exc)) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_path = Path(__file__).with_name("schema.sql")
            schema_sql = schema_path.read_text(encoding="utf-8")
        self.connect().executescript(schema_sql)


def placeholders(values: Iterable[Any]) -> str:
    """Return ``?, ?, ?`` for an ``IN (...)`` clause."""
    return ", ".join("?" for _ in values)


def iter_rows(cursor: sqlite3.Cursor) -> Iterator[sqlite3.Row]:
    """Yield rows from a cursor lazily."""
    while True:
        row = cursor.fetchone()
        if row is None:
            break
        yield row


__all__ = ["SQLiteDatabase", "iter_rows", "placeholders"]
