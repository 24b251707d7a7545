"""Shared persistent store backing the catalog, work logs and settings."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, TypeVar

from . import db

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreError(RuntimeError):
    """Raised when the underlying database rejects a read or write."""


class Store:
    """One SQLite connection shared by every repository.

    The connection is opened with ``check_same_thread=False`` and every
    access goes through :meth:`run` which serializes callers on a lock.
    """

    def __init__(self, conn: sqlite3.Connection, *, path: Optional[Path] = None) -> None:
        self._conn = conn
        self._lock = threading.RLock()
        self.path = path

    @classmethod
    def open(cls, path: Path) -> "Store":
        path = Path(path)
        try:
            conn = db.open_database(path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise StoreError(f"Could not open database at {path}: {exc}") from exc
        logger.debug("Opened store at %s", path)
        return cls(conn, path=path)

    @classmethod
    def in_memory(cls) -> "Store":
        conn = sqlite3.connect(":memory:", isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        db.initialize_schema(conn)
        return cls(conn)

    def run(self, operation: Callable[[sqlite3.Connection], T]) -> T:
        with self._lock:
            try:
                return operation(self._conn)
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with db.transaction(self._conn) as conn:
                    yield conn
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc

    def get(self, key: str, default: Any = None) -> Any:
        raw = self.run(lambda conn: db.fetch_document(conn, key))
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable document %r.", key)
            return default

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False)
        self.run(lambda conn: db.upsert_document(conn, key, payload))

    def close(self) -> None:
        with self._lock:
            self._conn.close()
