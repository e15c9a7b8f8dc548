"""Bounded pool of DuckDB cursors sharing one database."""

from __future__ import annotations

import queue
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

import duckdb

from metalpulse.core.exceptions import PoolExhaustedError, StoreError
from metalpulse.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from duckdb import DuckDBPyConnection

logger = get_logger(__name__)

DEFAULT_POOL_SIZE = 5


def _resolve(database: str) -> str:
    return database if database == ":memory:" else str(Path(database).expanduser())


def _literal(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return "'" + str(value).replace("'", "''") + "'"


@dataclass(frozen=True)
class PoolConfig:
    """Settings applied when the pool opens its database."""

    database: str = ":memory:"
    size: int = DEFAULT_POOL_SIZE
    acquire_timeout: float = 5.0
    read_only: bool = False
    pragmas: Mapping[str, object] = field(default_factory=lambda: {"threads": 1})


class ConnectionPool:
    """Fixed number of cursors over a single DuckDB database.

    Cursors are opened from one root connection, so an in-memory database is
    shared by every handle. ``acquire`` always returns the handle to the pool,
    including on error paths.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self.config = config or PoolConfig()
        if self.config.size < 1:
            raise ValueError("pool size must be at least 1")
        if self.config.database != ":memory:" and not self.config.read_only:
            Path(self.config.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        try:
            self._root = duckdb.connect(database=_resolve(self.config.database), read_only=self.config.read_only)
            for setting, value in self.config.pragmas.items():
                self._root.execute(f"SET {setting} = {_literal(value)}")
        except duckdb.Error as exc:
            raise StoreError(f"cannot open database {self.config.database!r}", "connect") from exc
        self._idle: queue.LifoQueue[DuckDBPyConnection] = queue.LifoQueue()
        for _ in range(self.config.size):
            self._idle.put(self._root.cursor())
        self._closed = False
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return self.config.size

    @property
    def available(self) -> int:
        return self._idle.qsize()

    @property
    def closed(self) -> bool:
        return self._closed

    @contextmanager
    def acquire(self, timeout: float | None = None) -> Iterator[DuckDBPyConnection]:
        """Borrow a cursor for the duration of the block."""

        if self._closed:
            raise StoreError("connection pool is closed", "acquire")
        wait = self.config.acquire_timeout if timeout is None else timeout
        try:
            conn = self._idle.get(timeout=wait)
        except queue.Empty:
            logger.warning("connection pool exhausted", pool_size=self.size, timeout=wait)
            raise PoolExhaustedError(
                f"no connection available within {wait}s", pool_size=self.size, timeout=wait
            ) from None
        try:
            yield conn
        finally:
            self._release(conn)

    def _release(self, conn: DuckDBPyConnection) -> None:
        with self._lock:
            if self._closed:
                conn.close()
                return
            self._idle.put(conn)

    def close(self) -> None:
        """Close idle cursors and the root connection; borrowed cursors close on release."""

        with self._lock:
            if self._closed:
                return
            self._closed = True
            while True:
                try:
                    self._idle.get_nowait().close()
                except queue.Empty:
                    break
            self._root.close()


__all__ = ["ConnectionPool", "DEFAULT_POOL_SIZE", "PoolConfig"]
