"""Access patterns for quote history, daily quotes and contract labels on DuckDB."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from datetime import UTC, date, datetime, tzinfo
from decimal import Decimal
from typing import TYPE_CHECKING, TypeVar
from uuid import uuid4

import duckdb

from metalpulse.core.data.schema import ensure_price_tables
from metalpulse.core.exceptions import StoreError, StoreTimeoutError
from metalpulse.core.logging import get_logger
from metalpulse.core.models.quotes import ContractLabel, QuoteSnapshot

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from metalpulse.core.data.storage.pool import ConnectionPool

logger = get_logger(__name__)

T = TypeVar("T")

_HISTORY_COLUMNS = (
    "record_id, seq, instrument_key, family, contract_month, slot, observed_at, "
    "price, delta, delta_percent, source, ingested_at"
)


def _to_db_time(value: datetime) -> datetime:
    """Store instants as naive UTC timestamps."""

    return value.astimezone(UTC).replace(tzinfo=None)


def _from_db_time(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC)


@dataclass(frozen=True)
class StoredQuote:
    """A persisted ``quote_history`` row."""

    record_id: str
    seq: int
    snapshot: QuoteSnapshot
    ingested_at: datetime

    @property
    def observed_at(self) -> datetime:
        return self.snapshot.observed_at

    @property
    def price(self) -> Decimal:
        return self.snapshot.price  # type: ignore[return-value]


@dataclass(frozen=True)
class UpsertOutcome:
    inserted: int
    replaced: int


def _row_to_stored(row: Sequence[object]) -> StoredQuote:
    (record_id, seq, _key, family, contract_month, slot, observed_at, price, delta, delta_percent, source, ingested_at) = row
    snapshot = QuoteSnapshot(
        family=family,
        contract_month=contract_month,
        slot=slot,
        observed_at=_from_db_time(observed_at),  # type: ignore[arg-type]
        price=price,
        delta=delta,
        delta_percent=delta_percent,
        source=source,
    )
    return StoredQuote(
        record_id=record_id,  # type: ignore[arg-type]
        seq=seq,  # type: ignore[arg-type]
        snapshot=snapshot,
        ingested_at=_from_db_time(ingested_at),  # type: ignore[arg-type]
    )


class PriceStore:
    """Repository over the price tables.

    Methods taking ``conn`` run on a caller-supplied cursor so several
    operations can share one transaction; the remaining read helpers borrow a
    cursor from the pool themselves.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        *,
        statement_timeout: float = 10.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.pool = pool
        self.statement_timeout = statement_timeout
        self._clock = clock or (lambda: datetime.now(UTC))

    def ensure_schema(self) -> None:
        with self.pool.acquire() as conn:
            try:
                ensure_price_tables(conn)
            except duckdb.Error as exc:
                raise StoreError("failed to create price tables", "ensure_schema") from exc

    @contextmanager
    def connection(self) -> Iterator[DuckDBPyConnection]:
        """Borrow a cursor, translating driver errors into :class:`StoreError`."""

        with self.pool.acquire() as conn:
            try:
                yield conn
            except duckdb.Error as exc:
                raise StoreError(str(exc), "query") from exc

    @contextmanager
    def transaction(self, abandoned: threading.Event | None = None) -> Iterator[DuckDBPyConnection]:
        """Borrow a cursor inside ``BEGIN``/``COMMIT``; any error rolls back.

        When ``abandoned`` is set by the time the block ends, the work is
        rolled back instead of committed.
        """

        with self.pool.acquire() as conn:
            try:
                conn.execute("BEGIN TRANSACTION")
                yield conn
                if abandoned is not None and abandoned.is_set():
                    raise StoreError("transaction abandoned by its caller", "transaction")
                conn.execute("COMMIT")
            except BaseException as exc:
                try:
                    conn.execute("ROLLBACK")
                except duckdb.Error:
                    logger.warning("rollback failed")
                if isinstance(exc, duckdb.Error):
                    raise StoreError(str(exc), "transaction") from exc
                raise

    async def run(
        self,
        operation: str,
        work: Callable[[DuckDBPyConnection], T],
        *,
        transactional: bool = False,
        timeout: float | None = None,
    ) -> T:
        """Run ``work`` on a pooled cursor in a worker thread under a time budget.

        On timeout or cancellation the running statement is interrupted and a
        transactional block rolls back instead of committing. This coroutine
        only returns once the worker thread has let go of its cursor.
        """

        budget = self.statement_timeout if timeout is None else timeout
        abandoned = threading.Event()
        holder: dict[str, DuckDBPyConnection] = {}

        def _call() -> T:
            if abandoned.is_set():
                raise StoreError(f"{operation} abandoned before start", operation)
            scope = self.transaction(abandoned) if transactional else self.connection()
            with scope as conn:
                holder["conn"] = conn
                return work(conn)

        worker = asyncio.ensure_future(asyncio.to_thread(_call))
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=budget)
        except TimeoutError:
            await self._abandon(worker, abandoned, holder)
            raise StoreTimeoutError(f"{operation} exceeded {budget}s", operation, budget) from None
        except asyncio.CancelledError:
            await self._abandon(worker, abandoned, holder)
            raise

    async def _abandon(
        self,
        worker: asyncio.Future[T],
        abandoned: threading.Event,
        holder: dict[str, DuckDBPyConnection],
    ) -> None:
        abandoned.set()
        conn = holder.get("conn")
        if conn is not None:
            with suppress(duckdb.Error):
                conn.interrupt()
        await asyncio.wait({worker})
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug("abandoned store work ended with {error}", error=str(worker.exception()))

    # quote_history

    def append(self, conn: DuckDBPyConnection, snapshots: Iterable[QuoteSnapshot]) -> list[StoredQuote]:
        """Insert normalized snapshots into the append-only history."""

        ingested_at = self._clock()
        stored: list[StoredQuote] = []
        for snapshot in snapshots:
            if snapshot.price is None:
                raise ValueError("snapshot without a price cannot be stored")
            normalized = snapshot.normalized()
            record_id = uuid4().hex
            row = conn.execute(
                "INSERT INTO quote_history (record_id, instrument_key, family, contract_month, slot, observed_at, "
                "price, delta, delta_percent, source, ingested_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "RETURNING seq",
                [
                    record_id,
                    normalized.instrument_key,
                    normalized.family,
                    normalized.contract_month,
                    normalized.slot,
                    _to_db_time(normalized.observed_at),
                    normalized.price,
                    normalized.delta,
                    normalized.delta_percent,
                    normalized.source,
                    _to_db_time(ingested_at),
                ],
            ).fetchone()
            stored.append(
                StoredQuote(record_id=record_id, seq=row[0], snapshot=normalized, ingested_at=ingested_at)  # type: ignore[index]
            )
        return stored

    def recent(
        self,
        conn: DuckDBPyConnection,
        *,
        instrument_key: str,
        source: str,
        after: datetime,
        until: datetime,
    ) -> list[StoredQuote]:
        """Rows for one instrument and source with ``after < observed_at <= until``, newest first."""

        rows = conn.execute(
            f"SELECT {_HISTORY_COLUMNS} FROM quote_history "
            "WHERE instrument_key = ? AND source = ? AND observed_at > ? AND observed_at <= ? "
            "ORDER BY observed_at DESC, seq DESC",
            [instrument_key, source, _to_db_time(after), _to_db_time(until)],
        ).fetchall()
        return [_row_to_stored(row) for row in rows]

    def query_range(
        self,
        instrument_key: str,
        start: datetime,
        end: datetime,
        *,
        limit: int | None = None,
        conn: DuckDBPyConnection | None = None,
    ) -> list[StoredQuote]:
        """Rows with ``start <= observed_at <= end`` in observation then insertion order.

        With ``limit`` only the most recent ``limit`` rows are returned.
        """

        sql = (
            f"SELECT {_HISTORY_COLUMNS} FROM quote_history "
            "WHERE instrument_key = ? AND observed_at >= ? AND observed_at <= ? "
            "ORDER BY observed_at DESC, seq DESC"
        )
        params: list[object] = [instrument_key, _to_db_time(start), _to_db_time(end)]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        if conn is None:
            with self.connection() as borrowed:
                rows = borrowed.execute(sql, params).fetchall()
        else:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_stored(row) for row in reversed(rows)]

    def latest(self, instrument_key: str, *, conn: DuckDBPyConnection | None = None) -> StoredQuote | None:
        """Most recently observed row for an instrument."""

        sql = f"SELECT {_HISTORY_COLUMNS} FROM quote_history WHERE instrument_key = ? ORDER BY observed_at DESC, seq DESC LIMIT 1"
        if conn is None:
            with self.connection() as borrowed:
                row = borrowed.execute(sql, [instrument_key]).fetchone()
        else:
            row = conn.execute(sql, [instrument_key]).fetchone()
        return _row_to_stored(row) if row else None

    # daily_quotes

    def upsert_daily(
        self,
        conn: DuckDBPyConnection,
        snapshots: Iterable[QuoteSnapshot],
        *,
        zone: tzinfo,
    ) -> UpsertOutcome:
        """Write one row per ``(family, contract_month, local date)``; the newest write wins."""

        latest: dict[tuple[str, str, date], QuoteSnapshot] = {}
        for snapshot in snapshots:
            if snapshot.price is None:
                raise ValueError("snapshot without a price cannot be stored")
            key = (snapshot.family, snapshot.contract_month or "", snapshot.observed_date(zone))
            latest[key] = snapshot.normalized()

        updated_at = _to_db_time(self._clock())
        inserted = replaced = 0
        for (family, contract_month, observed_date), snapshot in latest.items():
            exists = conn.execute(
                "SELECT 1 FROM daily_quotes WHERE family = ? AND contract_month = ? AND observed_date = ?",
                [family, contract_month, observed_date],
            ).fetchone()
            conn.execute(
                "INSERT INTO daily_quotes (family, contract_month, observed_date, instrument_key, slot, observed_at, "
                "price, delta, delta_percent, source, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT (family, contract_month, observed_date) DO UPDATE SET "
                "instrument_key = excluded.instrument_key, slot = excluded.slot, observed_at = excluded.observed_at, "
                "price = excluded.price, delta = excluded.delta, delta_percent = excluded.delta_percent, "
                "source = excluded.source, updated_at = excluded.updated_at",
                [
                    family,
                    contract_month,
                    observed_date,
                    snapshot.instrument_key,
                    snapshot.slot,
                    _to_db_time(snapshot.observed_at),
                    snapshot.price,
                    snapshot.delta,
                    snapshot.delta_percent,
                    snapshot.source,
                    updated_at,
                ],
            )
            if exists:
                replaced += 1
            else:
                inserted += 1
        return UpsertOutcome(inserted=inserted, replaced=replaced)

    def daily(
        self,
        family: str,
        observed_date: date | None = None,
        *,
        conn: DuckDBPyConnection | None = None,
    ) -> list[QuoteSnapshot]:
        """Daily rows of a family for one local date, or for its latest recorded date when none is given."""

        day_sql = "?"
        params: list[object] = [family, observed_date]
        if observed_date is None:
            day_sql = "(SELECT max(observed_date) FROM daily_quotes WHERE family = ?)"
            params = [family, family]
        sql = (
            "SELECT family, contract_month, slot, observed_at, price, delta, delta_percent, source "
            f"FROM daily_quotes WHERE family = ? AND observed_date = {day_sql} ORDER BY slot NULLS LAST, contract_month"
        )
        if conn is None:
            with self.connection() as borrowed:
                rows = borrowed.execute(sql, params).fetchall()
        else:
            rows = conn.execute(sql, params).fetchall()
        return [
            QuoteSnapshot(
                family=row[0],
                contract_month=row[1] or None,
                slot=row[2],
                observed_at=_from_db_time(row[3]),
                price=row[4],
                delta=row[5],
                delta_percent=row[6],
                source=row[7],
            )
            for row in rows
        ]

    # contract_labels

    def record_labels(self, conn: DuckDBPyConnection, labels: Iterable[ContractLabel]) -> int:
        count = 0
        for label in labels:
            conn.execute(
                "INSERT INTO contract_labels (family, slot, label, observed_at) VALUES (?, ?, ?, ?) "
                "ON CONFLICT (family, slot) DO UPDATE SET label = excluded.label, observed_at = excluded.observed_at",
                [label.family, label.slot, label.label, _to_db_time(label.observed_at)],
            )
            count += 1
        return count

    def retire_labels(self, conn: DuckDBPyConnection, family: str, keep_slots: Iterable[int]) -> int:
        """Delete the labels of ``family`` whose slot is not in ``keep_slots``."""

        keep = sorted(set(keep_slots))
        if not keep:
            return 0
        placeholders = ", ".join("?" for _ in keep)
        rows = conn.execute(
            f"DELETE FROM contract_labels WHERE family = ? AND slot NOT IN ({placeholders}) RETURNING slot",
            [family, *keep],
        ).fetchall()
        return len(rows)

    def latest_label(self, family: str, slot: int, *, conn: DuckDBPyConnection | None = None) -> ContractLabel | None:
        sql = "SELECT family, slot, label, observed_at FROM contract_labels WHERE family = ? AND slot = ?"
        if conn is None:
            with self.connection() as borrowed:
                row = borrowed.execute(sql, [family, slot]).fetchone()
        else:
            row = conn.execute(sql, [family, slot]).fetchone()
        if row is None:
            return None
        return ContractLabel(family=row[0], slot=row[1], label=row[2], observed_at=_from_db_time(row[3]))

    def labels(self, family: str, *, conn: DuckDBPyConnection | None = None) -> list[ContractLabel]:
        sql = "SELECT family, slot, label, observed_at FROM contract_labels WHERE family = ? ORDER BY slot"
        if conn is None:
            with self.connection() as borrowed:
                rows = borrowed.execute(sql, [family]).fetchall()
        else:
            rows = conn.execute(sql, [family]).fetchall()
        return [
            ContractLabel(family=row[0], slot=row[1], label=row[2], observed_at=_from_db_time(row[3])) for row in rows
        ]

    def close(self) -> None:
        self.pool.close()


__all__ = ["PriceStore", "StoredQuote", "UpsertOutcome"]
