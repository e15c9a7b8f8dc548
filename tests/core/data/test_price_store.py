"""Tests for the DuckDB price store access layer."""

from __future__ import annotations

import asyncio
import threading
import time
from datetime import UTC, date
from decimal import Decimal

import pytest
from conftest import IST, ist, make_snapshot

from metalpulse.core.data.repositories.price_store import PriceStore
from metalpulse.core.exceptions import StoreError, StoreTimeoutError
from metalpulse.core.models import ContractLabel


def test_append_normalizes_missing_deltas(price_store: PriceStore) -> None:
    with price_store.transaction() as conn:
        (stored,) = price_store.append(conn, [make_snapshot("245.30", ist(2025, 1, 14, 10), delta=None, delta_percent=None)])

    assert stored.snapshot.delta == Decimal("0")
    rows = price_store.query_range("aluminum:JAN25", ist(2025, 1, 14, 9), ist(2025, 1, 14, 11))
    assert len(rows) == 1
    row = rows[0]
    assert row.record_id == stored.record_id
    assert row.price == Decimal("245.30")
    assert row.snapshot.delta_percent == Decimal("0")
    assert row.observed_at == ist(2025, 1, 14, 10)
    assert row.observed_at.tzinfo is UTC


def test_append_without_price_is_refused(price_store: PriceStore) -> None:
    with pytest.raises(ValueError):
        with price_store.transaction() as conn:
            price_store.append(conn, [make_snapshot(None, ist(2025, 1, 14, 10))])


def test_transaction_rolls_back_on_error(price_store: PriceStore) -> None:
    with pytest.raises(RuntimeError):
        with price_store.transaction() as conn:
            price_store.append(conn, [make_snapshot("240", ist(2025, 1, 14, 10))])
            raise RuntimeError("abort payload")

    assert price_store.query_range("aluminum:JAN25", ist(2025, 1, 14, 9), ist(2025, 1, 14, 11)) == []


def test_driver_errors_become_store_errors(price_store: PriceStore) -> None:
    with pytest.raises(StoreError):
        with price_store.transaction() as conn:
            conn.execute("SELECT * FROM missing_table")


def test_query_range_orders_and_limits(price_store: PriceStore) -> None:
    with price_store.transaction() as conn:
        price_store.append(
            conn,
            [
                make_snapshot("243", ist(2025, 1, 14, 9, 10)),
                make_snapshot("240", ist(2025, 1, 14, 9, 5)),
                make_snapshot("241", ist(2025, 1, 14, 9, 5)),
                make_snapshot("250", ist(2025, 1, 14, 8, 0)),
            ],
        )

    rows = price_store.query_range("aluminum:JAN25", ist(2025, 1, 14, 9), ist(2025, 1, 14, 10))
    assert [row.price for row in rows] == [Decimal("240"), Decimal("241"), Decimal("243")]
    assert rows[0].seq < rows[1].seq

    limited = price_store.query_range("aluminum:JAN25", ist(2025, 1, 14, 9), ist(2025, 1, 14, 10), limit=2)
    assert [row.price for row in limited] == [Decimal("241"), Decimal("243")]

    latest = price_store.latest("aluminum:JAN25")
    assert latest is not None
    assert latest.price == Decimal("243")


def test_daily_upsert_replaces_same_local_date(price_store: PriceStore) -> None:
    spot = dict(family="aluminum-spot", contract_month=None, slot=None)
    with price_store.transaction() as conn:
        first = price_store.upsert_daily(conn, [make_snapshot("240", ist(2025, 1, 14, 9), **spot)], zone=IST)
    with price_store.transaction() as conn:
        second = price_store.upsert_daily(conn, [make_snapshot("242.5", ist(2025, 1, 14, 15), **spot)], zone=IST)
    with price_store.transaction() as conn:
        next_day = price_store.upsert_daily(conn, [make_snapshot("239", ist(2025, 1, 15, 9), **spot)], zone=IST)

    assert (first.inserted, first.replaced) == (1, 0)
    assert (second.inserted, second.replaced) == (0, 1)
    assert (next_day.inserted, next_day.replaced) == (1, 0)
    (row,) = price_store.daily("aluminum-spot", date(2025, 1, 14))
    assert row.price == Decimal("242.5")
    assert row.contract_month is None
    assert row.observed_at == ist(2025, 1, 14, 15)


def test_daily_date_follows_market_zone(price_store: PriceStore) -> None:
    # 20:00 UTC on the 13th is already the 14th in India.
    with price_store.transaction() as conn:
        price_store.upsert_daily(conn, [make_snapshot("240", ist(2025, 1, 14, 1, 30))], zone=IST)

    assert len(price_store.daily("aluminum", date(2025, 1, 14))) == 1
    assert price_store.daily("aluminum", date(2025, 1, 13)) == []


def test_label_roll_keeps_latest_label_per_slot(price_store: PriceStore) -> None:
    with price_store.transaction() as conn:
        price_store.record_labels(
            conn,
            [
                ContractLabel(family="aluminum", slot=1, label="JAN25", observed_at=ist(2025, 1, 14, 10)),
                ContractLabel(family="aluminum", slot=2, label="FEB25", observed_at=ist(2025, 1, 14, 10)),
            ],
        )
    with price_store.transaction() as conn:
        price_store.record_labels(
            conn, [ContractLabel(family="aluminum", slot=1, label="FEB25", observed_at=ist(2025, 2, 1, 10))]
        )

    current = price_store.latest_label("aluminum", 1)
    assert current is not None
    assert current.label == "FEB25"
    assert [label.slot for label in price_store.labels("aluminum")] == [1, 2]
    assert price_store.latest_label("copper", 1) is None


def test_retire_labels_drops_slots_not_kept(price_store: PriceStore) -> None:
    with price_store.transaction() as conn:
        price_store.record_labels(
            conn,
            [
                ContractLabel(family=family, slot=slot, label=label, observed_at=ist(2025, 1, 14, 10))
                for family in ("aluminum", "copper")
                for slot, label in ((1, "JAN25"), (2, "FEB25"), (3, "MAR25"))
            ],
        )
        retired = price_store.retire_labels(conn, "aluminum", [1, 2])
        untouched = price_store.retire_labels(conn, "aluminum", [])

    assert retired == 1
    assert untouched == 0
    assert [label.slot for label in price_store.labels("aluminum")] == [1, 2]
    assert [label.slot for label in price_store.labels("copper")] == [1, 2, 3]


@pytest.mark.asyncio
async def test_run_executes_work_in_worker_thread(price_store: PriceStore) -> None:
    result = await price_store.run("select", lambda conn: conn.execute("SELECT 41 + 1").fetchone()[0])

    assert result == 42


@pytest.mark.asyncio
async def test_run_transactional_rolls_back_on_failure(price_store: PriceStore) -> None:
    def _work(conn):
        price_store.append(conn, [make_snapshot("240", ist(2025, 1, 14, 10))])
        conn.execute("SELECT * FROM missing_table")

    with pytest.raises(StoreError):
        await price_store.run("persist", _work, transactional=True)

    assert price_store.latest("aluminum:JAN25") is None


def _slow_append(price_store: PriceStore, finished: list[bool], delay: float = 0.3):
    def _work(conn):
        time.sleep(delay)
        price_store.append(conn, [make_snapshot("240", ist(2025, 1, 14, 10))])
        finished.append(True)

    return _work


@pytest.mark.asyncio
async def test_run_timeout_rolls_back_late_work(price_store: PriceStore) -> None:
    finished: list[bool] = []

    with pytest.raises(StoreTimeoutError):
        await price_store.run("persist", _slow_append(price_store, finished), transactional=True, timeout=0.05)

    # The worker had finished its append before the timeout surfaced.
    assert finished == [True]
    assert price_store.latest("aluminum:JAN25") is None
    assert price_store.pool.available == price_store.pool.size


@pytest.mark.asyncio
async def test_run_cancellation_rolls_back_and_waits_for_worker(price_store: PriceStore) -> None:
    finished: list[bool] = []
    task = asyncio.create_task(
        price_store.run("persist", _slow_append(price_store, finished), transactional=True, timeout=5.0)
    )
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert finished == [True]
    assert price_store.latest("aluminum:JAN25") is None
    assert price_store.pool.available == price_store.pool.size


def test_abandoned_transaction_does_not_commit(price_store: PriceStore) -> None:
    abandoned = threading.Event()

    with pytest.raises(StoreError):
        with price_store.transaction(abandoned) as conn:
            price_store.append(conn, [make_snapshot("240", ist(2025, 1, 14, 10))])
            abandoned.set()

    assert price_store.latest("aluminum:JAN25") is None
