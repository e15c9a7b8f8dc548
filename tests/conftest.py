"""Pytest configuration for the metalpulse test suite."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from metalpulse.core.data.repositories.price_store import PriceStore
from metalpulse.core.data.storage.pool import ConnectionPool, PoolConfig
from metalpulse.core.models.quotes import QuoteSnapshot

IST = ZoneInfo("Asia/Kolkata")


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command-line options for controlling integration tests."""

    parser.addoption(
        "--metalpulse-run-integration",
        action="store_true",
        default=False,
        help="Run metalpulse integration tests that require external services.",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Register the integration marker for metalpulse tests."""

    config.addinivalue_line(
        "markers",
        "integration: marks metalpulse tests requiring network or external services",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests unless explicitly requested."""

    if config.getoption("--metalpulse-run-integration"):
        return

    skip_integration = pytest.mark.skip(
        reason="integration tests require --metalpulse-run-integration",
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def ist(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    """Aware instant given in India Standard Time, converted to UTC."""

    return datetime(year, month, day, hour, minute, second, tzinfo=IST).astimezone(UTC)


def make_snapshot(
    price: str | None,
    observed_at: datetime,
    *,
    family: str = "aluminum",
    contract_month: str | None = "JAN25",
    slot: int | None = 1,
    delta: str | None = "0",
    delta_percent: str | None = "0",
    source: str = "scheduled-poll",
) -> QuoteSnapshot:
    return QuoteSnapshot(
        family=family,
        contract_month=contract_month,
        slot=slot,
        observed_at=observed_at,
        price=Decimal(price) if price is not None else None,
        delta=Decimal(delta) if delta is not None else None,
        delta_percent=Decimal(delta_percent) if delta_percent is not None else None,
        source=source,
    )


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Tuesday 2025-01-14 10:00 IST."""

    instant = ist(2025, 1, 14, 10, 0)
    return lambda: instant


@pytest.fixture
def price_store(fixed_clock: Callable[[], datetime]) -> Iterator[PriceStore]:
    store = PriceStore(ConnectionPool(PoolConfig(size=3, acquire_timeout=1.0)), clock=fixed_clock)
    store.ensure_schema()
    yield store
    store.close()
