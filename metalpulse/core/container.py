"""Wiring of store, calendars, fetch client, scheduler and aggregation engine."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from metalpulse.core.client.fetch import FetchClient
from metalpulse.core.config.settings import MetalPulseConfig
from metalpulse.core.data.repositories.price_store import PriceStore
from metalpulse.core.data.storage.pool import ConnectionPool, PoolConfig
from metalpulse.core.exceptions import ErrorTracker
from metalpulse.core.monitoring.metrics import MetricsCollector, get_metrics_collector
from metalpulse.core.services.aggregation import AggregationEngine
from metalpulse.core.services.calendars import TradingCalendarProvider
from metalpulse.core.services.ingestion import FeedSource, IngestionScheduler

if TYPE_CHECKING:
    import httpx


@dataclass
class MetalPulseServices:
    """Long-lived service objects shared by the web app and the CLI."""

    config: MetalPulseConfig
    store: PriceStore
    calendars: TradingCalendarProvider
    scheduler: IngestionScheduler
    engine: AggregationEngine
    metrics: MetricsCollector
    error_tracker: ErrorTracker

    async def aclose(self) -> None:
        await self.scheduler.shutdown()


def build_services(
    config: MetalPulseConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    metrics: MetricsCollector | None = None,
    clock: Callable[[], datetime] | None = None,
) -> MetalPulseServices:
    """Open the store and assemble every service from ``config``."""

    pool = ConnectionPool(
        PoolConfig(
            database=config.store.database,
            size=config.store.pool_size,
            acquire_timeout=config.store.acquire_timeout,
        )
    )
    store = PriceStore(pool, statement_timeout=config.store.statement_timeout, clock=clock)
    store.ensure_schema()

    calendars = TradingCalendarProvider.from_settings(config.calendars)
    feeds = [FeedSource.from_settings(feed) for feed in config.feeds]
    metrics = metrics or get_metrics_collector()
    error_tracker = ErrorTracker()
    scheduler = IngestionScheduler(
        feeds,
        store=store,
        fetch_client=FetchClient(timeout=config.scheduler.fetch_timeout, transport=transport),
        calendars=calendars,
        settings=config.scheduler,
        dedup=config.dedup,
        metrics=metrics,
        error_tracker=error_tracker,
        clock=clock,
    )
    engine = AggregationEngine(
        store,
        calendars,
        family_markets={feed.family: feed.market for feed in feeds},
        default_market=config.scheduler.cadence_market,
        metrics=metrics,
        clock=clock,
    )
    return MetalPulseServices(
        config=config,
        store=store,
        calendars=calendars,
        scheduler=scheduler,
        engine=engine,
        metrics=metrics,
        error_tracker=error_tracker,
    )


__all__ = ["MetalPulseServices", "build_services"]
