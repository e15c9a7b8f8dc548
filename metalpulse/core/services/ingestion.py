"""Calendar-gated polling of upstream feeds into the price store."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from time import perf_counter
from typing import TYPE_CHECKING
from uuid import uuid4

from metalpulse.core.config.settings import DedupSettings, FeedSettings, SchedulerSettings
from metalpulse.core.data.parsers import parse_payload
from metalpulse.core.exceptions import ErrorTracker, MetalPulseError
from metalpulse.core.logging import get_logger, log_context
from metalpulse.core.models.quotes import ContractLabel, QuoteSnapshot
from metalpulse.core.models.results import CycleReport, CycleStatus, FeedOutcome
from metalpulse.core.services.dedup import DailyUpsert, DedupGate, normalize_decimal

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from metalpulse.core.client.fetch import FetchClient
    from metalpulse.core.data.repositories.price_store import PriceStore
    from metalpulse.core.monitoring.metrics import MetricsCollector
    from metalpulse.core.services.calendars import CalendarDecision, TradingCalendar, TradingCalendarProvider

logger = get_logger(__name__)

COMPANY_UPDATE_SOURCE = "company-update"
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class CycleState(str, Enum):
    IDLE = "idle"
    CHECKING_CALENDAR = "checking_calendar"
    SKIPPED = "skipped"
    FETCHING = "fetching"
    PARSING = "parsing"
    GATING = "gating"
    PERSISTING = "persisting"


@dataclass(frozen=True)
class FeedSource:
    """An upstream endpoint and how its snapshots are stored."""

    name: str
    url: str
    family: str
    source: str = "scheduled-poll"
    market: str = "mcx"
    stream: bool = False
    replace_daily: bool = False
    targets: tuple[str, ...] = ()
    accumulate: bool | None = None

    @classmethod
    def from_settings(cls, settings: FeedSettings) -> FeedSource:
        values = settings.model_dump()
        values["targets"] = tuple(values["targets"])
        return cls(**values)

    @property
    def accumulates(self) -> bool:
        """Whether stored prices are running totals of the upstream changes."""
        if self.accumulate is not None:
            return self.accumulate
        return self.source == COMPANY_UPDATE_SOURCE


@dataclass
class _PersistPlan:
    fresh: list[QuoteSnapshot] = field(default_factory=list)
    duplicates: int = 0
    daily: list[QuoteSnapshot] = field(default_factory=list)
    labels: list[ContractLabel] = field(default_factory=list)


class IngestionScheduler:
    """Runs one ingestion cycle at a time, on a timer or on demand.

    Scheduled and manual cycles share one lock, so they never overlap and
    every cycle's dedup check sees all rows committed by earlier cycles.
    """

    def __init__(
        self,
        feeds: Sequence[FeedSource],
        *,
        store: PriceStore,
        fetch_client: FetchClient,
        calendars: TradingCalendarProvider,
        settings: SchedulerSettings | None = None,
        dedup: DedupSettings | None = None,
        metrics: MetricsCollector | None = None,
        error_tracker: ErrorTracker | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.feeds = tuple(feeds)
        self.settings = settings or SchedulerSettings()
        self.dedup_settings = dedup or DedupSettings()
        self.lookback = timedelta(seconds=self.dedup_settings.lookback_seconds)
        self.gate = DedupGate(places=self.dedup_settings.places)
        self.error_tracker = error_tracker or ErrorTracker()
        self._store = store
        self._fetch_client = fetch_client
        self._calendars = calendars
        self._metrics = metrics
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = asyncio.Lock()
        self._current: asyncio.Task[CycleReport] | None = None
        self._stopping = asyncio.Event()

        self.state = CycleState.IDLE
        self.last_attempt_at: datetime | None = None
        self.last_report: CycleReport | None = None
        self.consecutive_failures = 0

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def next_interval(self, now: datetime | None = None) -> float:
        """Seconds until the next scheduled cycle: short in session, long outside it."""

        calendar = self._calendars.get_calendar(self.settings.cadence_market)
        if calendar.is_open(now or self._clock()).allowed:
            return self.settings.in_session_interval
        return self.settings.out_of_session_interval

    async def trigger(self) -> CycleReport:
        """Run one cycle now through the same serialization as scheduled cycles."""

        return await self.run_cycle(trigger="manual")

    async def run_cycle(self, trigger: str = "schedule") -> CycleReport:
        """Run one complete cycle; errors end up in the report, never raised."""

        async with self._lock:
            with log_context(cycle=uuid4().hex[:12], trigger=trigger):
                try:
                    report = await self._run_locked(trigger)
                except Exception as exc:
                    code = self.error_tracker.record_exception(exc, operation=self.state.value)
                    logger.bind(error_code=code).exception("ingestion cycle crashed")
                    report = CycleReport(
                        status=CycleStatus.FAILED,
                        trigger=trigger,
                        started_at=self.last_attempt_at or self._clock(),
                        finished_at=self._clock(),
                        reason=str(exc),
                        errors=(code,),
                    )
                finally:
                    self.state = CycleState.IDLE
                self._finish(report)
                return report

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Loop until ``stop_event`` is set or :meth:`shutdown` is called."""

        stop_event = stop_event or asyncio.Event()
        logger.info("ingestion scheduler started", feeds=len(self.feeds))
        while not (stop_event.is_set() or self._stopping.is_set()):
            self._current = asyncio.create_task(self.run_cycle())
            try:
                await self._current
            except asyncio.CancelledError:
                if self._stopping.is_set():
                    break
                raise
            finally:
                self._current = None
            interval = self.next_interval()
            await _wait_any(stop_event, self._stopping, interval)
        logger.info("ingestion scheduler stopped")

    async def shutdown(self) -> None:
        """Abandon the in-flight cycle and release the fetch client and store."""

        self._stopping.set()
        current = self._current
        if current is not None and not current.done():
            current.cancel()
            with suppress(asyncio.CancelledError):
                await current
        await self._fetch_client.aclose()
        self._store.close()

    async def _run_locked(self, trigger: str) -> CycleReport:
        started_at = self._clock()
        self.last_attempt_at = started_at
        self.state = CycleState.CHECKING_CALENDAR

        decisions = [(feed, self._calendar_for(feed).is_open(started_at)) for feed in self.feeds]
        open_feeds = [feed for feed, decision in decisions if decision.allowed]
        if not open_feeds:
            self.state = CycleState.SKIPPED
            reason = _skip_reason([decision for _, decision in decisions])
            logger.info("ingestion cycle skipped", reason=reason)
            return CycleReport(
                status=CycleStatus.SKIPPED,
                trigger=trigger,
                started_at=started_at,
                finished_at=self._clock(),
                reason=reason,
            )

        outcomes = [await self._run_feed(feed, started_at) for feed in open_feeds]
        errors = tuple(outcome.error_code for outcome in outcomes if outcome.error_code)
        return CycleReport(
            status=CycleStatus.FAILED if errors else CycleStatus.COMPLETED,
            trigger=trigger,
            started_at=started_at,
            finished_at=self._clock(),
            written=sum(outcome.written for outcome in outcomes),
            duplicates=sum(outcome.duplicates for outcome in outcomes),
            replaced=sum(outcome.replaced for outcome in outcomes),
            errors=errors,
            feeds=tuple(outcomes),
        )

    async def _run_feed(self, feed: FeedSource, received_at: datetime) -> FeedOutcome:
        feed_logger = logger.bind(feed=feed.name)
        self.state = CycleState.FETCHING
        started = perf_counter()
        try:
            if feed.stream:
                body = await self._fetch_client.fetch_event(feed.url)
            else:
                body = await self._fetch_client.fetch(feed.url)
        except MetalPulseError as exc:
            self._observe_fetch(feed, perf_counter() - started, exc.error_code)
            return self._feed_failed(feed, "fetch", exc)
        self._observe_fetch(feed, perf_counter() - started, None)

        try:
            self.state = CycleState.PARSING
            snapshots = parse_payload(
                body,
                source=feed.source,
                family=feed.family,
                received_at=received_at,
                local_zone=self._calendar_for(feed).zone,
            )
            if feed.targets:
                targeted = [snapshot for snapshot in snapshots if snapshot.contract_month in feed.targets]
                if len(targeted) < len(snapshots):
                    feed_logger.debug("untargeted snapshots skipped", skipped=len(snapshots) - len(targeted))
                snapshots = targeted
            usable = [snapshot for snapshot in snapshots if snapshot.price is not None]
            dropped = len(snapshots) - len(usable)
            if dropped:
                feed_logger.warning("snapshots without price dropped", dropped=dropped)

            self.state = CycleState.GATING
            outcome = await self._store.run(
                "persist",
                lambda conn: self._gate_and_persist(conn, feed, usable),
                transactional=True,
            )
        except Exception as exc:
            operation = self.state.value
            return self._feed_failed(feed, operation, exc)

        outcome = FeedOutcome(
            feed=feed.name,
            written=outcome.written,
            duplicates=outcome.duplicates,
            replaced=outcome.replaced,
            dropped=dropped,
        )
        if self._metrics is not None:
            self._metrics.record_feed(
                feed.name, written=outcome.written, duplicates=outcome.duplicates, replaced=outcome.replaced
            )
        feed_logger.info(
            "feed ingested",
            written=outcome.written,
            duplicates=outcome.duplicates,
            replaced=outcome.replaced,
        )
        return outcome

    def _gate_and_persist(
        self,
        conn: DuckDBPyConnection,
        feed: FeedSource,
        snapshots: Sequence[QuoteSnapshot],
    ) -> FeedOutcome:
        """Runs inside one store transaction; any error rolls back the whole payload."""

        plan = _PersistPlan()
        if feed.accumulates:
            plan.fresh, plan.duplicates = self._accumulate(conn, snapshots)
        else:
            seen: set[tuple[object, ...]] = set()
            for snapshot in snapshots:
                key = (snapshot.instrument_key, snapshot.observed_at, self.gate.fingerprint(snapshot))
                if key in seen or self.gate.is_duplicate(snapshot, self._store, self.lookback, conn).duplicate:
                    plan.duplicates += 1
                    continue
                seen.add(key)
                plan.fresh.append(snapshot)
        if feed.replace_daily:
            plan.daily = list(plan.fresh if feed.accumulates else snapshots)
        plan.labels = [
            ContractLabel(
                family=snapshot.family,
                slot=snapshot.slot,
                label=snapshot.contract_month,
                observed_at=snapshot.observed_at,
            )
            for snapshot in snapshots
            if snapshot.slot is not None and snapshot.contract_month
        ]

        self.state = CycleState.PERSISTING
        written = len(self._store.append(conn, plan.fresh))
        replaced = 0
        if plan.daily:
            replaced = DailyUpsert(self._calendar_for(feed).zone).apply(plan.daily, self._store, conn).replaced
        if plan.labels:
            self._store.record_labels(conn, plan.labels)
            slots: dict[str, set[int]] = {}
            for label in plan.labels:
                slots.setdefault(label.family, set()).add(label.slot)
            for family, kept in slots.items():
                self._store.retire_labels(conn, family, kept)
        return FeedOutcome(feed=feed.name, written=written, duplicates=plan.duplicates, replaced=replaced)

    def _accumulate(
        self,
        conn: DuckDBPyConnection,
        snapshots: Sequence[QuoteSnapshot],
    ) -> tuple[list[QuoteSnapshot], int]:
        """Turn upstream changes into running totals on top of the latest stored price.

        A change already stored for the same instrument and instant is a
        duplicate, so re-polling one payload never adds it twice.
        """

        totals: dict[str, Decimal] = {}
        seen: set[tuple[str, datetime, Decimal]] = set()
        fresh: list[QuoteSnapshot] = []
        duplicates = 0
        for snapshot in sorted(snapshots, key=lambda item: item.observed_at):
            change = snapshot.price if snapshot.price is not None else _ZERO
            key = snapshot.instrument_key
            marker = (key, snapshot.observed_at, normalize_decimal(change, self.gate.places))
            if marker in seen or self._change_stored(conn, snapshot, marker[2]):
                duplicates += 1
                continue
            seen.add(marker)
            if key not in totals:
                stored = self._store.latest(key, conn=conn)
                totals[key] = stored.price if stored is not None else _ZERO
            previous = totals[key]
            total = previous + change
            totals[key] = total
            fresh.append(
                snapshot.model_copy(
                    update={
                        "price": total,
                        "delta": change,
                        "delta_percent": normalize_decimal(change / previous * _HUNDRED, 4) if previous else _ZERO,
                    }
                )
            )
        return fresh, duplicates

    def _change_stored(self, conn: DuckDBPyConnection, snapshot: QuoteSnapshot, change: Decimal) -> bool:
        recent = self._store.recent(
            conn,
            instrument_key=snapshot.instrument_key,
            source=snapshot.source,
            after=snapshot.observed_at - self.lookback,
            until=snapshot.observed_at,
        )
        return any(
            row.observed_at == snapshot.observed_at
            and normalize_decimal(row.snapshot.delta, self.gate.places) == change
            for row in recent
        )

    def _feed_failed(self, feed: FeedSource, operation: str, error: BaseException) -> FeedOutcome:
        code = self.error_tracker.record_exception(error, operation=operation, feed=feed.name)
        logger.bind(feed=feed.name, error_code=code).warning(
            "feed aborted during {operation}: {error}", operation=operation, error=str(error)
        )
        return FeedOutcome(feed=feed.name, error_code=code)

    def _observe_fetch(self, feed: FeedSource, latency: float, error_code: str | None) -> None:
        if self._metrics is not None:
            self._metrics.observe_fetch(feed.name, latency, error_code=error_code)

    def _finish(self, report: CycleReport) -> None:
        if report.status is CycleStatus.FAILED:
            self.consecutive_failures += 1
        elif report.status is CycleStatus.COMPLETED:
            self.consecutive_failures = 0
        self.last_report = report

        if self._metrics is not None:
            self._metrics.record_cycle(report.status.value, report.trigger, self.consecutive_failures)
        if report.status is CycleStatus.FAILED and self.consecutive_failures >= self.settings.alert_after_failures:
            logger.bind(error_code=report.errors[0] if report.errors else None).error(
                "ingestion failing repeatedly", consecutive_failures=self.consecutive_failures
            )
        elif report.status is not CycleStatus.SKIPPED:
            logger.info(
                "ingestion cycle finished",
                status=report.status.value,
                written=report.written,
                duplicates=report.duplicates,
                replaced=report.replaced,
            )

    def _calendar_for(self, feed: FeedSource) -> TradingCalendar:
        return self._calendars.get_calendar(feed.market)


def _skip_reason(decisions: Sequence[CalendarDecision]) -> str:
    reasons = {decision.reason for decision in decisions}
    if len(reasons) == 1:
        return reasons.pop()
    if not reasons:
        return "no-feeds"
    return "closed"


async def _wait_any(first: asyncio.Event, second: asyncio.Event, timeout: float) -> None:
    waiters = [asyncio.create_task(first.wait()), asyncio.create_task(second.wait())]
    try:
        await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()


__all__ = ["CycleState", "FeedSource", "IngestionScheduler"]
