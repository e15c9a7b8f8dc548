"""Session-bounded statistics over stored quote history."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from threading import Lock
from typing import TYPE_CHECKING

from metalpulse.core.exceptions import InvalidQueryError, StoreError
from metalpulse.core.logging import get_logger
from metalpulse.core.models.results import (
    NO_DATA_MESSAGE,
    AggregateResult,
    AggregateStatus,
    AggregationReport,
    LatestQuote,
    SeriesPoint,
)

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from metalpulse.core.data.repositories.price_store import PriceStore, StoredQuote
    from metalpulse.core.models.quotes import QuoteSnapshot
    from metalpulse.core.monitoring.metrics import MetricsCollector
    from metalpulse.core.services.calendars import TradingCalendar, TradingCalendarProvider

logger = get_logger(__name__)

SLOT_ALIASES = {
    "current": 1,
    "next": 2,
    "third": 3,
    "month1": 1,
    "month2": 2,
    "month3": 3,
}

STALE_MESSAGE = "store unavailable and no cached result"

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class InstrumentRef:
    """Parsed instrument reference.

    ``aluminum`` and ``aluminum:current`` both mean the current contract of
    the family, ``aluminum:next`` / ``aluminum:third`` (or ``month2`` /
    ``month3``) the following ones, and any other suffix is an explicit
    contract month such as ``aluminum:JAN25``.
    """

    family: str
    slot: int | None = None
    contract_month: str | None = None

    @classmethod
    def parse(cls, text: str) -> InstrumentRef:
        raw = text.strip()
        family, _, suffix = raw.partition(":")
        family = family.strip()
        suffix = suffix.strip()
        if not family:
            raise InvalidQueryError("instrument is empty", {"instrument": text})
        if not suffix:
            return cls(family=family)
        slot = SLOT_ALIASES.get(suffix.lower())
        if slot is not None:
            return cls(family=family, slot=slot)
        return cls(family=family, contract_month=suffix)

    @property
    def text(self) -> str:
        if self.contract_month:
            return f"{self.family}:{self.contract_month}"
        if self.slot:
            return f"{self.family}:month{self.slot}"
        return self.family


class ResultCache:
    """Last successful report per query key, bounded LRU."""

    def __init__(self, max_size: int = 256) -> None:
        self.max_size = max_size
        self._entries: OrderedDict[tuple[object, ...], AggregationReport] = OrderedDict()
        self._lock = Lock()

    def get(self, key: tuple[object, ...]) -> AggregationReport | None:
        with self._lock:
            report = self._entries.get(key)
            if report is not None:
                self._entries.move_to_end(key)
            return report

    def put(self, key: tuple[object, ...], report: AggregationReport) -> None:
        with self._lock:
            self._entries.pop(key, None)
            while len(self._entries) >= self.max_size and self._entries:
                self._entries.popitem(last=False)
            self._entries[key] = report

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def clip_to_sessions(rows: Sequence[StoredQuote], calendar: TradingCalendar) -> list[StoredQuote]:
    """Drop rows outside the session of their own local trading day."""

    kept: list[StoredQuote] = []
    for row in rows:
        local = row.observed_at.astimezone(calendar.zone)
        day = local.date()
        if calendar.is_trading_day(day) and calendar.session_window(day).contains(local):
            kept.append(row)
    return kept


def collapse_minutes(rows: Sequence[StoredQuote]) -> list[SeriesPoint]:
    """One point per minute, keeping the last observed row; ties go to the later insert."""

    latest: dict[datetime, StoredQuote] = {}
    for row in sorted(rows, key=lambda item: (item.observed_at, item.seq)):
        latest[row.observed_at.replace(second=0, microsecond=0)] = row
    return [SeriesPoint(time=minute, value=latest[minute].price) for minute in sorted(latest)]


def compute_stats(
    points: Sequence[SeriesPoint],
    range_start: datetime | None,
    range_end: datetime | None,
) -> AggregateResult:
    if not points:
        return AggregateResult.empty(range_start, range_end)
    values = [point.value for point in points]
    first = values[0]
    last = values[-1]
    delta = last - first
    return AggregateResult(
        count=len(values),
        min=min(values),
        max=max(values),
        avg=sum(values, _ZERO) / len(values),
        first=first,
        last=last,
        delta=delta,
        delta_percent=(delta / first * _HUNDRED) if first != 0 else _ZERO,
        range_start=range_start,
        range_end=range_end,
        status=AggregateStatus.OK,
    )


class AggregationEngine:
    """Answers dashboard range queries from the price store."""

    def __init__(
        self,
        store: PriceStore,
        calendars: TradingCalendarProvider,
        *,
        family_markets: Mapping[str, str] | None = None,
        default_market: str = "mcx",
        cache: ResultCache | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._calendars = calendars
        self._family_markets = dict(family_markets or {})
        self._default_market = default_market
        self.cache = cache or ResultCache()
        self._metrics = metrics
        self._clock = clock or (lambda: datetime.now(UTC))

    def calendar_for(self, family: str) -> TradingCalendar:
        return self._calendars.get_calendar(self._family_markets.get(family, self._default_market))

    async def aggregate(
        self,
        instrument: str | InstrumentRef,
        range_start: datetime | None = None,
        range_end: datetime | None = None,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> AggregationReport:
        """Statistics for ``instrument`` over a range, defaulting to the current query session.

        ``limit`` keeps the most recent ``limit`` points after session clipping
        and minute collapsing.

        An empty window is a normal result with ``status="no-data"``. When the
        store fails, the last successful report for the same query is
        returned flagged as cached.
        """

        ref = instrument if isinstance(instrument, InstrumentRef) else InstrumentRef.parse(instrument)
        if limit is not None and limit < 1:
            raise InvalidQueryError("limit must be positive", {"limit": limit})
        for bound in (range_start, range_end):
            if bound is not None and bound.tzinfo is None:
                raise InvalidQueryError("range bounds must be timezone-aware")

        calendar = self.calendar_for(ref.family)
        now = now or self._clock()
        session = calendar.query_session(now)
        start = range_start or session.start
        end = range_end or session.end
        if start > end:
            raise InvalidQueryError("range_start is after range_end", {"start": start, "end": end})
        trading_status = calendar.is_open(now).reason
        cache_key = (ref, start, end, limit)

        def _load(conn: DuckDBPyConnection) -> tuple[str | None, list[StoredQuote]]:
            label, key = self._resolve(ref, conn)
            if key is None:
                return None, []
            return label, self._store.query_range(key, start, end, conn=conn)

        try:
            label, rows = await self._store.run("aggregate", _load)
        except StoreError as exc:
            return self._fallback(cache_key, ref, start, end, trading_status, exc)

        points = collapse_minutes(clip_to_sessions(rows, calendar))
        if limit is not None:
            points = points[-limit:]
        stats = compute_stats(points, start, end)
        report = AggregationReport(
            instrument_key=f"{ref.family}:{label}" if label else ref.family,
            label=label,
            points=points,
            stats=stats,
            trading_status=trading_status,
            cached=False,
            message=NO_DATA_MESSAGE if stats.count == 0 else None,
        )
        self.cache.put(cache_key, report)
        self._record(stats.status.value)
        return report

    async def latest(self, instrument: str | InstrumentRef, now: datetime | None = None) -> LatestQuote | None:
        """Newest stored observation of ``instrument``, or ``None`` when nothing is recorded."""

        ref = instrument if isinstance(instrument, InstrumentRef) else InstrumentRef.parse(instrument)

        def _load(conn: DuckDBPyConnection) -> tuple[str | None, StoredQuote | None]:
            label, key = self._resolve(ref, conn)
            if key is None:
                return None, None
            return label, self._store.latest(key, conn=conn)

        label, row = await self._store.run("latest", _load)
        if row is None:
            return None
        snapshot = row.snapshot
        return LatestQuote(
            instrument_key=snapshot.instrument_key,
            label=label,
            observed_at=snapshot.observed_at,
            price=row.price,
            delta=snapshot.delta or _ZERO,
            delta_percent=snapshot.delta_percent or _ZERO,
            source=snapshot.source,
            ingested_at=row.ingested_at,
            trading_status=self.calendar_for(ref.family).is_open(now or self._clock()).reason,
        )

    async def daily(self, family: str, day: date | None = None) -> list[QuoteSnapshot]:
        """Daily quotes of ``family`` for ``day``, or for the latest recorded day."""

        if not family.strip():
            raise InvalidQueryError("family must not be empty")
        return await self._store.run("daily", lambda conn: self._store.daily(family, day, conn=conn))

    def _resolve(self, ref: InstrumentRef, conn: DuckDBPyConnection) -> tuple[str | None, str | None]:
        """Label and instrument key for ``ref``; the key is ``None`` for an unrolled later slot."""

        label = ref.contract_month
        if label is None:
            roll = self._store.latest_label(ref.family, ref.slot or 1, conn=conn)
            if roll is not None:
                label = roll.label
            elif ref.slot is not None and ref.slot > 1:
                return None, None
        return label, f"{ref.family}:{label}" if label else ref.family

    def _fallback(
        self,
        cache_key: tuple[object, ...],
        ref: InstrumentRef,
        start: datetime,
        end: datetime,
        trading_status: str,
        error: StoreError,
    ) -> AggregationReport:
        cached = self.cache.get(cache_key)
        logger.warning(
            "aggregation store read failed",
            instrument=ref.text,
            error_code=error.error_code,
            cached=cached is not None,
        )
        if cached is not None:
            self._record("cached")
            return cached.model_copy(update={"cached": True, "trading_status": trading_status})
        self._record("stale")
        return AggregationReport(
            instrument_key=ref.text,
            stats=AggregateResult.empty(start, end, AggregateStatus.STALE),
            trading_status=trading_status,
            cached=False,
            message=STALE_MESSAGE,
        )

    def _record(self, result: str) -> None:
        if self._metrics is not None:
            self._metrics.record_aggregation(result)


__all__ = [
    "AggregationEngine",
    "InstrumentRef",
    "ResultCache",
    "SLOT_ALIASES",
    "STALE_MESSAGE",
    "clip_to_sessions",
    "collapse_minutes",
    "compute_stats",
]
