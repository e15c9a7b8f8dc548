"""Duplicate suppression for polled quotes and the same-day replace regime.

Two regimes exist side by side and stay separate code paths:

* :class:`DedupGate` appends every poll to ``quote_history`` unless an equal
  reading for the same source and instrument was stored within the lookback.
* :class:`DailyUpsert` keeps exactly one ``daily_quotes`` row per family,
  contract month and local trading date.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import TYPE_CHECKING

from metalpulse.core.logging import get_logger

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from metalpulse.core.data.repositories.price_store import PriceStore, StoredQuote, UpsertOutcome
    from metalpulse.core.models.quotes import QuoteSnapshot

logger = get_logger(__name__)

DEFAULT_LOOKBACK = timedelta(minutes=5)


def normalize_decimal(value: Decimal | None, places: int = 2) -> Decimal:
    """Round half-up to ``places`` decimals; ``None`` counts as zero."""

    if value is None:
        value = Decimal("0")
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


class GateOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class DedupDecision:
    duplicate: bool
    existing: StoredQuote | None = None


@dataclass(frozen=True)
class GateResult:
    outcome: GateOutcome
    record: StoredQuote


class DedupGate:
    """Detect repeated readings before they reach the append-only history."""

    def __init__(self, places: int = 2) -> None:
        self.places = places

    def fingerprint(self, snapshot: QuoteSnapshot) -> tuple[Decimal, Decimal, Decimal]:
        return (
            normalize_decimal(snapshot.price, self.places),
            normalize_decimal(snapshot.delta, self.places),
            normalize_decimal(snapshot.delta_percent, self.places),
        )

    def is_duplicate(
        self,
        candidate: QuoteSnapshot,
        store: PriceStore,
        lookback: timedelta = DEFAULT_LOOKBACK,
        conn: DuckDBPyConnection | None = None,
    ) -> DedupDecision:
        """Look for an equal reading in ``(observed_at - lookback, observed_at]``.

        Only rows with the same ``source`` and ``instrument_key`` are
        considered. A reading exactly ``lookback`` older is not a duplicate.
        """

        if conn is None:
            with store.connection() as borrowed:
                return self.is_duplicate(candidate, store, lookback, borrowed)

        target = self.fingerprint(candidate)
        recent = store.recent(
            conn,
            instrument_key=candidate.instrument_key,
            source=candidate.source,
            after=candidate.observed_at - lookback,
            until=candidate.observed_at,
        )
        for existing in recent:
            if self.fingerprint(existing.snapshot) == target:
                return DedupDecision(duplicate=True, existing=existing)
        return DedupDecision(duplicate=False)

    def admit(
        self,
        candidate: QuoteSnapshot,
        store: PriceStore,
        lookback: timedelta = DEFAULT_LOOKBACK,
        conn: DuckDBPyConnection | None = None,
    ) -> GateResult:
        """Append ``candidate`` unless it duplicates a recent reading."""

        if conn is None:
            with store.transaction() as owned:
                return self.admit(candidate, store, lookback, owned)

        decision = self.is_duplicate(candidate, store, lookback, conn)
        if decision.duplicate and decision.existing is not None:
            logger.debug("duplicate quote skipped", instrument=candidate.instrument_key, source=candidate.source)
            return GateResult(outcome=GateOutcome.DUPLICATE, record=decision.existing)
        (record,) = store.append(conn, [candidate])
        return GateResult(outcome=GateOutcome.INSERTED, record=record)


class DailyUpsert:
    """Replace-on-conflict writes keyed by family, contract month and local date."""

    def __init__(self, zone: tzinfo) -> None:
        self.zone = zone

    def apply(
        self,
        snapshots: Iterable[QuoteSnapshot],
        store: PriceStore,
        conn: DuckDBPyConnection | None = None,
    ) -> UpsertOutcome:
        if conn is None:
            with store.transaction() as owned:
                return self.apply(snapshots, store, owned)
        return store.upsert_daily(conn, snapshots, zone=self.zone)


__all__ = [
    "DEFAULT_LOOKBACK",
    "DailyUpsert",
    "DedupDecision",
    "DedupGate",
    "GateOutcome",
    "GateResult",
    "normalize_decimal",
]
