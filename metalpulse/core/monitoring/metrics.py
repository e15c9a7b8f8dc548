"""Prometheus metrics helpers for ingestion and aggregation."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

_ALLOWED_AGGREGATION_RESULTS = {"ok", "no-data", "cached", "stale", "error"}


class MetricsCollector:
    """Collects and exposes Prometheus metrics for scheduler cycles and queries."""

    def __init__(self, *, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.cycles_total = Counter(
            "metalpulse_ingestion_cycles_total",
            "Ingestion cycles grouped by final status.",
            ("status", "trigger"),
            registry=self.registry,
        )
        self.rows_written_total = Counter(
            "metalpulse_rows_written_total",
            "Quote history rows appended.",
            ("feed",),
            registry=self.registry,
        )
        self.rows_replaced_total = Counter(
            "metalpulse_rows_replaced_total",
            "Daily quote rows overwritten by a newer same-day value.",
            ("feed",),
            registry=self.registry,
        )
        self.duplicates_skipped_total = Counter(
            "metalpulse_duplicates_skipped_total",
            "Snapshots dropped because an equal reading was already stored.",
            ("feed",),
            registry=self.registry,
        )
        self.fetch_latency_seconds = Histogram(
            "metalpulse_fetch_latency_seconds",
            "Latency distribution for upstream feed fetches.",
            ("feed",),
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf")),
            registry=self.registry,
        )
        self.fetch_failures_total = Counter(
            "metalpulse_fetch_failures_total",
            "Failed upstream fetches grouped by error code.",
            ("feed", "error_code"),
            registry=self.registry,
        )
        self.consecutive_failures = Gauge(
            "metalpulse_consecutive_failed_cycles",
            "Number of ingestion cycles in a row that ended in failure.",
            registry=self.registry,
        )
        self.aggregation_requests_total = Counter(
            "metalpulse_aggregation_requests_total",
            "Aggregation queries grouped by result.",
            ("result",),
            registry=self.registry,
        )

    def record_cycle(self, status: str, trigger: str, consecutive_failures: int) -> None:
        self.cycles_total.labels(status=status, trigger=trigger).inc()
        self.consecutive_failures.set(consecutive_failures)

    def record_feed(self, feed: str, *, written: int = 0, duplicates: int = 0, replaced: int = 0) -> None:
        if written:
            self.rows_written_total.labels(feed=feed).inc(written)
        if duplicates:
            self.duplicates_skipped_total.labels(feed=feed).inc(duplicates)
        if replaced:
            self.rows_replaced_total.labels(feed=feed).inc(replaced)

    def observe_fetch(self, feed: str, latency_seconds: float, *, error_code: str | None = None) -> None:
        """Record an upstream fetch and, when it failed, its error code."""

        self.fetch_latency_seconds.labels(feed=feed).observe(latency_seconds)
        if error_code is not None:
            self.fetch_failures_total.labels(feed=feed, error_code=error_code).inc()

    def record_aggregation(self, result: str) -> None:
        """Track aggregation outcomes with constrained result labels."""

        label = result if result in _ALLOWED_AGGREGATION_RESULTS else "__other__"
        self.aggregation_requests_total.labels(result=label).inc()

    def render(self) -> bytes:
        """Render metrics in Prometheus exposition format."""

        return generate_latest(self.registry)


_DEFAULT_COLLECTOR: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Return the global metrics collector instance."""

    global _DEFAULT_COLLECTOR
    if _DEFAULT_COLLECTOR is None:
        _DEFAULT_COLLECTOR = MetricsCollector()
    return _DEFAULT_COLLECTOR


def configure_metrics_collector(collector: MetricsCollector | None) -> None:
    """Override the global metrics collector for application wiring or tests."""

    global _DEFAULT_COLLECTOR
    _DEFAULT_COLLECTOR = collector


__all__ = ["MetricsCollector", "configure_metrics_collector", "get_metrics_collector"]
