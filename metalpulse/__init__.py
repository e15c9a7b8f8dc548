"""metalpulse - metal and futures quote ingestion with session-bounded aggregation.

Polls upstream quote feeds during trading hours, drops repeated readings,
stores per-contract time series in DuckDB and serves session statistics.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
