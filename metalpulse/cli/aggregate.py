"""Aggregation command for the metalpulse CLI."""

from __future__ import annotations

from datetime import datetime

import typer

from metalpulse.core.exceptions import InvalidQueryError, MetalPulseError
from metalpulse.core.models import AggregationReport

from .constants import STORE_EXIT_CODE, VALIDATION_EXIT_CODE
from .utils import abort, get_services, load_config, open_output, run_with_services

STATS_COLUMNS = [
    "instrument",
    "label",
    "count",
    "first",
    "last",
    "min",
    "max",
    "avg",
    "delta",
    "delta_percent",
    "status",
    "trading_status",
    "cached",
]
POINT_COLUMNS = ["time", "value"]


def register(app: typer.Typer) -> None:
    """Register the aggregate command on the provided application."""

    app.command("aggregate")(aggregate_command)


def aggregate_command(
    ctx: typer.Context,
    instrument: str = typer.Argument(..., help="Family with optional slot, e.g. aluminum:current."),
    start: str | None = typer.Option(None, "--start", help="Window start, ISO 8601 with offset."),
    end: str | None = typer.Option(None, "--end", help="Window end, ISO 8601 with offset."),
    limit: int | None = typer.Option(None, "--limit", min=1, help="Only the most recent N collapsed points."),
    points: bool = typer.Option(False, "--points", help="Print the collapsed series instead of statistics."),
) -> None:
    """Print session statistics for an instrument."""

    try:
        range_start = _parse_instant(start, "--start")
        range_end = _parse_instant(end, "--end")
    except InvalidQueryError as error:
        abort(error, VALIDATION_EXIT_CODE)

    config = load_config(ctx)
    try:
        services = get_services(config)
    except MetalPulseError as error:
        abort(error, STORE_EXIT_CODE)

    try:
        report = run_with_services(
            services, lambda: services.engine.aggregate(instrument, range_start, range_end, limit)
        )
    except InvalidQueryError as error:
        abort(error, VALIDATION_EXIT_CODE)
    except MetalPulseError as error:
        abort(error, STORE_EXIT_CODE)

    with open_output(ctx) as (formatter, stream):
        if points:
            rows = [point.model_dump() for point in report.points]
            formatter.render(rows, stream=stream, columns=POINT_COLUMNS, title=report.instrument_key)
        else:
            formatter.render([_stats_row(report)], stream=stream, columns=STATS_COLUMNS, title="session")


def _parse_instant(value: str | None, option: str) -> datetime | None:
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise InvalidQueryError(f"{option} is not an ISO 8601 timestamp", {"value": value}) from exc
    if parsed.tzinfo is None:
        raise InvalidQueryError(f"{option} must include a UTC offset", {"value": value})
    return parsed


def _stats_row(report: AggregationReport) -> dict[str, object]:
    row = report.stats.model_dump()
    row.update(
        instrument=report.instrument_key,
        label=report.label,
        trading_status=report.trading_status,
        cached=report.cached,
    )
    return row
