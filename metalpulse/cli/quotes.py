"""Latest and daily quote commands for the metalpulse CLI."""

from __future__ import annotations

from datetime import date

import typer

from metalpulse.core.exceptions import InvalidQueryError, MetalPulseError

from .constants import STORE_EXIT_CODE, VALIDATION_EXIT_CODE
from .utils import abort, emit_error, get_services, load_config, open_output, run_with_services

LATEST_COLUMNS = [
    "instrument_key",
    "label",
    "price",
    "delta",
    "delta_percent",
    "observed_at",
    "source",
    "ingested_at",
    "trading_status",
]
DAILY_COLUMNS = ["contract_month", "slot", "price", "delta", "delta_percent", "observed_at", "source"]


def register(app: typer.Typer) -> None:
    app.command("latest")(latest_command)
    app.command("daily")(daily_command)


def latest_command(
    ctx: typer.Context,
    instrument: str = typer.Argument(..., help="Family with optional slot or contract, e.g. aluminum:next."),
) -> None:
    """Print the most recent stored quote of an instrument."""

    config = load_config(ctx)
    try:
        services = get_services(config)
    except MetalPulseError as error:
        abort(error, STORE_EXIT_CODE)

    try:
        quote = run_with_services(services, lambda: services.engine.latest(instrument))
    except InvalidQueryError as error:
        abort(error, VALIDATION_EXIT_CODE)
    except MetalPulseError as error:
        abort(error, STORE_EXIT_CODE)

    with open_output(ctx) as (formatter, stream):
        rows = [quote.model_dump()] if quote is not None else []
        formatter.render(rows, stream=stream, columns=LATEST_COLUMNS, title=instrument)


def daily_command(
    ctx: typer.Context,
    family: str = typer.Argument(..., help="Instrument family, e.g. aluminum."),
    day: str | None = typer.Option(None, "--date", help="Local trading date (YYYY-MM-DD); latest recorded when omitted."),
) -> None:
    """Print one quote per contract month for a trading day."""

    observed_date: date | None = None
    if day is not None:
        try:
            observed_date = date.fromisoformat(day)
        except ValueError:
            emit_error("--date is not an ISO 8601 date", "INVALID_QUERY", details={"value": day})
            raise typer.Exit(code=VALIDATION_EXIT_CODE) from None

    config = load_config(ctx)
    try:
        services = get_services(config)
    except MetalPulseError as error:
        abort(error, STORE_EXIT_CODE)

    try:
        quotes = run_with_services(services, lambda: services.engine.daily(family, observed_date))
    except InvalidQueryError as error:
        abort(error, VALIDATION_EXIT_CODE)
    except MetalPulseError as error:
        abort(error, STORE_EXIT_CODE)

    with open_output(ctx) as (formatter, stream):
        rows = [quote.model_dump() for quote in quotes]
        formatter.render(rows, stream=stream, columns=DAILY_COLUMNS, title=family)
