"""Ingestion commands for the metalpulse CLI."""

from __future__ import annotations

import typer

from metalpulse.core.exceptions import MetalPulseError
from metalpulse.core.logging import get_logger
from metalpulse.core.models import CycleReport, CycleStatus

from .constants import INGEST_EXIT_CODE, STORE_EXIT_CODE
from .utils import abort, emit_error, get_services, load_config, open_output, run_with_services

logger = get_logger(__name__)

ingest_app = typer.Typer(help="Poll upstream quote feeds.")

REPORT_COLUMNS = ["status", "trigger", "reason", "written", "duplicates", "replaced", "errors", "started_at"]
FEED_COLUMNS = ["feed", "written", "duplicates", "replaced", "dropped", "error_code"]


def register(app: typer.Typer) -> None:
    app.add_typer(ingest_app, name="ingest")


@ingest_app.command("once")
def once_command(ctx: typer.Context) -> None:
    """Run a single ingestion cycle now and print its report."""

    config = load_config(ctx)
    try:
        services = get_services(config)
    except MetalPulseError as error:
        abort(error, STORE_EXIT_CODE)

    report = run_with_services(services, services.scheduler.trigger)
    logger.info("manual cycle finished", status=report.status.value, written=report.written)
    with open_output(ctx) as (formatter, stream):
        formatter.render([_report_row(report)], stream=stream, columns=REPORT_COLUMNS, title="cycle")
        if report.feeds:
            feed_rows = [_pick(outcome, FEED_COLUMNS) for outcome in report.feeds]
            formatter.render(feed_rows, stream=stream, columns=FEED_COLUMNS, title="feeds")

    if report.status is CycleStatus.FAILED:
        raise typer.Exit(code=INGEST_EXIT_CODE)


@ingest_app.command("run")
def run_command(ctx: typer.Context) -> None:
    """Poll every configured feed on the cadence until interrupted."""

    config = load_config(ctx)
    if not config.feeds:
        emit_error("No feeds configured.", "FEEDS_MISSING")
        raise typer.Exit(code=INGEST_EXIT_CODE)
    try:
        services = get_services(config)
    except MetalPulseError as error:
        abort(error, STORE_EXIT_CODE)

    logger.info("scheduler starting", feeds=len(config.feeds))
    try:
        run_with_services(services, services.scheduler.run_forever)
    except KeyboardInterrupt:
        logger.info("interrupted, scheduler stopped")


def _pick(item: object, columns: list[str]) -> dict[str, object]:
    return {column: getattr(item, column) for column in columns}


def _report_row(report: CycleReport) -> dict[str, object]:
    row = _pick(report, REPORT_COLUMNS)
    row["errors"] = ",".join(report.errors) or None
    return row
