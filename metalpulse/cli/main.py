"""Entry point for the ``metalpulse`` command."""

from __future__ import annotations

from pathlib import Path

import typer

from metalpulse.core.logging import configure_logging

from . import aggregate, ingest, quotes, serve
from .formatters import FORMATTERS, create_formatter


def _global_options(
    ctx: typer.Context,
    output_format: str = typer.Option("table", "--format", "-f", help=f"One of: {', '.join(FORMATTERS)}."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write results to this file instead of stdout."),
    config: Path | None = typer.Option(
        None, "--config", "-c", help="TOML configuration file (default ~/.metalpulse/config.toml)."
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override the configured log level."),
    no_color: bool = typer.Option(False, "--no-color", help="Plain table output."),
) -> None:
    """Options shared by every command."""

    try:
        create_formatter(output_format)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--format") from exc

    level = log_level.upper() if log_level else None
    ctx.obj = {
        "format": output_format.strip().lower(),
        "output_path": output,
        "config_path": config,
        "log_level": level,
        "no_color": no_color,
    }
    # Until the configuration is read only stderr receives records.
    configure_logging(level or "WARNING")


def create_app() -> typer.Typer:
    """Build the Typer application with every command group registered."""

    app = typer.Typer(add_completion=False, no_args_is_help=True, help="metalpulse quote ingestion and aggregation")
    app.callback()(_global_options)
    for module in (aggregate, ingest, quotes, serve):
        module.register(app)
    return app


app = create_app()


def main() -> None:
    app()
