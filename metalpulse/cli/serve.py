"""HTTP server command for the metalpulse CLI."""

from __future__ import annotations

import typer
import uvicorn

from metalpulse.web.app import create_app

from .utils import load_config


def register(app: typer.Typer) -> None:
    """Register the serve command on the provided application."""

    app.command("serve")(serve_command)


def serve_command(
    ctx: typer.Context,
    host: str | None = typer.Option(None, "--host", help="Bind address; defaults to web.host."),
    port: int | None = typer.Option(None, "--port", help="Bind port; defaults to web.port."),
    no_scheduler: bool = typer.Option(False, "--no-scheduler", help="Serve queries without polling feeds."),
) -> None:
    """Serve the aggregation API, running the scheduler in the background."""

    config = load_config(ctx)
    if no_scheduler:
        config = config.model_copy(update={"web": config.web.model_copy(update={"run_scheduler": False})})
    uvicorn.run(
        create_app(config),
        host=host or config.web.host,
        port=port or config.web.port,
        log_config=None,
    )
