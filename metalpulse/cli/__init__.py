"""Command line interface for metalpulse."""

from metalpulse.cli.main import app, create_app

__all__ = ["app", "create_app"]
