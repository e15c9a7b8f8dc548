"""Plumbing shared by the CLI commands: global options, config, services and output."""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import Awaitable, Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, TextIO, TypeVar

import typer

from metalpulse.core.config import ConfigManager, MetalPulseConfig
from metalpulse.core.container import MetalPulseServices, build_services
from metalpulse.core.exceptions import MetalPulseError
from metalpulse.core.logging import configure_from_settings

from .constants import VALIDATION_EXIT_CODE
from .formatters import OutputFormatter, create_formatter

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class GlobalOptions:
    """Options given before the command name and stored on ``ctx.obj``."""

    output_format: str = "table"
    output_path: Path | None = None
    config_path: Path | None = None
    log_level: str | None = None
    no_color: bool = False

    @classmethod
    def from_context(cls, ctx: typer.Context) -> GlobalOptions:
        stored = ctx.find_root().obj or {}
        return cls(
            output_format=str(stored.get("format", "table")),
            output_path=stored.get("output_path"),
            config_path=stored.get("config_path"),
            log_level=stored.get("log_level"),
            no_color=bool(stored.get("no_color", False)),
        )


def emit_error(message: str, code: str, *, details: Mapping[str, object] | None = None) -> None:
    """Write ``{"code", "message", "details"}`` as one JSON line on stderr."""

    payload: dict[str, object] = {"code": code, "message": message}
    if details:
        payload["details"] = {key: _plain(value) for key, value in details.items()}
    typer.echo(json.dumps(payload, ensure_ascii=False, default=str), err=True)


def _plain(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item) for item in value]
    return str(value)


def abort(error: MetalPulseError, exit_code: int) -> NoReturn:
    """Report a domain error and leave with ``exit_code``."""

    emit_error(error.message, error.error_code, details=error.details)
    raise typer.Exit(code=exit_code) from error


def load_config(ctx: typer.Context) -> MetalPulseConfig:
    """Configuration from ``--config`` (or the default path) and the environment.

    Logging is reinstalled from the ``[logging]`` section once it is known.
    """

    options = GlobalOptions.from_context(ctx)
    try:
        config = ConfigManager(options.config_path).get_config()
    except MetalPulseError as error:
        abort(error, VALIDATION_EXIT_CODE)
    configure_from_settings(config.logging, level=options.log_level)
    return config


def get_services(config: MetalPulseConfig) -> MetalPulseServices:
    return build_services(config)


def run_with_services(services: MetalPulseServices, work: Callable[[], Awaitable[T]]) -> T:
    """Drive ``work`` on a fresh event loop, closing the services afterwards."""

    async def _main() -> T:
        try:
            return await work()
        finally:
            await services.aclose()

    return asyncio.run(_main())


@contextmanager
def open_output(ctx: typer.Context) -> Iterator[tuple[OutputFormatter, TextIO]]:
    """Yield the selected formatter with stdout or the ``--output`` file."""

    options = GlobalOptions.from_context(ctx)
    formatter = create_formatter(options.output_format, no_color=options.no_color)
    if options.output_path is None:
        yield formatter, sys.stdout
        return
    try:
        handle = open(options.output_path, "w", encoding="utf-8")
    except OSError as exc:
        emit_error(f"Unable to open '{options.output_path}': {exc}", "OUTPUT_WRITE_ERROR")
        raise typer.Exit(code=VALIDATION_EXIT_CODE) from exc
    with handle:
        yield formatter, handle


__all__ = [
    "GlobalOptions",
    "abort",
    "emit_error",
    "get_services",
    "load_config",
    "open_output",
    "run_with_services",
]
