"""Renderers for CLI output: rich tables for people, JSON lines for pipes."""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TextIO

from rich.box import SIMPLE
from rich.console import Console
from rich.table import Table

Rows = Sequence[Mapping[str, object]]

# A single record with more fields than this is printed as field/value pairs.
VERTICAL_THRESHOLD = 6


def display_value(value: object) -> str:
    """Human readable cell text."""

    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def json_value(value: object) -> object:
    """JSON-safe value; decimals keep their exact digits as strings."""

    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


class OutputFormatter:
    """Base class for CLI output formatters."""

    name: str

    def render(self, rows: Rows, *, stream: TextIO, columns: Sequence[str], title: str | None = None) -> None:
        raise NotImplementedError


@dataclass(slots=True)
class TableFormatter(OutputFormatter):
    """Rich table; one wide record is turned on its side so it fits a terminal."""

    name: str = "table"
    no_color: bool = False

    def render(self, rows: Rows, *, stream: TextIO, columns: Sequence[str], title: str | None = None) -> None:
        console = Console(file=stream, color_system=None if self.no_color else "auto", no_color=self.no_color)
        if not rows:
            console.print(f"{title}: no rows." if title else "No rows.")
            return

        header_style = "" if self.no_color else "bold"
        table = Table(box=SIMPLE, title=title)
        if len(rows) == 1 and len(columns) > VERTICAL_THRESHOLD:
            table.add_column("field", header_style=header_style)
            table.add_column("value", header_style=header_style)
            for column in columns:
                table.add_row(column, display_value(rows[0].get(column)))
        else:
            for column in columns:
                table.add_column(column, header_style=header_style)
            for row in rows:
                table.add_row(*(display_value(row.get(column)) for column in columns))
        console.print(table)


@dataclass(slots=True)
class JSONLFormatter(OutputFormatter):
    """One JSON object per row, restricted to ``columns``."""

    name: str = "jsonl"

    def render(self, rows: Rows, *, stream: TextIO, columns: Sequence[str], title: str | None = None) -> None:
        for row in rows:
            record = {column: json_value(row.get(column)) for column in columns}
            stream.write(json.dumps(record, ensure_ascii=False, default=str))
            stream.write("\n")
        stream.flush()


FORMATTERS = {"table": TableFormatter, "jsonl": JSONLFormatter}


def create_formatter(name: str, *, no_color: bool = False) -> OutputFormatter:
    """Instantiate a formatter by name."""

    normalized = name.strip().lower()
    if normalized == "table":
        return TableFormatter(no_color=no_color)
    if normalized in FORMATTERS:
        return FORMATTERS[normalized]()
    msg = f"Unsupported format '{name}'. Available formats: {', '.join(FORMATTERS)}."
    raise ValueError(msg)


__all__ = [
    "FORMATTERS",
    "JSONLFormatter",
    "OutputFormatter",
    "TableFormatter",
    "create_formatter",
    "display_value",
    "json_value",
]
