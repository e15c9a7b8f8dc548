"""DuckDB table layout for quote history, daily quotes and contract label rolls."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection


@dataclass(frozen=True)
class ColumnDef:
    """Represents a DuckDB table column definition."""

    name: str
    data_type: str
    constraints: Sequence[str] = ()

    def render(self) -> str:
        return " ".join([self.name, self.data_type, *self.constraints])


@dataclass(frozen=True)
class TableSchema:
    """Utility wrapper describing a DuckDB table schema."""

    name: str
    columns: Sequence[ColumnDef]
    primary_key: Sequence[str] = ()
    sequences: Sequence[str] = ()

    def create_ddl(self) -> str:
        column_defs: list[str] = [column.render() for column in self.columns]
        if self.primary_key:
            column_defs.append(f"PRIMARY KEY ({', '.join(self.primary_key)})")
        columns_sql = ",\n                ".join(column_defs)
        return f"""
            CREATE TABLE IF NOT EXISTS {self.name} (
                {columns_sql}
            )
            """.strip()

    def ensure(self, conn: DuckDBPyConnection) -> None:
        """Create the table, and any sequence it draws from, if missing."""

        for sequence in self.sequences:
            conn.execute(f"CREATE SEQUENCE IF NOT EXISTS {sequence}")
        conn.execute(self.create_ddl())


PRICE_TYPE = "DECIMAL(18, 4)"

# Every poll is kept; ``seq`` records insertion order for same-instant ties.
QUOTE_HISTORY_TABLE = TableSchema(
    name="quote_history",
    columns=(
        ColumnDef("record_id", "VARCHAR", ("NOT NULL",)),
        ColumnDef("seq", "BIGINT", ("NOT NULL", "DEFAULT nextval('quote_history_seq')")),
        ColumnDef("instrument_key", "VARCHAR", ("NOT NULL",)),
        ColumnDef("family", "VARCHAR", ("NOT NULL",)),
        ColumnDef("contract_month", "VARCHAR"),
        ColumnDef("slot", "INTEGER"),
        ColumnDef("observed_at", "TIMESTAMP", ("NOT NULL",)),
        ColumnDef("price", PRICE_TYPE, ("NOT NULL",)),
        ColumnDef("delta", PRICE_TYPE, ("NOT NULL",)),
        ColumnDef("delta_percent", PRICE_TYPE, ("NOT NULL",)),
        ColumnDef("source", "VARCHAR", ("NOT NULL",)),
        ColumnDef("ingested_at", "TIMESTAMP", ("NOT NULL",)),
    ),
    primary_key=("record_id",),
    sequences=("quote_history_seq",),
)

# One row per family, contract month and local trading date; spot series use ''.
DAILY_QUOTES_TABLE = TableSchema(
    name="daily_quotes",
    columns=(
        ColumnDef("family", "VARCHAR", ("NOT NULL",)),
        ColumnDef("contract_month", "VARCHAR", ("NOT NULL",)),
        ColumnDef("observed_date", "DATE", ("NOT NULL",)),
        ColumnDef("instrument_key", "VARCHAR", ("NOT NULL",)),
        ColumnDef("slot", "INTEGER"),
        ColumnDef("observed_at", "TIMESTAMP", ("NOT NULL",)),
        ColumnDef("price", PRICE_TYPE, ("NOT NULL",)),
        ColumnDef("delta", PRICE_TYPE, ("NOT NULL",)),
        ColumnDef("delta_percent", PRICE_TYPE, ("NOT NULL",)),
        ColumnDef("source", "VARCHAR", ("NOT NULL",)),
        ColumnDef("updated_at", "TIMESTAMP", ("NOT NULL",)),
    ),
    primary_key=("family", "contract_month", "observed_date"),
)

CONTRACT_LABELS_TABLE = TableSchema(
    name="contract_labels",
    columns=(
        ColumnDef("family", "VARCHAR", ("NOT NULL",)),
        ColumnDef("slot", "INTEGER", ("NOT NULL",)),
        ColumnDef("label", "VARCHAR", ("NOT NULL",)),
        ColumnDef("observed_at", "TIMESTAMP", ("NOT NULL",)),
    ),
    primary_key=("family", "slot"),
)


def price_tables() -> Sequence[TableSchema]:
    return (QUOTE_HISTORY_TABLE, DAILY_QUOTES_TABLE, CONTRACT_LABELS_TABLE)


def ensure_price_tables(conn: DuckDBPyConnection) -> None:
    """Create all tables used by the price store on the provided connection."""

    for table in price_tables():
        table.ensure(conn)
    conn.execute(
        "CREATE INDEX IF NOT EXISTS quote_history_lookup ON quote_history (instrument_key, observed_at)"
    )


__all__ = [
    "CONTRACT_LABELS_TABLE",
    "ColumnDef",
    "DAILY_QUOTES_TABLE",
    "PRICE_TYPE",
    "QUOTE_HISTORY_TABLE",
    "TableSchema",
    "ensure_price_tables",
    "price_tables",
]
