"""Tests for the metalpulse command line interface."""

from __future__ import annotations

import json
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from typer.testing import CliRunner

import metalpulse.cli.aggregate as aggregate_module
import metalpulse.cli.ingest as ingest_module
import metalpulse.cli.quotes as quotes_module
import metalpulse.cli.serve as serve_module
from metalpulse.cli.main import create_app
from metalpulse.core.models import (
    AggregateResult,
    AggregationReport,
    CycleReport,
    CycleStatus,
    FeedOutcome,
    LatestQuote,
    QuoteSnapshot,
    SeriesPoint,
)

STARTED = datetime(2025, 1, 14, 4, 30, tzinfo=UTC)


class StubScheduler:
    def __init__(self, report: CycleReport) -> None:
        self.report = report
        self.triggered = 0

    async def trigger(self) -> CycleReport:
        self.triggered += 1
        return self.report


class StubEngine:
    def __init__(self) -> None:
        self.calls: list[tuple[object, ...]] = []

    async def aggregate(self, instrument, range_start=None, range_end=None, limit=None) -> AggregationReport:
        self.calls.append((instrument, range_start, range_end, limit))
        return AggregationReport(
            instrument_key="aluminum:JAN25",
            label="JAN25",
            points=[
                SeriesPoint(time=datetime(2025, 1, 14, 3, 35, tzinfo=UTC), value=Decimal("241")),
                SeriesPoint(time=datetime(2025, 1, 14, 3, 40, tzinfo=UTC), value=Decimal("243")),
            ],
            stats=AggregateResult(
                count=2,
                min=Decimal("241"),
                max=Decimal("243"),
                avg=Decimal("242"),
                first=Decimal("241"),
                last=Decimal("243"),
                delta=Decimal("2"),
                delta_percent=Decimal("0.83"),
            ),
            trading_status="open",
        )

    async def latest(self, instrument) -> LatestQuote | None:
        self.calls.append(("latest", instrument))
        if instrument.startswith("copper"):
            return None
        return LatestQuote(
            instrument_key="aluminum:FEB25",
            label="FEB25",
            observed_at=STARTED,
            price=Decimal("246.1"),
            delta=Decimal("0.2"),
            delta_percent=Decimal("0.08"),
            source="scheduled-poll",
            ingested_at=STARTED,
            trading_status="open",
        )

    async def daily(self, family, day=None) -> list[QuoteSnapshot]:
        self.calls.append(("daily", family, day))
        return [
            QuoteSnapshot(
                family=family,
                contract_month="JAN25",
                slot=1,
                observed_at=STARTED,
                price=Decimal("245.3"),
                delta=Decimal("-0.4"),
                delta_percent=Decimal("-0.17"),
            )
        ]


class StubServices:
    def __init__(self, report: CycleReport | None = None) -> None:
        self.scheduler = StubScheduler(
            report
            or CycleReport(
                status=CycleStatus.COMPLETED,
                trigger="manual",
                started_at=STARTED,
                finished_at=STARTED,
                written=1,
                feeds=(FeedOutcome(feed="mcx-aluminum", written=1),),
            )
        )
        self.engine = StubEngine()
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def base_args(tmp_path: Path) -> list[str]:
    return ["--config", str(tmp_path / "config.toml"), "--log-level", "ERROR"]


def _json_lines(output: str) -> list[dict[str, object]]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


def test_ingest_once_prints_report(runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    services = StubServices()
    monkeypatch.setattr(ingest_module, "get_services", lambda config: services)

    result = runner.invoke(create_app(), [*base_args, "--format", "jsonl", "ingest", "once"])

    assert result.exit_code == 0, result.output
    report, feed = _json_lines(result.stdout)
    assert report["status"] == "completed"
    assert report["written"] == 1
    assert feed["feed"] == "mcx-aluminum"
    assert services.scheduler.triggered == 1
    assert services.closed is True


def test_ingest_once_failure_sets_exit_code(
    runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    failed = CycleReport(
        status=CycleStatus.FAILED,
        trigger="manual",
        started_at=STARTED,
        finished_at=STARTED,
        errors=("FETCH_TIMEOUT",),
    )
    monkeypatch.setattr(ingest_module, "get_services", lambda config: StubServices(failed))

    result = runner.invoke(create_app(), [*base_args, "--format", "jsonl", "ingest", "once"])

    assert result.exit_code == 4
    (report,) = _json_lines(result.stdout)
    assert report["status"] == "failed"
    assert report["errors"] == "FETCH_TIMEOUT"


def test_aggregate_table_output(runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    services = StubServices()
    monkeypatch.setattr(aggregate_module, "get_services", lambda config: services)

    result = runner.invoke(
        create_app(), [*base_args, "--no-color", "aggregate", "aluminum"], env={"COLUMNS": "250"}
    )

    assert result.exit_code == 0, result.output
    assert "aluminum:JAN25" in result.stdout
    assert "0.83" in result.stdout
    assert services.engine.calls == [("aluminum", None, None, None)]


def test_aggregate_points_jsonl(runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    services = StubServices()
    monkeypatch.setattr(aggregate_module, "get_services", lambda config: services)

    result = runner.invoke(
        create_app(),
        [
            *base_args,
            "--format",
            "jsonl",
            "aggregate",
            "aluminum:current",
            "--start",
            "2025-01-14T09:00:00+05:30",
            "--limit",
            "10",
            "--points",
        ],
    )

    assert result.exit_code == 0, result.output
    points = _json_lines(result.stdout)
    assert [point["value"] for point in points] == ["241", "243"]
    instrument, start, end, limit = services.engine.calls[0]
    assert instrument == "aluminum:current"
    assert start == datetime(2025, 1, 14, 3, 30, tzinfo=UTC)
    assert end is None
    assert limit == 10


def test_aggregate_rejects_naive_start(runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(aggregate_module, "get_services", lambda config: StubServices())

    result = runner.invoke(create_app(), [*base_args, "aggregate", "aluminum", "--start", "2025-01-14T09:00:00"])

    assert result.exit_code == 2


def test_unknown_format_is_rejected(runner: CliRunner, base_args: list[str]) -> None:
    result = runner.invoke(create_app(), [*base_args, "--format", "xml", "aggregate", "aluminum"])

    assert result.exit_code == 2


def test_invalid_config_file_exits_with_validation_code(runner: CliRunner, tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[store]\npool_size = 0\n", encoding="utf-8")

    result = runner.invoke(create_app(), ["--config", str(config_path), "ingest", "once"])

    assert result.exit_code == 2


def test_serve_uses_configured_host(
    runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    calls: list[dict[str, object]] = []

    def fake_run(app, **kwargs) -> None:
        calls.append({"app": app, **kwargs})

    monkeypatch.setattr(serve_module.uvicorn, "run", fake_run)

    result = runner.invoke(create_app(), [*base_args, "serve", "--port", "9100", "--no-scheduler"])

    assert result.exit_code == 0, result.output
    assert calls[0]["host"] == "127.0.0.1"
    assert calls[0]["port"] == 9100
    assert calls[0]["app"].title == "metalpulse"


def test_output_option_writes_file(
    runner: CliRunner, base_args: list[str], tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(aggregate_module, "get_services", lambda config: StubServices())
    target = tmp_path / "stats.jsonl"

    result = runner.invoke(create_app(), [*base_args, "--format", "jsonl", "--output", str(target), "aggregate", "aluminum"])

    assert result.exit_code == 0, result.output
    (row,) = [json.loads(line) for line in target.read_text(encoding="utf-8").splitlines()]
    assert row["instrument"] == "aluminum:JAN25"
    assert row["delta_percent"] == "0.83"
    assert row["status"] == "ok"
    assert row["cached"] is False


def test_logging_section_adds_file_sink(
    runner: CliRunner, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    log_file = tmp_path / "logs" / "cli.log"
    config_path = tmp_path / "config.toml"
    config_path.write_text(f'[logging]\nlevel = "INFO"\nfile = "{log_file.as_posix()}"\n', encoding="utf-8")
    monkeypatch.setattr(ingest_module, "get_services", lambda config: StubServices())

    result = runner.invoke(create_app(), ["--config", str(config_path), "--format", "jsonl", "ingest", "once"])

    assert result.exit_code == 0, result.output
    records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert any(record["message"] == "manual cycle finished" for record in records)


def test_latest_prints_quote(runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    services = StubServices()
    monkeypatch.setattr(quotes_module, "get_services", lambda config: services)

    result = runner.invoke(create_app(), [*base_args, "--format", "jsonl", "latest", "aluminum:next"])

    assert result.exit_code == 0, result.output
    (quote,) = _json_lines(result.stdout)
    assert quote["instrument_key"] == "aluminum:FEB25"
    assert quote["price"] == "246.1"
    assert quote["trading_status"] == "open"
    assert services.engine.calls == [("latest", "aluminum:next")]
    assert services.closed is True


def test_latest_without_quote_prints_nothing(
    runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(quotes_module, "get_services", lambda config: StubServices())

    result = runner.invoke(create_app(), [*base_args, "--format", "jsonl", "latest", "copper"])

    assert result.exit_code == 0, result.output
    assert _json_lines(result.stdout) == []


def test_daily_passes_date(runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    services = StubServices()
    monkeypatch.setattr(quotes_module, "get_services", lambda config: services)

    result = runner.invoke(
        create_app(), [*base_args, "--format", "jsonl", "daily", "aluminum", "--date", "2025-01-14"]
    )

    assert result.exit_code == 0, result.output
    (row,) = _json_lines(result.stdout)
    assert row["contract_month"] == "JAN25"
    assert row["price"] == "245.3"
    assert services.engine.calls == [("daily", "aluminum", date(2025, 1, 14))]


def test_daily_rejects_bad_date(runner: CliRunner, base_args: list[str], monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(quotes_module, "get_services", lambda config: StubServices())

    result = runner.invoke(create_app(), [*base_args, "daily", "aluminum", "--date", "14/01/2025"])

    assert result.exit_code == 2
