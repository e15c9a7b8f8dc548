"""Tests for structured logging with cycle context propagation."""

from __future__ import annotations

import io
import json
from decimal import Decimal

import pytest
from pydantic import ValidationError

from metalpulse.core.config.settings import LoggingSettings
from metalpulse.core.logging import LogConfig, StructuredLogger, configure_from_settings, get_logger, log_context


def _read_records(stream: io.StringIO) -> list[dict[str, object]]:
    stream.seek(0)
    lines = [line for line in stream.getvalue().splitlines() if line.strip()]
    return [json.loads(line) for line in lines]


def test_structured_log_contains_trace_and_context() -> None:
    buffer = io.StringIO()
    logger = StructuredLogger(LogConfig(console_stream=buffer, console_output=True, file_output=False))

    with logger.context(trace_id="trace-123", instrument="aluminum:JAN25", cycle="c-1"):
        logger.logger.info("feed ingested", written=1)

    (record,) = _read_records(buffer)
    assert record["trace_id"] == "trace-123"
    assert record["instrument"] == "aluminum:JAN25"
    assert record["error_code"] is None
    assert record["level"] == "INFO"
    assert record["context"]["cycle"] == "c-1"
    assert record["context"]["written"] == 1


def test_trace_id_propagates_within_context() -> None:
    buffer = io.StringIO()
    logger = StructuredLogger(LogConfig(console_stream=buffer, console_output=True, file_output=False))

    with log_context() as trace_id:
        logger.logger.info("first event")
        logger.logger.info("second event")

    logger.logger.info("outside context")

    records = _read_records(buffer)
    assert len(records) == 3
    assert records[0]["trace_id"] == records[1]["trace_id"] == trace_id
    assert records[2]["trace_id"] != trace_id


def test_bound_error_code_and_logger_name() -> None:
    buffer = io.StringIO()
    StructuredLogger(LogConfig(console_stream=buffer, console_output=True, file_output=False))

    get_logger("metalpulse.tests").bind(error_code="FETCH_TIMEOUT").warning("feed aborted")

    (record,) = _read_records(buffer)
    assert record["error_code"] == "FETCH_TIMEOUT"
    assert record["level"] == "WARNING"
    assert record["context"]["logger_name"] == "metalpulse.tests"


def test_level_filters_records() -> None:
    buffer = io.StringIO()
    logger = StructuredLogger(LogConfig(level="WARNING", console_stream=buffer))

    logger.logger.info("hidden")
    logger.logger.warning("shown")

    assert [record["message"] for record in _read_records(buffer)] == ["shown"]


def test_file_sink_writes_json_lines(tmp_path) -> None:
    log_file = tmp_path / "logs" / "metalpulse.log"
    logger = StructuredLogger(LogConfig(console_output=False, file_output=True, file_path=str(log_file)))

    logger.logger.info("to file")

    (line,) = log_file.read_text(encoding="utf-8").splitlines()
    assert json.loads(line)["message"] == "to file"


def test_dynamic_configuration() -> None:
    structured_logger = StructuredLogger(LogConfig(console_stream=io.StringIO()))

    structured_logger.configure(level="DEBUG")

    assert structured_logger.config.level == "DEBUG"


def test_settings_enable_file_sink(tmp_path) -> None:
    log_file = tmp_path / "metalpulse.log"
    settings = LoggingSettings(level="WARNING", file=str(log_file))

    config = configure_from_settings(settings, level="DEBUG")
    get_logger("metalpulse.tests").debug("verbose {count}", count=2)

    assert config.level == "DEBUG"
    (line,) = log_file.read_text(encoding="utf-8").splitlines()
    record = json.loads(line)
    assert record["message"] == "verbose 2"
    assert record["context"]["count"] == 2


def test_decimal_context_is_serialized_exactly() -> None:
    buffer = io.StringIO()
    StructuredLogger(LogConfig(console_stream=buffer))

    get_logger().bind(price=Decimal("241.50")).info("quote stored")

    (record,) = _read_records(buffer)
    assert record["context"]["price"] == "241.50"


def test_unknown_level_is_rejected() -> None:
    with pytest.raises(ValidationError):
        LogConfig(level="chatty")

    assert LogConfig(level=" warning ").level == "WARNING"
