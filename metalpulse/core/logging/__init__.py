"""Structured logging for ingestion cycles and query handling."""

from metalpulse.core.logging.config import LogConfig
from metalpulse.core.logging.logger import (
    JsonLineSink,
    StructuredLogger,
    configure_from_settings,
    configure_logging,
    current_trace_id,
    get_logger,
    log_context,
    logger,
    record_to_json,
)

__all__ = [
    "JsonLineSink",
    "LogConfig",
    "StructuredLogger",
    "configure_from_settings",
    "configure_logging",
    "current_trace_id",
    "get_logger",
    "log_context",
    "logger",
    "record_to_json",
]
