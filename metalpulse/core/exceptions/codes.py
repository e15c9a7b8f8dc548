"""Standardized error codes for metalpulse exceptions."""

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes attached to :class:`MetalPulseError` instances and log records."""

    GENERAL_ERROR = "GENERAL_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Configuration
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Upstream fetch
    FETCH_TIMEOUT = "FETCH_TIMEOUT"
    FETCH_TRANSPORT_ERROR = "FETCH_TRANSPORT_ERROR"

    # Payload parsing
    PARSE_ERROR = "PARSE_ERROR"

    # Storage
    STORE_ERROR = "STORE_ERROR"
    STORE_TIMEOUT = "STORE_TIMEOUT"
    POOL_EXHAUSTED = "POOL_EXHAUSTED"

    # Queries
    INVALID_QUERY = "INVALID_QUERY"


__all__ = ["ErrorCode"]
