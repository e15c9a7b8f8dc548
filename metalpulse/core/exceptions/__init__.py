"""Exception handling module."""

from metalpulse.core.exceptions.base import (
    ConfigError,
    FetchError,
    FetchTimeoutError,
    FetchTransportError,
    InvalidQueryError,
    MetalPulseError,
    ParseError,
    PoolExhaustedError,
    StoreError,
    StoreTimeoutError,
)
from metalpulse.core.exceptions.codes import ErrorCode
from metalpulse.core.exceptions.handler import ErrorTracker, error_code_of

__all__ = [
    "ConfigError",
    "ErrorCode",
    "ErrorTracker",
    "FetchError",
    "FetchTimeoutError",
    "FetchTransportError",
    "InvalidQueryError",
    "MetalPulseError",
    "ParseError",
    "PoolExhaustedError",
    "StoreError",
    "StoreTimeoutError",
    "error_code_of",
]
