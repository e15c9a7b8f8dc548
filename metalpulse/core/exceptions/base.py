"""metalpulse core exception classes."""

from typing import Any

from metalpulse.core.exceptions.codes import ErrorCode


class MetalPulseError(Exception):
    """Base exception for metalpulse."""

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.GENERAL_ERROR.value,
        details: dict[str, Any] | None = None,
    ):
        """Initialise the exception.

        Args:
            message: Human readable message.
            error_code: Machine readable error code.
            details: Extra context for logs and API payloads.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_payload(self) -> dict[str, Any]:
        """Return a serializable payload representing the error."""

        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": dict(self.details),
        }


class ConfigError(MetalPulseError):
    """Configuration could not be loaded or validated."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR.value, details)


class FetchError(MetalPulseError):
    """Upstream feed could not be read."""

    def __init__(
        self,
        message: str,
        url: str,
        error_code: str = ErrorCode.FETCH_TRANSPORT_ERROR.value,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        super_details["url"] = url
        super().__init__(message, error_code, super_details)
        self.url = url


class FetchTimeoutError(FetchError):
    """Upstream feed did not answer within the configured timeout."""

    def __init__(
        self,
        message: str,
        url: str,
        timeout: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if timeout is not None:
            super_details["timeout"] = timeout
        super().__init__(message, url, ErrorCode.FETCH_TIMEOUT.value, super_details)
        self.timeout = timeout


class FetchTransportError(FetchError):
    """Connection failure or non-success HTTP status from the upstream feed."""

    def __init__(
        self,
        message: str,
        url: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if status_code is not None:
            super_details["status_code"] = status_code
        super().__init__(message, url, ErrorCode.FETCH_TRANSPORT_ERROR.value, super_details)
        self.status_code = status_code


class ParseError(MetalPulseError):
    """Upstream payload is malformed; nothing from it may be applied."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorCode.PARSE_ERROR.value, details)


class StoreError(MetalPulseError):
    """Storage access failed."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        error_code: str = ErrorCode.STORE_ERROR.value,
        details: dict[str, Any] | None = None,
    ):
        super_details = details or {}
        if operation:
            super_details["operation"] = operation
        super().__init__(message, error_code, super_details)
        self.operation = operation


class StoreTimeoutError(StoreError):
    """A store statement exceeded its time budget."""

    def __init__(self, message: str, operation: str | None = None, timeout: float | None = None):
        details = {"timeout": timeout} if timeout is not None else None
        super().__init__(message, operation, ErrorCode.STORE_TIMEOUT.value, details)


class PoolExhaustedError(StoreError):
    """No pooled connection became available in time."""

    def __init__(self, message: str, pool_size: int, timeout: float):
        super().__init__(
            message,
            "acquire",
            ErrorCode.POOL_EXHAUSTED.value,
            {"pool_size": pool_size, "timeout": timeout},
        )


class InvalidQueryError(MetalPulseError):
    """Aggregation query parameters cannot be interpreted."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, ErrorCode.INVALID_QUERY.value, details)
