"""Error tracking for recoverable, per-cycle failures."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from metalpulse.core.exceptions.base import MetalPulseError
from metalpulse.core.exceptions.codes import ErrorCode


def error_code_of(error: BaseException) -> str:
    """Return the error code carried by ``error`` or ``INTERNAL_ERROR``."""

    if isinstance(error, MetalPulseError):
        return error.error_code
    return ErrorCode.INTERNAL_ERROR.value


class ErrorTracker:
    """Counts errors by code and operation and keeps the most recent one per key."""

    def __init__(self) -> None:
        self.error_counts: dict[str, int] = {}
        self.last_errors: dict[str, dict[str, Any]] = {}

    def record_error(
        self,
        error_code: str,
        operation: str | None = None,
        feed: str | None = None,
        message: str | None = None,
    ) -> None:
        """Record one occurrence of ``error_code``."""
        key = f"{error_code}:{feed}:{operation}"
        self.error_counts[key] = self.error_counts.get(key, 0) + 1

        self.last_errors[key] = {
            "error_code": error_code,
            "feed": feed,
            "operation": operation,
            "message": message,
            "timestamp": datetime.now(UTC).isoformat(),
            "count": self.error_counts[key],
        }

    def record_exception(self, error: BaseException, operation: str | None = None, feed: str | None = None) -> str:
        """Record ``error`` and return the error code used."""

        code = error_code_of(error)
        self.record_error(code, operation=operation, feed=feed, message=str(error))
        return code

    def get_error_stats(self) -> dict[str, Any]:
        """Return counters and last occurrences."""
        return {
            "error_counts": dict(self.error_counts),
            "last_errors": dict(self.last_errors),
            "total_errors": sum(self.error_counts.values()),
        }

    def reset(self) -> None:
        self.error_counts.clear()
        self.last_errors.clear()


__all__ = ["ErrorTracker", "error_code_of"]
