"""Tests for the exception hierarchy and error tracking."""

from __future__ import annotations

from metalpulse.core.exceptions import (
    ErrorCode,
    ErrorTracker,
    FetchError,
    FetchTimeoutError,
    MetalPulseError,
    PoolExhaustedError,
    StoreError,
    StoreTimeoutError,
    error_code_of,
)


def test_fetch_timeout_payload() -> None:
    error = FetchTimeoutError("fetch timed out after 10s", "https://feeds.test/a", 10.0)

    assert isinstance(error, FetchError)
    assert error.to_payload() == {
        "error_code": ErrorCode.FETCH_TIMEOUT.value,
        "message": "fetch timed out after 10s",
        "details": {"url": "https://feeds.test/a", "timeout": 10.0},
    }


def test_store_errors_share_base() -> None:
    assert isinstance(PoolExhaustedError("busy", pool_size=5, timeout=1.0), StoreError)
    timeout = StoreTimeoutError("slow", "aggregate", 2.0)
    assert timeout.error_code == ErrorCode.STORE_TIMEOUT.value
    assert timeout.details == {"timeout": 2.0, "operation": "aggregate"}


def test_error_code_of_unknown_exception() -> None:
    assert error_code_of(MetalPulseError("x")) == ErrorCode.GENERAL_ERROR.value
    assert error_code_of(KeyError("x")) == ErrorCode.INTERNAL_ERROR.value


def test_error_tracker_counts_per_feed_and_operation() -> None:
    tracker = ErrorTracker()

    tracker.record_exception(StoreError("locked", "persist"), operation="persisting", feed="mcx")
    code = tracker.record_exception(StoreError("locked", "persist"), operation="persisting", feed="mcx")
    tracker.record_error("PARSE_ERROR", operation="parsing", feed="spot", message="bad json")

    stats = tracker.get_error_stats()
    assert code == ErrorCode.STORE_ERROR.value
    assert stats["total_errors"] == 3
    assert stats["error_counts"]["STORE_ERROR:mcx:persisting"] == 2
    assert stats["last_errors"]["PARSE_ERROR:spot:parsing"]["message"] == "bad json"

    tracker.reset()
    assert tracker.get_error_stats()["total_errors"] == 0
