"""Tests for POS exception summaries."""

from apps.web.pos.exceptions import (
    OrderNotFoundError,
    POSAPIError,
    POSError,
    POSOrderError,
    POSRateLimitError,
)


def test_describe_uses_class_name():
    error = OrderNotFoundError("Order o-1 not found", provider="square", order_id="o-1")

    assert error.describe() == "OrderNotFoundError: Order o-1 not found"
    assert isinstance(error, POSOrderError)
    assert error.backoff_seconds is None


def test_rate_limit_requests_backoff():
    error = POSRateLimitError("slow down", provider="clover", retry_after=42)

    assert isinstance(error, POSAPIError)
    assert error.status_code == 429
    assert error.backoff_seconds == 42


def test_rate_limit_without_header():
    assert POSRateLimitError("slow down").backoff_seconds is None


def test_base_error_keeps_provider():
    error = POSError("boom", provider="toast")

    assert str(error) == "boom"
    assert error.provider == "toast"
