"""Unit tests for rate limiting helpers."""

from __future__ import annotations

from unittest.mock import Mock, patch

import pytest

from prospectprocessor.enrichment.rate_limiting import (
    RateLimitedSession,
    RateLimiter,
    get_service_rate_limit,
)


class TestRateLimiter:
    """Test the token bucket."""

    def test_burst_is_free(self) -> None:
        """Calls within the burst do not wait."""
        limiter = RateLimiter(rate=5.0, burst=3, clock=lambda: 100.0)

        with patch("prospectprocessor.enrichment.rate_limiting.time.sleep") as mock_sleep:
            waits = [limiter.acquire_sync() for _ in range(3)]

        assert waits == [0.0, 0.0, 0.0]
        mock_sleep.assert_not_called()

    def test_empty_bucket_waits(self) -> None:
        """Once the bucket is empty the caller sleeps for one token's worth."""
        limiter = RateLimiter(rate=4.0, burst=1, clock=lambda: 100.0)
        limiter.acquire_sync()

        with patch("prospectprocessor.enrichment.rate_limiting.time.sleep") as mock_sleep:
            waited = limiter.acquire_sync()

        assert waited == pytest.approx(0.25)
        mock_sleep.assert_called_once_with(pytest.approx(0.25))

    def test_tokens_refill_over_time(self) -> None:
        """Elapsed time refills the bucket up to the burst size."""
        now = [100.0]
        limiter = RateLimiter(rate=2.0, burst=2, clock=lambda: now[0])
        limiter.acquire_sync()
        limiter.acquire_sync()

        now[0] += 10.0

        with patch("prospectprocessor.enrichment.rate_limiting.time.sleep") as mock_sleep:
            assert limiter.acquire_sync() == 0.0
        mock_sleep.assert_not_called()
        assert limiter.tokens == pytest.approx(1.0)

    def test_rate_must_be_positive(self) -> None:
        """A zero rate is rejected."""
        with pytest.raises(ValueError):
            RateLimiter(rate=0, burst=1)


class TestRateLimitedSession:
    """Test the requests wrapper."""

    def test_default_timeout_and_headers(self) -> None:
        """The session timeout is applied unless the caller passes one."""
        with patch("prospectprocessor.enrichment.rate_limiting.requests.Session") as session_cls:
            session = RateLimitedSession(rate_limit=100.0, burst=10, timeout=7.5, headers={"X-Api-Key": "k"})
            session.get("https://example.test/a")
            session.post("https://example.test/b", timeout=1.0)

        inner: Mock = session_cls.return_value
        inner.headers.update.assert_called_once_with({"X-Api-Key": "k"})
        assert inner.get.call_args.kwargs["timeout"] == 7.5
        assert inner.post.call_args.kwargs["timeout"] == 1.0

    def test_service_limits(self) -> None:
        """Known services have their own limits; unknown ones get a conservative default."""
        assert get_service_rate_limit("ipinfo") == (10.0, 10)
        assert get_service_rate_limit("firmographic") == (5.0, 5)
        assert get_service_rate_limit("unknown") == (1.0, 2)
