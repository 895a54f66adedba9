"""Rate limiting utilities for outbound lookup APIs.

Requests are throttled, never retried: a failed call surfaces to the caller as-is.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable

import requests


class RateLimiter:
    """Token bucket rate limiter for API calls."""

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic):
        """Initialize rate limiter.

        Args:
            rate: Tokens per second
            burst: Maximum burst capacity
            clock: Monotonic time source, overridable in tests
        """
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = rate
        self.burst = burst
        self.tokens: float = float(burst)
        self._clock = clock
        self.last_update = clock()
        self._lock = threading.Lock()

    def acquire_sync(self) -> float:
        """Take one token, sleeping if the bucket is empty.

        Returns:
            Seconds spent waiting.
        """
        with self._lock:
            now = self._clock()
            elapsed = now - self.last_update
            self.tokens = min(self.burst, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                time.sleep(wait_time)
                self.tokens = 0
                self.last_update = self._clock()
                return wait_time

            self.tokens -= 1
            return 0.0


class RateLimitedSession:
    """Requests session with rate limiting and a default timeout."""

    def __init__(
        self,
        rate_limit: float = 4.0,
        burst: int = 5,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
    ):
        """Initialize rate-limited session.

        Args:
            rate_limit: Requests per second
            burst: Maximum burst capacity
            timeout: Transport timeout applied when the caller passes none
            headers: Headers sent with every request
        """
        self.session = requests.Session()
        if headers:
            self.session.headers.update(headers)
        self.rate_limiter = RateLimiter(rate_limit, burst)
        self.timeout = timeout

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        """Rate-limited GET request."""
        self.rate_limiter.acquire_sync()
        kwargs.setdefault("timeout", self.timeout)
        return self.session.get(url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        """Rate-limited POST request."""
        self.rate_limiter.acquire_sync()
        kwargs.setdefault("timeout", self.timeout)
        return self.session.post(url, **kwargs)

    def close(self) -> None:
        """Close the underlying session."""
        self.session.close()


SERVICE_RATE_LIMITS = {
    "ipinfo": {"rate": 10.0, "burst": 10},
    "firmographic": {"rate": 5.0, "burst": 5},
}


def get_service_rate_limit(service: str) -> tuple[float, int]:
    """Get rate limit configuration for a service."""
    config = SERVICE_RATE_LIMITS.get(service, {"rate": 1.0, "burst": 2})
    return config["rate"], int(config["burst"])


__all__ = ["RateLimiter", "RateLimitedSession", "SERVICE_RATE_LIMITS", "get_service_rate_limit"]
