"""
Unit tests for Gateway Rate Limiter.
"""

import pytest

from service_gateway.app.security import TokenBucketRateLimiter
from shared.test_helpers import FakeClock


class TestTokenBucketRateLimiter:
    """Test cases for TokenBucketRateLimiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def rate_limiter(self, clock):
        return TokenBucketRateLimiter({"api": (5, 60.0), "root": (3, 300.0)}, clock=clock)

    def test_check_rate_limit_allowed(self, rate_limiter):
        result = rate_limiter.check_rate_limit("203.0.113.5", "api")

        assert result["allowed"] is True
        assert result["limit"] == 5
        assert result["remaining"] == 4

    def test_check_rate_limit_exceeded(self, rate_limiter):
        for _ in range(5):
            assert rate_limiter.check_rate_limit("203.0.113.5", "api")["allowed"] is True

        result = rate_limiter.check_rate_limit("203.0.113.5", "api")

        assert result["allowed"] is False
        assert result["remaining"] == 0
        assert result["retry_after"] == 12

    def test_tokens_refill_over_time(self, rate_limiter, clock):
        for _ in range(5):
            rate_limiter.check_rate_limit("203.0.113.5", "api")

        clock.advance(12)

        assert rate_limiter.check_rate_limit("203.0.113.5", "api")["allowed"] is True
        assert rate_limiter.check_rate_limit("203.0.113.5", "api")["allowed"] is False

    def test_buckets_are_per_client_and_limit_type(self, rate_limiter):
        for _ in range(3):
            rate_limiter.check_rate_limit("203.0.113.5", "root")

        assert rate_limiter.check_rate_limit("203.0.113.5", "root")["allowed"] is False
        assert rate_limiter.check_rate_limit("203.0.113.5", "api")["allowed"] is True
        assert rate_limiter.check_rate_limit("198.51.100.7", "root")["allowed"] is True

    @pytest.mark.parametrize(
        "path, expected",
        [("/", "root"), ("/api/v1/users/me", "api"), ("/health", None), ("/metrics", None)],
    )
    def test_categorize_endpoint(self, rate_limiter, path, expected):
        assert rate_limiter.categorize_endpoint(path) == expected

    def test_status_does_not_spend_tokens(self, rate_limiter):
        rate_limiter.check_rate_limit("203.0.113.5", "api")

        assert rate_limiter.get_rate_limit_status("203.0.113.5", "api")["remaining"] == 4
        assert rate_limiter.get_rate_limit_status("203.0.113.5", "api")["remaining"] == 4

    def test_reset_rate_limit(self, rate_limiter):
        for _ in range(5):
            rate_limiter.check_rate_limit("203.0.113.5", "api")

        assert rate_limiter.reset_rate_limit("203.0.113.5") is True
        assert rate_limiter.check_rate_limit("203.0.113.5", "api")["allowed"] is True
        assert rate_limiter.reset_rate_limit("198.51.100.7") is False

    def test_sweep_drops_refilled_buckets(self, rate_limiter, clock):
        rate_limiter.check_rate_limit("203.0.113.5", "api")
        for _ in range(3):
            rate_limiter.check_rate_limit("198.51.100.7", "root")

        clock.advance(60)

        assert rate_limiter.sweep() == 1
        assert rate_limiter.tracked_buckets == 1
        assert rate_limiter.get_global_stats()["tracked_clients"] == 1

    def test_invalid_limits(self):
        with pytest.raises(ValueError):
            TokenBucketRateLimiter({"api": (0, 60.0)})
