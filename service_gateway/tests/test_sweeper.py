"""
Tests for the background maintenance sweeper.
"""

import asyncio

import pytest
from unittest.mock import MagicMock

from service_gateway.app.auth import RevocationSet, TokenVerificationCache, UpstreamVerdict
from service_gateway.app.domain import MaintenanceSweeper
from service_gateway.app.security import AbuseTracker, TokenBucketRateLimiter
from shared.test_helpers import FakeClock, StubVerifier, TestDataFactory


class TestMaintenanceSweeper:
    """Test cases for MaintenanceSweeper."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def tokens(self):
        return [TestDataFactory.make_token(f"sweep{i}") for i in range(2)]

    @pytest.fixture
    def verdict_cache(self, clock, tokens):
        verifier = StubVerifier({
            tokens[0]: UpstreamVerdict("user-1", {"sub": "user-1"}, clock.now + 1000),
            tokens[1]: UpstreamVerdict("user-2", {"sub": "user-2"}, clock.now + 5000),
        })
        return TokenVerificationCache(
            verifier,
            RevocationSet(clock=clock),
            leeway_seconds=300,
            sweep_probability=0.0,
            clock=clock,
        )

    @pytest.fixture
    def tracker(self, clock):
        return AbuseTracker(threshold=5, window_ms=60_000, clock=clock)

    @pytest.mark.asyncio
    async def test_run_once_sweeps_every_structure(self, verdict_cache, tracker, clock, tokens):
        metrics = MagicMock()
        sweeper = MaintenanceSweeper(verdict_cache, tracker, interval_seconds=60, metrics=metrics)
        for token in tokens:
            await verdict_cache.verify(token)
        verdict_cache.revocations.revoke(TestDataFactory.make_token("logged-out"), clock.now + 100)
        tracker.record_failure("203.0.113.5")

        clock.advance(800)
        result = sweeper.run_once()

        assert result["verdicts_evicted"] == 1
        assert result["revocations_purged"] == 1
        assert result["abuse"]["dropped_records"] == 1
        assert verdict_cache.size == 1
        metrics.set_gauge.assert_any_call("structure_size", 1, structure="verdict_cache")
        metrics.set_gauge.assert_any_call("structure_size", 0, structure="revocation_set")

    @pytest.mark.asyncio
    async def test_background_task_runs_on_interval(self, verdict_cache, tracker):
        sweeper = MaintenanceSweeper(verdict_cache, tracker, interval_seconds=0.01)
        sweeper.run_once = MagicMock(return_value={})

        sweeper.start()
        assert sweeper.running is True
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert sweeper.running is False
        assert sweeper.run_once.call_count >= 1

    @pytest.mark.asyncio
    async def test_failed_sweep_does_not_stop_task(self, verdict_cache, tracker):
        sweeper = MaintenanceSweeper(verdict_cache, tracker, interval_seconds=0.01)
        sweeper.run_once = MagicMock(side_effect=RuntimeError("boom"))

        sweeper.start()
        await asyncio.sleep(0.05)

        assert sweeper.running is True
        assert sweeper.run_once.call_count >= 2
        await sweeper.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, verdict_cache, tracker):
        sweeper = MaintenanceSweeper(verdict_cache, tracker)

        await sweeper.stop()

        assert sweeper.running is False

    def test_interval_must_be_positive(self, verdict_cache, tracker):
        with pytest.raises(ValueError):
            MaintenanceSweeper(verdict_cache, tracker, interval_seconds=0)

    def test_run_once_sweeps_rate_limit_buckets(self, verdict_cache, tracker, clock):
        metrics = MagicMock()
        rate_limiter = TokenBucketRateLimiter({"api": (5, 60.0)}, clock=clock)
        sweeper = MaintenanceSweeper(
            verdict_cache, tracker, interval_seconds=60, metrics=metrics, rate_limiter=rate_limiter
        )
        rate_limiter.check_rate_limit("203.0.113.5")
        for _ in range(5):
            rate_limiter.check_rate_limit("198.51.100.7")

        clock.advance(30)
        result = sweeper.run_once()

        assert result["rate_limit_buckets_dropped"] == 1
        metrics.set_gauge.assert_any_call("structure_size", 1, structure="rate_limit_buckets")

    def test_run_once_without_rate_limiter(self, verdict_cache, tracker):
        assert "rate_limit_buckets_dropped" not in MaintenanceSweeper(verdict_cache, tracker).run_once()
