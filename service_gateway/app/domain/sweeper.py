"""
Periodic maintenance of the in-memory security structures.
"""

import asyncio
from typing import Any, Dict, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..auth import TokenVerificationCache
from ..security import AbuseTracker, TokenBucketRateLimiter


class MaintenanceSweeper:
    """Sweeps the verdict cache, revocation set, abuse tracker and rate limit buckets on a fixed interval."""

    def __init__(
        self,
        verdict_cache: TokenVerificationCache,
        abuse_tracker: AbuseTracker,
        interval_seconds: float = 60.0,
        metrics: Optional[MetricsCollector] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.verdict_cache = verdict_cache
        self.abuse_tracker = abuse_tracker
        self.interval_seconds = interval_seconds
        self.metrics = metrics
        self.rate_limiter = rate_limiter
        self.logger = get_logger("gateway.sweeper")
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> Dict[str, Any]:
        """Run one maintenance pass and publish structure sizes."""
        result = {
            "verdicts_evicted": self.verdict_cache.sweep(),
            "revocations_purged": self.verdict_cache.revocations.purge_expired(),
            "abuse": self.abuse_tracker.sweep(),
        }
        if self.rate_limiter is not None:
            result["rate_limit_buckets_dropped"] = self.rate_limiter.sweep()

        if self.metrics:
            self.metrics.set_gauge("structure_size", self.verdict_cache.size, structure="verdict_cache")
            self.metrics.set_gauge("structure_size", len(self.verdict_cache.revocations), structure="revocation_set")
            self.metrics.set_gauge("structure_size", self.abuse_tracker.tracked_addresses, structure="abuse_records")
            self.metrics.set_gauge(
                "structure_size", len(self.abuse_tracker.blocked_addresses()), structure="blocked_addresses"
            )
            if self.rate_limiter is not None:
                self.metrics.set_gauge(
                    "structure_size", self.rate_limiter.tracked_buckets, structure="rate_limit_buckets"
                )
        return result

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="security-sweeper")
        self.logger.info("Sweeper started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("Sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                result = self.run_once()
            except Exception as exc:
                self.logger.error("Sweep failed", error=str(exc), exc_info=True)
                continue
            self.logger.debug("Sweep completed", **result)
