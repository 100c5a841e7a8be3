"""
Token bucket rate limiter for Gateway service.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from shared.logging import get_logger

# (requests, window seconds) per limit type.
DEFAULT_LIMITS: Dict[str, Tuple[int, float]] = {
    "api": (50, 900.0),     # 50 req / 15 min per address
    "root": (3, 300.0),     # 3 req / 5 min on the bare root route
}

DEFAULT_EXEMPT_PATHS = frozenset({"/health", "/metrics"})


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketRateLimiter:
    """In-process token bucket per (client, limit type).

    Each bucket holds up to ``requests`` tokens and refills continuously at
    ``requests / window`` tokens per second; a request spends one token.
    """

    def __init__(
        self,
        limits: Optional[Mapping[str, Tuple[int, float]]] = None,
        *,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.default_limits: Dict[str, Tuple[int, float]] = dict(limits or DEFAULT_LIMITS)
        for limit_type, (requests, window) in self.default_limits.items():
            if requests < 1 or window <= 0:
                raise ValueError(f"invalid rate limit for {limit_type!r}")
        self.exempt_paths = frozenset(exempt_paths)
        self.logger = get_logger("gateway.rate_limiter")
        self._clock = clock
        self._buckets: Dict[Tuple[str, str], _Bucket] = {}

    @property
    def tracked_buckets(self) -> int:
        return len(self._buckets)

    def categorize_endpoint(self, path: str) -> Optional[str]:
        """Limit type for ``path``, or None when the path is not limited."""
        if path in self.exempt_paths:
            return None
        if path == "/" and "root" in self.default_limits:
            return "root"
        return "api"

    def check_rate_limit(self, client_id: str, limit_type: str = "api") -> Dict[str, Any]:
        """Spend a token for ``client_id`` if one is available."""
        requests, window = self.default_limits.get(limit_type, self.default_limits["api"])
        bucket = self._refill((client_id, limit_type), requests, window, self._clock())

        if bucket.tokens < 1.0:
            retry_after = max(1, math.ceil((1.0 - bucket.tokens) * window / requests))
            self.logger.warning(
                "Rate limit exceeded",
                client_id=client_id,
                limit_type=limit_type,
                limit=requests,
                retry_after=retry_after,
            )
            return {
                "allowed": False,
                "limit": requests,
                "remaining": 0,
                "retry_after": retry_after,
            }

        bucket.tokens -= 1.0
        return {
            "allowed": True,
            "limit": requests,
            "remaining": int(bucket.tokens),
            "reset_in_seconds": math.ceil((requests - bucket.tokens) * window / requests),
        }

    def get_rate_limit_status(self, client_id: str, limit_type: str = "api") -> Dict[str, Any]:
        """Current allowance for ``client_id`` without spending a token."""
        requests, window = self.default_limits.get(limit_type, self.default_limits["api"])
        bucket = self._refill((client_id, limit_type), requests, window, self._clock())
        return {"limit": requests, "remaining": int(bucket.tokens)}

    def reset_rate_limit(self, client_id: str) -> bool:
        """Forget every bucket held for ``client_id``."""
        keys = [key for key in self._buckets if key[0] == client_id]
        for key in keys:
            del self._buckets[key]
        if keys:
            self.logger.info("Rate limit reset", client_id=client_id)
        return bool(keys)

    def sweep(self) -> int:
        """Drop buckets that have refilled completely. Returns how many were dropped."""
        now = self._clock()
        full = []
        for key, bucket in self._buckets.items():
            requests, window = self.default_limits.get(key[1], self.default_limits["api"])
            if bucket.tokens + (now - bucket.updated_at) * requests / window >= requests:
                full.append(key)
        for key in full:
            del self._buckets[key]
        return len(full)

    def get_global_stats(self) -> Dict[str, Any]:
        return {
            "tracked_buckets": len(self._buckets),
            "tracked_clients": len({client_id for client_id, _ in self._buckets}),
            "limits": {
                limit_type: {"requests": requests, "window_seconds": window}
                for limit_type, (requests, window) in self.default_limits.items()
            },
        }

    def _refill(self, key: Tuple[str, str], capacity: int, window: float, now: float) -> _Bucket:
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = _Bucket(tokens=float(capacity), updated_at=now)
            return bucket
        elapsed = max(0.0, now - bucket.updated_at)
        bucket.tokens = min(float(capacity), bucket.tokens + elapsed * capacity / window)
        bucket.updated_at = now
        return bucket
