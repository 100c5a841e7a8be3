"""
In-process set of explicitly revoked bearer tokens.
"""

from __future__ import annotations

import heapq
import math
import time
from typing import Callable, Dict, List, Optional, Tuple

from shared.logging import get_logger, redact_token


class RevocationSet:
    """Tokens that must be refused no matter what the cache or provider says.

    Every entry remembers when its token stops being usable anyway. A
    min-heap on that expiry drives eviction: expired entries are dropped
    first, and only when the set is saturated with live revocations is the
    entry closest to expiry given up (and a warning logged). Entries revoked
    without a known expiry never lapse on their own and are evicted last.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, float] = {}
        # (expires_at, token); stale pairs are skipped when popped.
        self._heap: List[Tuple[float, str]] = []
        self.logger = get_logger("gateway.auth.revocation")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, token: object) -> bool:
        return isinstance(token, str) and self.is_revoked(token)

    def revoke(self, token: str, expires_at: Optional[float] = None) -> None:
        """Mark ``token`` as revoked. Calling it again never shortens the entry."""
        now = self._clock()
        expiry = expires_at if expires_at is not None else math.inf

        current = self._entries.get(token)
        if current is not None and current >= expiry:
            return

        self._entries[token] = expiry
        heapq.heappush(self._heap, (expiry, token))

        if len(self._entries) > self.max_entries:
            self._compact(now)

    def is_revoked(self, token: str) -> bool:
        expiry = self._entries.get(token)
        if expiry is None:
            return False
        if expiry <= self._clock():
            # The token itself is past its lifetime; it cannot verify again.
            del self._entries[token]
            return False
        return True

    def purge_expired(self) -> int:
        """Drop entries whose tokens have expired. Returns how many were removed."""
        now = self._clock()
        removed = 0
        while self._heap and self._heap[0][0] <= now:
            expiry, token = heapq.heappop(self._heap)
            if self._entries.get(token) == expiry:
                del self._entries[token]
                removed += 1
        if removed:
            self.logger.debug("Expired revocations purged", removed=removed, remaining=len(self._entries))
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._heap.clear()

    def _compact(self, now: float) -> None:
        self.purge_expired()
        while len(self._entries) > self.max_entries and self._heap:
            expiry, token = heapq.heappop(self._heap)
            if self._entries.get(token) != expiry:
                continue
            del self._entries[token]
            self.logger.warning(
                "Revocation set full, evicting live revocation",
                token=redact_token(token),
                seconds_until_expiry=None if math.isinf(expiry) else round(expiry - now, 1),
                max_entries=self.max_entries,
            )
