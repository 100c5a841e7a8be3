"""
Per-address failure tracking with time-bound blocking.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class BlockRecord:
    """An address refused until ``until`` (epoch seconds); ``None`` never expires."""

    address: str
    blocked_at: float
    until: Optional[float]
    attempts: int

    def is_active(self, now: float) -> bool:
        return self.until is None or now < self.until

    def to_dict(self) -> Dict[str, object]:
        return {
            "address": self.address,
            "blocked_at": self.blocked_at,
            "until": self.until,
            "attempts": self.attempts,
        }


class AbuseTracker:
    """Sliding-window failure counter that escalates addresses to a block.

    An address moves Clean -> Flagged (failures accumulating) -> Blocked once
    more than ``threshold`` failures fall inside ``window_ms``. Blocks last
    ``block_seconds`` (``None`` keeps them until :meth:`unblock` or restart).
    """

    def __init__(
        self,
        threshold: int = 100,
        window_ms: int = 3_600_000,
        block_seconds: Optional[float] = 86_400,
        *,
        max_tracked_addresses: int = 50_000,
        clock: Callable[[], float] = time.time,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.threshold = threshold
        self.window_ms = window_ms
        self.block_seconds = block_seconds
        self.max_tracked_addresses = max_tracked_addresses
        self.metrics = metrics
        self.logger = get_logger("gateway.security.abuse_tracker")

        self._clock = clock
        self._attempts: Dict[str, Deque[int]] = {}
        self._blocks: Dict[str, BlockRecord] = {}

    @property
    def tracked_addresses(self) -> int:
        return len(self._attempts)

    def record_failure(self, address: str, trigger: str = "unspecified") -> bool:
        """Record a failure for ``address``. Returns True if the address is now blocked."""
        if self.metrics:
            self.metrics.increment_counter("abuse_failures_total", trigger=trigger)

        if self.is_blocked(address):
            return True

        if address not in self._attempts and len(self._attempts) >= self.max_tracked_addresses:
            self.sweep()

        now_ms = self._now_ms()
        attempts = self._attempts.setdefault(address, deque())
        attempts.append(now_ms)
        self._prune(attempts, now_ms)

        self.logger.debug("Failure recorded", address=address, trigger=trigger, attempts=len(attempts))

        if len(attempts) > self.threshold:
            self._block(address, len(attempts))
            return True
        return False

    def is_blocked(self, address: str) -> bool:
        block = self._blocks.get(address)
        if block is None:
            return False
        if not block.is_active(self._clock()):
            del self._blocks[address]
            self.logger.info("Block expired", address=address)
            return False
        return True

    def get_block(self, address: str) -> Optional[BlockRecord]:
        return self._blocks.get(address) if self.is_blocked(address) else None

    def blocked_addresses(self) -> List[BlockRecord]:
        now = self._clock()
        return [block for block in self._blocks.values() if block.is_active(now)]

    def attempt_count(self, address: str) -> int:
        """In-window failures currently held for ``address``."""
        attempts = self._attempts.get(address)
        if attempts is None:
            return 0
        self._prune(attempts, self._now_ms())
        if not attempts:
            del self._attempts[address]
            return 0
        return len(attempts)

    def unblock(self, address: str) -> bool:
        """Release ``address`` and forget its failures. Returns False if it was not blocked."""
        block = self._blocks.pop(address, None)
        self._attempts.pop(address, None)
        if block is None:
            return False
        self.logger.info("Address unblocked", address=address)
        return True

    def sweep(self) -> Dict[str, int]:
        """Prune every record, escalate over-threshold addresses and drop expired blocks."""
        now = self._clock()
        now_ms = int(now * 1000)
        dropped = 0
        escalated = 0

        for address in list(self._attempts):
            attempts = self._attempts[address]
            self._prune(attempts, now_ms)
            if not attempts:
                del self._attempts[address]
                dropped += 1
            elif len(attempts) > self.threshold:
                self._block(address, len(attempts))
                escalated += 1

        expired = [address for address, block in self._blocks.items() if not block.is_active(now)]
        for address in expired:
            del self._blocks[address]

        if dropped or escalated or expired:
            self.logger.info(
                "Abuse tracker swept",
                dropped_records=dropped,
                escalated=escalated,
                expired_blocks=len(expired),
                tracked=len(self._attempts),
                blocked=len(self._blocks),
            )
        return {"dropped_records": dropped, "escalated": escalated, "expired_blocks": len(expired)}

    def clear(self) -> None:
        self._attempts.clear()
        self._blocks.clear()

    def _block(self, address: str, attempts: int) -> None:
        now = self._clock()
        until = now + self.block_seconds if self.block_seconds is not None else None
        self._blocks[address] = BlockRecord(address=address, blocked_at=now, until=until, attempts=attempts)
        # The block supersedes the failure history.
        self._attempts.pop(address, None)
        self.logger.warning(
            "Address blocked due to excessive failures",
            address=address,
            attempts=attempts,
            threshold=self.threshold,
            until=until,
        )

    def _prune(self, attempts: Deque[int], now_ms: int) -> None:
        while attempts and now_ms - attempts[0] >= self.window_ms:
            attempts.popleft()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)
