"""
Bearer token verification with a local verdict cache.

The identity provider is the authority on whether a token is valid; this
module remembers its positive answers until shortly before the token
expires so most requests never leave the process. Revocations recorded in
the :class:`RevocationSet` are consulted before anything else.
"""

from __future__ import annotations

import asyncio
import heapq
import random
import time
from typing import Any, Callable, Dict, Optional, Protocol

from jose import JWTError, jwt

from shared.errors import IdentityProviderError
from shared.logging import get_logger, redact_token
from shared.metrics import MetricsCollector
from shared.tracing import get_tracer

from .models import (
    CachedVerdict,
    Rejection,
    RejectionReason,
    UpstreamVerdict,
    VerificationResult,
    VerifiedIdentity,
)
from .revocation import RevocationSet


_tracer = get_tracer(__name__)


class TokenVerifier(Protocol):
    """Anything that can authoritatively verify a bearer token."""

    async def verify(self, token: str) -> UpstreamVerdict:
        ...


_UPSTREAM_REASONS = {
    "expired": RejectionReason.EXPIRED,
    "revoked": RejectionReason.REVOKED,
    "malformed": RejectionReason.MALFORMED,
    "invalid": RejectionReason.INVALID,
    "unavailable": RejectionReason.SERVICE_UNAVAILABLE,
}


def classify_upstream_error(exc: IdentityProviderError) -> RejectionReason:
    """Map an identity provider failure kind onto a rejection reason."""
    return _UPSTREAM_REASONS.get(exc.kind, RejectionReason.UNKNOWN)


def token_expiry(token: str) -> Optional[float]:
    """Read the `exp` claim of a JWT without verifying it.

    Returns None for opaque tokens or tokens without a numeric expiry.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        return None
    expires_at = claims.get("exp") if isinstance(claims, dict) else None
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        return None
    return float(expires_at)


class TokenVerificationCache:
    """Verify bearer tokens, reusing recent upstream verdicts."""

    def __init__(
        self,
        verifier: TokenVerifier,
        revocations: Optional[RevocationSet] = None,
        *,
        min_token_length: int = 50,
        max_token_length: int = 4096,
        leeway_seconds: float = 300,
        max_entries: int = 10000,
        sweep_probability: float = 0.01,
        verification_timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
        random_source: Callable[[], float] = random.random,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        if not 0.0 <= sweep_probability <= 1.0:
            raise ValueError("sweep_probability must be between 0 and 1")
        self.verifier = verifier
        self.revocations = revocations if revocations is not None else RevocationSet(clock=clock)
        self.min_token_length = min_token_length
        self.max_token_length = max_token_length
        self.leeway_seconds = leeway_seconds
        self.max_entries = max_entries
        self.sweep_probability = sweep_probability
        self.verification_timeout = verification_timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.auth.verdict_cache")

        self._clock = clock
        self._random = random_source
        self._verdicts: Dict[str, CachedVerdict] = {}
        self._hits = 0
        self._misses = 0
        self._upstream_calls = 0

    @property
    def size(self) -> int:
        return len(self._verdicts)

    def __contains__(self, token: object) -> bool:
        return token in self._verdicts

    async def verify(self, token: str) -> VerificationResult:
        """Return the identity behind ``token`` or the reason it is refused."""
        if not self._plausible(token):
            length = len(token) if isinstance(token, str) else None
            return self._reject(RejectionReason.MALFORMED, f"implausible token length: {length}")

        if self.revocations.is_revoked(token):
            return self._reject(RejectionReason.REVOKED, "token has been revoked")

        now = self._clock()
        if self._random() < self.sweep_probability:
            self.sweep()

        cached = self._verdicts.get(token)
        if cached is not None:
            if cached.is_fresh(now, self.leeway_seconds):
                self._hits += 1
                if self.metrics:
                    self.metrics.increment_counter("verdict_cache_hits_total")
                    self.metrics.increment_counter("token_verifications_total", outcome="accepted")
                self.logger.debug("Verdict cache hit", subject_id=cached.subject_id)
                return VerifiedIdentity(
                    subject_id=cached.subject_id,
                    claims=cached.claims,
                    expires_at=cached.expires_at,
                    from_cache=True,
                )
            del self._verdicts[token]

        self._misses += 1
        if self.metrics:
            self.metrics.increment_counter("verdict_cache_misses_total")

        return await self._verify_upstream(token)

    def revoke(self, token: str, *, source: str = "logout") -> None:
        """Revoke ``token`` and forget any verdict cached for it."""
        verdict = self._verdicts.pop(token, None)
        self.revocations.revoke(token, verdict.expires_at if verdict else token_expiry(token))
        if self.metrics:
            self.metrics.increment_counter("token_revocations_total", source=source)
        self.logger.info(
            "Token revoked",
            token=redact_token(token),
            subject_id=verdict.subject_id if verdict else None,
            source=source,
        )

    def sweep(self) -> int:
        """Evict verdicts that are no longer servable. Returns how many were evicted."""
        now = self._clock()
        stale = [
            token for token, verdict in self._verdicts.items()
            if not verdict.is_fresh(now, self.leeway_seconds)
        ]
        for token in stale:
            del self._verdicts[token]
        if stale:
            self.logger.debug("Stale verdicts evicted", evicted=len(stale), remaining=len(self._verdicts))
        return len(stale)

    def clear(self) -> None:
        self._verdicts.clear()

    def stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "cached_verdicts": len(self._verdicts),
            "revoked_tokens": len(self.revocations),
            "hits": self._hits,
            "misses": self._misses,
            "hit_ratio": round(self._hits / lookups, 4) if lookups else 0.0,
            "upstream_calls": self._upstream_calls,
        }

    async def _verify_upstream(self, token: str) -> VerificationResult:
        self._upstream_calls += 1
        started = time.perf_counter()
        try:
            with _tracer.start_as_current_span("identity_provider.verify"):
                upstream = await asyncio.wait_for(
                    self.verifier.verify(token), timeout=self.verification_timeout
                )
        except asyncio.TimeoutError:
            return self._reject(
                RejectionReason.SERVICE_UNAVAILABLE,
                f"identity provider did not answer within {self.verification_timeout}s",
            )
        except IdentityProviderError as exc:
            reason = classify_upstream_error(exc)
            if reason is RejectionReason.REVOKED:
                self.revocations.revoke(token, token_expiry(token))
                if self.metrics:
                    self.metrics.increment_counter("token_revocations_total", source="identity_provider")
            return self._reject(reason, exc.message)
        except Exception as exc:
            self.logger.error("Unexpected token verification failure", error=str(exc), exc_info=True)
            return self._reject(RejectionReason.UNKNOWN, "unexpected verification failure")
        finally:
            if self.metrics:
                self.metrics.observe_histogram(
                    "upstream_verification_duration_seconds", time.perf_counter() - started
                )

        # A logout may have landed while the provider call was in flight.
        if self.revocations.is_revoked(token):
            return self._reject(RejectionReason.REVOKED, "token has been revoked")

        now = self._clock()
        if upstream.expires_at <= now:
            return self._reject(RejectionReason.EXPIRED, "token has expired")

        verdict = CachedVerdict(
            subject_id=upstream.subject_id,
            claims=upstream.claims,
            expires_at=upstream.expires_at,
            verified_at=now,
        )
        if verdict.is_fresh(now, self.leeway_seconds):
            self._verdicts[token] = verdict
            if len(self._verdicts) > self.max_entries:
                self._compact()

        if self.metrics:
            self.metrics.increment_counter("token_verifications_total", outcome="accepted")
        self.logger.info("Token verified", subject_id=upstream.subject_id)
        return VerifiedIdentity(
            subject_id=upstream.subject_id,
            claims=upstream.claims,
            expires_at=upstream.expires_at,
        )

    def _compact(self) -> None:
        self.sweep()
        overflow = len(self._verdicts) - self.max_entries
        if overflow <= 0:
            return
        soonest = heapq.nsmallest(overflow, self._verdicts.items(), key=lambda item: item[1].expires_at)
        for token, _ in soonest:
            del self._verdicts[token]
        self.logger.warning("Verdict cache full, evicted earliest-expiring entries", evicted=overflow)

    def _plausible(self, token: Any) -> bool:
        return isinstance(token, str) and self.min_token_length <= len(token) <= self.max_token_length

    def _reject(self, reason: RejectionReason, detail: str) -> Rejection:
        if self.metrics:
            self.metrics.increment_counter("token_verifications_total", outcome=reason.value)
        log = self.logger.error if reason is RejectionReason.SERVICE_UNAVAILABLE else self.logger.warning
        log("Token rejected", reason=reason.value, detail=detail)
        return Rejection(reason=reason, detail=detail)
