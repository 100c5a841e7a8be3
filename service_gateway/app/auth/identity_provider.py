"""
Identity provider client: verifies ID tokens against the provider's JWKS.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from shared.errors import IdentityProviderError
from shared.logging import get_logger

from .models import UpstreamVerdict


class IdentityProviderVerifier:
    """Validates RS256 ID tokens issued for a single identity project."""

    def __init__(
        self,
        jwks_url: str,
        project_id: str,
        issuer: str,
        *,
        refresh_interval: int = 3600,
        http_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.jwks_url = jwks_url
        self.project_id = project_id
        self.issuer = issuer
        self.refresh_interval = refresh_interval
        self.logger = get_logger("gateway.auth.identity_provider")

        self._keys: Optional[List[Dict[str, Any]]] = None
        self._last_refresh: float = 0.0
        self._lock = asyncio.Lock()
        self._client = client or httpx.AsyncClient(timeout=http_timeout)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            "identity-provider-jwks",
            failure_threshold=5,
            recovery_timeout=30.0,
            counted_exceptions=(httpx.HTTPError, ValueError),
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def warmup(self) -> None:
        """Load signing keys eagerly so the first request does not pay for it."""
        try:
            await self._refresh_keys(force=True)
        except IdentityProviderError as exc:
            self.logger.warning("Signing key warmup failed", error=exc.message)

    async def check_health(self) -> str:
        """Return 'ok' when signing keys can be loaded, otherwise 'error'."""
        try:
            await self._refresh_keys(force=False)
            return "ok"
        except IdentityProviderError as exc:
            self.logger.error("Identity provider health check failed", error=exc.message)
            return "error"

    async def verify(self, token: str) -> UpstreamVerdict:
        """Verify ``token`` and return the identity it carries.

        Raises :class:`IdentityProviderError` with ``kind`` set to
        ``malformed``, ``invalid``, ``expired`` or ``unavailable``.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise IdentityProviderError("malformed", "Token header could not be decoded") from exc

        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise IdentityProviderError("malformed", "Token header missing key id (kid)")

        key_data = await self._get_key(kid)
        if key_data is None:
            raise IdentityProviderError("invalid", "Signing key not found for token", details={"kid": kid})

        try:
            claims = jwt.decode(
                token,
                key_data,
                algorithms=[key_data.get("alg", "RS256")],
                audience=self.project_id,
                issuer=self.issuer,
                options={"verify_at_hash": False},
            )
        except ExpiredSignatureError as exc:
            raise IdentityProviderError("expired", "Token has expired") from exc
        except JWTClaimsError as exc:
            raise IdentityProviderError("invalid", f"Token claims rejected: {exc}") from exc
        except JWTError as exc:
            raise IdentityProviderError("invalid", f"Token signature rejected: {exc}") from exc

        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise IdentityProviderError("invalid", "Token missing subject claim")

        expires_at = claims.get("exp")
        if not isinstance(expires_at, (int, float)):
            raise IdentityProviderError("malformed", "Token missing expiry claim")

        return UpstreamVerdict(subject_id=subject, claims=claims, expires_at=float(expires_at))

    async def _get_key(self, kid: str) -> Optional[Dict[str, Any]]:
        await self._refresh_keys(force=False)
        key = self._find_key(kid)
        if key is not None:
            return key

        # Keys rotate; look once more with a fresh set.
        await self._refresh_keys(force=True)
        return self._find_key(kid)

    def _find_key(self, kid: str) -> Optional[Dict[str, Any]]:
        for key in self._keys or []:
            if key.get("kid") == kid:
                return key
        return None

    async def _refresh_keys(self, *, force: bool) -> None:
        if not force and self._keys is not None and (time.time() - self._last_refresh) < self.refresh_interval:
            return

        async with self._lock:
            if not force and self._keys is not None and (time.time() - self._last_refresh) < self.refresh_interval:
                return

            try:
                keys = await self.circuit_breaker.call(self._fetch_keys)
            except CircuitBreakerOpenError as exc:
                raise IdentityProviderError("unavailable", "Identity provider circuit open") from exc
            except (httpx.HTTPError, ValueError) as exc:
                self.logger.error("Signing key fetch failed", url=self.jwks_url, error=str(exc))
                if self._keys is not None:
                    self.logger.warning("Using stale signing keys after fetch failure")
                    return
                raise IdentityProviderError("unavailable", "Signing keys unavailable") from exc

            self._keys = keys
            self._last_refresh = time.time()
            self.logger.info("Signing keys refreshed", keys_count=len(keys))

    async def _fetch_keys(self) -> List[Dict[str, Any]]:
        response = await self._client.get(self.jwks_url)
        response.raise_for_status()
        payload = response.json()
        keys = payload.get("keys") if isinstance(payload, dict) else None
        if not isinstance(keys, list):
            raise ValueError("JWKS response missing 'keys' array")
        return keys
