"""
API Gateway service for the DuckBuck API.
"""

from typing import Any, Dict, Optional

from fastapi import Depends, Request

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import NotFoundError

from .auth import (
    ApiKeyAuthenticator,
    IdentityProviderVerifier,
    RevocationSet,
    TokenVerificationCache,
    TokenVerifier,
    VerifiedIdentity,
)
from .domain import AuthMiddleware, MaintenanceSweeper, SecurityMiddleware
from .security import AbuseTracker, TokenBucketRateLimiter


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, *, verifier: Optional[TokenVerifier] = None):
        self._injected_verifier = verifier
        super().__init__("gateway", 8000, config=config)

        self.auth_middleware = AuthMiddleware(self.verdict_cache, ApiKeyAuthenticator(self.config.api_key))
        self.sweeper = MaintenanceSweeper(
            self.verdict_cache,
            self.abuse_tracker,
            interval_seconds=self.config.sweep_interval_seconds,
            rate_limiter=self.rate_limiter,
            metrics=self.metrics,
        )

        @self.app.on_event("startup")
        async def _startup():
            warmup = getattr(self.verifier, "warmup", None)
            if warmup is not None:
                await warmup()
            self.sweeper.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.sweeper.stop()
            close = getattr(self.verifier, "close", None)
            if close is not None:
                await close()

        self._setup_gateway_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.gateway_service = self

    def _build_security_components(self) -> None:
        """Create the process-local verification and abuse-tracking state."""
        config = self.config
        self.verifier: TokenVerifier = self._injected_verifier or IdentityProviderVerifier(
            config.identity_jwks_url,
            project_id=config.identity_project_id,
            issuer=config.identity_issuer,
            refresh_interval=config.identity_jwks_refresh_seconds,
            http_timeout=config.verification_timeout_seconds,
        )
        self.revocations = RevocationSet(max_entries=config.revocation_max_entries)
        self.verdict_cache = TokenVerificationCache(
            self.verifier,
            self.revocations,
            min_token_length=config.min_token_length,
            max_token_length=config.max_token_length,
            leeway_seconds=config.verdict_cache_leeway_seconds,
            max_entries=config.verdict_cache_max_entries,
            sweep_probability=config.verdict_sweep_probability,
            verification_timeout=config.verification_timeout_seconds,
            metrics=self.metrics,
        )
        self.abuse_tracker = AbuseTracker(
            threshold=config.abuse_threshold,
            window_ms=config.abuse_window_ms,
            block_seconds=config.abuse_block_seconds or None,
            max_tracked_addresses=config.abuse_max_tracked_addresses,
            metrics=self.metrics,
        )
        self.rate_limiter: Optional[TokenBucketRateLimiter] = None
        if config.rate_limit_enabled:
            self.rate_limiter = TokenBucketRateLimiter({
                "api": (config.rate_limit_requests, config.rate_limit_window_seconds),
                "root": (config.root_rate_limit_requests, config.root_rate_limit_window_seconds),
            })
        self.security_middleware = SecurityMiddleware(
            self.abuse_tracker,
            rate_limiter=self.rate_limiter,
            max_body_bytes=config.max_body_bytes,
            csp_directives=config.csp_directives,
            metrics=self.metrics,
        )

    def _setup_middleware(self):
        """Install screening inside the request timing middleware so refusals are logged too."""
        self._build_security_components()
        self.app.middleware("http")(self.security_middleware.dispatch)
        super()._setup_middleware()

    def _setup_gateway_routes(self):
        """Set up gateway routes."""

        async def current_identity(request: Request) -> VerifiedIdentity:
            return await self.auth_middleware.authenticate_request(request)

        def api_key_required(request: Request) -> None:
            self.auth_middleware.require_api_key(request)

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "gateway",
                "message": "DuckBuck API Gateway",
                "version": "1.0.0"
            }

        @self.app.get("/api/v1/users/me")
        async def get_current_user(identity: VerifiedIdentity = Depends(current_identity)):
            """Return the identity behind the presented bearer token."""
            return {
                "success": True,
                "data": {
                    "uid": identity.subject_id,
                    "email": identity.claims.get("email"),
                    "expires_at": identity.expires_at,
                    "claims": identity.claims,
                }
            }

        @self.app.post("/api/v1/users/logout")
        async def logout(request: Request, identity: VerifiedIdentity = Depends(current_identity)):
            """Revoke the presented bearer token."""
            self.verdict_cache.revoke(request.state.user_token)
            self.logger.info("User logged out", subject_id=identity.subject_id)
            return {
                "success": True,
                "message": "Logged out successfully"
            }

        @self.app.get("/api/v1/security/blocked", dependencies=[Depends(api_key_required)])
        async def list_blocked_addresses():
            """List currently blocked source addresses."""
            blocks = self.abuse_tracker.blocked_addresses()
            return {
                "success": True,
                "data": [block.to_dict() for block in blocks],
                "count": len(blocks)
            }

        @self.app.delete("/api/v1/security/blocked/{address}", dependencies=[Depends(api_key_required)])
        async def release_blocked_address(address: str):
            """Manually release a blocked source address."""
            if not self.abuse_tracker.unblock(address):
                raise NotFoundError("Address is not blocked", details={"address": address})
            return {
                "success": True,
                "message": f"Address {address} unblocked"
            }

        @self.app.get("/api/v1/security/stats", dependencies=[Depends(api_key_required)])
        async def security_stats():
            """Sizes and hit rates of the in-memory security structures."""
            return {
                "success": True,
                "data": self._security_stats()
            }

        @self.app.post("/api/v1/security/sweep", dependencies=[Depends(api_key_required)])
        async def force_sweep():
            """Run a maintenance sweep immediately."""
            return {
                "success": True,
                "data": self.sweeper.run_once()
            }

    def _security_stats(self) -> Dict[str, Any]:
        return {
            "verdict_cache": self.verdict_cache.stats(),
            "abuse_tracker": {
                "tracked_addresses": self.abuse_tracker.tracked_addresses,
                "blocked_addresses": len(self.abuse_tracker.blocked_addresses()),
                "threshold": self.abuse_tracker.threshold,
                "window_ms": self.abuse_tracker.window_ms,
            },
            "rate_limiter": self.rate_limiter.get_global_stats() if self.rate_limiter else None,
            "sweeper_running": self.sweeper.running,
        }

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check gateway dependencies."""
        dependencies: Dict[str, str] = {}
        check_health = getattr(self.verifier, "check_health", None)
        if check_health is not None:
            dependencies["identity_provider"] = await check_health()
        return dependencies


def create_app(config: Optional[ServiceConfig] = None, *, verifier: Optional[TokenVerifier] = None):
    """Create FastAPI application."""
    service = GatewayService(config, verifier=verifier)
    return service.app


if __name__ == "__main__":
    service = GatewayService()
    service.run()
