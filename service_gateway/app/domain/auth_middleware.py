"""
Authentication middleware for Gateway.
"""

from typing import Dict, Tuple

from fastapi import Request

from shared.errors import AuthenticationError, AuthorizationError, ServiceUnavailableError
from shared.logging import get_logger, set_user_context

from ..auth import (
    ApiKeyAuthenticator,
    RejectionReason,
    TokenVerificationCache,
    VerifiedIdentity,
)

# (status code, client-facing message) per rejection reason.
REJECTION_RESPONSES: Dict[RejectionReason, Tuple[int, str]] = {
    RejectionReason.MALFORMED: (401, "Unauthorized: Invalid token format"),
    RejectionReason.REVOKED: (401, "Unauthorized: Token has been revoked"),
    RejectionReason.EXPIRED: (401, "Unauthorized: Authentication expired"),
    RejectionReason.INVALID: (401, "Unauthorized: Invalid authentication"),
    RejectionReason.SERVICE_UNAVAILABLE: (503, "Authentication service unavailable"),
    RejectionReason.UNKNOWN: (403, "Access Denied"),
}


class AuthMiddleware:
    """Authenticates requests by bearer token or API key."""

    def __init__(self, verdict_cache: TokenVerificationCache, api_key_authenticator: ApiKeyAuthenticator):
        self.verdict_cache = verdict_cache
        self.api_key_authenticator = api_key_authenticator
        self.logger = get_logger("gateway.auth_middleware")

    async def authenticate_request(self, request: Request) -> VerifiedIdentity:
        """Verify the bearer token on ``request`` and attach the identity to its state."""
        token = self.extract_bearer_token(request)
        result = await self.verdict_cache.verify(token)

        if not isinstance(result, VerifiedIdentity):
            status_code, message = REJECTION_RESPONSES[result.reason]
            if status_code >= 500:
                raise ServiceUnavailableError(message, details={"reason": result.reason.value})
            raise AuthenticationError(message, details={"reason": result.reason.value}, status_code=status_code)

        request.state.identity = result
        request.state.user_token = token
        set_user_context(user_id=result.subject_id)
        self.logger.info(
            "Request authenticated with bearer token",
            subject_id=result.subject_id,
            from_cache=result.from_cache,
        )
        return result

    def require_api_key(self, request: Request) -> None:
        """Refuse the request unless it carries the configured X-API-Key."""
        presented = request.headers.get("X-API-Key")
        if not presented:
            self.logger.warning("API request missing API key")
            raise AuthenticationError("Authentication required")

        if not self.api_key_authenticator.verify(presented):
            self.logger.warning("Invalid API key attempt", client_ip=getattr(request.state, "client_ip", None))
            raise AuthorizationError("Access denied")

    def extract_bearer_token(self, request: Request) -> str:
        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            self.logger.warning("No bearer token found")
            raise AuthenticationError("Unauthorized: Authentication required")

        token = authorization[len("Bearer "):].strip()
        if not token:
            self.logger.warning("Empty token after Bearer prefix")
            raise AuthenticationError("Unauthorized: Invalid authentication format")
        return token
