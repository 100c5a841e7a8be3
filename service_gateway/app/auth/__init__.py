"""
Authentication components for the gateway: bearer token verification with a
local verdict cache, token revocation, and API key checks.
"""

from .api_key import ApiKeyAuthenticator
from .identity_provider import IdentityProviderVerifier
from .models import (
    CachedVerdict,
    Rejection,
    RejectionReason,
    UpstreamVerdict,
    VerificationResult,
    VerifiedIdentity,
)
from .revocation import RevocationSet
from .verdict_cache import TokenVerificationCache, TokenVerifier, classify_upstream_error, token_expiry

__all__ = [
    "ApiKeyAuthenticator",
    "CachedVerdict",
    "IdentityProviderVerifier",
    "Rejection",
    "RejectionReason",
    "RevocationSet",
    "TokenVerificationCache",
    "TokenVerifier",
    "UpstreamVerdict",
    "VerificationResult",
    "VerifiedIdentity",
    "classify_upstream_error",
    "token_expiry",
]
