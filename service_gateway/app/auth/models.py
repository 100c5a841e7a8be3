"""
Value types shared by the bearer-token verification components.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Union


class RejectionReason(str, Enum):
    """Why a bearer token was refused."""

    MALFORMED = "malformed"
    REVOKED = "revoked"
    EXPIRED = "expired"
    INVALID = "invalid"
    SERVICE_UNAVAILABLE = "service_unavailable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class UpstreamVerdict:
    """What the identity provider asserted about a token."""

    subject_id: str
    claims: Dict[str, Any]
    expires_at: float


@dataclass(frozen=True)
class CachedVerdict:
    """A previously verified token, reused until shortly before it expires."""

    subject_id: str
    claims: Dict[str, Any]
    expires_at: float
    verified_at: float

    def is_fresh(self, now: float, leeway: float = 0.0) -> bool:
        return now < self.expires_at - leeway


@dataclass(frozen=True)
class VerifiedIdentity:
    """Accepted token: the identity it represents and where the answer came from."""

    subject_id: str
    claims: Dict[str, Any] = field(repr=False)
    expires_at: float
    from_cache: bool = False

    valid = True


@dataclass(frozen=True)
class Rejection:
    """Refused token."""

    reason: RejectionReason
    detail: str = ""

    valid = False


VerificationResult = Union[VerifiedIdentity, Rejection]
