"""
Domain utilities for the Gateway Service.

Cross-cutting request middleware and background maintenance that wire the
auth and security components into the HTTP layer.
"""

from .auth_middleware import AuthMiddleware, REJECTION_RESPONSES
from .security_middleware import SecurityMiddleware, security_headers
from .sweeper import MaintenanceSweeper

__all__ = [
    "AuthMiddleware",
    "MaintenanceSweeper",
    "REJECTION_RESPONSES",
    "SecurityMiddleware",
    "security_headers",
]
