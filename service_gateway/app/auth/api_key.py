"""
Shared-secret API key check for operator and server-to-server routes.
"""

import hmac
from typing import Optional

from shared.logging import get_logger


class ApiKeyAuthenticator:
    """Compares presented keys with the configured one in constant time."""

    def __init__(self, api_key: str):
        self._expected = api_key.encode("utf-8")
        self.logger = get_logger("gateway.auth.api_key")
        if not self._expected:
            self.logger.warning("No API key configured; API key protected routes will refuse every request")

    @property
    def configured(self) -> bool:
        return bool(self._expected)

    def verify(self, presented: Optional[str]) -> bool:
        if not presented or not self._expected:
            return False
        return hmac.compare_digest(presented.encode("utf-8"), self._expected)
