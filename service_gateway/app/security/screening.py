"""
Classifies requests that should count as abuse failures.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

SUSPICIOUS_AGENTS = (
    "sqlmap", "nikto", "nessus", "dirbuster", "nmap", "burpsuite", "hydra",
    "harvester", "masscan", "zmap", "w3af", "metasploit",
)

ATTACK_PATTERNS = (
    "union select", "exec(", "eval(", "<script>", "javascript:", "onload=",
    "onerror=", "1=1;", "drop table", "alert(", "document.cookie", "-->",
)

ACCEPTED_CONTENT_TYPES = (
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
)

STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass(frozen=True)
class ScreeningVerdict:
    """A request that failed screening."""

    trigger: str
    status_code: int
    message: str


class RequestScreener:
    """Looks for scanner user agents, attack payloads and bad content types."""

    def __init__(
        self,
        suspicious_agents: Sequence[str] = SUSPICIOUS_AGENTS,
        attack_patterns: Sequence[str] = ATTACK_PATTERNS,
        accepted_content_types: Sequence[str] = ACCEPTED_CONTENT_TYPES,
    ):
        self.suspicious_agents = tuple(agent.lower() for agent in suspicious_agents)
        self.attack_patterns = tuple(pattern.lower() for pattern in attack_patterns)
        self.accepted_content_types = tuple(ct.lower() for ct in accepted_content_types)

    def screen(
        self,
        method: str,
        user_agent: str = "",
        content_type: str = "",
        body: str = "",
        query: str = "",
    ) -> Optional[ScreeningVerdict]:
        """Return a verdict for a request that should be refused, or None."""
        agent = (user_agent or "").lower()
        if any(name in agent for name in self.suspicious_agents):
            return ScreeningVerdict("suspicious_agent", 403, "Access denied")

        if self.contains_attack_pattern(body) or self.contains_attack_pattern(query):
            return ScreeningVerdict("attack_pattern", 400, "Invalid request")

        if method.upper() in STATE_CHANGING_METHODS and body and not self._accepted_media_type(content_type):
            return ScreeningVerdict("invalid_content_type", 400, "Invalid content type")

        return None

    def contains_attack_pattern(self, text: str) -> bool:
        if not text:
            return False
        lowered = text.lower()
        return any(pattern in lowered for pattern in self.attack_patterns)

    def _accepted_media_type(self, content_type: str) -> bool:
        media_type = (content_type or "").split(";", 1)[0].strip().lower()
        return media_type in self.accepted_content_types
