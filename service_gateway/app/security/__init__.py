"""
Request screening and per-address abuse tracking.
"""

from .abuse_tracker import AbuseTracker, BlockRecord
from .client_ip import get_client_ip, is_private_ip
from .rate_limiter import TokenBucketRateLimiter
from .screening import RequestScreener, ScreeningVerdict

__all__ = [
    "AbuseTracker",
    "BlockRecord",
    "RequestScreener",
    "ScreeningVerdict",
    "TokenBucketRateLimiter",
    "get_client_ip",
    "is_private_ip",
]
