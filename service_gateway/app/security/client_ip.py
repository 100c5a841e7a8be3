"""
Client address extraction behind proxies and load balancers.
"""

import ipaddress
import os
from typing import Mapping, Optional

UNKNOWN_ADDRESS = "unknown"

_GOOGLE_TRACE_HEADERS = ("x-cloud-trace-context", "x-google-cloud-trace")

# Ranges internal proxies add to X-Forwarded-For.
_INTERNAL_NETWORKS = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "::1/128",
        "fc00::/7",
        "fe80::/10",
    )
)


def is_private_ip(address: str) -> bool:
    """True for loopback, private, link-local and IPv4-mapped IPv6 addresses."""
    candidate = (address or "").strip().lower()
    if candidate == "localhost":
        return True
    try:
        ip = ipaddress.ip_address(candidate)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return True
    return any(ip.version == network.version and ip in network for network in _INTERNAL_NETWORKS)


def behind_google_front_end(headers: Mapping[str, str]) -> bool:
    if any(headers.get(name) for name in _GOOGLE_TRACE_HEADERS):
        return True
    return bool(os.getenv("GOOGLE_CLOUD_PROJECT"))


def get_client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """Resolve the originating client address for a request.

    ``headers`` must be case-insensitive (Starlette ``Headers``) or use
    lower-case keys. Google front ends append the client as the last
    X-Forwarded-For hop, other proxies put it first; private hops added by
    internal proxies are skipped when a public one is present.
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
        if hops:
            public = [hop for hop in hops if not is_private_ip(hop)]
            candidates = public or hops
            if behind_google_front_end(headers):
                return candidates[-1]
            return candidates[0]

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    cf_connecting_ip = headers.get("cf-connecting-ip")
    if cf_connecting_ip:
        return cf_connecting_ip.strip()

    return peer or UNKNOWN_ADDRESS
