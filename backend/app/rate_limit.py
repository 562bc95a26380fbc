"""Rate limiting.

Login is limited per client address. The LLM-backed endpoints (chat and
manual analysis) are limited per authenticated user so that colleagues
behind one office NAT do not share a budget.

Forwarded headers are only honored when the direct peer is a trusted proxy.
"""

import ipaddress
import os
from typing import Optional

from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings
from .logging_config import get_logger

logger = get_logger("archidesk.rate_limit")

# Override with TRUSTED_PROXY_CIDRS (comma-separated)
_DEFAULT_PROXY_NETWORKS = ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "127.0.0.0/8", "::1/128")

LOGIN_RATE_LIMIT = "10/minute"
CHAT_RATE_LIMIT = "30/minute"
ANALYZE_RATE_LIMIT = "10/minute"

_proxy_networks: Optional[list] = None


def _proxy_networks_from_env() -> list:
    raw = os.environ.get("TRUSTED_PROXY_CIDRS", "")
    entries = [s.strip() for s in raw.split(",") if s.strip()] or list(_DEFAULT_PROXY_NETWORKS)
    networks = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR: {entry}")
    return networks


def is_trusted_proxy(ip_str: str) -> bool:
    global _proxy_networks
    if _proxy_networks is None:
        _proxy_networks = _proxy_networks_from_env()
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _proxy_networks)


def get_client_ip(request) -> str:
    """Peer address, or the first X-Forwarded-For hop when the peer is a trusted proxy."""
    peer = get_remote_address(request)
    if not is_trusted_proxy(peer):
        return peer
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    return forwarded or peer


def _token_from_request(request) -> str | None:
    from .auth import AUTH_COOKIE_NAME

    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(AUTH_COOKIE_NAME)


def get_user_key(request) -> str:
    """Key requests by the token's user; unauthenticated calls fall back to the address.

    The token is only decoded here, never trusted for access control.
    """
    token = _token_from_request(request)
    if token:
        settings = get_settings()
        try:
            payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        except JWTError:
            payload = {}
        if payload.get("sub"):
            return f"user:{payload['sub']}"
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(key_func=get_client_ip)
