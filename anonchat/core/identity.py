"""Client identity extraction for anonymous traffic.

Raw IPs and user agents never leave this module: callers only see salted,
truncated SHA-256 hashes. The same input always hashes to the same value for
a given salt, so hashes can be used as rate-limit scopes and session keys.
"""

from __future__ import annotations

import hashlib
import ipaddress
from dataclasses import dataclass

from fastapi import Request

from anonchat.core.config import SessionSettings, settings

HASH_LENGTH = 32

# Checked in order; the first header with a usable value wins
FORWARDED_HEADERS = ("x-forwarded-for", "x-real-ip", "x-vercel-forwarded-for")


@dataclass(frozen=True)
class ClientIdentity:
    """Hashed identity of the caller for one request.

    Attributes:
        ip_hash: Salted hash of the client IP, or None when no IP is known.
        user_agent_hash: Salted hash of the User-Agent header, if sent.
        session_id: Session id from the session header or cookie, if sent.
        authenticated: An upstream identity provider vouched for the caller.
    """

    ip_hash: str | None
    user_agent_hash: str | None = None
    session_id: str | None = None
    authenticated: bool = False


def _salted_hash(value: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{value}".encode()).hexdigest()[:HASH_LENGTH]


def normalize_ip(raw: str | None) -> str | None:
    """Reduce a forwarded-header entry to a bare IP.

    Handles surrounding whitespace, ``host:port`` for IPv4 and
    ``[v6]:port`` for IPv6. Returns None when the value is not an IP.

    Examples:
        >>> normalize_ip(" 203.0.113.7:4711 ")
        '203.0.113.7'
        >>> normalize_ip("[2001:db8::1]:443")
        '2001:db8::1'
        >>> normalize_ip("unknown") is None
        True
    """
    if not raw:
        return None
    candidate = raw.strip()
    if candidate.startswith("["):
        end = candidate.find("]")
        if end == -1:
            return None
        candidate = candidate[1:end]
    elif candidate.count(":") == 1:
        candidate = candidate.split(":", 1)[0]

    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def client_ip_from_headers(headers, peer_host: str | None = None) -> str | None:
    """Pick the client IP from proxy headers, falling back to the socket peer.

    Only the first (client-most) entry of a comma-separated chain is used.
    """
    for name in FORWARDED_HEADERS:
        value = headers.get(name)
        if not value:
            continue
        ip = normalize_ip(value.split(",")[0])
        if ip:
            return ip
    return normalize_ip(peer_host)


def hash_ip(ip: str | None, salt: str = "") -> str | None:
    if not ip:
        return None
    return _salted_hash(f"ip:{ip}", salt)


def hash_user_agent(user_agent: str | None, salt: str = "") -> str | None:
    if not user_agent or not user_agent.strip():
        return None
    return _salted_hash(f"ua:{user_agent.strip()}", salt)


def session_id_from_request(request: Request, session_settings: SessionSettings | None = None) -> str | None:
    cfg = session_settings or settings.session
    value = request.headers.get(cfg.header_name) or request.cookies.get(cfg.cookie_name)
    if value and value.strip():
        return value.strip()
    return None


def resolve_client_identity(request: Request) -> ClientIdentity:
    """Build the hashed identity for ``request`` from current settings."""
    salt = settings.session.hash_salt
    peer = request.client.host if request.client else None
    ip = client_ip_from_headers(request.headers, peer)

    authenticated = False
    trusted_header = settings.app.trusted_user_header
    if trusted_header:
        authenticated = bool((request.headers.get(trusted_header) or "").strip())

    return ClientIdentity(
        ip_hash=hash_ip(ip, salt),
        user_agent_hash=hash_user_agent(request.headers.get("user-agent"), salt),
        session_id=session_id_from_request(request),
        authenticated=authenticated,
    )
