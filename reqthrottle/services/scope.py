"""Request scope resolution and counter key derivation."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass

from reqthrottle.core.errors import InvalidIpFormatError
from reqthrottle.schemas.policy import RateLimitPeriod, ThrottlePolicy
from reqthrottle.utils.ip_address import parse_ip

KEY_NAMESPACE = "throttle"

AUTHENTICATED_CLIENT_KEY = "auth"
ANONYMOUS_CLIENT_KEY = "anon"


@dataclass(frozen=True)
class RequestDescriptor:
    """Request attributes supplied by the host framework.

    Attributes:
        client_ip: Raw client address, possibly with a port.
        is_authenticated: Whether the caller is an authenticated client.
        endpoint: Endpoint already rendered per the policy's endpoint type.
        user_agent: User-Agent header value, if any.
    """

    client_ip: str
    is_authenticated: bool
    endpoint: str
    user_agent: str | None = None


@dataclass(frozen=True)
class RequestScope:
    """Canonical identity a request's counters are partitioned by."""

    client_ip: str
    client_key: str
    endpoint: str
    user_agent: str | None = None


def normalize_ip(raw_ip: str) -> str:
    """Canonicalize an address, returning the raw text when it does not parse."""
    try:
        return str(parse_ip(raw_ip))
    except InvalidIpFormatError:
        return raw_ip


def resolve_scope(descriptor: RequestDescriptor) -> RequestScope:
    """Build the request scope from a request descriptor.

    Example:
        >>> resolve_scope(RequestDescriptor("10.0.0.1:5000", False, "/API/Values"))
        RequestScope(client_ip='10.0.0.1', client_key='anon', endpoint='/api/values', user_agent=None)
    """

    return RequestScope(
        client_ip=normalize_ip(descriptor.client_ip),
        client_key=AUTHENTICATED_CLIENT_KEY if descriptor.is_authenticated else ANONYMOUS_CLIENT_KEY,
        endpoint=descriptor.endpoint.lower(),
        user_agent=descriptor.user_agent,
    )


def derive_key(scope: RequestScope, policy: ThrottlePolicy, period: RateLimitPeriod) -> str:
    """Derive the counter store key for a scope and period.

    Only the scope fields enabled by the policy's ``*_throttling`` flags take
    part. The parts are JSON-encoded before hashing so that field boundaries
    cannot be confused (``"a_b" + "c"`` vs ``"a" + "b_c"``).

    Returns:
        Hex SHA-256 digest (64 characters).
    """

    parts = [KEY_NAMESPACE]
    if policy.ip_throttling:
        parts.append(scope.client_ip)
    if policy.client_throttling:
        parts.append(scope.client_key)
    if policy.endpoint_throttling:
        parts.append(scope.endpoint)
    if policy.user_agent_throttling:
        parts.append(scope.user_agent or "")
    parts.append(period.value)

    raw = json.dumps(parts, ensure_ascii=False).encode("utf-8", errors="surrogatepass")
    return hashlib.sha256(raw).hexdigest()
