"""Client authentication lookup for throttling scopes.

Throttling only needs to know *whether* a caller is authenticated; the
request scope then uses the ``auth`` or ``anon`` client key.

Resolution order:
- ``request.state.authenticated`` when an upstream middleware set it
- otherwise the ``X-API-Key`` header validated against configured keys

Keys are compared in constant time and never logged in clear text.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from fastapi import Request

from reqthrottle.core.config import settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Args:
        keys_string: Comma-separated string of API keys, or None.

    Returns:
        Set of trimmed, non-empty API keys.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def is_valid_api_key(provided_key: str | None) -> bool:
    """Check a provided key against the configured keys.

    Returns False when no key is provided or no keys are configured.
    """
    if not provided_key:
        return False

    valid_keys = parse_api_keys(settings.throttle.api_keys)
    matched = any(hmac.compare_digest(provided_key, key) for key in valid_keys)
    if not matched:
        logger.debug(
            "auth.invalid_key",
            extra={
                "api_key_hash": hashlib.sha256(provided_key.encode()).hexdigest()[:16],
                "keys_configured": bool(valid_keys),
            },
        )
    return matched


def is_request_authenticated(request: Request) -> bool:
    """Return whether the request comes from an authenticated client."""

    authenticated = getattr(request.state, "authenticated", None)
    if authenticated is not None:
        return bool(authenticated)

    return is_valid_api_key(request.headers.get(API_KEY_HEADER))
