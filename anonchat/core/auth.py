"""Operator key check for the admin surface.

Session endpoints are public: anonymous clients are identified by their
hashed address and session id, never by a key. Only the limiter override
under ``/v1/admin`` requires ``X-API-Key``, matched against the
comma-separated ``APP_API_KEYS``.
"""

from __future__ import annotations

import hmac
import logging
from typing import Annotated

from fastapi import Header

from anonchat.core.config import settings
from anonchat.core.errors import AuthenticationAppError
from anonchat.core.logging import fingerprint

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> sorted(parse_api_keys("ops-1, ops-2 ,"))
        ['ops-1', 'ops-2']
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()
    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _matches_any(provided: str, valid_keys: set[str]) -> bool:
    # Compare against every key so timing does not reveal which one matched
    matched = False
    for key in valid_keys:
        matched |= hmac.compare_digest(provided.encode(), key.encode())
    return matched


def validate_api_key(provided_key: str | None) -> None:
    """Check ``provided_key`` against the configured operator keys.

    No-op when ``APP_API_KEY_REQUIRED`` is false.

    Raises:
        AuthenticationAppError: If the key is missing or unknown, or if
            auth is required but no keys are configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)
    if not valid_keys:
        logger.error("auth.keys_not_configured")
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not provided_key:
        logger.warning("auth.missing_key")
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if not _matches_any(provided_key, valid_keys):
        logger.warning("auth.invalid_key", extra={"api_key_hash": fingerprint(provided_key)})
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
            details={"context": {"provided_key_length": len(provided_key)}},
        )


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding the admin router.

    Failures surface through the global handler as 403 with the standard
    error envelope.
    """
    validate_api_key(x_api_key)
    if settings.app.api_key_required:
        logger.info("auth.success", extra={"api_key_hash": fingerprint(x_api_key)})
