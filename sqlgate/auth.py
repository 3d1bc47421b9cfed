"""Bearer token authorizer for the SQL Gateway.

The gateway knows exactly two credentials, both taken from settings:

1. WRITE_TOKEN     - read and write access (all mutating and admin operations)
2. READ_ONLY_TOKEN - read access only (GET endpoints)

Classification is a stateless comparison per request: no lockout, no expiry,
no rotation. Raw tokens never reach the logs; ``get_token_prefix`` produces a
masked form for diagnostics.
"""

import secrets
from dataclasses import dataclass

import structlog

from sqlgate.config import settings

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Access:
    """Result of classifying a request's credential."""

    authenticated: bool
    can_read: bool
    can_write: bool
    message: str


UNAUTHENTICATED_MISSING = Access(
    authenticated=False,
    can_read=False,
    can_write=False,
    message="Authentication required: Missing or malformed Authorization header.",
)

UNAUTHENTICATED_INVALID = Access(
    authenticated=False,
    can_read=False,
    can_write=False,
    message="Invalid authentication token.",
)

WRITE_ACCESS = Access(
    authenticated=True,
    can_read=True,
    can_write=True,
    message="Authenticated with write access.",
)

READ_ONLY_ACCESS = Access(
    authenticated=True,
    can_read=True,
    can_write=False,
    message="Authenticated with read-only access.",
)


def get_token_prefix(token: str) -> str:
    """
    Mask a token for logging.

    Example:
        >>> get_token_prefix("write-secret-1234")
        'writ...'
        >>> get_token_prefix("ab")
        '...'
    """
    if len(token) < 8:
        return "..."
    return token[:4] + "..."


def _matches(token: str, configured: str | None) -> bool:
    # An unset credential disables its tier rather than matching ""
    if not configured:
        return False
    return secrets.compare_digest(token.encode(), configured.encode())


def authorize(header: str | None) -> Access:
    """
    Classify the value of an Authorization header.

    Args:
        header: Raw header value, or None when the header is absent

    Returns:
        One of the module-level Access constants
    """
    if not header or not header.startswith(BEARER_PREFIX):
        logger.warning("auth_missing_credentials")
        return UNAUTHENTICATED_MISSING

    token = header[len(BEARER_PREFIX):]

    if _matches(token, settings.write_token):
        logger.debug("auth_write_access_granted")
        return WRITE_ACCESS

    if _matches(token, settings.read_only_token):
        logger.debug("auth_read_access_granted")
        return READ_ONLY_ACCESS

    logger.warning("auth_invalid_token", token_prefix=get_token_prefix(token))
    return UNAUTHENTICATED_INVALID
