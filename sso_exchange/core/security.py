"""
Security utilities for the SSO exchange.

Covers password hashing for the central login, the signed provenance
assertion tenants attach to server-to-server calls, and the same-origin
redirect check applied on both sides of the handoff.
"""
from datetime import timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

import jwt
from passlib.context import CryptContext

from sso_exchange.config import settings
from sso_exchange.utils.datetime_utils import utc_now
from sso_exchange.utils.helpers import generate_opaque_token

ASSERTION_AUDIENCE = "sso-exchange"
ASSERTION_ALGORITHM = "HS256"
ASSERTION_HEADER = "X-Tenant-Assertion"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class InvalidAssertion(Exception):
    """Raised when a provenance assertion cannot be trusted."""


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify password against hashed password.

    Accounts without a stored hash never verify.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognized hash format
        return False


def is_safe_redirect_path(path: Optional[str]) -> bool:
    """
    Check that a redirect target is a same-origin relative path.

    Rejects absolute URLs, protocol-relative values ("//host") and the
    backslash variants browsers normalize into them.

    Example:
        >>> is_safe_redirect_path("/dashboard?tab=1")
        True
        >>> is_safe_redirect_path("//evil.com")
        False
    """
    if not path or not isinstance(path, str):
        return False
    if not path.startswith("/") or path.startswith("//"):
        return False
    if any(ch in path for ch in ("\\", "\r", "\n", "\t", "\x00")):
        return False
    parts = urlsplit(path)
    return not parts.scheme and not parts.netloc


def create_tenant_assertion(tenant_id: str, ttl_seconds: Optional[int] = None) -> str:
    """
    Create the signed assertion a tenant process sends to the central exchange.

    Args:
        tenant_id: Tenant the calling process serves
        ttl_seconds: Lifetime, defaults to settings.sso_assertion_ttl_seconds

    Returns:
        Encoded HS256 JWT
    """
    now = utc_now()
    ttl = ttl_seconds if ttl_seconds is not None else settings.sso_assertion_ttl_seconds
    payload = {
        "tenant_id": tenant_id,
        "aud": ASSERTION_AUDIENCE,
        "iat": now,
        "exp": now + timedelta(seconds=ttl),
        "jti": generate_opaque_token(16),
    }
    return jwt.encode(payload, settings.sso_shared_secret, algorithm=ASSERTION_ALGORITHM)


def decode_tenant_assertion(token: str) -> Dict[str, Any]:
    """
    Decode and validate a provenance assertion.

    Raises:
        InvalidAssertion: If the signature, audience, expiry or lifetime is invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.sso_shared_secret,
            algorithms=[ASSERTION_ALGORITHM],
            audience=ASSERTION_AUDIENCE,
            options={"require": ["exp", "iat", "tenant_id"]},
        )
    except jwt.InvalidTokenError as e:
        raise InvalidAssertion(str(e)) from e

    # Refuse long-lived assertions even if correctly signed
    if payload["exp"] - payload["iat"] > settings.sso_assertion_ttl_seconds:
        raise InvalidAssertion("assertion lifetime too long")

    return payload
