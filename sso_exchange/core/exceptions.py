"""
Exception taxonomy for the SSO exchange.

Every failure aborts the handoff; none is retried. HTTP handlers in
``sso_exchange.main`` map these to generic responses so callers cannot tell
an expired code from an unknown or already used one.
"""


class SSOException(Exception):
    """Base class for SSO handoff failures."""

    reason: str = "sso_failed"

    def __init__(self, message: str = "", reason: str | None = None):
        super().__init__(message or self.__class__.__name__)
        if reason:
            self.reason = reason


class ValidationError(SSOException):
    """Malformed input: missing code, missing tenant id, unsafe redirect path."""

    reason = "invalid_input"


class AuthorizationError(SSOException):
    """Tenant mismatch, failed provenance, unauthorized tenant, or dead code."""

    reason = "unauthorized"


class TwoFactorRequiredError(SSOException):
    """The code was minted before the subject completed two-factor authentication."""

    reason = "two_factor_required"


class StoreError(SSOException):
    """The shared backing store is unreachable or refused the operation."""

    reason = "store_unavailable"
