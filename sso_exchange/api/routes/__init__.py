"""
API router exports.
Provides the SSO handoff and session endpoints.
"""
from sso_exchange.api.routes import sso, session

__all__ = [
    "sso",
    "session",
]
