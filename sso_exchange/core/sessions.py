"""
Server-side sessions.

Only an opaque session id travels in the cookie; session data lives in the
shared cache under ``session:{id}``. Cookies are host-only, so the central
domain and every tenant domain keep independent sessions.
"""
import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from sso_exchange.config import settings
from sso_exchange.core.cache import get_cache
from sso_exchange.core.exceptions import StoreError
from sso_exchange.utils.helpers import generate_cache_key, generate_opaque_token

logger = logging.getLogger(__name__)

CSRF_TOKEN_KEY = "_token"


def session_key(session_id: str) -> str:
    return generate_cache_key("session", session_id)


def global_logout_key(email: str) -> str:
    return generate_cache_key("global_logout", email.lower())


class ServerSession:
    """Mutable view of one session for the duration of a request."""

    def __init__(self, session_id: str, data: Dict[str, Any], is_new: bool):
        self.id = session_id
        self.data = data
        self.is_new = is_new
        self.stale_ids: List[str] = []

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.data[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.data

    def pop(self, key: str, default: Any = None) -> Any:
        return self.data.pop(key, default)

    def regenerate(self) -> None:
        """Move the data to a fresh id; the old id is deleted after the response."""
        self.stale_ids.append(self.id)
        self.id = generate_opaque_token()

    def invalidate(self) -> None:
        """Drop all data and the stored entry, continuing with an empty session."""
        self.stale_ids.append(self.id)
        self.id = generate_opaque_token()
        self.data = {}

    def regenerate_token(self) -> str:
        """Rotate the anti-forgery token."""
        token = generate_opaque_token()
        self.data[CSRF_TOKEN_KEY] = token
        return token

    @property
    def csrf_token(self) -> Optional[str]:
        return self.data.get(CSRF_TOKEN_KEY)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.data.get("user_id"))


async def _is_expired(data: Dict[str, Any]) -> bool:
    """Absolute timeout since login, and any global logout issued after login."""
    login_time = data.get("login_time")
    if login_time is None:
        return False

    if time.time() - float(login_time) > settings.session_absolute_timeout_seconds:
        return True

    email = data.get("email")
    if email:
        logged_out_at = await get_cache().get_json(global_logout_key(email))
        if logged_out_at is not None and float(logged_out_at) >= float(login_time):
            return True

    return False


async def load_session(session_id: Optional[str]) -> ServerSession:
    """
    Load the session for a cookie value, or start a new one.

    Raises:
        StoreError: If the shared cache is unreachable
    """
    if session_id:
        data = await get_cache().get_json(session_key(session_id))
        if data is not None:
            session = ServerSession(session_id, data, is_new=False)
            if await _is_expired(data):
                logger.info("Session expired or globally logged out, invalidating")
                session.invalidate()
            return session
    return ServerSession(generate_opaque_token(), {}, is_new=True)


async def save_session(session: ServerSession) -> None:
    """
    Persist the session and delete entries for rotated ids.

    Raises:
        StoreError: If the shared cache is unreachable
    """
    cache = get_cache()
    for stale_id in session.stale_ids:
        await cache.delete(session_key(stale_id))
    if session.data:
        await cache.set_json(session_key(session.id), session.data, ttl=settings.session_ttl_seconds)


class SessionMiddleware(BaseHTTPMiddleware):
    """Attach a ServerSession to request.state.session."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        cookie_value = request.cookies.get(settings.session_cookie_name)

        try:
            session = await load_session(cookie_value)
        except StoreError as e:
            logger.error(f"Session load failed: {e}", exc_info=True)
            return JSONResponse(status_code=503, content={"detail": "Service unavailable"})

        request.state.session = session
        response = await call_next(request)

        try:
            await save_session(session)
        except StoreError as e:
            logger.error(f"Session save failed: {e}", exc_info=True)
            if session.data:
                return JSONResponse(status_code=503, content={"detail": "Service unavailable"})

        if session.data:
            response.set_cookie(
                settings.session_cookie_name,
                session.id,
                max_age=settings.session_ttl_seconds,
                httponly=True,
                secure=settings.session_cookie_secure,
                samesite="lax",
            )
        elif cookie_value:
            response.delete_cookie(settings.session_cookie_name)

        return response


def get_session(request: Request) -> ServerSession:
    """Dependency returning the current request's session."""
    return request.state.session
