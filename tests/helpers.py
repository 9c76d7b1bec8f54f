"""
Shared test helpers: hosts, credentials and session builders.
"""
import time
from urllib.parse import parse_qs, urlsplit

from httpx import AsyncClient

from sso_exchange.core.sessions import ServerSession

TEST_PASSWORD = "correct-horse-battery"
CENTRAL_HOST = "central.test"
TENANT_HOST = "acme.clinic.test"
OTHER_TENANT_HOST = "beta.clinic.test"


def make_central_session(user, two_factor_passed: bool = True, session_id: str = "central-session-1") -> ServerSession:
    """Build an authenticated central session for user."""
    return ServerSession(
        session_id,
        {
            "user_id": user.id,
            "central_user_id": user.id,
            "email": user.email,
            "tenant_id": "central",
            "login_time": time.time(),
            "two_factor_passed": two_factor_passed,
        },
        is_new=False,
    )


async def login(client: AsyncClient, email: str, password: str = TEST_PASSWORD):
    """Log in on the central domain; the session cookie stays in the client jar."""
    return await client.post(
        f"http://{CENTRAL_HOST}/login",
        json={"email": email, "password": password},
    )


def code_from_location(location: str) -> str:
    """Extract the code query parameter from a /sso/start URL."""
    return parse_qs(urlsplit(location).query)["code"][0]


def is_central_login_redirect(response) -> bool:
    location = response.headers.get("location", "")
    parts = urlsplit(location)
    return (
        response.status_code == 303
        and parts.netloc == CENTRAL_HOST
        and parts.path == "/login"
        and parse_qs(parts.query).get("error") == ["sso_failed"]
    )
