"""
Tests for GlobalLogoutService.
"""
import time

import pytest

from sso_exchange.config import settings
from sso_exchange.core.cache import MemoryCache, get_cache
from sso_exchange.core.exceptions import StoreError
from sso_exchange.core.sessions import CSRF_TOKEN_KEY, ServerSession, global_logout_key, load_session, save_session
from sso_exchange.schemas.sso import TenantContext
from sso_exchange.services.logout_service import GlobalLogoutService


def logged_in_session(session_id: str = "sess-1", login_time: float | None = None) -> ServerSession:
    return ServerSession(
        session_id,
        {
            "user_id": "local-user",
            "central_user_id": "central-user",
            "email": "Alice@Example.com",
            "login_time": login_time if login_time is not None else time.time(),
            CSRF_TOKEN_KEY: "old-token",
        },
        is_new=False,
    )


@pytest.fixture
def tenant_context() -> TenantContext:
    return TenantContext(tenant_id="tenant-1", domain="acme.clinic.test")


class TestPerformGlobalLogout:
    """Tests for perform_global_logout()."""

    async def test_invalidates_session_and_rotates_token(self, tenant_context):
        """Test the local session is emptied, its id rotated and the token replaced."""
        session = logged_in_session()

        await GlobalLogoutService(get_cache()).perform_global_logout(session, tenant_context)

        assert session.id != "sess-1"
        assert "sess-1" in session.stale_ids
        assert not session.is_authenticated
        assert session.csrf_token not in (None, "old-token")

    async def test_records_global_logout_flag(self, tenant_context):
        """Test the flag is keyed by lower-cased email."""
        await GlobalLogoutService(get_cache()).perform_global_logout(logged_in_session(), tenant_context)

        assert await get_cache().get_json(global_logout_key("alice@example.com")) is not None

    async def test_flag_ends_sessions_on_other_domains(self, tenant_context):
        """Test a session started before the logout is invalidated when next loaded."""
        other_domain = logged_in_session("other-domain-session", login_time=time.time() - 10)
        await save_session(other_domain)

        await GlobalLogoutService(get_cache()).perform_global_logout(logged_in_session(), tenant_context)

        reloaded = await load_session("other-domain-session")
        assert not reloaded.is_authenticated

    async def test_later_login_is_unaffected(self, tenant_context):
        """Test a login after the logout flag keeps its session."""
        await GlobalLogoutService(get_cache()).perform_global_logout(logged_in_session(), tenant_context)

        fresh = logged_in_session("fresh-session", login_time=time.time() + 1)
        await save_session(fresh)

        reloaded = await load_session("fresh-session")
        assert reloaded.is_authenticated

    async def test_store_failure_still_logs_out_locally(self, tenant_context, mocker):
        """Test an unreachable cache never keeps the user logged in."""
        cache = MemoryCache()
        mocker.patch.object(cache, "set_json", side_effect=StoreError("down"))
        session = logged_in_session()

        await GlobalLogoutService(cache).perform_global_logout(session, tenant_context)

        assert not session.is_authenticated

    async def test_remote_signal_from_tenant(self, tenant_context, mocker):
        """Test tenant logouts notify the central domain when configured."""
        mocker.patch.object(settings, "central_logout_signal_url", "http://central.test/sso/logout-signal")
        client = mocker.AsyncMock()
        session = logged_in_session()

        await GlobalLogoutService(get_cache(), client).perform_global_logout(session, tenant_context)

        client.notify_logout.assert_awaited_once_with("Alice@Example.com", "tenant-1")
        assert not session.is_authenticated

    async def test_remote_signal_failure_degrades_to_local_logout(self, tenant_context, mocker):
        """Test a failing remote signal does not prevent local logout."""
        mocker.patch.object(settings, "central_logout_signal_url", "http://central.test/sso/logout-signal")
        client = mocker.AsyncMock()
        client.notify_logout.return_value = False
        session = logged_in_session()

        await GlobalLogoutService(get_cache(), client).perform_global_logout(session, tenant_context)

        assert not session.is_authenticated

    async def test_no_remote_signal_from_central(self, mocker):
        """Test central logouts only record the flag."""
        mocker.patch.object(settings, "central_logout_signal_url", "http://central.test/sso/logout-signal")
        client = mocker.AsyncMock()

        await GlobalLogoutService(get_cache(), client).perform_global_logout(
            logged_in_session(), TenantContext.central("central.test")
        )

        client.notify_logout.assert_not_awaited()

    async def test_anonymous_session(self, tenant_context):
        """Test logging out without a login is harmless."""
        session = ServerSession("anon", {}, is_new=True)

        await GlobalLogoutService(get_cache()).perform_global_logout(session, tenant_context)

        assert not session.is_authenticated


class TestPostLogoutUrl:
    """Tests for post_logout_url()."""

    def test_central_login_by_default(self):
        assert GlobalLogoutService.post_logout_url() == "http://central.test/login"

    def test_public_portal(self):
        assert GlobalLogoutService.post_logout_url(True) == "http://central.test/public-portal"
