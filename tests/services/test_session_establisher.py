"""
Tests for TenantSessionEstablisher.
Covers the 2FA gate, local identity resolution, role assignment,
session state and the landing path guard.
"""
import time

import pytest
from sqlalchemy import func, select

from sso_exchange.core.exceptions import AuthorizationError, TwoFactorRequiredError
from sso_exchange.core.sessions import CSRF_TOKEN_KEY, ServerSession
from sso_exchange.models.tenant_user import TenantUser
from sso_exchange.repositories.tenant_repo import TenantDirectory
from sso_exchange.schemas.sso import AuthenticatedPrincipal, TenantContext
from sso_exchange.services.session_establisher import TenantSessionEstablisher


def make_principal(user, tenant_id: str, **overrides) -> AuthenticatedPrincipal:
    data = {
        "user_id": user.id,
        "email": user.email,
        "tenant_id": tenant_id,
        "redirect_internal": "/dashboard",
        "two_factor_passed": True,
    }
    data.update(overrides)
    return AuthenticatedPrincipal(**data)


@pytest.fixture
def tenant_context(test_tenant) -> TenantContext:
    return TenantContext(tenant_id=test_tenant.id, domain=test_tenant.domain)


@pytest.fixture
def establisher(central_directory, db_session, tenant_context) -> TenantSessionEstablisher:
    return TenantSessionEstablisher(central_directory, TenantDirectory(db_session, tenant_context))


@pytest.fixture
def anonymous_session() -> ServerSession:
    return ServerSession("anonymous-session", {"flash": "welcome"}, is_new=False)


async def count_tenant_users(db_session, tenant_id: str) -> int:
    result = await db_session.execute(
        select(func.count()).select_from(TenantUser).where(TenantUser.tenant_id == tenant_id)
    )
    return result.scalar()


class TestTwoFactorGate:
    """Tests for the second-factor gate at the tenant boundary."""

    async def test_blocks_code_minted_before_2fa(self, establisher, db_session, two_factor_user, tenant_context, anonymous_session):
        """Test a 2FA user with two_factor_passed=false gets no session and no local user."""
        principal = make_principal(two_factor_user, tenant_context.tenant_id, two_factor_passed=False)

        with pytest.raises(TwoFactorRequiredError):
            await establisher.establish(principal, tenant_context, anonymous_session)

        assert anonymous_session.id == "anonymous-session"
        assert not anonymous_session.is_authenticated
        assert await count_tenant_users(db_session, tenant_context.tenant_id) == 0

    async def test_allows_2fa_user_who_passed(self, establisher, two_factor_user, tenant_context, anonymous_session):
        """Test a 2FA user who completed the challenge gets a session."""
        principal = make_principal(two_factor_user, tenant_context.tenant_id, two_factor_passed=True)

        await establisher.establish(principal, tenant_context, anonymous_session)

        assert anonymous_session.is_authenticated

    async def test_user_without_2fa_passes(self, establisher, test_user, tenant_context, anonymous_session):
        """Test the gate only applies to accounts with 2FA enabled."""
        principal = make_principal(test_user, tenant_context.tenant_id, two_factor_passed=False)

        await establisher.establish(principal, tenant_context, anonymous_session)

        assert anonymous_session.is_authenticated


class TestLocalIdentity:
    """Tests for tenant-local user resolution."""

    async def test_creates_local_user_from_central(self, establisher, db_session, test_user, tenant_context, anonymous_session):
        """Test the first entry copies the central profile."""
        await establisher.establish(make_principal(test_user, tenant_context.tenant_id), tenant_context, anonymous_session)

        directory = TenantDirectory(db_session, tenant_context)
        local = await directory.get_by_email(test_user.email)
        assert local is not None
        assert local.name == "Alice Patient"
        assert local.central_user_id == test_user.id
        assert local.password_hash == test_user.password_hash
        assert local.email_verified_at is not None
        assert anonymous_session["user_id"] == local.id
        assert anonymous_session["central_user_id"] == test_user.id

    async def test_second_entry_reuses_and_preserves_local_edits(self, establisher, db_session, test_user, tenant_context):
        """Test two establishes for one email keep one row and do not overwrite a changed name."""
        await establisher.establish(
            make_principal(test_user, tenant_context.tenant_id), tenant_context, ServerSession("s1", {}, is_new=True)
        )
        directory = TenantDirectory(db_session, tenant_context)
        local = await directory.get_by_email(test_user.email)
        local.name = "Dr. Alice (edited locally)"
        await db_session.commit()

        test_user.name = "Alice Renamed Centrally"
        await db_session.commit()
        await establisher.establish(
            make_principal(test_user, tenant_context.tenant_id), tenant_context, ServerSession("s2", {}, is_new=True)
        )

        assert await count_tenant_users(db_session, tenant_context.tenant_id) == 1
        again = await directory.get_by_email(test_user.email)
        assert again.id == local.id
        assert again.name == "Dr. Alice (edited locally)"

    async def test_assigns_patient_role_once(self, establisher, db_session, test_user, patient_record, tenant_context):
        """Test users with a central patient record get the Patient role, additively."""
        directory = TenantDirectory(db_session, tenant_context)

        await establisher.establish(
            make_principal(test_user, tenant_context.tenant_id), tenant_context, ServerSession("s1", {}, is_new=True)
        )
        local = await directory.get_by_email(test_user.email)
        await directory.assign_role(local.id, "Practitioner")

        await establisher.establish(
            make_principal(test_user, tenant_context.tenant_id), tenant_context, ServerSession("s2", {}, is_new=True)
        )

        assert sorted(await directory.get_roles(local.id)) == ["Patient", "Practitioner"]

    async def test_no_patient_role_without_record(self, establisher, db_session, test_user, tenant_context, anonymous_session):
        """Test users without a patient record get no role."""
        await establisher.establish(make_principal(test_user, tenant_context.tenant_id), tenant_context, anonymous_session)

        directory = TenantDirectory(db_session, tenant_context)
        assert await directory.get_roles(anonymous_session["user_id"]) == []

    async def test_unknown_subject(self, establisher, tenant_context, anonymous_session):
        """Test a principal whose central user vanished is refused."""
        principal = AuthenticatedPrincipal(
            user_id="deleted-user",
            email="gone@example.com",
            tenant_id=tenant_context.tenant_id,
            redirect_internal="/dashboard",
            two_factor_passed=True,
        )

        with pytest.raises(AuthorizationError):
            await establisher.establish(principal, tenant_context, anonymous_session)


class TestSessionState:
    """Tests for the session written by establish()."""

    async def test_regenerates_session_and_records_login(self, establisher, test_user, tenant_context, anonymous_session):
        """Test the id rotates, old data is dropped, and login_time is recorded."""
        before = time.time()

        await establisher.establish(
            make_principal(test_user, tenant_context.tenant_id, document_ids=["doc-7"]),
            tenant_context,
            anonymous_session,
        )

        assert anonymous_session.id != "anonymous-session"
        assert "anonymous-session" in anonymous_session.stale_ids
        assert "flash" not in anonymous_session
        assert anonymous_session["login_time"] >= before
        assert anonymous_session["tenant_id"] == tenant_context.tenant_id
        assert anonymous_session["two_factor_passed"] is True
        assert anonymous_session["document_ids_filter"] == ["doc-7"]
        assert anonymous_session[CSRF_TOKEN_KEY]

    async def test_central_context_logs_in_central_user(self, central_directory, test_user):
        """Test a code back to central logs in the central account directly."""
        establisher = TenantSessionEstablisher(central_directory)
        context = TenantContext.central("central.test")
        session = ServerSession("tenant-hop", {}, is_new=True)

        await establisher.establish(make_principal(test_user, context.tenant_id), context, session)

        assert session["user_id"] == test_user.id
        assert session["tenant_id"] == "central"


class TestLandingPath:
    """Tests for the redirect chosen after establish()."""

    @pytest.mark.parametrize("redirect_internal,expected", [
        ("/appointments/42", "/appointments/42"),
        ("https://evil.com/phish", "/dashboard"),
        ("//evil.com", "/dashboard"),
        ("", "/dashboard"),
    ])
    async def test_only_relative_paths(self, establisher, test_user, tenant_context, redirect_internal, expected):
        """Test a payload redirect is used only when it is same-origin and relative."""
        principal = make_principal(test_user, tenant_context.tenant_id, redirect_internal=redirect_internal)

        landing = await establisher.establish(principal, tenant_context, ServerSession("s", {}, is_new=True))

        assert landing == expected
