"""
Secure SSO service: code issuer and code exchanger.

Flow:
1. Central domain mints a one-time code for an authenticated user
   (generate_sso_code) and redirects the browser to the tenant's
   /sso/start?code=... (generate_tenant_sso_url).
2. The tenant entry point exchanges the code (exchange_sso_code), either
   in-process or through the central /sso/exchange endpoint, which first
   checks the caller's provenance (validate_tenant_request).
3. The caller confirms the payload's tenant id (ensure_tenant_binding)
   before establishing a local session.

The code is a random handle; everything it stands for stays in the code store.
"""
import logging
from typing import List, Mapping, Optional
from urllib.parse import quote

from sso_exchange.config import settings
from sso_exchange.core.exceptions import AuthorizationError, ValidationError
from sso_exchange.core.security import (
    ASSERTION_HEADER,
    InvalidAssertion,
    decode_tenant_assertion,
    is_safe_redirect_path,
)
from sso_exchange.core.sessions import ServerSession
from sso_exchange.models.user import Tenant, User
from sso_exchange.repositories.central_repo import CentralDirectory
from sso_exchange.schemas.sso import (
    CENTRAL_TENANT_ID,
    AuthenticatedPrincipal,
    SSOCode,
    TenantContext,
)
from sso_exchange.services.code_store import CodeStore
from sso_exchange.utils.datetime_utils import expires_after, utc_now
from sso_exchange.utils.helpers import code_fingerprint, constant_time_equals, generate_opaque_token

logger = logging.getLogger(__name__)

CODE_BYTES = 32


def ensure_tenant_binding(principal: AuthenticatedPrincipal, expected_tenant_id: str) -> None:
    """
    Confirm an exchanged payload targets the tenant serving this request.

    Raises:
        AuthorizationError: On mismatch (never corrected silently)
    """
    if not constant_time_equals(principal.tenant_id, expected_tenant_id):
        logger.warning(
            f"SSO rejected reason=tenant_mismatch expected={expected_tenant_id} "
            f"got={principal.tenant_id} user={principal.user_id}"
        )
        raise AuthorizationError("Tenant mismatch", reason="tenant_mismatch")


class SecureSSOService:
    """Issues and exchanges one-time cross-domain SSO codes."""

    def __init__(
        self,
        central: CentralDirectory,
        store: CodeStore,
        strict_session_binding: Optional[bool] = None,
    ):
        """
        Initialize the service.

        Args:
            central: Central directory for user and tenant lookups
            store: Shared code store
            strict_session_binding: Require the exchange hint to equal the issuing
                session id. Defaults to settings.sso_strict_session_binding.
        """
        self.central = central
        self.store = store
        self.strict_session_binding = (
            settings.sso_strict_session_binding
            if strict_session_binding is None
            else strict_session_binding
        )

    async def authorize_target(self, user: User, tenant_id: str) -> Tenant | TenantContext:
        """
        Resolve a handoff destination the user may enter.

        Returns:
            Active Tenant, or the central context for CENTRAL_TENANT_ID

        Raises:
            AuthorizationError: Tenant unknown, inactive, or user not a member
        """
        if tenant_id == CENTRAL_TENANT_ID:
            return TenantContext.central(settings.central_domain)

        tenant = await self.central.tenants.get_active(tenant_id)
        if tenant is None:
            raise AuthorizationError("Tenant not found", reason="unknown_tenant")
        if not await self.central.tenants.is_member(tenant.id, user.id):
            logger.warning(f"SSO code refused: user={user.id} is not a member of tenant={tenant_id}")
            raise AuthorizationError("Tenant not accessible", reason="not_member")
        return tenant

    async def generate_sso_code(
        self,
        user: User,
        tenant_id: str,
        redirect_path: str,
        session: ServerSession,
        document_ids: Optional[List[str]] = None,
    ) -> str:
        """
        Mint a one-time code for an authenticated user entering a tenant.

        Args:
            user: Central identity of the current session
            tenant_id: Destination tenant id, or CENTRAL_TENANT_ID to return to central
            redirect_path: Relative landing path on the destination
            session: The current (issuing) session
            document_ids: Optional document filter carried to the tenant session

        Returns:
            Opaque code string

        Raises:
            AuthorizationError: Session not authenticated as user, tenant unknown,
                inactive, or not accessible to the user
            ValidationError: redirect_path is not a same-origin relative path
            StoreError: Code store unavailable
        """
        code, _ = await self._issue(user, tenant_id, redirect_path, session, document_ids)
        return code

    async def generate_sso_url(
        self,
        user: User,
        tenant_id: str,
        redirect_path: str,
        session: ServerSession,
        document_ids: Optional[List[str]] = None,
    ) -> str:
        """
        Mint a code and return the entry URL on the destination domain.

        Same checks and errors as generate_sso_code.
        """
        code, target = await self._issue(user, tenant_id, redirect_path, session, document_ids)
        return self.generate_tenant_sso_url(code, target)

    async def _issue(
        self,
        user: User,
        tenant_id: str,
        redirect_path: str,
        session: ServerSession,
        document_ids: Optional[List[str]],
    ) -> tuple[str, Tenant | TenantContext]:
        if not session.is_authenticated or session.get("central_user_id") != user.id:
            raise AuthorizationError("Session is not authenticated as this user", reason="not_authenticated")

        if not is_safe_redirect_path(redirect_path):
            raise ValidationError("Redirect path must be a relative path", reason="unsafe_redirect")

        target = await self.authorize_target(user, tenant_id)

        ttl = settings.sso_code_ttl_seconds
        issued_at = utc_now()
        record = SSOCode(
            code=generate_opaque_token(CODE_BYTES),
            subject_user_id=user.id,
            target_tenant_id=tenant_id,
            redirect_path=redirect_path,
            issuing_session_id=session.id,
            two_factor_passed=bool(session.get("two_factor_passed", False)),
            document_ids=document_ids,
            issued_at=issued_at,
            expires_at=expires_after(ttl, issued_at),
        )
        await self.store.put(record, ttl)

        logger.info(
            f"SSO code issued fp={code_fingerprint(record.code)} user={user.id} "
            f"tenant={tenant_id} expires_at={record.expires_at.isoformat()}"
        )
        return record.code, target

    @staticmethod
    def generate_tenant_sso_url(code: str, tenant: Tenant | TenantContext) -> str:
        """
        Build the browser entry URL on the destination domain.

        Example:
            ```python
            url = SecureSSOService.generate_tenant_sso_url(code, tenant)
            # https://acme.example.com/sso/start?code=...
            ```
        """
        return f"{settings.url_scheme}://{tenant.domain}/sso/start?code={quote(code, safe='')}"

    async def validate_tenant_request(self, headers: Mapping[str, str], claimed_tenant_id: str) -> bool:
        """
        Check that a server-to-server call really comes from the claimed tenant.

        The caller signs a short-lived assertion with the shared secret; its
        tenant_id claim must equal the tenant id in the request body and name
        an active tenant.

        Returns:
            True if the request is trusted. Never raises on a bad assertion.
        """
        token = headers.get(ASSERTION_HEADER)
        if not token:
            logger.warning(f"SSO rejected reason=provenance_failed tenant={claimed_tenant_id} detail=missing")
            return False

        try:
            payload = decode_tenant_assertion(token)
        except InvalidAssertion as e:
            logger.warning(f"SSO rejected reason=provenance_failed tenant={claimed_tenant_id} detail={e}")
            return False

        if not constant_time_equals(str(payload["tenant_id"]), claimed_tenant_id):
            logger.warning(
                f"SSO rejected reason=provenance_failed tenant={claimed_tenant_id} "
                f"detail=assertion_for={payload['tenant_id']}"
            )
            return False

        if await self.central.tenants.get_active(claimed_tenant_id) is None:
            logger.warning(f"SSO rejected reason=provenance_failed tenant={claimed_tenant_id} detail=unknown_tenant")
            return False

        return True

    async def exchange_sso_code(
        self,
        code: Optional[str],
        session_binding_hint: Optional[str] = None,
    ) -> Optional[AuthenticatedPrincipal]:
        """
        Consume a code and return the identity it was bound to.

        Args:
            code: Opaque code from the browser
            session_binding_hint: Caller-supplied session id, logged for audit;
                required to match only when strict session binding is on

        Returns:
            AuthenticatedPrincipal, or None if the code is unknown, expired,
            already used, or fails strict binding. None must abort the handoff.

        Raises:
            StoreError: Code store unavailable
        """
        if not code:
            return None

        fp = code_fingerprint(code)
        record = await self.store.consume(code)
        if record is None:
            logger.warning(f"SSO rejected reason=store_miss fp={fp}")
            return None

        hint_matches = bool(
            session_binding_hint
            and record.issuing_session_id
            and constant_time_equals(session_binding_hint, record.issuing_session_id)
        )
        if self.strict_session_binding and not hint_matches:
            logger.warning(f"SSO rejected reason=binding_mismatch fp={fp} tenant={record.target_tenant_id}")
            return None
        if session_binding_hint and not hint_matches:
            logger.info(f"SSO exchange session hint differs from issuing session fp={fp}")

        user = await self.central.users.get(record.subject_user_id)
        if user is None:
            logger.warning(f"SSO rejected reason=unknown_subject fp={fp}")
            return None

        logger.info(f"SSO code exchanged fp={fp} user={user.id} tenant={record.target_tenant_id}")
        return AuthenticatedPrincipal(
            user_id=user.id,
            email=user.email,
            tenant_id=record.target_tenant_id,
            redirect_internal=record.redirect_path,
            two_factor_passed=record.two_factor_passed,
            document_ids=record.document_ids,
        )
