"""
Tenant-side session establisher.

Turns an exchanged AuthenticatedPrincipal into a live session on the domain
serving the request. The second factor is re-checked here, at the boundary,
because the principal crossed from another domain.
"""
import logging
import time
from typing import Optional

from sso_exchange.config import settings
from sso_exchange.core.exceptions import AuthorizationError, TwoFactorRequiredError
from sso_exchange.core.security import is_safe_redirect_path
from sso_exchange.core.sessions import ServerSession
from sso_exchange.repositories.central_repo import CentralDirectory
from sso_exchange.repositories.tenant_repo import TenantDirectory
from sso_exchange.schemas.sso import AuthenticatedPrincipal, TenantContext

logger = logging.getLogger(__name__)

PATIENT_ROLE = "Patient"


def safe_landing_path(path: Optional[str]) -> str:
    """Return path if it is a same-origin relative path, else the default landing path."""
    if path and is_safe_redirect_path(path):
        return path
    if path:
        logger.warning("Unsafe redirect path in SSO payload, using default landing path")
    return settings.default_landing_path


class TenantSessionEstablisher:
    """Creates the local session for an exchanged principal."""

    def __init__(self, central: CentralDirectory, tenant_directory: Optional[TenantDirectory] = None):
        """
        Args:
            central: Central directory for the subject's identity and patient record
            tenant_directory: Tenant-store repository; required for tenant contexts
        """
        self.central = central
        self.tenant_directory = tenant_directory

    async def establish(
        self,
        principal: AuthenticatedPrincipal,
        context: TenantContext,
        session: ServerSession,
    ) -> str:
        """
        Log the principal in on the domain described by context.

        Steps:
        1. 2FA gate: a code minted before 2FA completion never grants a session
        2. Resolve the local identity (tenant user, or the central user itself)
        3. Regenerate the session id and record the login
        4. Pick a safe landing path

        Args:
            principal: Identity returned by the exchanger
            context: Domain serving this request
            session: Current request session

        Returns:
            Relative path to redirect the browser to

        Raises:
            TwoFactorRequiredError: Subject has 2FA enabled and had not passed it at mint time
            AuthorizationError: Subject no longer exists in the central directory
        """
        user = await self.central.users.get(principal.user_id)
        if user is None:
            raise AuthorizationError("Central user not found", reason="unknown_subject")

        if user.two_factor_enabled and not principal.two_factor_passed:
            logger.warning(
                f"SSO rejected reason=two_factor_required tenant={context.tenant_id} user={user.id}"
            )
            raise TwoFactorRequiredError("Two-factor authentication required")

        if context.is_central:
            local_user_id = user.id
        else:
            if self.tenant_directory is None or self.tenant_directory.context != context:
                raise AuthorizationError("No tenant directory for this context", reason="tenant_mismatch")

            tenant_user = await self.tenant_directory.find_or_create_from_central(user)
            if await self.central.users.has_patient_record(user.id):
                if await self.tenant_directory.assign_role(tenant_user.id, PATIENT_ROLE):
                    logger.info(f"Granted {PATIENT_ROLE} role to tenant user={tenant_user.id}")
            local_user_id = tenant_user.id

        # Fresh id and fresh data: nothing from the anonymous session carries over
        session.regenerate()
        session.data = {
            "user_id": local_user_id,
            "central_user_id": user.id,
            "email": user.email,
            "tenant_id": context.tenant_id,
            "login_time": time.time(),
            "two_factor_passed": principal.two_factor_passed,
        }
        if principal.document_ids:
            session["document_ids_filter"] = list(principal.document_ids)
        session.regenerate_token()

        logger.info(f"SSO session established tenant={context.tenant_id} user={local_user_id}")
        return safe_landing_path(principal.redirect_internal)
