"""
Same-user domain hops between the central domain and tenants.

The primary hops reuse the one-time code flow. The legacy switch URL
(session_key + token in the query string) is deprecated and kept behind
``settings.legacy_switch_enabled`` so it can be removed without touching
the code flow.
"""
import logging
from typing import Optional
from urllib.parse import urlencode

from sso_exchange.config import settings
from sso_exchange.core.exceptions import AuthorizationError, ValidationError
from sso_exchange.core.security import is_safe_redirect_path
from sso_exchange.core.sessions import ServerSession
from sso_exchange.models.user import User
from sso_exchange.schemas.sso import (
    CENTRAL_TENANT_ID,
    AuthenticatedPrincipal,
    TenantSessionSwitch,
)
from sso_exchange.services.code_store import CodeStore
from sso_exchange.services.sso_service import SecureSSOService
from sso_exchange.utils.datetime_utils import expires_after, utc_now
from sso_exchange.utils.helpers import code_fingerprint, constant_time_equals, generate_opaque_token

logger = logging.getLogger(__name__)


class TenantSessionService:
    """Builds and consumes domain-hop handoffs for an already authenticated user."""

    def __init__(self, sso_service: SecureSSOService, store: CodeStore):
        self.sso_service = sso_service
        self.central = sso_service.central
        self.store = store

    async def _session_user(self, session: ServerSession) -> User:
        central_user_id = session.get("central_user_id")
        user = await self.central.users.get(central_user_id) if central_user_id else None
        if user is None:
            raise AuthorizationError("Session has no central identity", reason="not_authenticated")
        return user

    async def switch_to_tenant(self, session: ServerSession, tenant_id: str, redirect_path: str) -> str:
        """
        Hop from the central domain into a tenant.

        Returns:
            Tenant /sso/start URL carrying a fresh one-time code
        """
        user = await self._session_user(session)
        return await self.sso_service.generate_sso_url(user, tenant_id, redirect_path, session)

    async def switch_to_central(self, session: ServerSession, redirect_path: Optional[str] = None) -> str:
        """
        Hop from a tenant back to the central domain as the linked central user.

        Returns:
            Central /sso/start URL carrying a fresh one-time code
        """
        user = await self._session_user(session)
        return await self.sso_service.generate_sso_url(
            user,
            CENTRAL_TENANT_ID,
            redirect_path or settings.default_landing_path,
            session,
        )

    async def switch_to_tenant_legacy(self, session: ServerSession, tenant_id: str, redirect_path: str) -> str:
        """
        Deprecated: build a session_key/token switch URL.

        Raises:
            ValidationError: Legacy switching disabled, or unsafe redirect path
            AuthorizationError: Tenant not accessible
        """
        if not settings.legacy_switch_enabled:
            raise ValidationError("Legacy tenant switch is disabled", reason="legacy_disabled")
        if not is_safe_redirect_path(redirect_path):
            raise ValidationError("Redirect path must be a relative path", reason="unsafe_redirect")

        user = await self._session_user(session)
        tenant = await self.sso_service.authorize_target(user, tenant_id)

        ttl = settings.tenant_switch_ttl_seconds
        issued_at = utc_now()
        record = TenantSessionSwitch(
            session_key=generate_opaque_token(),
            token=generate_opaque_token(),
            subject_user_id=user.id,
            target_tenant_id=tenant_id,
            redirect_path=redirect_path,
            two_factor_passed=bool(session.get("two_factor_passed", False)),
            issued_at=issued_at,
            expires_at=expires_after(ttl, issued_at),
        )
        await self.store.put_switch(record, ttl)

        logger.info(
            f"Legacy tenant switch issued key_fp={code_fingerprint(record.session_key)} "
            f"user={user.id} tenant={tenant_id}"
        )
        query = urlencode({"session_key": record.session_key, "token": record.token})
        return f"{settings.url_scheme}://{tenant.domain}/sso/switch?{query}"

    async def consume_switch(self, session_key: str, token: str) -> Optional[AuthenticatedPrincipal]:
        """
        Consume a legacy switch record.

        The record is removed before the token is compared, so a wrong token
        burns the switch.

        Returns:
            AuthenticatedPrincipal, or None if unknown, expired, used, or token mismatch
        """
        if not session_key or not token:
            return None

        fp = code_fingerprint(session_key)
        record = await self.store.consume_switch(session_key)
        if record is None:
            logger.warning(f"Legacy switch rejected reason=store_miss key_fp={fp}")
            return None

        try:
            if not constant_time_equals(token, record.token):
                logger.warning(
                    f"Legacy switch rejected reason=token_mismatch key_fp={fp} tenant={record.target_tenant_id}"
                )
                return None

            user = await self.central.users.get(record.subject_user_id)
            if user is None:
                logger.warning(f"Legacy switch rejected reason=unknown_subject key_fp={fp}")
                return None
        finally:
            await self.cleanup(session_key)

        return AuthenticatedPrincipal(
            user_id=user.id,
            email=user.email,
            tenant_id=record.target_tenant_id,
            redirect_internal=record.redirect_path,
            two_factor_passed=record.two_factor_passed,
        )

    async def cleanup(self, session_key: str) -> None:
        """Remove a switch record explicitly. Safe to call more than once."""
        await self.store.delete_switch(session_key)
