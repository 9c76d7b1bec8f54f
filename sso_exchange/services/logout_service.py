"""
Global logout coordinator.

Logout may start on any domain. Remote state is updated best-effort first;
the local session is then cleared unconditionally, so a failing collaborator
never leaves the user logged in here.
"""
import logging
import time
from typing import Optional

from sso_exchange.config import settings
from sso_exchange.core.cache import MemoryCache, RedisCache
from sso_exchange.core.central_client import CentralClient
from sso_exchange.core.exceptions import StoreError
from sso_exchange.core.sessions import ServerSession, global_logout_key
from sso_exchange.schemas.sso import TenantContext

logger = logging.getLogger(__name__)


class GlobalLogoutService:
    """Terminates sessions across domains."""

    def __init__(self, cache: RedisCache | MemoryCache, central_client: Optional[CentralClient] = None):
        self.cache = cache
        self.central_client = central_client

    async def mark_global_logout(self, email: str) -> None:
        """
        Record that every session of email started before now is logged out.

        The flag outlives any session it can affect and is compared against
        each session's login_time, so a later login is unaffected.

        Raises:
            StoreError: Shared cache unavailable
        """
        await self.cache.set_json(
            global_logout_key(email),
            time.time(),
            ttl=settings.session_absolute_timeout_seconds,
        )
        logger.info("Global logout recorded")

    async def perform_global_logout(self, session: ServerSession, context: TenantContext) -> None:
        """
        Log the current user out everywhere, degrading to a local logout.

        Args:
            session: Current request session; always invalidated
            context: Domain serving the request
        """
        email = session.get("email")

        if email:
            try:
                await self.mark_global_logout(email)
            except StoreError as e:
                logger.warning(f"Global logout flag not recorded tenant={context.tenant_id}: {e}")

            if not context.is_central and self.central_client and settings.central_logout_signal_url:
                await self.central_client.notify_logout(email, context.tenant_id)

        session.invalidate()
        session.regenerate_token()
        logger.info(f"Session invalidated by logout tenant={context.tenant_id}")

    @staticmethod
    def post_logout_url(from_public_portal: bool = False) -> str:
        """Where to send the browser once logged out."""
        if from_public_portal:
            return f"{settings.url_scheme}://{settings.central_domain}{settings.public_portal_path}"
        return settings.central_login_url
