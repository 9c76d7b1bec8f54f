"""
Central domain API client.

Used by tenant processes to reach the central domain server-to-server:
code exchange in ``remote`` mode and the best-effort logout signal. Every
request carries a short-lived provenance assertion signed with the shared
secret.
"""
import logging
from typing import Dict, Optional

import httpx

from sso_exchange.config import settings
from sso_exchange.core.exceptions import StoreError
from sso_exchange.core.security import ASSERTION_HEADER, create_tenant_assertion
from sso_exchange.schemas.sso import AuthenticatedPrincipal, SSOExchangeResponse

logger = logging.getLogger(__name__)

SESSION_ID_HEADER = "X-Session-ID"


class CentralClient:
    """Client for the central domain's server-to-server SSO endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize from settings unless overridden."""
        self.base_url = (base_url or f"{settings.url_scheme}://{settings.central_domain}").rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _get_headers(self, tenant_id: str) -> Dict[str, str]:
        """Get signed headers for a request on behalf of tenant_id."""
        return {
            ASSERTION_HEADER: create_tenant_assertion(tenant_id),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def exchange_code(
        self,
        code: str,
        tenant_id: str,
        session_id: Optional[str] = None,
    ) -> Optional[AuthenticatedPrincipal]:
        """
        Exchange a code at the central /sso/exchange endpoint.

        Args:
            code: Opaque code received by the tenant's /sso/start
            tenant_id: Tenant serving the request
            session_id: Current tenant session id, sent as the binding hint

        Returns:
            AuthenticatedPrincipal, or None if the central domain refused the code

        Raises:
            StoreError: Central domain unreachable or answered with a server error
        """
        headers = self._get_headers(tenant_id)
        if session_id:
            headers[SESSION_ID_HEADER] = session_id

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/sso/exchange",
                    headers=headers,
                    json={"code": code, "tenant_id": tenant_id},
                )
            except httpx.RequestError as e:
                raise StoreError(f"Central domain unavailable: {e}") from e

        if response.status_code in (400, 403, 422):
            return None
        if not response.is_success:
            raise StoreError(f"Central exchange failed with status {response.status_code}")

        try:
            payload = SSOExchangeResponse.model_validate(response.json())
        except ValueError as e:
            raise StoreError(f"Malformed central exchange response: {e}") from e
        return payload.to_principal()

    async def notify_logout(self, email: str, tenant_id: str) -> bool:
        """
        Tell the central domain that a user logged out on a tenant.

        Best-effort: failures are logged and reported as False.
        """
        url = settings.central_logout_signal_url or f"{self.base_url}/sso/logout-signal"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    url,
                    headers=self._get_headers(tenant_id),
                    json={"email": email, "tenant_id": tenant_id},
                )
            except httpx.RequestError as e:
                logger.warning(f"Logout signal to central domain failed: {e}")
                return False

        if not response.is_success:
            logger.warning(f"Logout signal rejected by central domain: status={response.status_code}")
            return False
        return True


central_client = CentralClient()


def get_central_client() -> CentralClient:
    """Dependency for the central domain client."""
    return central_client
