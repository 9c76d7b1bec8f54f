"""
Dependency injection for FastAPI routes.
Provides the tenant context, repositories, services and session guards.
"""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sso_exchange.config import settings
from sso_exchange.core.cache import get_cache
from sso_exchange.core.central_client import CentralClient, get_central_client
from sso_exchange.core.database import get_db
from sso_exchange.core.exceptions import AuthorizationError
from sso_exchange.core.sessions import ServerSession, get_session
from sso_exchange.models.user import User
from sso_exchange.repositories.central_repo import CentralDirectory
from sso_exchange.repositories.tenant_repo import TenantDirectory
from sso_exchange.schemas.sso import TenantContext
from sso_exchange.services.code_store import CodeStore, build_code_store
from sso_exchange.services.logout_service import GlobalLogoutService
from sso_exchange.services.session_establisher import TenantSessionEstablisher
from sso_exchange.services.sso_service import SecureSSOService
from sso_exchange.services.tenant_session_service import TenantSessionService

_code_store: Optional[CodeStore] = None


def request_host(request: Request) -> str:
    """Host header without port, lowercased."""
    return request.headers.get("host", "").split(":")[0].strip().lower()


async def get_central_directory(db: AsyncSession = Depends(get_db)) -> CentralDirectory:
    return CentralDirectory(db)


async def get_tenant_context(
    request: Request,
    central: CentralDirectory = Depends(get_central_directory),
) -> TenantContext:
    """
    Resolve the domain this request is served for from the Host header.

    Raises:
        AuthorizationError: Host is neither a central domain nor an active tenant
    """
    host = request_host(request)
    if host in settings.central_domains:
        return TenantContext.central(host)

    tenant = await central.tenants.get_by_domain(host) if host else None
    if tenant is None or not tenant.is_active:
        raise AuthorizationError("Unknown tenant host", reason="unknown_tenant")
    return TenantContext(tenant_id=tenant.id, domain=tenant.domain)


async def require_central_context(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
    if not context.is_central:
        raise AuthorizationError("Central domain only", reason="wrong_domain")
    return context


async def require_tenant_context(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
    if context.is_central:
        raise AuthorizationError("Tenant domain only", reason="wrong_domain")
    return context


def get_code_store() -> CodeStore:
    """Dependency for the shared code store."""
    global _code_store
    if _code_store is None:
        _code_store = build_code_store()
    return _code_store


async def get_tenant_directory(
    db: AsyncSession = Depends(get_db),
    context: TenantContext = Depends(get_tenant_context),
) -> Optional[TenantDirectory]:
    if context.is_central:
        return None
    return TenantDirectory(db, context)


async def get_sso_service(
    central: CentralDirectory = Depends(get_central_directory),
    store: CodeStore = Depends(get_code_store),
) -> SecureSSOService:
    return SecureSSOService(central, store)


async def get_session_establisher(
    central: CentralDirectory = Depends(get_central_directory),
    tenant_directory: Optional[TenantDirectory] = Depends(get_tenant_directory),
) -> TenantSessionEstablisher:
    return TenantSessionEstablisher(central, tenant_directory)


async def get_tenant_session_service(
    sso_service: SecureSSOService = Depends(get_sso_service),
    store: CodeStore = Depends(get_code_store),
) -> TenantSessionService:
    return TenantSessionService(sso_service, store)


async def get_logout_service(
    client: CentralClient = Depends(get_central_client),
) -> GlobalLogoutService:
    return GlobalLogoutService(get_cache(), client)


async def require_central_user(
    session: ServerSession = Depends(get_session),
    central: CentralDirectory = Depends(get_central_directory),
    context: TenantContext = Depends(require_central_context),
) -> User:
    """
    Dependency returning the central user logged in on the central domain.

    Raises:
        AuthorizationError: No authenticated central session
    """
    central_user_id = session.get("central_user_id")
    user = await central.users.get(central_user_id) if session.is_authenticated and central_user_id else None
    if user is None:
        raise AuthorizationError("Central login required", reason="not_authenticated")
    return user
