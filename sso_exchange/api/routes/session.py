"""
Session endpoints: central login, global logout and same-user domain hops.
"""
import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from sso_exchange.config import settings
from sso_exchange.core.security import pwd_context, verify_password
from sso_exchange.core.sessions import ServerSession, get_session
from sso_exchange.dependencies import (
    get_central_directory,
    get_logout_service,
    get_tenant_context,
    get_tenant_session_service,
    require_central_context,
    require_central_user,
    require_tenant_context,
)
from sso_exchange.models.user import User
from sso_exchange.repositories.central_repo import CentralDirectory
from sso_exchange.schemas.sso import LoginRequest, SwitchToTenantRequest, TenantContext
from sso_exchange.services.logout_service import GlobalLogoutService
from sso_exchange.services.tenant_session_service import TenantSessionService

logger = logging.getLogger(__name__)

router = APIRouter()
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


@router.post("/login")
@limiter.limit(settings.rate_limit_login)
async def login(
    request: Request,
    credentials: LoginRequest,
    context: TenantContext = Depends(require_central_context),
    session: ServerSession = Depends(get_session),
    central: CentralDirectory = Depends(get_central_directory),
):
    """
    Central password login.

    The two-factor challenge is handled elsewhere; it sets
    `two_factor_passed` in this session once completed.

    **Errors:**
    - 401: Invalid credentials
    """
    user = await central.users.get_by_email(credentials.email)
    if user is None:
        # Same cost as a real check
        pwd_context.dummy_verify()
        password_ok = False
    else:
        password_ok = verify_password(credentials.password, user.password_hash)

    if not password_ok:
        logger.warning("Central login failed: invalid credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    session.regenerate()
    session.data = {
        "user_id": user.id,
        "central_user_id": user.id,
        "email": user.email,
        "tenant_id": context.tenant_id,
        "login_time": time.time(),
        "two_factor_passed": not user.two_factor_enabled,
    }
    session.regenerate_token()

    logger.info(f"Central login succeeded user={user.id}")
    return {
        "success": True,
        "user_id": user.id,
        "two_factor_required": user.two_factor_enabled,
    }


@router.api_route("/logout", methods=["GET", "POST"])
async def logout(
    from_public_portal: bool = Query(False),
    context: TenantContext = Depends(get_tenant_context),
    session: ServerSession = Depends(get_session),
    logout_service: GlobalLogoutService = Depends(get_logout_service),
):
    """
    Global logout from any domain.

    **Query Parameters:**
    - `from_public_portal`: land on the public portal instead of the central login
    """
    await logout_service.perform_global_logout(session, context)
    return RedirectResponse(
        url=logout_service.post_logout_url(from_public_portal),
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.post("/switch-to-tenant")
async def switch_to_tenant(
    body: SwitchToTenantRequest,
    user: User = Depends(require_central_user),
    session: ServerSession = Depends(get_session),
    switch_service: TenantSessionService = Depends(get_tenant_session_service),
):
    """Hop from the central domain into a tenant as the same user."""
    url = await switch_service.switch_to_tenant(session, body.tenant_id, body.redirect_path)
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/switch-to-tenant/legacy")
async def switch_to_tenant_legacy(
    body: SwitchToTenantRequest,
    user: User = Depends(require_central_user),
    session: ServerSession = Depends(get_session),
    switch_service: TenantSessionService = Depends(get_tenant_session_service),
):
    """
    Deprecated: hop into a tenant through a session_key/token switch URL.

    Disabled with `LEGACY_SWITCH_ENABLED=false` (404).
    """
    if not settings.legacy_switch_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    url = await switch_service.switch_to_tenant_legacy(session, body.tenant_id, body.redirect_path)
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@router.api_route("/switch-to-central", methods=["GET", "POST"])
async def switch_to_central(
    redirect_path: Optional[str] = Query(None, max_length=2048),
    context: TenantContext = Depends(require_tenant_context),
    session: ServerSession = Depends(get_session),
    switch_service: TenantSessionService = Depends(get_tenant_session_service),
):
    """Hop from a tenant back to the central domain as the linked central user."""
    url = await switch_service.switch_to_central(session, redirect_path)
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)
