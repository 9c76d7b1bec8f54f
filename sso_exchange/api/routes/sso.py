"""
SSO handoff endpoints.

Browser-facing:
    POST /sso/redirect   central: mint a code and send the browser to a tenant
    GET  /sso/start      any domain: exchange a code and log in locally
    GET  /sso/switch     tenant: deprecated session_key/token switch

Server-to-server:
    POST /sso/exchange       central: provenance check, consume, identity payload
    POST /sso/logout-signal  central: record a global logout raised on a tenant

Failures raise SSOException subclasses; the handlers in main.py turn them
into a redirect to the central login or a generic JSON error.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from sso_exchange.config import settings
from sso_exchange.core.central_client import CentralClient, get_central_client
from sso_exchange.core.database import get_db
from sso_exchange.core.exceptions import AuthorizationError, ValidationError
from sso_exchange.core.sessions import ServerSession, get_session
from sso_exchange.dependencies import (
    get_central_directory,
    get_logout_service,
    get_session_establisher,
    get_sso_service,
    get_tenant_context,
    get_tenant_session_service,
    require_central_context,
    require_central_user,
    require_tenant_context,
)
from sso_exchange.models.user import User
from sso_exchange.repositories.central_repo import CentralDirectory
from sso_exchange.schemas.sso import (
    LogoutSignalRequest,
    SSOExchangeRequest,
    SSOExchangeResponse,
    SSORedirectRequest,
    TenantContext,
)
from sso_exchange.services.logout_service import GlobalLogoutService
from sso_exchange.services.session_establisher import TenantSessionEstablisher
from sso_exchange.services.sso_service import SecureSSOService, ensure_tenant_binding
from sso_exchange.services.tenant_session_service import TenantSessionService
from sso_exchange.utils.helpers import code_fingerprint

logger = logging.getLogger(__name__)

router = APIRouter()
limiter = Limiter(key_func=get_remote_address, enabled=settings.rate_limit_enabled)


@router.post("/sso/redirect")
async def sso_redirect(
    body: SSORedirectRequest,
    user: User = Depends(require_central_user),
    session: ServerSession = Depends(get_session),
    sso_service: SecureSSOService = Depends(get_sso_service),
):
    """
    Send the logged-in central user into a tenant.

    **Request Body:**
    ```json
    {"tenant_id": "...", "redirect_path": "/dashboard"}
    ```

    **Returns:** 303 to `https://{tenant}/sso/start?code=...`
    """
    url = await sso_service.generate_sso_url(
        user,
        body.tenant_id,
        body.redirect_path,
        session,
        document_ids=body.document_ids,
    )
    return RedirectResponse(
        url=url,
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.get("/sso/start")
async def sso_start(
    code: Optional[str] = Query(None, max_length=256),
    context: TenantContext = Depends(get_tenant_context),
    session: ServerSession = Depends(get_session),
    sso_service: SecureSSOService = Depends(get_sso_service),
    establisher: TenantSessionEstablisher = Depends(get_session_establisher),
    client: CentralClient = Depends(get_central_client),
    db: AsyncSession = Depends(get_db),
):
    """
    Tenant entry point for a one-time code.

    Exchanges the code in-process, or through the central domain when
    `SSO_EXCHANGE_MODE=remote`, checks the payload is for this domain,
    then establishes the local session.

    **Returns:** 303 to the landing path
    """
    if not code:
        logger.warning(f"SSO rejected reason=missing_code tenant={context.tenant_id}")
        raise ValidationError("Missing SSO code", reason="missing_code")

    if settings.sso_exchange_mode == "remote" and not context.is_central:
        principal = await client.exchange_code(code, context.tenant_id, session.id)
    else:
        principal = await sso_service.exchange_sso_code(code, session.id)

    if principal is None:
        logger.warning(f"SSO start refused fp={code_fingerprint(code)} tenant={context.tenant_id}")
        raise AuthorizationError("Invalid SSO code", reason="store_miss")

    ensure_tenant_binding(principal, context.tenant_id)
    landing = await establisher.establish(principal, context, session)
    await db.commit()

    return RedirectResponse(url=landing, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/sso/exchange", response_model=SSOExchangeResponse)
@limiter.limit(settings.rate_limit_exchange)
async def sso_exchange(
    request: Request,
    body: SSOExchangeRequest,
    x_session_id: Optional[str] = Header(None),
    context: TenantContext = Depends(require_central_context),
    sso_service: SecureSSOService = Depends(get_sso_service),
):
    """
    Server-to-server code exchange.

    Provenance is checked before the store is touched, so a forged request
    never burns a valid code. Every failure is the same bare 403.

    **Headers:**
    - `X-Tenant-Assertion`: signed provenance assertion (required)
    - `X-Session-ID`: caller session id (optional binding hint)

    **Returns:** Identity payload bound to the code
    """
    if not await sso_service.validate_tenant_request(request.headers, body.tenant_id):
        raise AuthorizationError("Provenance check failed", reason="provenance_failed")

    principal = await sso_service.exchange_sso_code(body.code, x_session_id)
    if principal is None:
        raise AuthorizationError("Invalid SSO code", reason="store_miss")

    ensure_tenant_binding(principal, body.tenant_id)
    return SSOExchangeResponse.from_principal(principal)


@router.get("/sso/switch")
async def sso_switch(
    session_key: Optional[str] = Query(None, max_length=256),
    token: Optional[str] = Query(None, max_length=256),
    context: TenantContext = Depends(require_tenant_context),
    session: ServerSession = Depends(get_session),
    switch_service: TenantSessionService = Depends(get_tenant_session_service),
    establisher: TenantSessionEstablisher = Depends(get_session_establisher),
    db: AsyncSession = Depends(get_db),
):
    """
    Deprecated tenant switch by session_key and token.

    Disabled with `LEGACY_SWITCH_ENABLED=false` (404).
    """
    if not settings.legacy_switch_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    if not session_key or not token:
        logger.warning(f"Legacy switch rejected reason=missing_code tenant={context.tenant_id}")
        raise ValidationError("Missing switch parameters", reason="missing_code")

    principal = await switch_service.consume_switch(session_key, token)
    if principal is None:
        raise AuthorizationError("Invalid tenant switch", reason="store_miss")

    ensure_tenant_binding(principal, context.tenant_id)
    landing = await establisher.establish(principal, context, session)
    await db.commit()

    return RedirectResponse(url=landing, status_code=status.HTTP_303_SEE_OTHER)


@router.post("/sso/logout-signal")
async def sso_logout_signal(
    request: Request,
    body: LogoutSignalRequest,
    context: TenantContext = Depends(require_central_context),
    sso_service: SecureSSOService = Depends(get_sso_service),
    central: CentralDirectory = Depends(get_central_directory),
    logout_service: GlobalLogoutService = Depends(get_logout_service),
):
    """
    Record a global logout reported by a tenant.

    The flag is only recorded for users who belong to the signalling tenant;
    the response is the same either way.
    """
    if not await sso_service.validate_tenant_request(request.headers, body.tenant_id):
        raise AuthorizationError("Provenance check failed", reason="provenance_failed")

    user = await central.users.get_by_email(body.email)
    if user and await central.tenants.is_member(body.tenant_id, user.id):
        await logout_service.mark_global_logout(user.email)
    else:
        logger.warning(f"Logout signal ignored for non-member tenant={body.tenant_id}")

    return {"success": True}
