"""
Pydantic schemas for SSO records and HTTP bodies.
"""
from sso_exchange.schemas.sso import (
    CENTRAL_TENANT_ID,
    SSOCode,
    TenantSessionSwitch,
    AuthenticatedPrincipal,
    TenantContext,
    SSORedirectRequest,
    SSOExchangeRequest,
    SSOExchangeResponse,
    SwitchToTenantRequest,
    LogoutSignalRequest,
    LoginRequest,
)

__all__ = [
    "CENTRAL_TENANT_ID",
    "SSOCode",
    "TenantSessionSwitch",
    "AuthenticatedPrincipal",
    "TenantContext",
    "SSORedirectRequest",
    "SSOExchangeRequest",
    "SSOExchangeResponse",
    "SwitchToTenantRequest",
    "LogoutSignalRequest",
    "LoginRequest",
]
