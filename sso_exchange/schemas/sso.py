"""
SSO schemas.

Closed record types for everything passed between the issuer, the store,
the exchanger and the establisher, plus the HTTP request/response bodies.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from sso_exchange.utils.datetime_utils import ensure_utc, utc_now

# Target id used when a code hands a session back to the central domain
CENTRAL_TENANT_ID = "central"


class SSOCode(BaseModel):
    """One-time code record held by the code store."""

    model_config = ConfigDict(frozen=True)

    code: str
    subject_user_id: str
    target_tenant_id: str
    redirect_path: str
    issuing_session_id: Optional[str] = None
    two_factor_passed: bool
    document_ids: Optional[List[str]] = None
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= ensure_utc(self.expires_at)


class TenantSessionSwitch(BaseModel):
    """Legacy switch record addressed by session_key and checked against token."""

    model_config = ConfigDict(frozen=True)

    session_key: str
    token: str
    subject_user_id: str
    target_tenant_id: str
    redirect_path: str
    two_factor_passed: bool
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) >= ensure_utc(self.expires_at)


class AuthenticatedPrincipal(BaseModel):
    """Identity produced by a successful exchange; lives for one request only."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    tenant_id: str
    redirect_internal: str
    two_factor_passed: bool
    document_ids: Optional[List[str]] = None


class TenantContext(BaseModel):
    """The domain a request is being served for."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    domain: str
    is_central: bool = False

    @classmethod
    def central(cls, domain: str) -> "TenantContext":
        return cls(tenant_id=CENTRAL_TENANT_ID, domain=domain, is_central=True)


# HTTP bodies

class SSORedirectRequest(BaseModel):
    """Browser request to enter a tenant."""
    tenant_id: str = Field(..., min_length=1)
    redirect_path: str = Field(default="/dashboard")
    document_ids: Optional[List[str]] = None


class SSOExchangeRequest(BaseModel):
    """Server-to-server code exchange body."""
    code: str = Field(..., min_length=16, max_length=128)
    tenant_id: str = Field(..., min_length=1)


class SSOExchangeResponse(BaseModel):
    """Identity payload returned by a successful exchange."""
    success: bool = True
    user_id: str
    user_email: str
    tenant_id: str
    redirect_internal: str
    two_factor_passed: bool
    document_ids: Optional[List[str]] = None

    @classmethod
    def from_principal(cls, principal: AuthenticatedPrincipal) -> "SSOExchangeResponse":
        return cls(
            user_id=principal.user_id,
            user_email=principal.email,
            tenant_id=principal.tenant_id,
            redirect_internal=principal.redirect_internal,
            two_factor_passed=principal.two_factor_passed,
            document_ids=principal.document_ids,
        )

    def to_principal(self) -> AuthenticatedPrincipal:
        return AuthenticatedPrincipal(
            user_id=self.user_id,
            email=self.user_email,
            tenant_id=self.tenant_id,
            redirect_internal=self.redirect_internal,
            two_factor_passed=self.two_factor_passed,
            document_ids=self.document_ids,
        )


class SwitchToTenantRequest(BaseModel):
    """Same-user hop from the central domain into a tenant."""
    tenant_id: str = Field(..., min_length=1)
    redirect_path: str = Field(default="/dashboard")


class LogoutSignalRequest(BaseModel):
    """Server-to-server notice that a user logged out on a tenant domain."""
    email: EmailStr
    tenant_id: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    """Central password login."""
    email: EmailStr
    password: str = Field(..., min_length=1)
