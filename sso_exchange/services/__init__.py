"""
Service layer exports.
Provides the SSO handoff logic: code store, issuer/exchanger, establisher,
domain hops and global logout.
"""
from sso_exchange.services.code_store import (
    CodeStore,
    CacheCodeStore,
    DatabaseCodeStore,
    build_code_store,
)
from sso_exchange.services.sso_service import SecureSSOService, ensure_tenant_binding
from sso_exchange.services.session_establisher import TenantSessionEstablisher
from sso_exchange.services.tenant_session_service import TenantSessionService
from sso_exchange.services.logout_service import GlobalLogoutService

__all__ = [
    "CodeStore",
    "CacheCodeStore",
    "DatabaseCodeStore",
    "build_code_store",
    "SecureSSOService",
    "ensure_tenant_binding",
    "TenantSessionEstablisher",
    "TenantSessionService",
    "GlobalLogoutService",
]
