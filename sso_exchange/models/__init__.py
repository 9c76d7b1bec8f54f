"""
SQLAlchemy models for the SSO exchange.

All models must be imported here for Alembic auto-generation to work.
"""

# Import Base first
from sso_exchange.models.base import Base, TimestampMixin, UUIDMixin

from sso_exchange.models.user import User, Tenant, TenantMembership, Patient
from sso_exchange.models.tenant_user import TenantUser, TenantUserRole
from sso_exchange.models.sso_code import SSOCodeRecord, TenantSessionSwitchRecord

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    # Central identity
    "User",
    "Tenant",
    "TenantMembership",
    "Patient",
    # Tenant identity
    "TenantUser",
    "TenantUserRole",
    # Code store
    "SSOCodeRecord",
    "TenantSessionSwitchRecord",
]
