"""
Tenant-local identity models.

Each tenant keeps its own copy of a user, created on first SSO entry and
never overwritten from the central record afterwards.
"""
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from sso_exchange.models.base import Base, TimestampMixin, UUIDMixin


class TenantUser(Base, UUIDMixin, TimestampMixin):
    """User record scoped to one tenant."""

    __tablename__ = "tenant_users"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_tenant_users_tenant_email"),
    )

    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    central_user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TenantUserRole(Base):
    """Role held by a tenant-local user."""

    __tablename__ = "tenant_user_roles"

    tenant_user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenant_users.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(50), primary_key=True)
