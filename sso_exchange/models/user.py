"""
Central identity models.

Users, tenants, tenant membership and patient records live in the central
schema and are shared by every tenant domain.
"""
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from sso_exchange.models.base import Base, TimestampMixin, UUIDMixin


class User(Base, UUIDMixin, TimestampMixin):
    """Central-domain user account."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    two_factor_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        doc="Whether the account requires a second factor at login"
    )


class Tenant(Base, UUIDMixin, TimestampMixin):
    """A practice (organization) with its own subdomain."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    domain: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
        doc="Host name serving this tenant, e.g. acme.example.com"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class TenantMembership(Base):
    """Central pivot: which users may enter which tenants."""

    __tablename__ = "tenant_user"

    tenant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tenants.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )


class Patient(Base, UUIDMixin, TimestampMixin):
    """Central patient record linked to a user account."""

    __tablename__ = "patients"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
