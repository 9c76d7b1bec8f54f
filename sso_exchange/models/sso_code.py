"""
Durable code store tables.

Used when code_store_backend=database. Rows are deleted on consume, so the
existence of a row is the "not yet consumed" marker.
"""
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from sso_exchange.models.base import Base


class SSOCodeRecord(Base):
    """Pending one-time SSO code."""

    __tablename__ = "sso_codes"

    code: Mapped[str] = mapped_column(String(128), primary_key=True)
    subject_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    target_tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    redirect_path: Mapped[str] = mapped_column(String(2048), nullable=False)
    issuing_session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    two_factor_passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    document_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class TenantSessionSwitchRecord(Base):
    """Pending legacy tenant switch."""

    __tablename__ = "tenant_session_switches"

    session_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    token: Mapped[str] = mapped_column(String(128), nullable=False)
    subject_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    target_tenant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    redirect_path: Mapped[str] = mapped_column(String(2048), nullable=False)
    two_factor_passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
