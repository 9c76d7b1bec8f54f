"""
Tenant directory repository.

Tenant-scoped user records. Every query is filtered by the tenant id of the
TenantContext the directory was built for.
"""
import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from sso_exchange.models.base import generate_id
from sso_exchange.models.tenant_user import TenantUser, TenantUserRole
from sso_exchange.models.user import User
from sso_exchange.schemas.sso import TenantContext

logger = logging.getLogger(__name__)


def _insert_for(db: AsyncSession):
    """Dialect-specific INSERT supporting ON CONFLICT DO NOTHING."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


class TenantDirectory:
    """Repository for tenant-local users and their roles."""

    def __init__(self, db: AsyncSession, context: TenantContext):
        if context.is_central:
            raise ValueError("TenantDirectory requires a tenant context")
        self.db = db
        self.context = context

    async def get_by_email(self, email: str) -> Optional[TenantUser]:
        result = await self.db.execute(
            select(TenantUser).where(
                TenantUser.tenant_id == self.context.tenant_id,
                func.lower(TenantUser.email) == email.lower(),
            )
        )
        return result.scalar_one_or_none()

    async def find_or_create_from_central(self, central_user: User) -> TenantUser:
        """
        Find the tenant-local user for a central account, creating it once.

        Profile fields are copied only when the row is first inserted; an
        existing row is returned untouched so local edits survive later logins.
        The insert is conflict-tolerant on (tenant_id, email), so two
        concurrent first logins still end with a single row.

        Args:
            central_user: Central identity record

        Returns:
            The tenant-local user
        """
        existing = await self.get_by_email(central_user.email)
        if existing:
            return existing

        insert = _insert_for(self.db)
        stmt = insert(TenantUser).values(
            id=generate_id(),
            tenant_id=self.context.tenant_id,
            central_user_id=central_user.id,
            name=central_user.name,
            email=central_user.email,
            password_hash=central_user.password_hash,
            email_verified_at=central_user.email_verified_at,
        ).on_conflict_do_nothing(index_elements=["tenant_id", "email"])
        await self.db.execute(stmt)
        await self.db.flush()

        user = await self.get_by_email(central_user.email)
        logger.info(f"Tenant user resolved for tenant={self.context.tenant_id} user={user.id}")
        return user

    async def get_roles(self, tenant_user_id: str) -> List[str]:
        result = await self.db.execute(
            select(TenantUserRole.role).where(TenantUserRole.tenant_user_id == tenant_user_id)
        )
        return list(result.scalars().all())

    async def assign_role(self, tenant_user_id: str, role: str) -> bool:
        """
        Grant a role if not already held. Never removes roles.

        Returns:
            True if the role was newly granted
        """
        if role in await self.get_roles(tenant_user_id):
            return False

        insert = _insert_for(self.db)
        stmt = insert(TenantUserRole).values(
            tenant_user_id=tenant_user_id,
            role=role,
        ).on_conflict_do_nothing(index_elements=["tenant_user_id", "role"])
        result = await self.db.execute(stmt)
        await self.db.flush()
        return result.rowcount > 0
