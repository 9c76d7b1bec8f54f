"""
Central directory repository.

Read access to the central identity schema: users, tenants, membership and
patient records. Injected wherever a tenant-side step needs a central lookup.
"""
from typing import Optional

from sqlalchemy import exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sso_exchange.models.user import Patient, Tenant, TenantMembership, User
from sso_exchange.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for central user accounts."""

    def __init__(self, db: AsyncSession):
        super().__init__(User, db)

    async def get_by_email(self, email: str) -> Optional[User]:
        """
        Get user by email address (case-insensitive).

        Args:
            email: User email

        Returns:
            User instance or None
        """
        result = await self.db.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def has_patient_record(self, user_id: str) -> bool:
        result = await self.db.execute(
            select(exists().where(Patient.user_id == user_id))
        )
        return bool(result.scalar())


class TenantRepository(BaseRepository[Tenant]):
    """Repository for tenants and central membership."""

    def __init__(self, db: AsyncSession):
        super().__init__(Tenant, db)

    async def get_by_domain(self, domain: str) -> Optional[Tenant]:
        """
        Get tenant by host name.

        Args:
            domain: Host without port, e.g. "acme.example.com"
        """
        result = await self.db.execute(
            select(Tenant).where(Tenant.domain == domain.lower())
        )
        return result.scalar_one_or_none()

    async def get_active(self, tenant_id: str) -> Optional[Tenant]:
        tenant = await self.get(tenant_id)
        if tenant is None or not tenant.is_active:
            return None
        return tenant

    async def is_member(self, tenant_id: str, user_id: str) -> bool:
        """Check the central tenant_user pivot."""
        result = await self.db.execute(
            select(exists().where(
                TenantMembership.tenant_id == tenant_id,
                TenantMembership.user_id == user_id,
            ))
        )
        return bool(result.scalar())


class CentralDirectory:
    """Facade over the central repositories, sharing one session."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserRepository(db)
        self.tenants = TenantRepository(db)
