"""
Repository layer exports.
Provides database access for the central and tenant directories.
"""
from sso_exchange.repositories.base import BaseRepository
from sso_exchange.repositories.central_repo import (
    CentralDirectory,
    TenantRepository,
    UserRepository,
)
from sso_exchange.repositories.tenant_repo import TenantDirectory

__all__ = [
    "BaseRepository",
    "CentralDirectory",
    "TenantRepository",
    "UserRepository",
    "TenantDirectory",
]
