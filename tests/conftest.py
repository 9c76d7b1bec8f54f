"""
Pytest configuration and fixtures for tests.
Provides reusable test fixtures for database, cache, users, tenants and sessions.
"""
import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["CODE_STORE_BACKEND"] = "cache"
os.environ["SSO_SHARED_SECRET"] = "test-shared-secret-0123456789abcdef0123"
os.environ["CENTRAL_DOMAINS"] = "central.test"
os.environ["URL_SCHEME"] = "http"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "testing"

from typing import AsyncGenerator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from sso_exchange import dependencies
from sso_exchange.main import app
from sso_exchange.core.cache import get_cache
from sso_exchange.core.database import get_db
from sso_exchange.core.security import hash_password
from sso_exchange.core.sessions import ServerSession
from sso_exchange.models.base import Base
from sso_exchange.repositories.central_repo import CentralDirectory
from sso_exchange.services.code_store import CacheCodeStore
from sso_exchange.services.sso_service import SecureSSOService
from sso_exchange.utils.datetime_utils import utc_now

from tests.helpers import (
    CENTRAL_HOST,
    OTHER_TENANT_HOST,
    TENANT_HOST,
    TEST_PASSWORD,
    make_central_session,
)


# Test database URL (use separate test database)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"  # In-memory SQLite for tests


@pytest.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    TestSessionLocal = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def clear_cache():
    """Start and end every test with an empty shared cache."""
    get_cache().clear()
    dependencies._code_store = None
    yield
    get_cache().clear()
    dependencies._code_store = None


@pytest.fixture
def code_store() -> CacheCodeStore:
    """Code store over the in-process shared cache."""
    return CacheCodeStore(get_cache())


@pytest.fixture
def central_directory(db_session: AsyncSession) -> CentralDirectory:
    return CentralDirectory(db_session)


@pytest.fixture
def sso_service(central_directory, code_store) -> SecureSSOService:
    return SecureSSOService(central_directory, code_store, strict_session_binding=False)


@pytest.fixture
async def test_user(db_session: AsyncSession):
    """Create a central user without two-factor authentication."""
    from sso_exchange.models.user import User

    user = User(
        name="Alice Patient",
        email="alice@example.com",
        password_hash=hash_password(TEST_PASSWORD),
        email_verified_at=utc_now(),
        two_factor_enabled=False,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)

    return user


@pytest.fixture
async def two_factor_user(db_session: AsyncSession):
    """Create a central user with two-factor authentication enabled."""
    from sso_exchange.models.user import User

    user = User(
        name="Bob Secure",
        email="bob@example.com",
        password_hash=hash_password(TEST_PASSWORD),
        two_factor_enabled=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)

    return user


@pytest.fixture
async def test_tenant(db_session: AsyncSession):
    """Create an active tenant."""
    from sso_exchange.models.user import Tenant

    tenant = Tenant(name="Acme Clinic", domain=TENANT_HOST, is_active=True)
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)

    return tenant


@pytest.fixture
async def other_tenant(db_session: AsyncSession):
    """Create a second active tenant."""
    from sso_exchange.models.user import Tenant

    tenant = Tenant(name="Beta Clinic", domain=OTHER_TENANT_HOST, is_active=True)
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)

    return tenant


@pytest.fixture
async def membership(db_session: AsyncSession, test_user, two_factor_user, test_tenant, other_tenant):
    """Both users belong to both tenants."""
    from sso_exchange.models.user import TenantMembership

    for tenant in (test_tenant, other_tenant):
        for user in (test_user, two_factor_user):
            db_session.add(TenantMembership(tenant_id=tenant.id, user_id=user.id))
    await db_session.commit()


@pytest.fixture
async def patient_record(db_session: AsyncSession, test_user):
    """Give test_user a central patient record."""
    from sso_exchange.models.user import Patient

    patient = Patient(user_id=test_user.id)
    db_session.add(patient)
    await db_session.commit()

    return patient


@pytest.fixture
def central_session(test_user) -> ServerSession:
    return make_central_session(test_user)


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client on the central domain with the test database."""

    async def override_get_db():
        yield db_session

    # Override dependencies
    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url=f"http://{CENTRAL_HOST}") as ac:
        yield ac

    # Clear overrides after test
    app.dependency_overrides.clear()
