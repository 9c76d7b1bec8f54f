"""
Code store.

Holds pending SSO codes and legacy tenant switches where both the central
and the tenant processes can reach them. ``consume`` is the only
serialization point of the whole handoff: it must read and invalidate a
record in one atomic step of the backing store, so that concurrent callers
racing on the same code see at most one success.

Backends:
    CacheCodeStore     - Redis SET NX EX / GETDEL (or MemoryCache in tests)
    DatabaseCodeStore  - conditional DELETE ... RETURNING in a short transaction
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sso_exchange.config import settings
from sso_exchange.core.cache import MemoryCache, RedisCache, get_cache
from sso_exchange.core.exceptions import StoreError
from sso_exchange.models.sso_code import SSOCodeRecord, TenantSessionSwitchRecord
from sso_exchange.schemas.sso import SSOCode, TenantSessionSwitch
from sso_exchange.utils.datetime_utils import ensure_utc, utc_now
from sso_exchange.utils.helpers import code_fingerprint, generate_cache_key

logger = logging.getLogger(__name__)


class CodeStore(ABC):
    """Atomic consume-once storage for SSO codes and tenant switches."""

    @abstractmethod
    async def put(self, record: SSOCode, ttl: int) -> None:
        """
        Store a new code record with expiry.

        Raises:
            StoreError: On backend failure or if the code already exists
        """

    @abstractmethod
    async def consume(self, code: str) -> Optional[SSOCode]:
        """
        Atomically fetch and invalidate a code.

        Returns:
            The record marked consumed, or None if absent, expired or already used

        Raises:
            StoreError: On backend failure
        """

    @abstractmethod
    async def delete(self, code: str) -> bool:
        """Remove a code without consuming it."""

    @abstractmethod
    async def put_switch(self, record: TenantSessionSwitch, ttl: int) -> None:
        """Store a tenant switch record with expiry."""

    @abstractmethod
    async def consume_switch(self, session_key: str) -> Optional[TenantSessionSwitch]:
        """Atomically fetch and invalidate a tenant switch record."""

    @abstractmethod
    async def delete_switch(self, session_key: str) -> bool:
        """Remove a tenant switch record."""

    async def purge_expired(self) -> int:
        """Remove expired records. Returns the number removed."""
        return 0


class CacheCodeStore(CodeStore):
    """Code store on the shared cache; expiry is the cache TTL."""

    def __init__(self, cache: RedisCache | MemoryCache):
        self.cache = cache

    @staticmethod
    def _code_key(code: str) -> str:
        return generate_cache_key("sso", "code", code)

    @staticmethod
    def _switch_key(session_key: str) -> str:
        return generate_cache_key("sso", "switch", session_key)

    async def put(self, record: SSOCode, ttl: int) -> None:
        written = await self.cache.set_json(
            self._code_key(record.code), record.model_dump(mode="json"), ttl=ttl, nx=True
        )
        if not written:
            raise StoreError("SSO code collision")

    async def consume(self, code: str) -> Optional[SSOCode]:
        data = await self.cache.getdel_json(self._code_key(code))
        if data is None:
            return None
        record = SSOCode.model_validate(data)
        # Cache TTLs are whole seconds; the record's own expiry is authoritative
        if record.is_expired():
            logger.info(f"Expired SSO code discarded fp={code_fingerprint(code)}")
            return None
        return record.model_copy(update={"consumed": True})

    async def delete(self, code: str) -> bool:
        return await self.cache.delete(self._code_key(code))

    async def put_switch(self, record: TenantSessionSwitch, ttl: int) -> None:
        written = await self.cache.set_json(
            self._switch_key(record.session_key), record.model_dump(mode="json"), ttl=ttl, nx=True
        )
        if not written:
            raise StoreError("Tenant switch key collision")

    async def consume_switch(self, session_key: str) -> Optional[TenantSessionSwitch]:
        data = await self.cache.getdel_json(self._switch_key(session_key))
        if data is None:
            return None
        record = TenantSessionSwitch.model_validate(data)
        if record.is_expired():
            return None
        return record

    async def delete_switch(self, session_key: str) -> bool:
        return await self.cache.delete(self._switch_key(session_key))


class DatabaseCodeStore(CodeStore):
    """
    Code store on the central database.

    Each operation runs in its own short transaction, independent of the
    request's session, so a consumed code stays consumed even if the request
    later fails.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def put(self, record: SSOCode, ttl: int) -> None:
        row = SSOCodeRecord(
            code=record.code,
            subject_user_id=record.subject_user_id,
            target_tenant_id=record.target_tenant_id,
            redirect_path=record.redirect_path,
            issuing_session_id=record.issuing_session_id,
            two_factor_passed=record.two_factor_passed,
            document_ids=record.document_ids,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError as e:
            raise StoreError("SSO code collision") from e
        except SQLAlchemyError as e:
            raise StoreError(f"Code store write failed: {e}") from e

    async def consume(self, code: str) -> Optional[SSOCode]:
        table = SSOCodeRecord.__table__
        stmt = (
            table.delete()
            .where(table.c.code == code, table.c.expires_at > utc_now())
            .returning(*table.c)
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    row = result.mappings().first()
        except SQLAlchemyError as e:
            raise StoreError(f"Code store consume failed: {e}") from e

        if row is None:
            return None

        return SSOCode(
            **{k: row[k] for k in row.keys() if k not in ("issued_at", "expires_at")},
            issued_at=ensure_utc(row["issued_at"]),
            expires_at=ensure_utc(row["expires_at"]),
            consumed=True,
        )

    async def delete(self, code: str) -> bool:
        table = SSOCodeRecord.__table__
        return await self._delete_where(table.delete().where(table.c.code == code))

    async def put_switch(self, record: TenantSessionSwitch, ttl: int) -> None:
        row = TenantSessionSwitchRecord(**record.model_dump())
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(row)
        except IntegrityError as e:
            raise StoreError("Tenant switch key collision") from e
        except SQLAlchemyError as e:
            raise StoreError(f"Code store write failed: {e}") from e

    async def consume_switch(self, session_key: str) -> Optional[TenantSessionSwitch]:
        table = TenantSessionSwitchRecord.__table__
        stmt = (
            table.delete()
            .where(table.c.session_key == session_key, table.c.expires_at > utc_now())
            .returning(*table.c)
        )
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    row = result.mappings().first()
        except SQLAlchemyError as e:
            raise StoreError(f"Code store consume failed: {e}") from e

        if row is None:
            return None

        return TenantSessionSwitch(
            **{k: row[k] for k in row.keys() if k not in ("issued_at", "expires_at")},
            issued_at=ensure_utc(row["issued_at"]),
            expires_at=ensure_utc(row["expires_at"]),
        )

    async def delete_switch(self, session_key: str) -> bool:
        table = TenantSessionSwitchRecord.__table__
        return await self._delete_where(table.delete().where(table.c.session_key == session_key))

    async def purge_expired(self) -> int:
        now = utc_now()
        codes = SSOCodeRecord.__table__
        switches = TenantSessionSwitchRecord.__table__
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    removed = (await session.execute(codes.delete().where(codes.c.expires_at <= now))).rowcount
                    removed += (await session.execute(switches.delete().where(switches.c.expires_at <= now))).rowcount
        except SQLAlchemyError as e:
            raise StoreError(f"Code store purge failed: {e}") from e

        if removed:
            logger.info(f"Purged {removed} expired code store records")
        return removed

    async def _delete_where(self, stmt) -> bool:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
        except SQLAlchemyError as e:
            raise StoreError(f"Code store delete failed: {e}") from e
        return result.rowcount > 0


def build_code_store() -> CodeStore:
    """Create the code store selected by settings."""
    if settings.code_store_backend == "database":
        from sso_exchange.core.database import AsyncSessionLocal
        return DatabaseCodeStore(AsyncSessionLocal)
    return CacheCodeStore(get_cache())
