"""
Tests for the SSO code store backends.
Covers single use (including concurrent consumers), expiry, collisions and
the switch record namespace.
"""
import asyncio
import json
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sso_exchange.core.cache import RedisCache
from sso_exchange.core.exceptions import StoreError
from sso_exchange.models.base import Base
from sso_exchange.schemas.sso import SSOCode, TenantSessionSwitch
from sso_exchange.services.code_store import CacheCodeStore, DatabaseCodeStore
from sso_exchange.utils.datetime_utils import expires_after, utc_now
from sso_exchange.utils.helpers import generate_opaque_token


def make_code(expires_in: int = 120, **overrides) -> SSOCode:
    issued_at = utc_now()
    data = {
        "code": generate_opaque_token(),
        "subject_user_id": "user-1",
        "target_tenant_id": "tenant-1",
        "redirect_path": "/dashboard",
        "issuing_session_id": "session-1",
        "two_factor_passed": True,
        "issued_at": issued_at,
        "expires_at": issued_at + timedelta(seconds=expires_in),
    }
    data.update(overrides)
    return SSOCode(**data)


def make_switch(expires_in: int = 120) -> TenantSessionSwitch:
    issued_at = utc_now()
    return TenantSessionSwitch(
        session_key=generate_opaque_token(),
        token=generate_opaque_token(),
        subject_user_id="user-1",
        target_tenant_id="tenant-1",
        redirect_path="/dashboard",
        two_factor_passed=False,
        issued_at=issued_at,
        expires_at=expires_after(expires_in, issued_at),
    )


class TestCacheCodeStore:
    """Test the cache-backed store over the in-process cache."""

    async def test_consume_returns_record_once(self, code_store):
        """Test a code can be consumed exactly once."""
        record = make_code(document_ids=["doc-1", "doc-2"])
        await code_store.put(record, 120)

        first = await code_store.consume(record.code)
        second = await code_store.consume(record.code)

        assert first is not None
        assert first.consumed is True
        assert first.subject_user_id == "user-1"
        assert first.document_ids == ["doc-1", "doc-2"]
        assert second is None

    async def test_concurrent_consumers_see_one_success(self, code_store):
        """Test racing consumers on the same code get exactly one record."""
        record = make_code()
        await code_store.put(record, 120)

        results = await asyncio.gather(*(code_store.consume(record.code) for _ in range(25)))

        assert sum(1 for result in results if result is not None) == 1

    async def test_expired_record_is_rejected(self, code_store):
        """Test a record past its own expiry is not returned even if still cached."""
        record = make_code(expires_in=-1)
        await code_store.put(record, 60)

        assert await code_store.consume(record.code) is None

    async def test_unknown_code(self, code_store):
        """Test consuming a code that was never issued."""
        assert await code_store.consume("never-issued-code-value") is None

    async def test_put_refuses_collision(self, code_store):
        """Test an existing code is never overwritten."""
        record = make_code()
        await code_store.put(record, 120)

        with pytest.raises(StoreError):
            await code_store.put(record.model_copy(update={"subject_user_id": "attacker"}), 120)

        consumed = await code_store.consume(record.code)
        assert consumed.subject_user_id == "user-1"

    async def test_delete(self, code_store):
        """Test deleting a pending code."""
        record = make_code()
        await code_store.put(record, 120)

        assert await code_store.delete(record.code) is True
        assert await code_store.consume(record.code) is None

    async def test_switch_namespace_is_separate(self, code_store):
        """Test switch records live beside codes and are consumed once."""
        switch = make_switch()
        await code_store.put_switch(switch, 120)

        assert await code_store.consume(switch.session_key) is None
        assert await code_store.consume_switch(switch.session_key) == switch
        assert await code_store.consume_switch(switch.session_key) is None


class TestRedisCodeStore:
    """Test the cache-backed store issues atomic Redis commands."""

    @pytest.fixture
    def redis_cache(self, mocker):
        cache = RedisCache("redis://localhost:6379/0")
        cache.redis = mocker.AsyncMock()
        return cache

    async def test_put_uses_set_nx_with_expiry(self, redis_cache):
        """Test put is a single SET NX EX."""
        redis_cache.redis.set.return_value = True
        record = make_code()

        await CacheCodeStore(redis_cache).put(record, 120)

        redis_cache.redis.set.assert_awaited_once()
        args, kwargs = redis_cache.redis.set.call_args
        assert args[0] == f"sso:code:{record.code}"
        assert kwargs["nx"] is True
        assert kwargs["ex"] == 120

    async def test_put_collision_raises(self, redis_cache):
        """Test SET NX refusing the write is a store error."""
        redis_cache.redis.set.return_value = None

        with pytest.raises(StoreError):
            await CacheCodeStore(redis_cache).put(make_code(), 120)

    async def test_consume_uses_getdel(self, redis_cache):
        """Test consume is a single GETDEL, never GET followed by DEL."""
        record = make_code()
        redis_cache.redis.getdel.return_value = json.dumps(record.model_dump(mode="json"))

        result = await CacheCodeStore(redis_cache).consume(record.code)

        redis_cache.redis.getdel.assert_awaited_once_with(f"sso:code:{record.code}")
        redis_cache.redis.get.assert_not_called()
        redis_cache.redis.delete.assert_not_called()
        assert result.consumed is True
        assert result.code == record.code

    async def test_consume_miss(self, redis_cache):
        """Test a GETDEL miss is a store miss."""
        redis_cache.redis.getdel.return_value = None

        assert await CacheCodeStore(redis_cache).consume("missing-code-value") is None

    async def test_backend_failure_is_store_error(self, redis_cache):
        """Test Redis errors surface as StoreError, never as a miss."""
        redis_cache.redis.getdel.side_effect = RedisConnectionError("connection refused")

        with pytest.raises(StoreError):
            await CacheCodeStore(redis_cache).consume("any-code-value")

    async def test_disconnected_cache_is_store_error(self):
        """Test an unconnected client refuses to answer."""
        store = CacheCodeStore(RedisCache("redis://localhost:6379/0"))

        with pytest.raises(StoreError):
            await store.consume("any-code-value")


class TestDatabaseCodeStore:
    """Test the database-backed store."""

    @pytest.fixture
    async def db_store(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'codes.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        yield DatabaseCodeStore(factory)

        await engine.dispose()

    async def test_consume_returns_record_once(self, db_store):
        """Test a code row is deleted by the consume that returns it."""
        record = make_code(document_ids=["doc-9"])
        await db_store.put(record, 120)

        first = await db_store.consume(record.code)
        second = await db_store.consume(record.code)

        assert first is not None
        assert first.consumed is True
        assert first.redirect_path == "/dashboard"
        assert first.issuing_session_id == "session-1"
        assert first.document_ids == ["doc-9"]
        assert first.expires_at.tzinfo is not None
        assert second is None

    async def test_expired_row_is_not_consumed(self, db_store):
        """Test the expiry condition is part of the delete."""
        record = make_code(expires_in=-5)
        await db_store.put(record, 120)

        assert await db_store.consume(record.code) is None
        assert await db_store.purge_expired() == 1

    async def test_put_refuses_collision(self, db_store):
        """Test duplicate codes are rejected by the primary key."""
        record = make_code()
        await db_store.put(record, 120)

        with pytest.raises(StoreError):
            await db_store.put(record, 120)

    async def test_delete(self, db_store):
        """Test deleting a pending code."""
        record = make_code()
        await db_store.put(record, 120)

        assert await db_store.delete(record.code) is True
        assert await db_store.delete(record.code) is False

    async def test_concurrent_consumers_see_one_success(self, db_store):
        """Test racing consumes of one row yield exactly one record."""
        record = make_code()
        await db_store.put(record, 120)

        results = await asyncio.gather(*(db_store.consume(record.code) for _ in range(10)))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].code == record.code

    async def test_switch_consume_once(self, db_store):
        """Test switch records are consumed once."""
        switch = make_switch()
        await db_store.put_switch(switch, 120)

        consumed = await db_store.consume_switch(switch.session_key)

        assert consumed is not None
        assert consumed.token == switch.token
        assert await db_store.consume_switch(switch.session_key) is None
        assert await db_store.delete_switch(switch.session_key) is False
