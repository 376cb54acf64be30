"""Tests for the registry stores."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
import redis
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from chat_bridge.core.errors import StoreUnavailable
from chat_bridge.db.session import Base
from chat_bridge.models import Endpoint
from chat_bridge.services.registry import (
    InMemoryRegistry,
    RedisRegistry,
    RegistryStore,
    SqlRegistry,
    build_registry,
)

A = Endpoint(installation_id="guildA", channel_id="chanA")
B = Endpoint(installation_id="guildB", channel_id="chanA")


@pytest.fixture()
def sql_registry() -> Iterator[SqlRegistry]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        yield SqlRegistry(session_factory=factory)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest, sql_registry: SqlRegistry) -> RegistryStore:
    if request.param == "memory":
        return InMemoryRegistry()
    return sql_registry


@pytest.mark.asyncio
async def test_join_twice_keeps_single_entry(store: RegistryStore) -> None:
    assert await store.add(Endpoint("g1", "c1")) is True
    assert await store.add(Endpoint("g1", "c1")) is False

    assert await store.size() == 1
    assert await store.members() == frozenset({Endpoint("g1", "c1")})


@pytest.mark.asyncio
async def test_leave_on_empty_registry_is_not_an_error(store: RegistryStore) -> None:
    assert await store.remove(Endpoint("g9", "c9")) is False
    assert await store.size() == 0


@pytest.mark.asyncio
async def test_leave_removes_only_that_endpoint(store: RegistryStore) -> None:
    await store.add(A)
    await store.add(B)

    assert await store.remove(A) is True
    assert await store.members() == frozenset({B})
    assert await store.contains(A) is False


@pytest.mark.asyncio
async def test_routes_are_overwritten_per_installation(store: RegistryStore) -> None:
    await store.set_route("guildA", "http://old")
    await store.set_route("guildA", "http://new")
    await store.set_route("guildB", "http://b")

    assert await store.routes() == {"guildA": "http://new", "guildB": "http://b"}


@pytest.mark.asyncio
async def test_memory_registry_concurrent_joins_collapse() -> None:
    store = InMemoryRegistry()

    results = await asyncio.gather(*(store.add(A) for _ in range(20)))

    assert results.count(True) == 1
    assert await store.size() == 1


def test_endpoint_equality_is_structural() -> None:
    assert Endpoint("g1", "c1") == Endpoint("g1", "c1")
    assert len({Endpoint("g1", "c1"), Endpoint("g1", "c1"), Endpoint("g1", "c2")}) == 2
    assert Endpoint.from_key(Endpoint("g1", "c1").to_key()) == Endpoint("g1", "c1")
    assert Endpoint("g1", "c1").to_key() == '{"channelId":"c1","installationId":"g1"}'


@pytest.fixture()
def redis_client() -> AsyncMock:
    return AsyncMock()


@pytest.mark.asyncio
async def test_redis_registry_uses_set_primitives(redis_client: AsyncMock) -> None:
    redis_client.sadd.return_value = 1
    store = RedisRegistry(redis_client, registry_key="test:channels", routes_key="test:routes")

    assert await store.add(A) is True
    redis_client.sadd.assert_awaited_once_with("test:channels", A.to_key())

    redis_client.srem.return_value = 0
    assert await store.remove(B) is False
    redis_client.srem.assert_awaited_once_with("test:channels", B.to_key())


@pytest.mark.asyncio
async def test_redis_registry_parses_members_and_skips_garbage(redis_client: AsyncMock) -> None:
    redis_client.smembers.return_value = {A.to_key().encode(), b"not-json", B.to_key().encode()}
    store = RedisRegistry(redis_client, registry_key="k", routes_key="r")

    assert await store.members() == frozenset({A, B})


@pytest.mark.asyncio
async def test_redis_registry_decodes_routes(redis_client: AsyncMock) -> None:
    redis_client.hgetall.return_value = {b"guildA": b"http://a"}
    store = RedisRegistry(redis_client, registry_key="k", routes_key="r")

    assert await store.routes() == {"guildA": "http://a"}


@pytest.mark.asyncio
async def test_redis_failures_raise_store_unavailable(redis_client: AsyncMock) -> None:
    redis_client.sadd.side_effect = redis.ConnectionError("connection refused")
    redis_client.smembers.side_effect = redis.TimeoutError("timed out")
    redis_client.ping.side_effect = redis.ConnectionError("connection refused")
    store = RedisRegistry(redis_client, registry_key="k", routes_key="r")

    with pytest.raises(StoreUnavailable):
        await store.add(A)
    with pytest.raises(StoreUnavailable):
        await store.members()
    with pytest.raises(StoreUnavailable):
        await store.ping()


@pytest.mark.asyncio
async def test_sql_failures_raise_store_unavailable(mocker) -> None:
    from sqlalchemy.exc import OperationalError

    session = mocker.MagicMock(spec=Session)
    session.__enter__.return_value = session
    session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))
    store = SqlRegistry(session_factory=lambda: session)

    with pytest.raises(StoreUnavailable):
        await store.members()


def test_build_registry_selects_backend() -> None:
    assert isinstance(build_registry("memory"), InMemoryRegistry)
    with pytest.raises(ValueError):
        build_registry("etcd")
