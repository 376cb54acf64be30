"""Registry stores holding the set of registered endpoints.

Every store exposes the same async interface with atomic add/remove/list
operations. Atomicity comes from the backing store itself:

- Redis: ``SADD`` / ``SREM`` / ``SMEMBERS`` on a single set key
- SQL: a unique constraint plus single-statement inserts and deletes
- Memory: a set guarded by an ``asyncio.Lock`` (single process only)

Store failures are raised as :class:`StoreUnavailable` so callers never report
success for a mutation that was not persisted.
"""

from __future__ import annotations

import abc
import asyncio
import json
import logging
from collections.abc import Callable
from typing import TypeVar

import redis
import redis.asyncio as aioredis
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chat_bridge.core.errors import StoreUnavailable
from chat_bridge.core.settings import settings
from chat_bridge.db.session import SessionLocal, create_tables
from chat_bridge.models import Endpoint
from chat_bridge.models.registry_entry import InstallationRoute, RegistryEntry

T = TypeVar("T")

# Configure logger for this module
logger = logging.getLogger(__name__)


class RegistryStore(abc.ABC):
    """Async interface shared by all registry backends."""

    backend_name: str = "abstract"

    @abc.abstractmethod
    async def ping(self) -> None:
        """Raise StoreUnavailable if the store cannot be reached."""

    @abc.abstractmethod
    async def add(self, endpoint: Endpoint) -> bool:
        """Add an endpoint; return True if it was not registered before."""

    @abc.abstractmethod
    async def remove(self, endpoint: Endpoint) -> bool:
        """Remove an endpoint; return True if it was registered."""

    @abc.abstractmethod
    async def members(self) -> frozenset[Endpoint]:
        """Return a snapshot of every registered endpoint."""

    @abc.abstractmethod
    async def set_route(self, installation_id: str, deliver_url: str) -> None:
        """Remember where deliveries for an installation should be sent."""

    @abc.abstractmethod
    async def routes(self) -> dict[str, str]:
        """Return the installation -> delivery URL map."""

    async def contains(self, endpoint: Endpoint) -> bool:
        return endpoint in await self.members()

    async def size(self) -> int:
        return len(await self.members())

    async def close(self) -> None:
        """Release store resources."""


class InMemoryRegistry(RegistryStore):
    """Process-local registry, used for tests and single-instance deployments."""

    backend_name = "memory"

    def __init__(self) -> None:
        self._endpoints: set[Endpoint] = set()
        self._routes: dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def ping(self) -> None:
        return None

    async def add(self, endpoint: Endpoint) -> bool:
        async with self._lock:
            if endpoint in self._endpoints:
                return False
            self._endpoints.add(endpoint)
            return True

    async def remove(self, endpoint: Endpoint) -> bool:
        async with self._lock:
            if endpoint not in self._endpoints:
                return False
            self._endpoints.discard(endpoint)
            return True

    async def members(self) -> frozenset[Endpoint]:
        async with self._lock:
            return frozenset(self._endpoints)

    async def set_route(self, installation_id: str, deliver_url: str) -> None:
        async with self._lock:
            self._routes[installation_id] = deliver_url

    async def routes(self) -> dict[str, str]:
        async with self._lock:
            return dict(self._routes)


class RedisRegistry(RegistryStore):
    """Registry kept in a Redis set shared by every hub process."""

    backend_name = "redis"

    def __init__(
        self,
        client: aioredis.Redis | None = None,
        *,
        registry_key: str | None = None,
        routes_key: str | None = None,
    ) -> None:
        self._redis = client or aioredis.from_url(settings.redis_url)
        self.registry_key = registry_key or settings.registry_key
        self.routes_key = routes_key or settings.routes_key

    async def ping(self) -> None:
        try:
            await self._redis.ping()
        except (redis.RedisError, OSError) as exc:
            raise StoreUnavailable(f"Redis registry unreachable: {exc}") from exc

    async def add(self, endpoint: Endpoint) -> bool:
        try:
            added = await self._redis.sadd(self.registry_key, endpoint.to_key())
        except (redis.RedisError, OSError) as exc:
            raise StoreUnavailable(f"Failed to add {endpoint}: {exc}") from exc
        return bool(added)

    async def remove(self, endpoint: Endpoint) -> bool:
        try:
            removed = await self._redis.srem(self.registry_key, endpoint.to_key())
        except (redis.RedisError, OSError) as exc:
            raise StoreUnavailable(f"Failed to remove {endpoint}: {exc}") from exc
        return bool(removed)

    async def members(self) -> frozenset[Endpoint]:
        try:
            raw_members = await self._redis.smembers(self.registry_key)
        except (redis.RedisError, OSError) as exc:
            raise StoreUnavailable(f"Failed to list registry: {exc}") from exc

        endpoints: set[Endpoint] = set()
        for raw in raw_members:
            try:
                endpoints.add(Endpoint.from_key(raw))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping malformed registry member %r: %s", raw, exc)
        return frozenset(endpoints)

    async def contains(self, endpoint: Endpoint) -> bool:
        try:
            return bool(await self._redis.sismember(self.registry_key, endpoint.to_key()))
        except (redis.RedisError, OSError) as exc:
            raise StoreUnavailable(f"Failed to query registry: {exc}") from exc

    async def size(self) -> int:
        try:
            return int(await self._redis.scard(self.registry_key))
        except (redis.RedisError, OSError) as exc:
            raise StoreUnavailable(f"Failed to count registry: {exc}") from exc

    async def set_route(self, installation_id: str, deliver_url: str) -> None:
        try:
            await self._redis.hset(self.routes_key, installation_id, deliver_url)
        except (redis.RedisError, OSError) as exc:
            raise StoreUnavailable(f"Failed to store route for {installation_id}: {exc}") from exc

    async def routes(self) -> dict[str, str]:
        try:
            raw = await self._redis.hgetall(self.routes_key)
        except (redis.RedisError, OSError) as exc:
            raise StoreUnavailable(f"Failed to read routes: {exc}") from exc
        return {_text(key): _text(value) for key, value in raw.items()}

    async def close(self) -> None:
        await self._redis.aclose()


def _text(value: str | bytes) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class SqlRegistry(RegistryStore):
    """Registry kept in a relational table through SQLAlchemy.

    Blocking session work runs in a worker thread so the event loop keeps
    serving other requests.
    """

    backend_name = "sql"

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        if session_factory is None:
            create_tables()
            session_factory = SessionLocal
        self._session_factory = session_factory

    async def _run(self, operation: Callable[[Session], T], action: str) -> T:
        def _work() -> T:
            with self._session_factory() as db:
                return operation(db)

        try:
            return await asyncio.to_thread(_work)
        except SQLAlchemyError as exc:
            raise StoreUnavailable(f"SQL registry failed to {action}: {exc}") from exc

    async def ping(self) -> None:
        await self._run(lambda db: db.execute(select(1)).scalar(), "ping")

    async def add(self, endpoint: Endpoint) -> bool:
        def _add(db: Session) -> bool:
            db.add(
                RegistryEntry(
                    installation_id=endpoint.installation_id,
                    channel_id=endpoint.channel_id,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                return False
            return True

        return await self._run(_add, "add endpoint")

    async def remove(self, endpoint: Endpoint) -> bool:
        def _remove(db: Session) -> bool:
            result = db.execute(
                delete(RegistryEntry).where(
                    RegistryEntry.installation_id == endpoint.installation_id,
                    RegistryEntry.channel_id == endpoint.channel_id,
                )
            )
            db.commit()
            return bool(result.rowcount)

        return await self._run(_remove, "remove endpoint")

    async def members(self) -> frozenset[Endpoint]:
        def _members(db: Session) -> frozenset[Endpoint]:
            rows = db.execute(
                select(RegistryEntry.installation_id, RegistryEntry.channel_id)
            ).all()
            return frozenset(Endpoint(installation_id=row[0], channel_id=row[1]) for row in rows)

        return await self._run(_members, "list endpoints")

    async def set_route(self, installation_id: str, deliver_url: str) -> None:
        def _set_route(db: Session) -> None:
            db.merge(InstallationRoute(installation_id=installation_id, deliver_url=deliver_url))
            try:
                db.commit()
            except IntegrityError:
                # Another hub inserted the same installation first.
                db.rollback()
                route = db.get(InstallationRoute, installation_id)
                if route is not None:
                    route.deliver_url = deliver_url
                    db.commit()

        await self._run(_set_route, "store route")

    async def routes(self) -> dict[str, str]:
        def _routes(db: Session) -> dict[str, str]:
            rows = db.execute(
                select(InstallationRoute.installation_id, InstallationRoute.deliver_url)
            ).all()
            return {row[0]: row[1] for row in rows}

        return await self._run(_routes, "read routes")


def build_registry(backend: str | None = None) -> RegistryStore:
    """Create the registry store selected by configuration."""

    name = (backend or settings.registry_backend).lower()
    if name == "redis":
        return RedisRegistry()
    if name == "sql":
        return SqlRegistry()
    if name == "memory":
        return InMemoryRegistry()
    raise ValueError(f"Unknown registry backend: {name!r}")


class _RegistrySingleton:
    """Singleton wrapper for the configured registry store."""

    _instance: RegistryStore | None = None

    @classmethod
    def get_instance(cls) -> RegistryStore:
        """Get or create the singleton registry store."""
        if cls._instance is None:
            cls._instance = build_registry()
        return cls._instance

    @classmethod
    def reset(cls, instance: RegistryStore | None = None) -> None:
        cls._instance = instance


def get_registry() -> RegistryStore:
    """Return the process-wide registry store."""
    return _RegistrySingleton.get_instance()


def set_registry(instance: RegistryStore | None) -> None:
    """Replace the process-wide registry store (``None`` rebuilds it lazily)."""
    _RegistrySingleton.reset(instance)


def describe_endpoint(endpoint: Endpoint) -> str:
    """Return the JSON form used in logs and admin output."""
    return json.dumps(
        {"installationId": endpoint.installation_id, "channelId": endpoint.channel_id}
    )
