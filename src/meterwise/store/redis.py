from datetime import timedelta
from typing import Any, Awaitable, Callable

import redis.asyncio as redis
from redis.exceptions import RedisError
import structlog

from meterwise.errors import CacheUnavailableError
from meterwise.lazy import AsyncOnce
from meterwise.serialization import Protector
from meterwise.store.base import CacheDatabase

logger = structlog.get_logger()

REDIS_CONNECTION_SECRET = "RedisCacheConnectionString"


class RedisCache:
    """
    RedisCache implements DistributedCache on top of Redis. Each
    CacheDatabase maps to its own logical Redis database, and every
    value is passed through a Protector before it leaves the process.

    The connection URL is resolved lazily (usually from the secret
    store) and the clients are created exactly once, even when many
    requests hit a cold process at the same time.
    """

    def __init__(
        self,
        resolve_url: "Callable[[], Awaitable[str]]",
        protector: "Protector",
        client_factory: "Callable[..., Any]" = redis.Redis.from_url,
    ) -> "None":
        self._resolve_url = resolve_url
        self._protector = protector
        self._client_factory = client_factory
        self._clients: "AsyncOnce[dict[CacheDatabase, Any]]" = AsyncOnce(self._connect)

    async def _connect(self) -> "dict[CacheDatabase, Any]":
        url = await self._resolve_url()
        if not url:
            raise CacheUnavailableError("no redis connection string configured")

        clients = {db: self._client_factory(url, db=int(db)) for db in CacheDatabase}
        try:
            await clients[CacheDatabase.AUTHENTICATION].ping()
        except RedisError as exc:
            logger.error("redis_connect_failed", error=str(exc))
            for client in clients.values():
                await client.aclose()
            raise CacheUnavailableError(f"cannot reach redis: {exc}") from exc

        logger.info("redis_connected", databases=[db.name for db in clients])
        return clients

    async def _client(self, database: "CacheDatabase") -> "Any":
        clients = await self._clients.get()
        return clients[database]

    async def get(self, database: "CacheDatabase", key: "str") -> "bytes | None":
        if not key:
            raise ValueError("key must not be empty")

        client = await self._client(database)
        try:
            value = await client.get(key)
        except RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

        if value is None:
            return None
        return self._protector.unprotect(value)

    async def set(
        self,
        database: "CacheDatabase",
        key: "str",
        value: "bytes",
        ttl: "timedelta | None" = None,
    ) -> "None":
        if not key:
            raise ValueError("key must not be empty")
        if value is None:
            raise ValueError("value must not be None")

        client = await self._client(database)
        try:
            await client.set(key, self._protector.protect(value), ex=ttl)
        except RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    async def delete(self, database: "CacheDatabase", key: "str | None" = None) -> "None":
        """
        deletes one key, or the whole namespace when no key is given.
        """
        if key is None:
            await self.clear(database)
            return

        client = await self._client(database)
        try:
            await client.delete(key)
        except RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    async def clear(self, database: "CacheDatabase") -> "None":
        client = await self._client(database)
        try:
            await client.flushdb()
        except RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc
        logger.info("cache_database_cleared", database=database.name)

    async def close(self) -> "None":
        clients = self._clients.reset()
        for client in (clients or {}).values():
            await client.aclose()
