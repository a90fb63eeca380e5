import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import CollectorRegistry

from meterwise.metrics import Metrics
from meterwise.models import Credential
from meterwise.store.base import CacheDatabase


class FakeCache:
    """
    in-memory DistributedCache that records what was written.
    """

    def __init__(self) -> "None":
        self.data: "dict[CacheDatabase, dict[str, bytes]]" = {db: {} for db in CacheDatabase}
        self.ttls: "dict[tuple[CacheDatabase, str], timedelta | None]" = {}
        self.gets: "int" = 0

    async def get(self, database: "CacheDatabase", key: "str") -> "bytes | None":
        self.gets += 1
        return self.data[database].get(key)

    async def set(
        self,
        database: "CacheDatabase",
        key: "str",
        value: "bytes",
        ttl: "timedelta | None" = None,
    ) -> "None":
        self.data[database][key] = value
        self.ttls[(database, key)] = ttl

    async def delete(self, database: "CacheDatabase", key: "str | None" = None) -> "None":
        if key is None:
            self.data[database].clear()
        else:
            self.data[database].pop(key, None)

    async def clear(self, database: "CacheDatabase") -> "None":
        self.data[database].clear()


class FakeIdentityProvider:
    """
    identity provider that hands out numbered tokens. errors are
    raised, in order, before any token is issued.
    """

    def __init__(
        self,
        lifetime: "timedelta" = timedelta(hours=1),
        delay: "float" = 0.0,
        errors: "list[Exception] | None" = None,
    ) -> "None":
        self.lifetime = lifetime
        self.delay = delay
        self.errors = list(errors or [])
        self.calls: "list[tuple[str, str, str, str]]" = []

    async def _issue(self, flow: "str", authority: "str", resource: "str", assertion: "str") -> "Credential":
        self.calls.append((flow, authority, resource, assertion))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        return Credential(
            access_token=f"token-{len(self.calls)}",
            expires_at=datetime.now(timezone.utc) + self.lifetime,
        )

    async def acquire_app_only(self, authority: "str", resource: "str") -> "Credential":
        return await self._issue("app_only", authority, resource, "")

    async def acquire_user_assertion(
        self,
        authority: "str",
        resource: "str",
        assertion: "str",
    ) -> "Credential":
        return await self._issue("user_assertion", authority, resource, assertion)


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def metrics(registry: "CollectorRegistry") -> "Metrics":
    return Metrics(registry=registry)


@pytest.fixture()
def cache() -> "FakeCache":
    return FakeCache()


@pytest.fixture()
def identity() -> "FakeIdentityProvider":
    return FakeIdentityProvider()


@pytest.fixture()
def identity_factory() -> "type[FakeIdentityProvider]":
    return FakeIdentityProvider
