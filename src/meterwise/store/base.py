from datetime import timedelta
from enum import IntEnum
from typing import Protocol


class CacheDatabase(IntEnum):
    """
    CacheDatabase names the independent namespaces of the
    distributed cache. The value is the logical database index.
    """

    AUTHENTICATION = 0
    DATA_STRUCTURES = 1


class DistributedCache(Protocol):
    """
    DistributedCache is a namespaced key/value store shared by all
    process instances. Values are opaque bytes.
    """

    async def get(self, database: "CacheDatabase", key: "str") -> "bytes | None": ...

    async def set(
        self,
        database: "CacheDatabase",
        key: "str",
        value: "bytes",
        ttl: "timedelta | None" = None,
    ) -> "None": ...

    async def delete(self, database: "CacheDatabase", key: "str | None" = None) -> "None": ...

    async def clear(self, database: "CacheDatabase") -> "None": ...


class SecretStore(Protocol):
    """
    SecretStore returns None for a secret that does not exist and
    raises SecretStoreError for every other failure.
    """

    async def get(self, name: "str") -> "str | None": ...

    async def set(self, name: "str", value: "str") -> "None": ...
