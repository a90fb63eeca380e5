from datetime import timedelta
from decimal import InvalidOperation
from typing import Awaitable, Callable

import structlog

from meterwise.metrics import Metrics
from meterwise.models import RateTable
from meterwise.serialization import RATE_CARD_KEY, decode_rate_table, encode_rate_table
from meterwise.store.base import CacheDatabase, DistributedCache

logger = structlog.get_logger()

RATE_TABLE_TTL = timedelta(days=1)


class RateTableCache:
    """
    RateTableCache serves the rate table from the DATA_STRUCTURES
    namespace of the distributed cache and downloads it again when
    the cached copy is gone. The whole table is replaced on refetch.

    Two processes missing at the same time may both download the
    table; the second write simply replaces the first.
    """

    def __init__(
        self,
        cache: "DistributedCache",
        fetch: "Callable[[], Awaitable[RateTable]]",
        metrics: "Metrics",
        ttl: "timedelta" = RATE_TABLE_TTL,
    ) -> "None":
        self._cache = cache
        self._fetch = fetch
        self._metrics = metrics
        self._ttl = ttl

    async def get_current(self) -> "RateTable":
        data = await self._cache.get(CacheDatabase.DATA_STRUCTURES, RATE_CARD_KEY)
        if data is not None:
            try:
                return decode_rate_table(data)
            except (ValueError, KeyError, InvalidOperation) as exc:
                logger.warning("rate_table_unreadable", error=str(exc))

        table = await self._fetch()
        self._metrics.rate_table_fetched()
        await self._cache.set(
            CacheDatabase.DATA_STRUCTURES,
            RATE_CARD_KEY,
            encode_rate_table(table),
            ttl=self._ttl,
        )
        logger.info(
            "rate_table_fetched",
            meter_count=len(table.meters),
            ttl_seconds=int(self._ttl.total_seconds()),
        )
        return table
