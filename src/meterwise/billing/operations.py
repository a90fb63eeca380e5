import asyncio
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

import httpx
import structlog

from meterwise.auth.cache import CredentialCache
from meterwise.auth.principal import current_principal
from meterwise.billing.client import PARTNER_CENTER_ENDPOINT, BillingClient
from meterwise.metrics import Metrics
from meterwise.models import Credential, Customer, Subscription, UsageResult
from meterwise.rating.engine import UsageRatingEngine
from meterwise.rating.ratetable import RateTableCache
from meterwise.serialization import PARTNER_CENTER_APP_ONLY_KEY
from meterwise.store.base import DistributedCache

logger = structlog.get_logger()


class PartnerOperations:
    """
    PartnerOperations is the entry point for everything that reads
    from the billing API: customers, subscriptions and rated usage.

    All calls run with the partner's app-only credential. The
    credential handle is shared by every caller in the process and is
    refreshed under a lock when it is missing or expired, so only one
    task goes to the credential cache at a time.

    Callers signed in from a customer tenant only ever see their own
    customer; callers from the partner tenant (or background jobs with
    no principal) see whichever customer they ask for.
    """

    def __init__(
        self,
        credentials: "CredentialCache",
        cache: "DistributedCache",
        metrics: "Metrics",
        partner_tenant_id: "str",
        endpoint: "str" = PARTNER_CENTER_ENDPOINT,
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        if not partner_tenant_id:
            raise ValueError("partner_tenant_id must not be empty")

        self._credentials = credentials
        self._metrics = metrics
        self._partner_tenant_id = partner_tenant_id
        self._resource = endpoint
        self._app_handle: "Credential | None" = None
        self._app_lock: "asyncio.Lock" = asyncio.Lock()

        self._billing: "BillingClient" = BillingClient(
            self._app_credential, endpoint, client=client
        )
        self._rate_tables: "RateTableCache" = RateTableCache(
            cache, self._billing.get_rate_card, metrics
        )
        self._engine: "UsageRatingEngine" = UsageRatingEngine(metrics)

    async def close(self) -> "None":
        await self._billing.close()

    async def _app_credential(self) -> "Credential":
        handle = self._app_handle
        if handle is not None and not handle.is_expired():
            return handle

        async with self._app_lock:
            # refresh when missing OR expired; waiters reuse the new handle
            if self._app_handle is None or self._app_handle.is_expired():
                self._app_handle = await self._credentials.acquire(
                    self._resource, PARTNER_CENTER_APP_ONLY_KEY
                )
                logger.debug("partner_app_credential_refreshed")
            return self._app_handle

    def _scoped_customer(self, customer_id: "str") -> "str":
        principal = current_principal()
        if principal is None or principal.customer_id == self._partner_tenant_id:
            return customer_id
        return principal.customer_id

    def _is_partner_scope(self) -> "bool":
        principal = current_principal()
        return principal is None or principal.customer_id == self._partner_tenant_id

    @contextmanager
    def _operation(self, name: "str") -> "Iterator[BillingClient]":
        correlation_id = str(uuid.uuid4())
        started = time.monotonic()
        with structlog.contextvars.bound_contextvars(
            operation=name, correlation_id=correlation_id
        ):
            yield self._billing.with_correlation(correlation_id)
            elapsed = time.monotonic() - started
            self._metrics.observe_operation(name, elapsed)
            logger.info("operation_done", elapsed_ms=int(elapsed * 1000))

    async def check_domain(self, domain: "str") -> "bool":
        if not domain:
            raise ValueError("domain must not be empty")

        with self._operation("check_domain") as billing:
            exists = await billing.domain_exists(domain)
            logger.debug("domain_checked", domain=domain, exists=exists)
        return exists

    async def get_customer(self, customer_id: "str") -> "Customer":
        if not customer_id:
            raise ValueError("customer_id must not be empty")

        with self._operation("get_customer") as billing:
            customer = await billing.get_customer(self._scoped_customer(customer_id))
        return customer

    async def get_customers(self) -> "list[Customer]":
        with self._operation("get_customers") as billing:
            if self._is_partner_scope():
                enumerator = await billing.enumerate_customers()
                customers = await enumerator.collect()
            else:
                principal = current_principal()
                customers = [await billing.get_customer(principal.customer_id)]
            logger.debug("customers_listed", count=len(customers))
        return customers

    async def get_subscription(
        self, customer_id: "str", subscription_id: "str"
    ) -> "Subscription":
        if not customer_id:
            raise ValueError("customer_id must not be empty")
        if not subscription_id:
            raise ValueError("subscription_id must not be empty")

        with self._operation("get_subscription") as billing:
            subscription = await billing.get_subscription(
                self._scoped_customer(customer_id), subscription_id
            )
        return subscription

    async def get_subscriptions(self, customer_id: "str") -> "list[Subscription]":
        if not customer_id:
            raise ValueError("customer_id must not be empty")

        with self._operation("get_subscriptions") as billing:
            enumerator = await billing.enumerate_subscriptions(
                self._scoped_customer(customer_id)
            )
            subscriptions = await enumerator.collect()
            logger.debug("subscriptions_listed", count=len(subscriptions))
        return subscriptions

    async def get_usage(
        self,
        customer_id: "str",
        subscription_id: "str",
        start: "datetime",
        end: "datetime",
    ) -> "list[UsageResult]":
        """
        fetches every utilization record of the subscription between
        start and end and prices it against the current rate table.
        A failure on any page aborts the whole call.
        """
        if not customer_id:
            raise ValueError("customer_id must not be empty")
        if not subscription_id:
            raise ValueError("subscription_id must not be empty")

        with self._operation("get_usage") as billing:
            table = await self._rate_tables.get_current()
            enumerator = await billing.enumerate_utilization(
                self._scoped_customer(customer_id), subscription_id, start, end
            )
            records = await enumerator.collect()
            results = self._engine.rate_all(records, table)
            logger.debug(
                "usage_rated",
                subscription_id=subscription_id,
                record_count=len(records),
                priced_count=len(results),
            )
        return results
