import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest
import respx
from prometheus_client import CollectorRegistry

from meterwise.auth.cache import CredentialCache
from meterwise.auth.principal import Principal, acting_as
from meterwise.billing.operations import PartnerOperations
from meterwise.metrics import Metrics

ENDPOINT = "https://api.partnercenter.example.com"
AUTHORITY = "https://login.example.com/partner-tenant"
PARTNER_TENANT = "partner-tenant"
START = datetime(2024, 1, 1, tzinfo=timezone.utc)
END = datetime(2024, 4, 1, tzinfo=timezone.utc)
USAGE_URL = f"{ENDPOINT}/v1/customers/c1/subscriptions/s1/utilizations/azure"

RATE_CARD = {
    "meters": [
        {"id": "m1", "includedQuantity": 50, "rates": {"0": 1.0, "100": 0.8, "500": 0.5}},
    ]
}


def _usage_item(resource_id: "str", quantity: "float") -> "dict":
    return {
        "usageStartTime": "2024-01-01T00:00:00+00:00",
        "usageEndTime": "2024-01-02T00:00:00+00:00",
        "resource": {"id": resource_id},
        "quantity": quantity,
    }


def _operations(cache, identity, metrics) -> "PartnerOperations":
    credentials = CredentialCache(cache, identity, AUTHORITY, metrics)
    return PartnerOperations(
        credentials,
        cache,
        metrics,
        partner_tenant_id=PARTNER_TENANT,
        endpoint=ENDPOINT,
    )


class TestGetUsage:
    @pytest.mark.asyncio
    @respx.mock
    async def test_walks_pages_and_rates_records(
        self, cache, identity, registry: "CollectorRegistry"
    ) -> "None":
        respx.get(f"{ENDPOINT}/v1/ratecards/azure").mock(
            return_value=httpx.Response(200, json=RATE_CARD)
        )
        respx.get(USAGE_URL).mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={
                        "items": [_usage_item("m1", 300), _usage_item("unknown", 9)],
                        "continuationToken": "next",
                    },
                ),
                httpx.Response(200, json={"items": [_usage_item("m1", 10)]}),
            ]
        )

        ops = _operations(cache, identity, Metrics(registry=registry))
        results = await ops.get_usage("c1", "s1", START, END)

        # 300 - 50 = 250 overage at the 100 tier, the unknown meter is dropped
        assert [r.price for r in results] == [Decimal("200.0"), Decimal("0")]
        assert [r.record.quantity for r in results] == [Decimal("300"), Decimal("10")]
        assert registry.get_sample_value("meterwise_unmatched_meters_total") == 1.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_table_fetched_once(self, cache, identity, metrics) -> "None":
        rate_route = respx.get(f"{ENDPOINT}/v1/ratecards/azure").mock(
            return_value=httpx.Response(200, json=RATE_CARD)
        )
        respx.get(USAGE_URL).mock(
            return_value=httpx.Response(200, json={"items": [_usage_item("m1", 60)]})
        )

        ops = _operations(cache, identity, metrics)
        await ops.get_usage("c1", "s1", START, END)
        await ops.get_usage("c1", "s1", START, END)

        assert rate_route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_page_failure_aborts(self, cache, identity, metrics) -> "None":
        respx.get(f"{ENDPOINT}/v1/ratecards/azure").mock(
            return_value=httpx.Response(200, json=RATE_CARD)
        )
        respx.get(USAGE_URL).mock(
            side_effect=[
                httpx.Response(
                    200,
                    json={"items": [_usage_item("m1", 60)], "continuationToken": "next"},
                ),
                httpx.Response(503),
            ]
        )

        ops = _operations(cache, identity, metrics)
        with pytest.raises(httpx.HTTPStatusError):
            await ops.get_usage("c1", "s1", START, END)


class TestAppCredential:
    @pytest.mark.asyncio
    @respx.mock
    async def test_shared_across_operations(self, cache, identity, metrics) -> "None":
        respx.get(f"{ENDPOINT}/v1/customers/c1").mock(
            return_value=httpx.Response(200, json={"id": "c1"})
        )

        ops = _operations(cache, identity, metrics)
        await asyncio.gather(*[ops.get_customer("c1") for _ in range(5)])

        assert len(identity.calls) == 1
        assert identity.calls[0][0] == "app_only"

    @pytest.mark.asyncio
    @respx.mock
    async def test_refreshed_when_expired(
        self, cache, identity_factory, metrics
    ) -> "None":
        respx.get(f"{ENDPOINT}/v1/customers/c1").mock(
            return_value=httpx.Response(200, json={"id": "c1"})
        )
        # tokens already past their expiry when issued
        identity = identity_factory(lifetime=timedelta(seconds=-1))

        ops = _operations(cache, identity, metrics)
        await ops.get_customer("c1")
        await ops.get_customer("c1")

        assert len(identity.calls) >= 2


class TestPrincipalScoping:
    @pytest.mark.asyncio
    @respx.mock
    async def test_customer_principal_sees_only_itself(
        self, cache, identity, metrics
    ) -> "None":
        own = respx.get(f"{ENDPOINT}/v1/customers/own-tenant").mock(
            return_value=httpx.Response(200, json={"id": "own-tenant"})
        )
        listing = respx.get(f"{ENDPOINT}/v1/customers").mock(
            return_value=httpx.Response(200, json={"items": []})
        )

        ops = _operations(cache, identity, metrics)
        principal = Principal(object_id="oid", customer_id="own-tenant")
        with acting_as(principal):
            customers = await ops.get_customers()
            customer = await ops.get_customer("someone-else")

        assert [c.id for c in customers] == ["own-tenant"]
        assert customer.id == "own-tenant"
        assert own.call_count == 2
        assert listing.call_count == 0

    @pytest.mark.asyncio
    @respx.mock
    async def test_partner_principal_lists_all(self, cache, identity, metrics) -> "None":
        respx.get(f"{ENDPOINT}/v1/customers").mock(
            return_value=httpx.Response(200, json={"items": [{"id": "a"}, {"id": "b"}]})
        )

        ops = _operations(cache, identity, metrics)
        with acting_as(Principal(object_id="oid", customer_id=PARTNER_TENANT)):
            customers = await ops.get_customers()

        assert [c.id for c in customers] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_empty_ids_fail_fast(self, cache, identity, metrics) -> "None":
        ops = _operations(cache, identity, metrics)
        with pytest.raises(ValueError):
            await ops.get_usage("", "s1", START, END)
        with pytest.raises(ValueError):
            await ops.get_subscriptions("")
        assert identity.calls == []
