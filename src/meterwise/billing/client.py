import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable

import httpx
import structlog

from meterwise.billing.pages import PagedEnumerator
from meterwise.errors import BillingApiError
from meterwise.models import (
    Credential,
    Customer,
    MeterRate,
    Page,
    RateTable,
    Subscription,
    UtilizationRecord,
    utcnow,
)
from meterwise.serialization import loads

logger = structlog.get_logger()

PARTNER_CENTER_ENDPOINT = "https://api.partnercenter.microsoft.com"
CONTINUATION_HEADER = "MS-ContinuationToken"
APPLICATION_NAME = "meterwise"

CUSTOMERS_PAGE_SIZE = 500
UTILIZATION_PAGE_SIZE = 1000


class BillingClient:
    """
    BillingClient is a thin async client for the partner billing REST
    API. List operations return the first Page; the enumerate_* helpers
    wrap that page in a PagedEnumerator that follows the continuation
    token through the MS-ContinuationToken header.

    Every request carries a fresh bearer token obtained from
    get_credential, which is expected to be cached by the caller.
    """

    def __init__(
        self,
        get_credential: "Callable[[], Awaitable[Credential]]",
        endpoint: "str" = PARTNER_CENTER_ENDPOINT,
        client: "httpx.AsyncClient | None" = None,
        correlation_id: "str" = "",
    ) -> "None":
        self._get_credential = get_credential
        self._endpoint = endpoint.rstrip("/")
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(timeout=30.0)
        self._correlation_id = correlation_id or str(uuid.uuid4())

    @property
    def correlation_id(self) -> "str":
        return self._correlation_id

    def with_correlation(self, correlation_id: "str") -> "BillingClient":
        """
        returns a client sharing this one's connection pool whose
        requests are tagged with correlation_id.
        """
        return BillingClient(
            self._get_credential,
            self._endpoint,
            client=self._client,
            correlation_id=correlation_id,
        )

    async def close(self) -> "None":
        await self._client.aclose()

    async def _request(
        self,
        method: "str",
        path: "str",
        params: "dict[str, Any] | None" = None,
        continuation_token: "str" = "",
    ) -> "httpx.Response":
        credential = await self._get_credential()
        headers = {
            "Authorization": f"Bearer {credential.access_token}",
            "Accept": "application/json",
            "MS-CorrelationId": self._correlation_id,
            "MS-RequestId": str(uuid.uuid4()),
            "MS-PartnerCenter-Application": APPLICATION_NAME,
        }
        if continuation_token:
            headers[CONTINUATION_HEADER] = continuation_token

        url = f"{self._endpoint}{path}"
        logger.debug(
            "billing_request",
            method=method,
            url=url,
            continued=bool(continuation_token),
        )
        return await self._client.request(method, url, params=params, headers=headers)

    async def _get_json(
        self,
        path: "str",
        params: "dict[str, Any] | None" = None,
        continuation_token: "str" = "",
    ) -> "dict[str, Any]":
        resp = await self._request("GET", path, params, continuation_token)
        resp.raise_for_status()
        try:
            return loads(resp.content)
        except ValueError as exc:
            raise BillingApiError(f"invalid JSON from {path}: {exc}") from exc

    async def _get_page(
        self,
        path: "str",
        parse: "Callable[[dict[str, Any]], Any]",
        params: "dict[str, Any] | None" = None,
        continuation_token: "str" = "",
    ) -> "Page[Any]":
        data = await self._get_json(path, params, continuation_token)
        return Page(
            items=[parse(item) for item in data.get("items", [])],
            continuation_token=data.get("continuationToken") or "",
        )

    def _enumerator(
        self,
        first_page: "Page[Any]",
        path: "str",
        parse: "Callable[[dict[str, Any]], Any]",
        params: "dict[str, Any] | None" = None,
    ) -> "PagedEnumerator[Any]":
        async def fetch_next(token: "str") -> "Page[Any]":
            return await self._get_page(path, parse, params, continuation_token=token)

        return PagedEnumerator(first_page, fetch_next)

    # customers

    async def list_customers(self) -> "Page[Customer]":
        return await self._get_page(
            "/v1/customers", _parse_customer, {"size": CUSTOMERS_PAGE_SIZE}
        )

    async def enumerate_customers(self) -> "PagedEnumerator[Customer]":
        first = await self.list_customers()
        return self._enumerator(
            first, "/v1/customers", _parse_customer, {"size": CUSTOMERS_PAGE_SIZE}
        )

    async def get_customer(self, customer_id: "str") -> "Customer":
        _require(customer_id=customer_id)
        return _parse_customer(await self._get_json(f"/v1/customers/{customer_id}"))

    # subscriptions

    async def list_subscriptions(self, customer_id: "str") -> "Page[Subscription]":
        _require(customer_id=customer_id)
        return await self._get_page(
            f"/v1/customers/{customer_id}/subscriptions", _parse_subscription
        )

    async def enumerate_subscriptions(
        self, customer_id: "str"
    ) -> "PagedEnumerator[Subscription]":
        path = f"/v1/customers/{customer_id}/subscriptions"
        first = await self.list_subscriptions(customer_id)
        return self._enumerator(first, path, _parse_subscription)

    async def get_subscription(
        self, customer_id: "str", subscription_id: "str"
    ) -> "Subscription":
        _require(customer_id=customer_id, subscription_id=subscription_id)
        return _parse_subscription(
            await self._get_json(
                f"/v1/customers/{customer_id}/subscriptions/{subscription_id}"
            )
        )

    # utilization

    async def query_utilization(
        self,
        customer_id: "str",
        subscription_id: "str",
        start: "datetime",
        end: "datetime",
    ) -> "Page[UtilizationRecord]":
        _require(customer_id=customer_id, subscription_id=subscription_id)
        return await self._get_page(
            _utilization_path(customer_id, subscription_id),
            _parse_utilization,
            _utilization_params(start, end),
        )

    async def enumerate_utilization(
        self,
        customer_id: "str",
        subscription_id: "str",
        start: "datetime",
        end: "datetime",
    ) -> "PagedEnumerator[UtilizationRecord]":
        first = await self.query_utilization(customer_id, subscription_id, start, end)
        return self._enumerator(
            first,
            _utilization_path(customer_id, subscription_id),
            _parse_utilization,
            _utilization_params(start, end),
        )

    # rate card

    async def get_rate_card(self, currency: "str" = "", region: "str" = "") -> "RateTable":
        params = {k: v for k, v in (("currency", currency), ("region", region)) if v}
        data = await self._get_json("/v1/ratecards/azure", params or None)

        meters: "dict[str, MeterRate]" = {}
        for meter in data.get("meters", []):
            meters[meter["id"]] = _parse_meter(meter)

        logger.info("rate_card_downloaded", meter_count=len(meters))
        return RateTable(
            fetched_at=utcnow(),
            meters=meters,
            currency=data.get("currency") or "USD",
        )

    # domains

    async def domain_exists(self, domain: "str") -> "bool":
        _require(domain=domain)
        resp = await self._request("HEAD", f"/v1/domains/{domain}")
        if resp.status_code == 404:
            return False
        resp.raise_for_status()
        return True


def _require(**values: "str") -> "None":
    for name, value in values.items():
        if not value:
            raise ValueError(f"{name} must not be empty")


def _utilization_path(customer_id: "str", subscription_id: "str") -> "str":
    return f"/v1/customers/{customer_id}/subscriptions/{subscription_id}/utilizations/azure"


def _utilization_params(start: "datetime", end: "datetime") -> "dict[str, Any]":
    return {
        "start_time": start.isoformat(),
        "end_time": end.isoformat(),
        "granularity": "daily",
        "show_details": "true",
        "size": UTILIZATION_PAGE_SIZE,
    }


def _decimal(value: "Any") -> "Decimal":
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value or 0))


def _parse_customer(item: "dict[str, Any]") -> "Customer":
    profile = item.get("companyProfile") or {}
    return Customer(
        id=item["id"],
        company_name=profile.get("companyName", ""),
        tenant_id=profile.get("tenantId", ""),
    )


def _parse_subscription(item: "dict[str, Any]") -> "Subscription":
    return Subscription(
        id=item["id"],
        friendly_name=item.get("friendlyName", ""),
        offer_name=item.get("offerName", ""),
        quantity=int(item.get("quantity", 0)),
        unit_type=item.get("unitType", ""),
        billing_cycle=str(item.get("billingCycle", "")).lower(),
        billing_type=str(item.get("billingType", "")).lower(),
        status=str(item.get("status", "")).lower(),
    )


def _parse_utilization(item: "dict[str, Any]") -> "UtilizationRecord":
    resource = item.get("resource") or {}
    return UtilizationRecord(
        resource_id=resource.get("id", ""),
        resource_name=resource.get("name", ""),
        category=resource.get("category", ""),
        unit=item.get("unit", ""),
        quantity=_decimal(item.get("quantity")),
        usage_start=datetime.fromisoformat(item["usageStartTime"]),
        usage_end=datetime.fromisoformat(item["usageEndTime"]),
    )


def _parse_meter(meter: "dict[str, Any]") -> "MeterRate":
    tiers = sorted(
        (_decimal(threshold), _decimal(rate))
        for threshold, rate in (meter.get("rates") or {}).items()
    )
    return MeterRate(
        included_quantity=_decimal(meter.get("includedQuantity")),
        tiers=tuple(tiers),
    )
