from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Generic, TypeVar

T = TypeVar("T")


def utcnow() -> "datetime":
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Credential:
    """
    Credential is an OAuth access token together with
    the instant it stops being valid.
    """

    access_token: "str"
    expires_at: "datetime"

    def is_expired(self, now: "datetime | None" = None) -> "bool":
        return self.expires_at <= (now or utcnow())


@dataclass(frozen=True, slots=True)
class CredentialEntry:
    """
    CredentialEntry is what the credential cache persists for
    one (identity_key, resource) pair.
    """

    identity_key: "str"
    resource: "str"
    credential: "Credential"
    # when this process received the credential, None if unknown
    acquired_at: "datetime | None" = None

    @property
    def expires_at(self) -> "datetime":
        return self.credential.expires_at


@dataclass(frozen=True, slots=True)
class MeterRate:
    """
    MeterRate describes how a single meter is billed: a free
    allowance followed by tiered unit rates.
    """

    included_quantity: "Decimal"
    # (threshold, unit_rate) pairs, ascending by threshold
    tiers: "tuple[tuple[Decimal, Decimal], ...]"


@dataclass(frozen=True, slots=True)
class RateTable:
    fetched_at: "datetime"
    meters: "dict[str, MeterRate]"
    currency: "str" = "USD"


@dataclass(frozen=True, slots=True)
class UtilizationRecord:
    """
    UtilizationRecord represents one metered usage line as
    returned by the billing API.
    """

    resource_id: "str"
    quantity: "Decimal"
    usage_start: "datetime"
    usage_end: "datetime"
    resource_name: "str" = ""
    category: "str" = ""
    unit: "str" = ""


@dataclass(frozen=True, slots=True)
class UsageResult:
    record: "UtilizationRecord"
    price: "Decimal"


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    """
    Page is one server-side page of a collection. An empty
    continuation_token means this is the last page.
    """

    items: "list[T]"
    continuation_token: "str" = ""


@dataclass(frozen=True, slots=True)
class Customer:
    id: "str"
    company_name: "str" = ""
    tenant_id: "str" = ""


@dataclass(frozen=True, slots=True)
class Subscription:
    id: "str"
    friendly_name: "str" = ""
    offer_name: "str" = ""
    quantity: "int" = 0
    unit_type: "str" = ""
    billing_cycle: "str" = ""
    # "usage" or "license"
    billing_type: "str" = ""
    status: "str" = ""


@dataclass(slots=True)
class SubscriptionReport:
    subscription_id: "str"
    billing_cycle: "str"
    billing_type: "str"
    friendly_name: "str"
    offer_name: "str"
    quantity: "int"
    status: "str"
    unit_type: "str"
    usage: "list[UsageResult]" = field(default_factory=list)


@dataclass(slots=True)
class UsageReport:
    customer_id: "str"
    subscriptions: "list[SubscriptionReport]" = field(default_factory=list)
