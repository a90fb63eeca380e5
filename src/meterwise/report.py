import asyncio
import time
from dataclasses import asdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable

import structlog

from meterwise.billing.operations import PartnerOperations
from meterwise.metrics import Metrics
from meterwise.models import SubscriptionReport, UsageReport, utcnow

logger = structlog.get_logger()

USAGE_BILLING_TYPE = "usage"
DELETED_STATUS = "deleted"


def months_ago(now: "datetime", months: "int") -> "datetime":
    """
    steps back whole calendar months, clamping the day to the
    length of the target month.
    """
    month_index = now.year * 12 + now.month - 1 - months
    year, month = divmod(month_index, 12)
    month += 1
    next_month = datetime(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return now.replace(year=year, month=month, day=min(now.day, last_day))


async def build_subscription_reports(
    operations: "PartnerOperations",
    customer_id: "str",
    start: "datetime",
    end: "datetime",
) -> "list[SubscriptionReport]":
    """
    rated usage for every live usage-billed subscription of a customer.
    """
    reports: "list[SubscriptionReport]" = []
    for sub in await operations.get_subscriptions(customer_id):
        if sub.billing_type != USAGE_BILLING_TYPE or sub.status == DELETED_STATUS:
            continue

        usage = await operations.get_usage(customer_id, sub.id, start, end)
        reports.append(
            SubscriptionReport(
                subscription_id=sub.id,
                billing_cycle=sub.billing_cycle,
                billing_type=sub.billing_type,
                friendly_name=sub.friendly_name,
                offer_name=sub.offer_name,
                quantity=sub.quantity,
                status=sub.status,
                unit_type=sub.unit_type,
                usage=usage,
            )
        )
    return reports


async def build_usage_report(
    operations: "PartnerOperations",
    months: "int" = 3,
    now: "datetime | None" = None,
) -> "list[UsageReport]":
    end = now or utcnow()
    start = months_ago(end, months)

    reports: "list[UsageReport]" = []
    for customer in await operations.get_customers():
        reports.append(
            UsageReport(
                customer_id=customer.id,
                subscriptions=await build_subscription_reports(
                    operations, customer.id, start, end
                ),
            )
        )
    return reports


def _jsonable(value: "Any") -> "Any":
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def report_to_dict(reports: "list[UsageReport]") -> "list[dict[str, Any]]":
    return [_jsonable(asdict(report)) for report in reports]


class Reporter:
    """
    Reporter rebuilds the usage report on a fixed interval until
    stop() is called. A failed cycle is logged and counted, and the
    next cycle starts from scratch.
    """

    def __init__(
        self,
        operations: "PartnerOperations",
        metrics: "Metrics",
        interval_seconds: "int" = 3600,
        months: "int" = 3,
        on_report: "Callable[[list[UsageReport]], None] | None" = None,
    ) -> "None":
        self._operations = operations
        self._metrics = metrics
        self._interval = interval_seconds
        self._months = months
        self._on_report = on_report
        self._stop_event: "asyncio.Event" = asyncio.Event()
        self.last_report: "list[UsageReport]" = []

    def stop(self) -> "None":
        """
        signals the reporter loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def run_once(self) -> "list[UsageReport] | None":
        started = time.monotonic()
        try:
            reports = await build_usage_report(self._operations, self._months)
        except Exception:
            logger.exception("report_cycle_error")
            self._metrics.inc_report_error("build")
            return None

        self._metrics.observe_operation("report", time.monotonic() - started)
        self._metrics.set_last_report_success(time.time())
        self.last_report = reports
        logger.info(
            "report_cycle_end",
            customers=len(reports),
            subscriptions=sum(len(r.subscriptions) for r in reports),
        )
        if self._on_report is not None:
            self._on_report(reports)
        return reports

    async def run(self) -> "None":
        """
        runs the report loop. Runs until stop() is called.
        """
        while not self._stop_event.is_set():
            logger.info("report_cycle_start", months=self._months)
            await self.run_once()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass
