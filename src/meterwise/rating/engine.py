from decimal import Decimal
from typing import Iterable, Iterator, Sequence

import structlog

from meterwise.metrics import Metrics
from meterwise.models import MeterRate, RateTable, UsageResult, UtilizationRecord

logger = structlog.get_logger()

ZERO = Decimal(0)


def select_rate(tiers: "Sequence[tuple[Decimal, Decimal]]", overage: "Decimal") -> "Decimal | None":
    """
    returns the unit rate of the highest tier whose threshold does not
    exceed overage. tiers must be ascending by threshold. None means no
    tier applies.
    """
    rate = None
    for threshold, unit_rate in tiers:
        if threshold > overage:
            break
        rate = unit_rate
    return rate


def price_usage(quantity: "Decimal", meter: "MeterRate") -> "tuple[Decimal, Decimal | None]":
    """
    returns (overage, price) for quantity consumed against meter.
    Usage inside the included allotment is free. price is None when
    the meter has no tier covering the overage.
    """
    overage = quantity - meter.included_quantity
    if overage <= ZERO:
        return ZERO, ZERO

    rate = select_rate(meter.tiers, overage)
    if rate is None:
        return overage, None
    return overage, overage * rate


class UsageRatingEngine:
    """
    UsageRatingEngine prices utilization records against a rate
    table. Records are rated one at a time and results come out in the
    order the records went in. A record whose meter is missing from the
    table is dropped and counted rather than failing the batch.
    """

    def __init__(self, metrics: "Metrics") -> "None":
        self._metrics = metrics

    def rate(
        self,
        records: "Iterable[UtilizationRecord]",
        table: "RateTable",
    ) -> "Iterator[UsageResult]":
        for record in records:
            meter = table.meters.get(record.resource_id)
            if meter is None:
                logger.warning(
                    "unmatched_meter",
                    resource_id=record.resource_id,
                    resource_name=record.resource_name,
                )
                self._metrics.meter_unmatched()
                continue

            overage, price = price_usage(record.quantity, meter)
            if price is None:
                # tiers start above the overage; nothing billable
                logger.warning(
                    "no_applicable_tier",
                    resource_id=record.resource_id,
                    overage=str(overage),
                )
                price = ZERO

            self._metrics.record_rated()
            yield UsageResult(record=record, price=price)

    def rate_all(
        self,
        records: "Iterable[UtilizationRecord]",
        table: "RateTable",
    ) -> "list[UsageResult]":
        return list(self.rate(records, table))
