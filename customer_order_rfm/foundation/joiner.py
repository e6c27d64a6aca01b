"""Join normalised orders with billing aggregates.

The join is a left join from the order report: every precursor yields an
:class:`Order`, with a zero total and no items when no billing aggregate
matches. Billing aggregates that no order consumes are reported as orphans
and never appear in the output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Mapping, Sequence

from customer_order_rfm.foundation.billing import BillingAggregate
from customer_order_rfm.foundation.orders import Order, OrderPrecursor

logger = logging.getLogger(__name__)


@dataclass
class JoinResult:
    """Joined orders plus join diagnostics.

    Attributes
    ----------
    orders:
        Canonical orders in order-report order.
    orphan_billing_ids:
        Billing order ids that matched no order-report row.
    unmatched_order_ids:
        Order ids that found no billing aggregate (total defaulted to 0).
    excluded_by_cutoff:
        Orders dropped because they were not strictly after the cutoff.
    """

    orders: list[Order] = field(default_factory=list)
    orphan_billing_ids: list[str] = field(default_factory=list)
    unmatched_order_ids: list[str] = field(default_factory=list)
    excluded_by_cutoff: int = 0


def filter_orders_after(
    orders: Iterable[Order], cutoff: datetime | None
) -> list[Order]:
    """Keep orders dated strictly after ``cutoff``.

    With no cutoff every order is returned. With a cutoff, orders without a
    valid date are dropped since they cannot be placed after it.
    """

    if cutoff is None:
        return list(orders)
    return [
        order
        for order in orders
        if order.order_date is not None and order.order_date > cutoff
    ]


class DatasetJoiner:
    """Match order precursors to billing aggregates by order identifier.

    The raw order number from the order report is tried first; the
    normalised number is the fallback, which covers billing exports that
    already strip leading zeros. Each aggregate is consumed at most once.
    """

    def join(
        self,
        precursors: Sequence[OrderPrecursor],
        billing: Mapping[str, BillingAggregate],
        cutoff: datetime | None = None,
    ) -> JoinResult:
        result = JoinResult()
        consumed: set[str] = set()

        joined: list[Order] = []
        for precursor in precursors:
            key = self._match_key(precursor, billing, consumed)
            if key is None:
                result.unmatched_order_ids.append(precursor.order_id)
                joined.append(Order.from_precursor(precursor))
                continue

            consumed.add(key)
            aggregate = billing[key]
            joined.append(
                Order.from_precursor(
                    precursor,
                    total_amount=aggregate.total_amount,
                    items=aggregate.items,
                    identity=aggregate.identity,
                )
            )

        result.orphan_billing_ids = [key for key in billing if key not in consumed]
        result.orders = filter_orders_after(joined, cutoff)
        result.excluded_by_cutoff = len(joined) - len(result.orders)

        if result.orphan_billing_ids:
            logger.warning(
                f"{len(result.orphan_billing_ids)} billing orders have no matching "
                f"order-report row: {result.orphan_billing_ids[:10]}"
            )
        if result.unmatched_order_ids:
            logger.info(
                f"{len(result.unmatched_order_ids)} orders have no billing detail; "
                "totals defaulted to 0"
            )
        if cutoff is not None:
            logger.info(
                f"Incremental join after {cutoff.isoformat()}: kept {len(result.orders)} "
                f"of {len(joined)} orders"
            )
        return result

    @staticmethod
    def _match_key(
        precursor: OrderPrecursor,
        billing: Mapping[str, BillingAggregate],
        consumed: set[str],
    ) -> str | None:
        for key in (precursor.raw_id, precursor.order_id):
            if key and key in billing and key not in consumed:
                return key
        return None
