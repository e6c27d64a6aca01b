"""Collapse billing-detail line rows into one aggregate per order."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping

from customer_order_rfm.foundation.normalizer import parse_amount
from customer_order_rfm.foundation.orders import LineItem
from customer_order_rfm.ingestion.columns import BILLING_DETAIL_COLUMNS, ColumnMapping

logger = logging.getLogger(__name__)


@dataclass
class BillingAggregate:
    """Line items and summed total for one order identifier."""

    order_id: str
    total_amount: Decimal = Decimal("0")
    items: list[LineItem] = field(default_factory=list)
    identity: str | None = None

    def add(self, item: LineItem) -> None:
        self.items.append(item)
        self.total_amount += item.total


class BillingAggregator:
    """Group billing rows by order identifier.

    Keys keep first-seen order and items keep file order. The national
    identity of an order is the first non-empty value other than ``"0"``.
    """

    def __init__(self, mapping: ColumnMapping = BILLING_DETAIL_COLUMNS) -> None:
        self.mapping = mapping

    def aggregate(
        self, rows: Iterable[Mapping[str, Any]]
    ) -> dict[str, BillingAggregate]:
        rows = list(rows)
        if not rows:
            return {}

        headers: dict[str, None] = {}
        for row in rows:
            headers.update(dict.fromkeys(row.keys()))
        columns = self.mapping.resolve(headers)

        grouped: dict[str, BillingAggregate] = {}
        skipped = 0
        for row in rows:
            order_id = str(columns.get(row, "order_id")).strip()
            if not order_id:
                skipped += 1
                continue

            bucket = grouped.get(order_id)
            if bucket is None:
                bucket = grouped[order_id] = BillingAggregate(order_id=order_id)

            sku = str(columns.get(row, "sku")).strip()
            description = " ".join(str(columns.get(row, "description")).split())
            bucket.add(
                LineItem(
                    total=parse_amount(columns.get(row, "total", None)),
                    sku=sku or None,
                    description=description or None,
                    quantity=parse_amount(columns.get(row, "quantity", None)),
                )
            )

            identity = str(columns.get(row, "identity")).strip()
            if identity and identity != "0" and bucket.identity is None:
                bucket.identity = identity

        if skipped:
            logger.warning(f"Skipped {skipped} billing rows without an order id")
        logger.info(f"Aggregated {len(rows) - skipped} billing rows into {len(grouped)} orders")
        return grouped
