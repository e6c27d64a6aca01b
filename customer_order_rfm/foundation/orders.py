"""Canonical order and customer model.

Orders are created by the dataset joiner from an order-report precursor and
the billing aggregate for the same order. Customers are never created
directly: they are rebuilt every time by grouping a flat order list on the
identity key (email, else phone, else a key synthesised from the name).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Sequence

UNKNOWN_CUSTOMER_PREFIX = "unknown_"

_DOCUMENT_ID_PATTERN = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class LineItem:
    """A single purchased line taken from the billing detail."""

    total: Decimal
    sku: str | None = None
    description: str | None = None
    quantity: Decimal = Decimal("0")

    def matches_any(self, terms: Sequence[str]) -> bool:
        """Return True if the SKU or description contains one of ``terms``.

        Terms are expected to be lower-cased already.
        """

        haystacks = [
            value.lower() for value in (self.sku, self.description) if value
        ]
        return any(term in text for term in terms for text in haystacks)


@dataclass(frozen=True)
class SalesAgent:
    """Point-of-sale user attributed to an order."""

    name: str
    zone: str


@dataclass(frozen=True)
class OrderPrecursor:
    """Normalised order-report row, before billing totals are attached.

    Attributes
    ----------
    order_id:
        Normalised order number (leading zeros and ``-I`` suffix removed).
    raw_id:
        Order number exactly as exported; used as the primary join key.
    order_date:
        Parsed order timestamp, or None when the cell could not be parsed.
    order_date_raw:
        Original text of the date cell, kept for diagnostics and storage.
    """

    order_id: str
    raw_id: str
    customer_name: str | None
    email: str | None = None
    phone: str | None = None
    city: str | None = None
    identity: str | None = None
    order_date: datetime | None = None
    order_date_raw: str = ""
    channel: str = ""
    status: str = ""
    pos_user: str | None = None
    agent_name: str | None = None
    agent_zone: str | None = None

    @property
    def date_valid(self) -> bool:
        return self.order_date is not None


@dataclass(frozen=True)
class Order:
    """Canonical order produced by the joiner.

    ``order_id`` is unique across a dataset. An order whose ``order_date`` is
    None still counts towards frequency and monetary value but is ignored by
    every date-dependent computation (recency, incremental cutoffs).
    """

    order_id: str
    raw_id: str
    customer_name: str | None
    order_date: datetime | None
    total_amount: Decimal = Decimal("0")
    items: tuple[LineItem, ...] = ()
    email: str | None = None
    phone: str | None = None
    city: str | None = None
    identity: str | None = None
    channel: str = ""
    order_date_raw: str = ""
    pos_user: str | None = None
    agent_name: str | None = None
    agent_zone: str | None = None

    def __post_init__(self) -> None:
        if not self.order_id:
            raise ValueError("Order id cannot be empty")
        if not isinstance(self.total_amount, Decimal):
            object.__setattr__(self, "total_amount", Decimal(str(self.total_amount)))
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))

    @property
    def date_valid(self) -> bool:
        return self.order_date is not None

    @classmethod
    def from_precursor(
        cls,
        precursor: OrderPrecursor,
        total_amount: Decimal = Decimal("0"),
        items: Iterable[LineItem] = (),
        identity: str | None = None,
    ) -> "Order":
        return cls(
            order_id=precursor.order_id,
            raw_id=precursor.raw_id,
            customer_name=precursor.customer_name,
            order_date=precursor.order_date,
            total_amount=total_amount,
            items=tuple(items),
            email=precursor.email,
            phone=precursor.phone,
            city=precursor.city,
            identity=identity or precursor.identity,
            channel=precursor.channel,
            order_date_raw=precursor.order_date_raw,
            pos_user=precursor.pos_user,
            agent_name=precursor.agent_name,
            agent_zone=precursor.agent_zone,
        )


def identity_key(order: Order) -> str:
    """Return the customer grouping key for an order.

    Email takes precedence over phone, which takes precedence over a key
    synthesised from the customer name. Contact fields are expected to be
    normalised already (see :mod:`customer_order_rfm.foundation.normalizer`).
    """

    if order.email:
        return order.email
    if order.phone:
        return order.phone
    return f"{UNKNOWN_CUSTOMER_PREFIX}{order.customer_name or ''}"


def to_naive_utc(value: datetime) -> datetime:
    """Order dates are naive UTC; convert aware values, keep naive ones."""

    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _escape_document_char(match: re.Match[str]) -> str:
    char = match.group(0)
    if char == "_":
        return "__"
    return "".join(f"_{byte:02x}" for byte in char.encode("utf-8"))


def document_id_for_key(key: str) -> str:
    """Turn an identity key into a storage-safe document id.

    ASCII letters and digits are kept; ``_`` is doubled and every other
    character becomes ``_`` plus the hex of each of its UTF-8 bytes, so
    distinct keys always get distinct ids (``ana.p@x.com`` ->
    ``ana_2ep_40x_2ecom``, ``ana_p@x.com`` -> ``ana__p_40x_2ecom``).
    """

    return _DOCUMENT_ID_PATTERN.sub(_escape_document_char, key)


@dataclass
class Customer:
    """Orders grouped under one identity key.

    Contact fields are taken from the first order seen for the key; later
    orders only fill fields that are still empty.
    """

    identity_key: str
    name: str | None
    email: str | None = None
    phone: str | None = None
    city: str | None = None
    identity: str | None = None
    orders: list[Order] = field(default_factory=list)

    @property
    def document_id(self) -> str:
        return document_id_for_key(self.identity_key)

    @property
    def total_spent(self) -> Decimal:
        return sum((order.total_amount for order in self.orders), Decimal("0"))

    @property
    def last_order_date(self) -> datetime | None:
        dates = [order.order_date for order in self.orders if order.date_valid]
        return max(dates) if dates else None

    def absorb(self, order: Order) -> None:
        """Append ``order`` and fill any blank contact fields from it."""

        self.orders.append(order)
        if not self.name and order.customer_name:
            self.name = order.customer_name
        if not self.email and order.email:
            self.email = order.email
        if not self.phone and order.phone:
            self.phone = order.phone
        if not self.city and order.city:
            self.city = order.city
        if not self.identity and order.identity:
            self.identity = order.identity


def group_orders_by_customer(orders: Iterable[Order]) -> list[Customer]:
    """Group a flat order list into customers, first-seen key order preserved."""

    customers: dict[str, Customer] = {}
    for order in orders:
        key = identity_key(order)
        customer = customers.get(key)
        if customer is None:
            customer = Customer(identity_key=key, name=order.customer_name)
            customers[key] = customer
        customer.absorb(order)
    return list(customers.values())


def flatten_customers(customers: Iterable[Customer]) -> list[Order]:
    """Inverse of :func:`group_orders_by_customer`."""

    return [order for customer in customers for order in customer.orders]
