"""Persist and rebuild customers against a document store.

Orders are grouped by identity key into one document per customer, each
embedding the customer's full order list. Writes are chunked into batches
that commit sequentially; there is no atomicity across batches, so a
failure in batch *k* leaves batches ``1..k-1`` committed and the error
reports how many customers were saved. Two uploads racing on the same
customer resolve last-write-wins at the document level.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, Sequence

from customer_order_rfm.foundation.orders import (
    Customer,
    LineItem,
    Order,
    flatten_customers,
    group_orders_by_customer,
)
from customer_order_rfm.storage.backends import Document, DocumentStore

logger = logging.getLogger(__name__)

#: Conservative number of customer documents per write batch.
DEFAULT_BATCH_SIZE = 100

#: Pause between batches, in seconds.
DEFAULT_BATCH_DELAY = 0.1

_CONTACT_FIELDS = (
    ("customerName", "customer_name", "name"),
    ("email", "email", "email"),
    ("phone", "phone", "phone"),
    ("city", "city", "city"),
    ("identity", "identity", "identity"),
)


class PersistenceError(RuntimeError):
    """A batch failed; earlier batches remain committed."""

    def __init__(self, message: str, committed: int, total: int) -> None:
        super().__init__(message)
        self.committed = committed
        self.total = total


@dataclass
class SaveResult:
    """Outcome of a save.

    ``cancelled`` is True when the cancel token was set between batches;
    ``customers_saved`` then counts only the batches committed before it.
    """

    mode: str
    customers_total: int
    customers_saved: int = 0
    orders_total: int = 0
    batches_committed: int = 0
    cancelled: bool = False
    timestamp: datetime | None = None


def sanitize_document(value: Any) -> Any:
    """Recursively drop ``None`` values; the store rejects them."""

    if isinstance(value, Mapping):
        return {
            str(key): sanitize_document(item)
            for key, item in value.items()
            if item is not None
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_document(item) for item in value if item is not None]
    return value


def _order_to_document(order: Order, customer: Customer) -> Document:
    doc: Document = {
        "orderId": order.order_id,
        "rawId": order.raw_id,
        "orderDate": order.order_date.isoformat() if order.order_date else None,
        "orderDateRaw": order.order_date_raw or None,
        "totalAmount": str(order.total_amount),
        "items": [
            {
                "sku": item.sku,
                "description": item.description,
                "quantity": str(item.quantity),
                "total": str(item.total),
            }
            for item in order.items
        ],
        "channel": order.channel,
        "posUser": order.pos_user,
        "agentName": order.agent_name,
        "agentZone": order.agent_zone,
    }
    # Only store contact values that differ from the customer-level ones
    overrides = {}
    for doc_key, order_attr, customer_attr in _CONTACT_FIELDS:
        value = getattr(order, order_attr)
        if value != getattr(customer, customer_attr):
            overrides[doc_key] = value if value is not None else ""
    if overrides:
        doc["contact"] = overrides
    return doc


def customer_to_document(customer: Customer, updated_at: datetime) -> Document:
    """Serialise a customer into a store-safe document."""

    return sanitize_document(
        {
            "identityKey": customer.identity_key,
            "name": customer.name or "",
            "email": customer.email or "",
            "phone": customer.phone or "",
            "city": customer.city or "",
            "identity": customer.identity or "",
            "orders": [_order_to_document(order, customer) for order in customer.orders],
            "lastUpdated": updated_at.isoformat(),
        }
    )


def _blank_to_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


def _to_decimal(value: Any) -> Decimal:
    try:
        parsed = Decimal(str(value if value not in (None, "") else "0"))
    except InvalidOperation:
        return Decimal("0")
    return parsed if parsed.is_finite() else Decimal("0")


def _parse_stored_date(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def document_to_customer(doc_id: str, doc: Mapping[str, Any]) -> Customer:
    """Rebuild a customer (and its orders) from a stored document."""

    customer = Customer(
        identity_key=str(doc.get("identityKey") or doc_id),
        name=_blank_to_none(doc.get("name")),
        email=_blank_to_none(doc.get("email")),
        phone=_blank_to_none(doc.get("phone")),
        city=_blank_to_none(doc.get("city")),
        identity=_blank_to_none(doc.get("identity")),
    )

    for raw in doc.get("orders") or []:
        contact = {
            order_attr: getattr(customer, customer_attr)
            for _, order_attr, customer_attr in _CONTACT_FIELDS
        }
        for doc_key, order_attr, _ in _CONTACT_FIELDS:
            if doc_key in (raw.get("contact") or {}):
                contact[order_attr] = _blank_to_none(raw["contact"][doc_key])

        customer.orders.append(
            Order(
                order_id=str(raw.get("orderId") or raw.get("rawId") or ""),
                raw_id=str(raw.get("rawId") or ""),
                order_date=_parse_stored_date(raw.get("orderDate")),
                order_date_raw=str(raw.get("orderDateRaw") or ""),
                total_amount=_to_decimal(raw.get("totalAmount")),
                items=tuple(
                    LineItem(
                        total=_to_decimal(item.get("total")),
                        sku=_blank_to_none(item.get("sku")),
                        description=_blank_to_none(item.get("description")),
                        quantity=_to_decimal(item.get("quantity")),
                    )
                    for item in raw.get("items") or []
                ),
                channel=str(raw.get("channel") or ""),
                pos_user=_blank_to_none(raw.get("posUser")),
                agent_name=_blank_to_none(raw.get("agentName")),
                agent_zone=_blank_to_none(raw.get("agentZone")),
                **contact,
            )
        )
    return customer


def merge_customer(stored: Customer, incoming: Customer) -> Customer:
    """Merge incoming orders into a stored customer.

    Orders are keyed by ``order_id``: an incoming order replaces a stored one
    with the same id, new ids are appended. Stored contact fields win; blank
    ones are filled from the incoming customer.
    """

    by_id: dict[str, Order] = {order.order_id: order for order in stored.orders}
    for order in incoming.orders:
        by_id[order.order_id] = order

    return Customer(
        identity_key=stored.identity_key,
        name=stored.name or incoming.name,
        email=stored.email or incoming.email,
        phone=stored.phone or incoming.phone,
        city=stored.city or incoming.city,
        identity=stored.identity or incoming.identity,
        orders=list(by_id.values()),
    )


class CustomerRepository:
    """Customer/order persistence with batched, cancellable writes.

    Parameters
    ----------
    store:
        Backend implementing :class:`DocumentStore`; injected, never global.
    batch_size:
        Documents per write or delete batch.
    batch_delay:
        Seconds to pause between batches.
    sleep:
        Sleep function, injectable for tests.
    """

    def __init__(
        self,
        store: DocumentStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay: float = DEFAULT_BATCH_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"Batch size must be positive: {batch_size}")
        if batch_delay < 0:
            raise ValueError(f"Batch delay cannot be negative: {batch_delay}")
        self.store = store
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._sleep = sleep

    def save_all(
        self, orders: Iterable[Order], cancel_event: threading.Event | None = None
    ) -> SaveResult:
        """Write one document per customer, replacing any stored document."""

        orders = list(orders)
        customers = group_orders_by_customer(orders)
        logger.info(
            f"Saving {len(orders)} orders grouped into {len(customers)} customers"
        )
        now = datetime.now(timezone.utc)
        documents = [
            (customer.document_id, customer_to_document(customer, now))
            for customer in customers
        ]
        result = self._write_in_batches(documents, "full", cancel_event)
        result.orders_total = len(orders)
        return result

    def save_incremental(
        self, orders: Iterable[Order], cancel_event: threading.Event | None = None
    ) -> SaveResult:
        """Upsert orders into their customers' documents by identity key."""

        orders = list(orders)
        incoming = group_orders_by_customer(orders)
        try:
            existing = self._fetch_existing(
                [customer.document_id for customer in incoming]
            )
        except Exception as exc:
            logger.error(f"Could not read stored customers before merging: {exc}")
            raise PersistenceError(
                f"Reading stored customers failed; 0/{len(incoming)} customers "
                "were committed",
                committed=0,
                total=len(incoming),
            ) from exc
        logger.info(
            f"Incremental save: {len(orders)} orders for {len(incoming)} customers "
            f"({len(existing)} already stored)"
        )

        now = datetime.now(timezone.utc)
        documents: list[tuple[str, Document]] = []
        for customer in incoming:
            stored = existing.get(customer.document_id)
            if stored is not None:
                customer = merge_customer(
                    document_to_customer(customer.document_id, stored), customer
                )
            documents.append((customer.document_id, customer_to_document(customer, now)))

        result = self._write_in_batches(documents, "incremental", cancel_event)
        result.orders_total = len(orders)
        return result

    def load_customers(self) -> list[Customer]:
        """Read every customer document, most recently updated first."""

        customers = [
            document_to_customer(doc_id, doc)
            for doc_id, doc in self.store.list_documents()
        ]
        logger.info(f"Loaded {len(customers)} customers")
        return customers

    def load_orders(self) -> list[Order]:
        """Read every customer and flatten back to a flat order list."""

        orders = flatten_customers(self.load_customers())
        logger.info(f"Loaded {len(orders)} orders")
        return orders

    def clear(self, cancel_event: threading.Event | None = None) -> int:
        """Delete every customer document and return the number deleted."""

        try:
            doc_ids = [doc_id for doc_id, _ in self.store.list_documents()]
        except Exception as exc:
            logger.error(f"Could not list customer documents to clear: {exc}")
            raise PersistenceError(
                "Listing documents to clear failed; nothing was deleted",
                committed=0,
                total=0,
            ) from exc
        deleted = 0
        for start in range(0, len(doc_ids), self.batch_size):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(f"Clear cancelled after deleting {deleted} documents")
                break
            chunk = doc_ids[start : start + self.batch_size]
            try:
                deleted += self.store.delete_batch(chunk)
            except Exception as exc:
                raise PersistenceError(
                    f"Delete batch failed after {deleted}/{len(doc_ids)} documents",
                    committed=deleted,
                    total=len(doc_ids),
                ) from exc
            if start + self.batch_size < len(doc_ids) and self.batch_delay:
                self._sleep(self.batch_delay)

        logger.info(f"Cleared {deleted} customer documents")
        return deleted

    def latest_order_date(self) -> datetime | None:
        """Return the newest valid order date stored, or None if there is none.

        None means "no data"; it is never conflated with an early date.
        """

        latest: datetime | None = None
        for _, doc in self.store.list_documents():
            for raw in doc.get("orders") or []:
                order_date = _parse_stored_date(raw.get("orderDate"))
                if order_date is not None and (latest is None or order_date > latest):
                    latest = order_date
        logger.info(
            f"Latest stored order date: {latest.isoformat() if latest else 'no data'}"
        )
        return latest

    def _fetch_existing(self, doc_ids: Sequence[str]) -> dict[str, Document]:
        existing: dict[str, Document] = {}
        for start in range(0, len(doc_ids), self.batch_size):
            existing.update(
                self.store.get_documents(doc_ids[start : start + self.batch_size])
            )
        return existing

    def _write_in_batches(
        self,
        documents: Sequence[tuple[str, Document]],
        mode: str,
        cancel_event: threading.Event | None,
    ) -> SaveResult:
        total = len(documents)
        result = SaveResult(mode=mode, customers_total=total)
        for start in range(0, total, self.batch_size):
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.warning(
                    f"Save cancelled after {result.customers_saved}/{total} customers"
                )
                break

            chunk = dict(documents[start : start + self.batch_size])
            batch_number = result.batches_committed + 1
            try:
                self.store.write_batch(chunk)
            except Exception as exc:
                logger.error(
                    f"Batch {batch_number} failed; {result.customers_saved}/{total} "
                    f"customers already committed: {exc}"
                )
                raise PersistenceError(
                    f"Batch {batch_number} failed after {result.customers_saved}/{total} "
                    "customers were committed",
                    committed=result.customers_saved,
                    total=total,
                ) from exc

            result.customers_saved += len(chunk)
            result.batches_committed += 1
            logger.info(
                f"Batch {batch_number}: saved {result.customers_saved}/{total} customers"
            )
            if start + self.batch_size < total and self.batch_delay:
                self._sleep(self.batch_delay)

        result.timestamp = datetime.now(timezone.utc)
        return result
