"""Free-text order search: SKU lists, customer lookups and suggestions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from customer_order_rfm.foundation.orders import Order

MIN_SUGGESTION_QUERY = 2
MAX_SUGGESTIONS = 10
IDENTITY_NOT_FOUND = "No se encontró"

_TERM_SEPARATORS = re.compile(r"[\n,]+")


def parse_search_terms(query: str | None) -> list[str]:
    """Split a pasted SKU list or search box value into lower-case terms.

    Terms are separated by commas or newlines; blanks are dropped.
    """

    if not query:
        return []
    terms = (term.strip().lower() for term in _TERM_SEPARATORS.split(query))
    return [term for term in terms if term]


def filter_orders(orders: Sequence[Order], query: str | None) -> list[Order]:
    """Keep orders containing an item whose SKU matches one of the terms.

    When the query is a single term it also matches the customer name,
    email, phone and national identity.
    """

    terms = parse_search_terms(query)
    if not terms:
        return list(orders)

    matches: list[Order] = []
    for order in orders:
        has_sku = any(
            term in (item.sku or "").lower() for item in order.items for term in terms
        )
        if has_sku:
            matches.append(order)
            continue
        if len(terms) == 1:
            term = terms[0]
            fields = (order.customer_name, order.email, order.phone, order.identity)
            if any(term in (value or "").lower() for value in fields):
                matches.append(order)
    return matches


@dataclass
class SkuSuggestion:
    sku: str
    description: str
    count: int = 1


@dataclass
class CustomerSuggestion:
    name: str
    email: str = ""
    phone: str = ""
    identity: str = ""


@dataclass
class Suggestions:
    skus: list[SkuSuggestion] = field(default_factory=list)
    customers: list[CustomerSuggestion] = field(default_factory=list)
    identities: list[CustomerSuggestion] = field(default_factory=list)

    @property
    def total_results(self) -> int:
        return len(self.skus) + len(self.customers) + len(self.identities)


def search_suggestions(
    orders: Iterable[Order], query: str | None, limit: int = MAX_SUGGESTIONS
) -> Suggestions | None:
    """Suggest SKUs, customers and identities matching ``query``.

    SKU suggestions are ranked by how many line items match. Returns None
    for queries shorter than two characters or when nothing matches.
    """

    if not query or len(query.strip()) < MIN_SUGGESTION_QUERY:
        return None
    needle = query.strip().lower()

    skus: dict[str, SkuSuggestion] = {}
    customers: dict[str, CustomerSuggestion] = {}
    identities: dict[str, CustomerSuggestion] = {}

    for order in orders:
        for item in order.items:
            sku = item.sku or ""
            description = item.description or ""
            if needle in sku.lower() or needle in description.lower():
                if sku in skus:
                    skus[sku].count += 1
                else:
                    skus[sku] = SkuSuggestion(sku=sku, description=description)

        name = order.customer_name or ""
        contact_fields = (name, order.email or "", order.phone or "")
        if any(needle in value.lower() for value in contact_fields):
            key = name.lower()
            if key not in customers:
                customers[key] = CustomerSuggestion(
                    name=name or "Sin nombre",
                    email=order.email or "",
                    phone=order.phone or "",
                    identity=order.identity or "",
                )

        identity = order.identity or ""
        if identity and identity != IDENTITY_NOT_FOUND and needle in identity.lower():
            identities.setdefault(
                identity.lower(),
                CustomerSuggestion(name=name, phone=order.phone or "", identity=identity),
            )

    result = Suggestions(
        skus=sorted(skus.values(), key=lambda s: s.count, reverse=True)[:limit],
        customers=list(customers.values())[:limit],
        identities=list(identities.values())[:limit],
    )
    return result if result.total_results else None
