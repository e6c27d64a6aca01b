"""Sales agent attribution summaries.

Answers, for a zone and/or a single agent:
- How many customers and orders were handled?
- How much revenue did they bring, overall and per customer?
- Which of those customers were also served by other agents?

The slice is taken from orders attributed to the selected agent/zone, but
each customer's agent history is computed over the full order list so that
shared customers are visible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from customer_order_rfm.foundation.orders import (
    Customer,
    Order,
    group_orders_by_customer,
    identity_key,
)

logger = logging.getLogger(__name__)

#: Label used for orders whose POS user is not mapped to an agent.
UNASSIGNED_AGENT = "Sin Asignar"

# Monetary precision for summary values (e.g., 1234.57)
MONETARY_PRECISION = Decimal("0.01")


@dataclass(frozen=True)
class CustomerAgentHistory:
    """Order counts per agent for a single customer.

    Attributes
    ----------
    customer:
        Customer as seen in the selected slice (slice orders only).
    agents:
        Mapping ``agent name -> order count`` over the customer's full history.
    """

    customer: Customer
    agents: dict[str, int] = field(default_factory=dict)

    @property
    def shared(self) -> bool:
        """True when more than one agent has served the customer."""
        return len(self.agents) > 1

    @property
    def total_agents(self) -> int:
        return len(self.agents)


@dataclass(frozen=True)
class AgentSummary:
    """Headline numbers for an agent/zone slice."""

    zone: str | None
    agent: str | None
    total_customers: int
    total_orders: int
    total_revenue: Decimal
    revenue_per_customer: Decimal
    customers: tuple[CustomerAgentHistory, ...] = ()

    def __post_init__(self) -> None:
        if self.total_customers < 0:
            raise ValueError(
                f"Total customers cannot be negative: {self.total_customers}"
            )
        if self.total_orders < self.total_customers:
            raise ValueError(
                f"Total orders ({self.total_orders}) cannot be lower than "
                f"total customers ({self.total_customers})"
            )

    @property
    def shared_customers(self) -> int:
        return sum(1 for history in self.customers if history.shared)


def _in_slice(order: Order, zone: str | None, agent: str | None) -> bool:
    if zone is not None and order.agent_zone != zone:
        return False
    if agent is not None and order.agent_name != agent:
        return False
    return True


def agent_history(orders: Iterable[Order]) -> dict[str, dict[str, int]]:
    """Count orders per agent for every identity key."""

    history: dict[str, dict[str, int]] = {}
    for order in orders:
        counts = history.setdefault(identity_key(order), {})
        name = order.agent_name or UNASSIGNED_AGENT
        counts[name] = counts.get(name, 0) + 1
    return history


def summarize_agents(
    orders: Iterable[Order],
    zone: str | None = None,
    agent: str | None = None,
) -> AgentSummary:
    """Summarise the orders attributed to ``zone`` and/or ``agent``.

    Parameters
    ----------
    orders:
        Full order list (the history of every customer).
    zone:
        Restrict the slice to orders whose agent works in this zone.
    agent:
        Restrict the slice to orders attributed to this agent name.

    Returns
    -------
    AgentSummary
        Slice totals plus one :class:`CustomerAgentHistory` per customer in
        the slice, in first-seen order.
    """

    orders = list(orders)
    selected = [order for order in orders if _in_slice(order, zone, agent)]
    customers = group_orders_by_customer(selected)

    history = agent_history(orders)
    total_revenue = sum((order.total_amount for order in selected), Decimal("0"))
    per_customer = (
        (total_revenue / len(customers)).quantize(
            MONETARY_PRECISION, rounding=ROUND_HALF_UP
        )
        if customers
        else Decimal("0")
    )

    logger.info(
        f"Agent slice zone={zone!r} agent={agent!r}: {len(customers)} customers, "
        f"{len(selected)} orders"
    )

    return AgentSummary(
        zone=zone,
        agent=agent,
        total_customers=len(customers),
        total_orders=len(selected),
        total_revenue=total_revenue,
        revenue_per_customer=per_customer,
        customers=tuple(
            CustomerAgentHistory(
                customer=customer,
                agents=dict(history.get(customer.identity_key, {})),
            )
            for customer in customers
        ),
    )
