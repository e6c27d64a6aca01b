"""Insight MCP Tools - product/customer search and sales agent summaries"""

import structlog
from customer_order_rfm.analyses.agents import summarize_agents
from customer_order_rfm.foundation.search import filter_orders, search_suggestions
from fastmcp import Context
from pydantic import BaseModel, Field

from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.state import ORDERS_KEY, get_shared_state

logger = structlog.get_logger(__name__)


class SearchRequest(BaseModel):
    query: str = Field(description="Text to look for in SKUs, descriptions and contacts")
    limit: int = Field(default=10, gt=0, le=100)


class SearchResponse(BaseModel):
    total_results: int
    matching_orders: int
    skus: list[dict] = Field(default_factory=list)
    customers: list[dict] = Field(default_factory=list)
    identities: list[dict] = Field(default_factory=list)


class AgentSummaryRequest(BaseModel):
    zone: str | None = Field(default=None, description="Restrict to a sales zone")
    agent: str | None = Field(default=None, description="Restrict to one agent name")


class AgentCustomer(BaseModel):
    name: str | None
    identity_key: str
    orders: int
    spent: float
    agents: dict[str, int]
    shared: bool


class AgentSummaryResponse(BaseModel):
    zone: str | None
    agent: str | None
    total_customers: int
    total_orders: int
    total_revenue: float
    revenue_per_customer: float
    shared_customers: int
    customers: list[AgentCustomer]


def _session_orders():
    orders = get_shared_state().get(ORDERS_KEY)
    if orders is None:
        raise ValueError(
            "No orders loaded. Run upload_spreadsheets or load_stored_orders first."
        )
    return orders


async def _search_orders_impl(request: SearchRequest, ctx: Context) -> SearchResponse:
    orders = _session_orders()
    suggestions = search_suggestions(orders, request.query, limit=request.limit)
    matching = filter_orders(orders, request.query)
    if suggestions is None:
        await ctx.info(f"No matches for '{request.query}'")
        return SearchResponse(total_results=0, matching_orders=len(matching))

    return SearchResponse(
        total_results=suggestions.total_results,
        matching_orders=len(matching),
        skus=[vars(s) for s in suggestions.skus],
        customers=[vars(c) for c in suggestions.customers],
        identities=[vars(c) for c in suggestions.identities],
    )


async def _summarize_sales_agents_impl(
    request: AgentSummaryRequest, ctx: Context
) -> AgentSummaryResponse:
    summary = summarize_agents(_session_orders(), zone=request.zone, agent=request.agent)
    logger.info(
        "agent_summary_completed",
        zone=request.zone,
        agent=request.agent,
        customers=summary.total_customers,
    )
    return AgentSummaryResponse(
        zone=summary.zone,
        agent=summary.agent,
        total_customers=summary.total_customers,
        total_orders=summary.total_orders,
        total_revenue=float(summary.total_revenue),
        revenue_per_customer=float(summary.revenue_per_customer),
        shared_customers=summary.shared_customers,
        customers=[
            AgentCustomer(
                name=history.customer.name,
                identity_key=history.customer.identity_key,
                orders=len(history.customer.orders),
                spent=float(history.customer.total_spent),
                agents=history.agents,
                shared=history.shared,
            )
            for history in summary.customers
        ],
    )


@mcp.tool()
async def search_orders(request: SearchRequest, ctx: Context) -> SearchResponse:
    """
    Suggest SKUs, customers and national identities matching a query.

    SKUs are ranked by how many line items match. Needs orders in the session.
    """
    return await _search_orders_impl(request, ctx)


@mcp.tool()
async def summarize_sales_agents(
    request: AgentSummaryRequest, ctx: Context
) -> AgentSummaryResponse:
    """
    Summarise customers, orders and revenue for a sales zone and/or agent.

    Each customer lists the order count per agent over their full history,
    flagging customers shared between agents.
    """
    return await _summarize_sales_agents_impl(request, ctx)
