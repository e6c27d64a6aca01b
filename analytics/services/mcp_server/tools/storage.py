"""Storage MCP Tools - inspect, reload and clear the customer store"""

import structlog
from fastmcp import Context
from pybreaker import CircuitBreakerError
from pydantic import BaseModel, Field

from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.state import (
    ORDERS_KEY,
    RFM_ANALYSIS_KEY,
    get_shared_state,
)
from analytics.services.mcp_server.tools._common import (
    resilient_repository,
    store_unavailable,
)

logger = structlog.get_logger(__name__)


class LatestOrderDateResponse(BaseModel):
    """Most recent stored order date (the incremental upload cutoff)."""

    has_data: bool
    latest_order_date: str | None = None


class LoadStoredOrdersResponse(BaseModel):
    customers: int
    orders: int
    date_range: tuple[str, str] | None = None


class ClearStoreRequest(BaseModel):
    confirm: bool = Field(
        default=False, description="Must be true; deletes every stored customer"
    )


class ClearStoreResponse(BaseModel):
    deleted: int


async def _get_latest_order_date_impl(ctx: Context) -> LatestOrderDateResponse:
    try:
        latest = resilient_repository().latest_order_date()
    except CircuitBreakerError as exc:
        raise store_unavailable(exc) from exc

    if latest is None:
        await ctx.info("Store is empty; the next incremental upload will take every dated order")
        return LatestOrderDateResponse(has_data=False)
    return LatestOrderDateResponse(has_data=True, latest_order_date=latest.isoformat())


async def _load_stored_orders_impl(ctx: Context) -> LoadStoredOrdersResponse:
    await ctx.info("Loading stored customers")
    try:
        customers = resilient_repository().load_customers()
    except CircuitBreakerError as exc:
        raise store_unavailable(exc) from exc

    orders = [order for customer in customers for order in customer.orders]
    shared_state = get_shared_state()
    shared_state.set(ORDERS_KEY, orders)
    shared_state.pop(RFM_ANALYSIS_KEY)

    dates = [order.order_date for order in orders if order.date_valid]
    date_range = (min(dates).isoformat(), max(dates).isoformat()) if dates else None
    logger.info("stored_orders_loaded", customers=len(customers), orders=len(orders))
    return LoadStoredOrdersResponse(
        customers=len(customers), orders=len(orders), date_range=date_range
    )


async def _clear_customer_store_impl(
    request: ClearStoreRequest, ctx: Context
) -> ClearStoreResponse:
    if not request.confirm:
        raise ValueError("Refusing to clear the store without confirm=true")
    try:
        deleted = resilient_repository().clear()
    except CircuitBreakerError as exc:
        raise store_unavailable(exc) from exc

    get_shared_state().pop(RFM_ANALYSIS_KEY)
    logger.warning("customer_store_cleared", deleted=deleted)
    await ctx.info(f"Deleted {deleted} customer documents")
    return ClearStoreResponse(deleted=deleted)


@mcp.tool()
async def get_latest_order_date(ctx: Context) -> LatestOrderDateResponse:
    """
    Return the most recent order date in the store.

    This is the cutoff an incremental upload uses; has_data=False means the
    store is empty.
    """
    return await _get_latest_order_date_impl(ctx)


@mcp.tool()
async def load_stored_orders(ctx: Context) -> LoadStoredOrdersResponse:
    """
    Load every stored customer into the session for search and agent analysis.
    """
    return await _load_stored_orders_impl(ctx)


@mcp.tool()
async def clear_customer_store(
    request: ClearStoreRequest, ctx: Context
) -> ClearStoreResponse:
    """
    Delete every stored customer document. Requires confirm=true.
    """
    return await _clear_customer_store_impl(request, ctx)
