"""Upload MCP Tool - process order/billing spreadsheets and persist customers"""

import asyncio
from typing import Literal

import structlog
from customer_order_rfm.foundation.normalizer import OrderNormalizer
from customer_order_rfm.sync import UploadWorkflow, load_agents
from fastmcp import Context
from pybreaker import CircuitBreakerError
from pydantic import BaseModel, Field

from analytics.services.mcp_server.config import ServiceSettings
from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.observability import get_tracer
from analytics.services.mcp_server.state import (
    LAST_UPLOAD_KEY,
    ORDERS_KEY,
    RFM_ANALYSIS_KEY,
    get_shared_state,
)
from analytics.services.mcp_server.tools._common import (
    resilient_repository,
    resolve_input_file,
    store_unavailable,
)

logger = structlog.get_logger(__name__)


class UploadRequest(BaseModel):
    """Request to upload an order report and its billing detail."""

    order_file: str = Field(description="Path to the order report (.xlsx/.csv)")
    billing_file: str = Field(description="Path to the billing detail (.xlsx/.csv)")
    mode: Literal["full", "incremental"] = Field(
        default="full",
        description="'full' replaces stored customers; 'incremental' only adds "
        "orders newer than the latest stored order",
    )
    include_undelivered: bool = Field(
        default=False, description="Keep orders whose status is not 'Entregado'"
    )
    persist: bool = Field(
        default=True, description="Write customers to the store (False = dry run)"
    )


class UploadResponse(BaseModel):
    """Upload summary."""

    mode: str
    persistence_status: str
    orders_processed: int
    customers_saved: int
    customers_total: int
    rows_read: int
    filtered_by_status: int
    duplicates_dropped: int
    invalid_dates: int
    orphan_billing: int
    unmatched_orders: int
    excluded_by_cutoff: int
    cutoff: str | None = None
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


async def _upload_spreadsheets_impl(
    request: UploadRequest, ctx: Context
) -> UploadResponse:
    """Implementation of the upload workflow."""
    await ctx.info(f"Starting {request.mode} upload")

    order_path = resolve_input_file(request.order_file)
    billing_path = resolve_input_file(request.billing_file)

    settings = ServiceSettings.from_env()
    agents = load_agents(settings.agents_file) if settings.agents_file else None
    workflow = UploadWorkflow(
        resilient_repository(),
        normalizer=OrderNormalizer(
            delivered_only=not request.include_undelivered, agents=agents
        ),
    )

    await ctx.report_progress(0.1, "Reading and reconciling spreadsheets...")

    tracer = get_tracer()
    with tracer.start_as_current_span("upload_spreadsheets") as span:
        span.set_attribute("upload.mode", request.mode)
        # File reads, batch pauses and store calls block
        outcome = await asyncio.to_thread(
            workflow.upload,
            order_path,
            billing_path,
            mode=request.mode,
            persist=request.persist,
        )
        span.set_attribute("upload.orders", len(outcome.orders))
        span.set_attribute("upload.persistence_status", outcome.persistence_status)

    await ctx.report_progress(0.9, "Caching processed orders...")

    shared_state = get_shared_state()
    shared_state.set(ORDERS_KEY, outcome.orders)
    shared_state.set(LAST_UPLOAD_KEY, outcome)
    # Any earlier analysis no longer reflects the session's orders
    shared_state.pop(RFM_ANALYSIS_KEY)

    if isinstance(outcome.failure, CircuitBreakerError):
        await ctx.warning(
            f"Processed {len(outcome.orders)} orders are available for this "
            "session but were not persisted"
        )
        raise store_unavailable(outcome.failure) from outcome.failure

    summary = outcome.processing.summary()
    save = outcome.save_result
    logger.info(
        "upload_completed",
        mode=request.mode,
        orders=summary["orders"],
        persistence_status=outcome.persistence_status,
    )
    if outcome.error:
        await ctx.warning(f"Persistence failed: {outcome.error}")
    await ctx.info(
        f"Upload complete: {summary['orders']} orders, "
        f"persistence {outcome.persistence_status}"
    )

    return UploadResponse(
        mode=outcome.mode,
        persistence_status=outcome.persistence_status,
        orders_processed=summary["orders"],
        customers_saved=save.customers_saved if save else 0,
        customers_total=save.customers_total if save else 0,
        rows_read=summary["rows_read"],
        filtered_by_status=summary["filtered_by_status"],
        duplicates_dropped=summary["duplicates_dropped"],
        invalid_dates=summary["invalid_dates"],
        orphan_billing=summary["orphan_billing"],
        unmatched_orders=summary["unmatched_orders"],
        excluded_by_cutoff=summary["excluded_by_cutoff"],
        cutoff=summary["cutoff"],
        warnings=outcome.warnings,
        error=outcome.error,
    )


@mcp.tool()
async def upload_spreadsheets(request: UploadRequest, ctx: Context) -> UploadResponse:
    """
    Reconcile an order report with its billing detail and persist customers.

    In 'full' mode the store is cleared and rebuilt from the files. In
    'incremental' mode only orders dated after the latest stored order are
    added, merged into existing customers by email/phone/name.

    Args:
        request: File paths and upload mode

    Returns:
        Processing diagnostics and the persistence outcome
    """
    return await _upload_spreadsheets_impl(request, ctx)
