"""RFM MCP Tool - score customers and segment them"""

from datetime import datetime
from pathlib import Path
from typing import Literal

import structlog
from customer_order_rfm.foundation.orders import group_orders_by_customer
from customer_order_rfm.foundation.rfm import RFMEngine
from customer_order_rfm.foundation.segments import SegmentTag
from customer_order_rfm.monitoring.exports import export_rfm_profiles
from fastmcp import Context
from pybreaker import CircuitBreakerError
from pydantic import BaseModel, Field

from analytics.services.mcp_server.instance import mcp
from analytics.services.mcp_server.observability import get_tracer
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


class RunRFMRequest(BaseModel):
    """Request to run the RFM segmentation."""

    reference_date: datetime | None = Field(
        default=None, description="Date recency is measured from (default: now)"
    )
    query: str | None = Field(
        default=None,
        description="Comma/newline separated SKU terms; when set, only matching "
        "line items count towards monetary value",
    )
    source: Literal["store", "session"] = Field(
        default="store",
        description="'store' reads persisted customers; 'session' uses the orders "
        "from the last upload",
    )


class SegmentSummary(BaseModel):
    """Per-segment statistics."""

    segment: str
    label: str
    count: int
    percentage: float
    total_revenue: float
    avg_recency: int | None
    avg_frequency: float
    avg_monetary: float
    action: str


class RFMAnalysisResponse(BaseModel):
    """RFM analysis summary."""

    total_customers: int
    total_segments: int
    reference_date: str
    search_terms: list[str]
    segments: list[SegmentSummary]
    unmatched_count: int


class ExportRFMRequest(BaseModel):
    """Request to export the last RFM analysis."""

    output_path: str = Field(description="Destination .csv or .xlsx file")
    segments: list[str] | None = Field(
        default=None, description="Only export these segment names (default: all)"
    )


class ExportRFMResponse(BaseModel):
    output_path: str
    rows: int


def _load_customers(source: str):
    if source == "session":
        orders = get_shared_state().get(ORDERS_KEY)
        if orders is None:
            raise ValueError("No uploaded orders in this session. Run upload_spreadsheets first.")
        return group_orders_by_customer(orders)
    try:
        return resilient_repository().load_customers()
    except CircuitBreakerError as exc:
        raise store_unavailable(exc) from exc


async def _run_rfm_analysis_impl(
    request: RunRFMRequest, ctx: Context
) -> RFMAnalysisResponse:
    """Implementation of RFM analysis logic."""
    await ctx.info(f"Starting RFM analysis from {request.source}")

    customers = _load_customers(request.source)

    await ctx.report_progress(0.3, "Scoring customers...")

    with get_tracer().start_as_current_span("run_rfm_analysis") as span:
        analysis = RFMEngine().analyze(
            customers, reference_date=request.reference_date, query=request.query
        )
        span.set_attribute("rfm.customers", analysis.total_customers)
        span.set_attribute("rfm.segments", analysis.total_segments)

    get_shared_state().set(RFM_ANALYSIS_KEY, analysis)

    segments = [
        SegmentSummary(
            segment=stats.segment.value,
            label=stats.info.label,
            count=stats.count,
            percentage=float(stats.percentage),
            total_revenue=float(stats.total_revenue),
            avg_recency=stats.avg_recency,
            avg_frequency=float(stats.avg_frequency),
            avg_monetary=float(stats.avg_monetary),
            action=stats.info.action,
        )
        for stats in analysis.stats.values()
    ]

    logger.info(
        "rfm_analysis_completed",
        customers=analysis.total_customers,
        segments=analysis.total_segments,
        unmatched=len(analysis.unmatched),
    )
    await ctx.info(
        f"RFM analysis complete: {analysis.total_customers} customers in "
        f"{analysis.total_segments} segments"
    )

    return RFMAnalysisResponse(
        total_customers=analysis.total_customers,
        total_segments=analysis.total_segments,
        reference_date=analysis.reference_date.isoformat(),
        search_terms=analysis.search_terms,
        segments=segments,
        unmatched_count=len(analysis.unmatched),
    )


async def _export_rfm_segments_impl(
    request: ExportRFMRequest, ctx: Context
) -> ExportRFMResponse:
    analysis = get_shared_state().get(RFM_ANALYSIS_KEY)
    if analysis is None:
        raise ValueError("RFM analysis not found. Run run_rfm_analysis first.")

    segments = None
    if request.segments:
        try:
            segments = [SegmentTag(name) for name in request.segments]
        except ValueError as exc:
            valid = ", ".join(tag.value for tag in SegmentTag)
            raise ValueError(f"Unknown segment ({exc}); valid segments: {valid}") from exc

    output_path = Path(request.output_path).expanduser().resolve()
    frame = export_rfm_profiles(analysis, output_path, segments=segments)
    await ctx.info(f"Exported {len(frame)} customers to {output_path}")
    return ExportRFMResponse(output_path=str(output_path), rows=len(frame))


@mcp.tool()
async def run_rfm_analysis(
    request: RunRFMRequest, ctx: Context
) -> RFMAnalysisResponse:
    """
    Score customers on Recency, Frequency and Monetary value and segment them.

    Scores are population-relative quintiles (1-5). Segments come from an
    ordered rule cascade (first match wins) with 'Compradores Ocasionales'
    as the fallback.

    Args:
        request: Reference date, optional SKU filter and the customer source

    Returns:
        Per-segment counts, revenue and averages
    """
    return await _run_rfm_analysis_impl(request, ctx)


@mcp.tool()
async def export_rfm_segments(
    request: ExportRFMRequest, ctx: Context
) -> ExportRFMResponse:
    """
    Export the customers of the last RFM analysis to CSV or Excel.

    Args:
        request: Output path and optional segment filter

    Returns:
        Where the file was written and how many rows it holds
    """
    return await _export_rfm_segments_impl(request, ctx)
