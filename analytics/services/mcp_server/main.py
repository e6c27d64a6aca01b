"""
Customer RFM Analytics MCP Server

Exposes the spreadsheet upload workflow, RFM segmentation, search and sales
agent summaries as MCP tools.
"""

import logging
import sys
from contextlib import asynccontextmanager

import structlog

from analytics.services.mcp_server.config import ServiceSettings
from analytics.services.mcp_server.instance import VERSION, mcp

# Log to stderr; stdout carries the MCP JSON protocol
logging.basicConfig(
    format="%(message)s",
    stream=sys.stderr,
    level=logging.INFO,
)

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def app_lifespan(app):
    """Configure tracing and open the document store on startup."""
    from analytics.services.mcp_server.observability import configure_observability
    from analytics.services.mcp_server.state import get_repository

    settings = ServiceSettings.from_env()
    logger.info(
        "mcp_server_starting",
        version=VERSION,
        environment=settings.environment,
        store_url=settings.store_url.split("@")[-1],
    )

    configure_observability(
        environment=settings.environment,
        otlp_endpoint=settings.otlp_endpoint,
        sampling_rate=settings.sampling_rate,
    )
    get_repository(settings)

    yield

    logger.info("mcp_server_stopping")


mcp.lifespan = app_lifespan

# Each module registers its tools with @mcp.tool(); import before mcp.run()
from analytics.services.mcp_server.tools import (  # noqa: E402, F401
    health_check,
    insights,
    rfm,
    storage,
    upload,
)

logger.info(
    "mcp_server_initialized",
    tools=[
        "upload_spreadsheets",
        "run_rfm_analysis",
        "export_rfm_segments",
        "search_orders",
        "summarize_sales_agents",
        "get_latest_order_date",
        "load_stored_orders",
        "clear_customer_store",
        "health_check",
    ],
)


if __name__ == "__main__":
    mcp.run()
