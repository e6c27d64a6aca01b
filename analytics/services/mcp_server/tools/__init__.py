"""MCP Tools for Customer RFM Analytics."""

from .health_check import health_check
from .insights import search_orders, summarize_sales_agents
from .rfm import export_rfm_segments, run_rfm_analysis
from .storage import clear_customer_store, get_latest_order_date, load_stored_orders
from .upload import upload_spreadsheets

__all__ = [
    # Ingestion
    "upload_spreadsheets",
    # Analysis
    "export_rfm_segments",
    "run_rfm_analysis",
    "search_orders",
    "summarize_sales_agents",
    # Storage
    "clear_customer_store",
    "get_latest_order_date",
    "load_stored_orders",
    # Observability
    "health_check",
]
