"""Foundational building blocks for order reconciliation and RFM analysis.

This package exposes the canonical order/customer model, the order-report
normaliser, the billing aggregator, the dataset joiner and the RFM engine
with its segment rule cascade.
"""

from .billing import BillingAggregate, BillingAggregator
from .joiner import DatasetJoiner, JoinResult, filter_orders_after
from .normalizer import (
    DEFAULT_DATE_FORMATS,
    NormalizationReport,
    OrderNormalizer,
    parse_amount,
    parse_order_date,
)
from .orders import (
    Customer,
    LineItem,
    Order,
    OrderPrecursor,
    SalesAgent,
    document_id_for_key,
    flatten_customers,
    group_orders_by_customer,
    identity_key,
    to_naive_utc,
)
from .rfm import (
    RFMAnalysis,
    RFMEngine,
    RFMMetrics,
    RFMProfile,
    SegmentStats,
    perform_rfm_analysis,
)
from .search import filter_orders, parse_search_terms, search_suggestions
from .segments import DEFAULT_RULES, SegmentRule, SegmentTag, get_segment_info

__all__ = [
    "BillingAggregate",
    "BillingAggregator",
    "Customer",
    "DEFAULT_DATE_FORMATS",
    "DEFAULT_RULES",
    "DatasetJoiner",
    "JoinResult",
    "LineItem",
    "NormalizationReport",
    "Order",
    "OrderNormalizer",
    "OrderPrecursor",
    "RFMAnalysis",
    "RFMEngine",
    "RFMMetrics",
    "RFMProfile",
    "SalesAgent",
    "SegmentRule",
    "SegmentStats",
    "SegmentTag",
    "document_id_for_key",
    "filter_orders",
    "filter_orders_after",
    "flatten_customers",
    "get_segment_info",
    "group_orders_by_customer",
    "identity_key",
    "parse_amount",
    "parse_order_date",
    "parse_search_terms",
    "perform_rfm_analysis",
    "search_suggestions",
    "to_naive_utc",
]
