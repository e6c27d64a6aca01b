"""Export RFM results and SKU purchase reports to tabular formats.

Both exporters write CSV or XLSX depending on the output suffix and return
the DataFrame they wrote, so callers can reuse it (e.g., in a notebook).
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd

from customer_order_rfm.foundation.orders import Customer
from customer_order_rfm.foundation.rfm import RFMAnalysis, RFMProfile
from customer_order_rfm.foundation.search import IDENTITY_NOT_FOUND, parse_search_terms
from customer_order_rfm.foundation.segments import SegmentTag

logger = logging.getLogger(__name__)

RFM_EXPORT_COLUMNS = (
    "name",
    "email",
    "phone",
    "city",
    "identity",
    "recency",
    "frequency",
    "monetary",
    "r_score",
    "f_score",
    "m_score",
    "total_score",
    "segment",
)

SKU_REPORT_BASE_COLUMNS = ("name", "email", "phone", "identity", "total_spent")

_SUPPORTED_SUFFIXES = (".csv", ".xlsx")


def _write_frame(frame: pd.DataFrame, output_path: Path, sheet_name: str) -> None:
    suffix = output_path.suffix.lower()
    if suffix not in _SUPPORTED_SUFFIXES:
        raise ValueError(
            f"Unsupported export format '{suffix}'; expected one of {_SUPPORTED_SUFFIXES}"
        )
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if suffix == ".xlsx":
        frame.to_excel(output_path, index=False, sheet_name=sheet_name, engine="openpyxl")
    else:
        frame.to_csv(output_path, index=False)


def _profile_record(profile: RFMProfile) -> dict[str, object]:
    customer = profile.customer
    return {
        "name": customer.name or "",
        "email": customer.email or "",
        "phone": customer.phone or "",
        "city": customer.city or "",
        "identity": customer.identity or IDENTITY_NOT_FOUND,
        # Customers without any dated order have infinite recency
        "recency": None if math.isinf(profile.recency) else int(profile.recency),
        "frequency": profile.frequency,
        "monetary": float(profile.monetary),
        "r_score": profile.r_score,
        "f_score": profile.f_score,
        "m_score": profile.m_score,
        "total_score": profile.total_score,
        "segment": profile.segment.value,
    }


def export_rfm_profiles(
    analysis: RFMAnalysis,
    output_path: str | Path,
    segments: Iterable[SegmentTag] | None = None,
) -> pd.DataFrame:
    """Export scored customers with their segment.

    Parameters
    ----------
    analysis:
        Result of :meth:`RFMEngine.analyze`.
    output_path:
        Destination file; ``.csv`` or ``.xlsx``.
    segments:
        Optional subset of segments to export (default: every customer).

    Returns
    -------
    pd.DataFrame
        The exported rows, columns in :data:`RFM_EXPORT_COLUMNS` order.
    """
    output_path = Path(output_path)
    wanted = set(segments) if segments is not None else None

    records = [
        _profile_record(profile)
        for profile in analysis.profiles
        if wanted is None or profile.segment in wanted
    ]
    frame = pd.DataFrame.from_records(records, columns=list(RFM_EXPORT_COLUMNS))
    # Keep recency as nullable integers rather than floats with NaN
    frame["recency"] = frame["recency"].astype("Int64")

    _write_frame(frame, output_path, sheet_name="RFM")
    logger.info(f"Exported {len(frame)} RFM profiles to {output_path}")
    return frame


def _month_range(dates: Sequence[datetime]) -> list[str]:
    if not dates:
        return []
    start, end = min(dates), max(dates)
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append(f"{year:04d}-{month:02d}")
        month += 1
        if month > 12:
            year, month = year + 1, 1
    return months


def export_sku_monthly_report(
    customers: Sequence[Customer],
    output_path: str | Path,
    query: str | None = None,
) -> pd.DataFrame:
    """Export per-customer quantities bought per month and SKU.

    One row per customer, one column per ``"<YYYY-MM> - <SKU>"`` pair covering
    every month between the first and the last dated order. Only SKUs that
    contain one of the search terms in ``query`` are counted (all SKUs when
    the query is empty). Undated orders are skipped.
    """
    output_path = Path(output_path)
    terms = parse_search_terms(query)

    def matches(sku: str | None) -> bool:
        return bool(sku) and (not terms or any(term in sku.lower() for term in terms))

    dates: list[datetime] = []
    skus: list[str] = []
    per_customer: list[dict[str, Decimal]] = []

    for customer in customers:
        quantities: dict[str, Decimal] = {}
        for order in customer.orders:
            if not order.date_valid:
                continue
            month = order.order_date.strftime("%Y-%m")
            for item in order.items:
                if not matches(item.sku):
                    continue
                if item.sku not in skus:
                    skus.append(item.sku)
                dates.append(order.order_date)
                key = f"{month} - {item.sku}"
                quantities[key] = quantities.get(key, Decimal("0")) + item.quantity
        per_customer.append(quantities)

    sku_columns = [f"{month} - {sku}" for month in _month_range(dates) for sku in skus]

    records = []
    for customer, quantities in zip(customers, per_customer):
        record: dict[str, object] = {
            "name": customer.name or "",
            "email": customer.email or "",
            "phone": customer.phone or "",
            "identity": customer.identity or "",
            "total_spent": float(customer.total_spent),
        }
        for column in sku_columns:
            record[column] = float(quantities.get(column, Decimal("0")))
        records.append(record)

    frame = pd.DataFrame.from_records(
        records, columns=list(SKU_REPORT_BASE_COLUMNS) + sku_columns
    )
    _write_frame(frame, output_path, sheet_name="Reporte")
    logger.info(
        f"Exported SKU report for {len(frame)} customers "
        f"({len(sku_columns)} month/SKU columns) to {output_path}"
    )
    return frame
