"""Normalisation of order-report rows.

A malformed row never aborts the batch: unparseable dates are kept and
flagged, unparseable amounts default to zero. Only a file that lacks the
required columns entirely is rejected (:class:`MissingColumnsError`).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Sequence

from customer_order_rfm.foundation.orders import (
    OrderPrecursor,
    SalesAgent,
    to_naive_utc,
)
from customer_order_rfm.ingestion.columns import (
    ORDER_REPORT_COLUMNS,
    ColumnMapping,
    normalise_header,
)

logger = logging.getLogger(__name__)

#: Status an order-report row must carry to be kept.
DELIVERED_STATUS = "Entregado"

#: Day-first formats used by the order-report export, then ISO variants.
DEFAULT_DATE_FORMATS = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y %I:%M:%S %p",
    "%d/%m/%Y %I:%M %p",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)

# Spreadsheet serial day 0 (1899-12-30 accounts for the 1900 leap-year bug)
_EXCEL_EPOCH = datetime(1899, 12, 30)
_EXCEL_SERIAL_RANGE = (1, 2_958_465)  # 1900-01-01 .. 9999-12-31

_CURRENCY_PATTERN = re.compile(r"(?i)(hnl|usd|lps\.?|l\.)")
_NON_NUMERIC = re.compile(r"[^\d.,()\-]")
_NON_DIGIT = re.compile(r"\D")
_LEADING_ZEROS = re.compile(r"^0+")
_INTERNAL_SUFFIX = re.compile(r"-I$", re.IGNORECASE)


def parse_order_date(
    value: Any, formats: Sequence[str] = DEFAULT_DATE_FORMATS
) -> datetime | None:
    """Parse an order-report date cell.

    Accepts native datetimes, spreadsheet serial numbers and strings in one
    of ``formats`` (falling back to ISO-8601). Aware timestamps are
    converted to naive UTC. Returns None when nothing matches.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_serial(float(value))

    text = str(value).strip()
    if not text:
        return None

    for fmt in formats:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        return to_naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    # Serial numbers that arrive as text ("45123" or "45123.5")
    try:
        return _from_serial(float(text))
    except ValueError:
        return None


def _from_serial(serial: float) -> datetime | None:
    low, high = _EXCEL_SERIAL_RANGE
    if not low <= serial <= high:
        return None
    return _EXCEL_EPOCH + timedelta(days=serial)


def parse_amount(value: Any) -> Decimal:
    """Parse a currency cell into a Decimal, defaulting to 0.

    Handles currency symbols, ``1,234.56`` and ``1.234,56`` styles and
    accounting-style negatives such as ``(150.00)``.
    """

    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, (int, float)):
        try:
            parsed = Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")
        return parsed if parsed.is_finite() else Decimal("0")

    text = _NON_NUMERIC.sub("", _CURRENCY_PATTERN.sub("", str(value)))
    if not text:
        return Decimal("0")

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    if text.startswith("-"):
        negative = not negative
        text = text[1:]

    text = _strip_group_separators(text)
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return Decimal("0")
    if not parsed.is_finite():
        return Decimal("0")
    return -parsed if negative else parsed


def _strip_group_separators(text: str) -> str:
    has_comma = "," in text
    has_dot = "." in text
    if has_comma and has_dot:
        # Whichever separator appears last is the decimal mark
        if text.rfind(",") > text.rfind("."):
            return text.replace(".", "").replace(",", ".")
        return text.replace(",", "")
    if has_comma:
        head, _, tail = text.rpartition(",")
        if text.count(",") == 1 and len(tail) != 3:
            return f"{head}.{tail}"
        return text.replace(",", "")
    if text.count(".") > 1:
        return text.replace(".", "")
    return text


def normalise_email(value: Any) -> str | None:
    text = str(value or "").strip().lower()
    return text or None


def normalise_phone(value: Any) -> str | None:
    digits = _NON_DIGIT.sub("", str(value or ""))
    return digits or None


def normalise_text(value: Any) -> str | None:
    text = " ".join(str(value or "").split())
    return text or None


def normalise_order_id(raw_id: str) -> str:
    """Strip leading zeros and the ``-I`` suffix from an order number."""

    cleaned = _LEADING_ZEROS.sub("", raw_id.strip())
    return _INTERNAL_SUFFIX.sub("", cleaned)


@dataclass
class NormalizationReport:
    """Output of :meth:`OrderNormalizer.normalize` plus row-level counters."""

    precursors: list[OrderPrecursor] = field(default_factory=list)
    rows_read: int = 0
    filtered_by_status: int = 0
    duplicates_dropped: int = 0
    missing_order_id: int = 0
    invalid_dates: list[str] = field(default_factory=list)


class OrderNormalizer:
    """Turn order-report rows into :class:`OrderPrecursor` records.

    Parameters
    ----------
    date_formats:
        ``strptime`` formats tried in order for text dates.
    delivered_only:
        Keep only rows whose status column equals :data:`DELIVERED_STATUS`.
        Ignored when the file has no status column.
    agents:
        Optional mapping of point-of-sale user email to :class:`SalesAgent`.
    """

    def __init__(
        self,
        date_formats: Sequence[str] = DEFAULT_DATE_FORMATS,
        delivered_only: bool = True,
        agents: Mapping[str, SalesAgent] | None = None,
        mapping: ColumnMapping = ORDER_REPORT_COLUMNS,
    ) -> None:
        self.date_formats = tuple(date_formats)
        self.delivered_only = delivered_only
        self.agents = {
            key.strip().lower(): agent for key, agent in (agents or {}).items()
        }
        self.mapping = mapping

    def normalize(self, rows: Iterable[Mapping[str, Any]]) -> NormalizationReport:
        rows = list(rows)
        report = NormalizationReport(rows_read=len(rows))
        if not rows:
            return report

        headers: dict[str, None] = {}
        for row in rows:
            headers.update(dict.fromkeys(row.keys()))
        columns = self.mapping.resolve(headers)
        check_status = self.delivered_only and columns.has("status")
        delivered = normalise_header(DELIVERED_STATUS)

        seen: set[str] = set()
        for row in rows:
            status = str(columns.get(row, "status")).strip()
            if check_status and normalise_header(status) != delivered:
                report.filtered_by_status += 1
                continue

            raw_id = str(columns.get(row, "order_id")).strip()
            order_id = normalise_order_id(raw_id)
            if not order_id:
                report.missing_order_id += 1
                continue
            if order_id in seen:
                report.duplicates_dropped += 1
                continue
            seen.add(order_id)

            date_cell = columns.get(row, "order_date", None)
            order_date = parse_order_date(date_cell, self.date_formats)
            if order_date is None:
                report.invalid_dates.append(order_id)

            pos_user = normalise_email(columns.get(row, "pos_user"))
            agent = self.agents.get(pos_user) if pos_user else None

            identity = normalise_text(columns.get(row, "identity"))
            if identity == "0":
                identity = None

            report.precursors.append(
                OrderPrecursor(
                    order_id=order_id,
                    raw_id=raw_id,
                    customer_name=normalise_text(columns.get(row, "customer_name")),
                    email=normalise_email(columns.get(row, "email")),
                    phone=normalise_phone(columns.get(row, "phone")),
                    city=normalise_text(columns.get(row, "city")),
                    identity=identity,
                    order_date=order_date,
                    order_date_raw="" if date_cell is None else str(date_cell).strip(),
                    channel=normalise_text(columns.get(row, "channel")) or "",
                    status=status,
                    pos_user=pos_user,
                    agent_name=agent.name if agent else None,
                    agent_zone=agent.zone if agent else None,
                )
            )

        if report.invalid_dates:
            logger.warning(
                f"{len(report.invalid_dates)} orders have unparseable dates and "
                "will be excluded from date-dependent calculations"
            )
        logger.info(
            f"Normalised {len(report.precursors)} of {report.rows_read} order rows "
            f"(status filtered={report.filtered_by_status}, "
            f"duplicates={report.duplicates_dropped}, "
            f"missing id={report.missing_order_id})"
        )
        return report
