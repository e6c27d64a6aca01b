"""Spreadsheet ingestion and the upstream column contracts."""

from .columns import (
    BILLING_DETAIL_COLUMNS,
    ORDER_REPORT_COLUMNS,
    ColumnMapping,
    ColumnSpec,
    MissingColumnsError,
    ResolvedColumns,
    normalise_header,
)
from .spreadsheet import RawRow, UnsupportedFileError, frame_to_rows, read_rows

__all__ = [
    "BILLING_DETAIL_COLUMNS",
    "ORDER_REPORT_COLUMNS",
    "ColumnMapping",
    "ColumnSpec",
    "MissingColumnsError",
    "RawRow",
    "ResolvedColumns",
    "UnsupportedFileError",
    "frame_to_rows",
    "normalise_header",
    "read_rows",
]
