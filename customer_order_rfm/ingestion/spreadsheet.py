"""Read spreadsheet exports into untyped row mappings."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

MAX_INPUT_BYTES = 25 * 1024 * 1024  # 25 MiB cap to avoid accidental OOM

DELIMITED_SUFFIXES = frozenset({".csv", ".txt", ".tsv"})
WORKBOOK_SUFFIXES = frozenset({".xlsx", ".xlsm"})

RawRow = dict[str, Any]


class UnsupportedFileError(ValueError):
    """The file extension is neither delimited text nor a workbook."""


def read_rows(path: str | Path) -> list[RawRow]:
    """Read the first sheet (or the whole delimited file) as row dicts.

    Every cell is read as text so that order numbers keep their leading
    zeros; empty cells become ``""``. Fully blank rows are dropped.
    """

    path = Path(path)
    resolved = path.resolve()
    size = resolved.stat().st_size
    if size > MAX_INPUT_BYTES:
        raise ValueError(
            f"Input file {resolved} is {size} bytes; exceeds limit of {MAX_INPUT_BYTES} bytes"
        )

    suffix = path.suffix.lower()
    if suffix in DELIMITED_SUFFIXES:
        sep = "\t" if suffix == ".tsv" else None
        frame = pd.read_csv(
            path,
            dtype=str,
            keep_default_na=False,
            sep=sep,
            engine="python",
            encoding="utf-8-sig",
        )
    elif suffix in WORKBOOK_SUFFIXES:
        frame = pd.read_excel(path, sheet_name=0, dtype=str, engine="openpyxl")
        frame = frame.fillna("")
    else:
        raise UnsupportedFileError(f"Unsupported spreadsheet format: {path.name}")

    return frame_to_rows(frame, source=path.name)


def frame_to_rows(frame: pd.DataFrame, source: str = "<frame>") -> list[RawRow]:
    """Convert a DataFrame into row dicts, dropping fully blank rows."""

    rows: list[RawRow] = []
    for record in frame.to_dict(orient="records"):
        row = {str(key).strip(): value for key, value in record.items()}
        if all(_is_blank(value) for value in row.values()):
            continue
        rows.append(row)

    logger.info(f"Read {len(rows)} rows from {source}")
    return rows


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return isinstance(value, str) and not value.strip()
