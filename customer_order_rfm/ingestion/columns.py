"""Column-mapping contracts for the two upstream spreadsheet exports.

Header names are a fixed contract with the export tools that produce the
files. Matching is case-, accent- and whitespace-insensitive so that
``"Numero de pedido "`` resolves to ``"Número de Pedido"``.
"""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Sequence


class MissingColumnsError(ValueError):
    """A file lacks one or more required columns entirely."""

    def __init__(self, source: str, missing: Sequence[str]) -> None:
        self.source = source
        self.missing = list(missing)
        super().__init__(
            f"{source} is missing required columns: {', '.join(self.missing)}"
        )


def normalise_header(header: Any) -> str:
    """Fold a header to a comparison key (lower-case, no accents, single spaces)."""

    text = unicodedata.normalize("NFKD", str(header))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(text.casefold().split())


@dataclass(frozen=True)
class ColumnSpec:
    field: str
    header: str
    required: bool = False


@dataclass(frozen=True)
class ColumnMapping:
    """Maps canonical field names to the documented upstream headers."""

    source: str
    columns: tuple[ColumnSpec, ...]

    def resolve(self, headers: Iterable[Any]) -> "ResolvedColumns":
        """Bind each field to the actual header present in a file.

        Raises
        ------
        MissingColumnsError
            If any required header is absent.
        """

        by_key: dict[str, str] = {}
        for header in headers:
            by_key.setdefault(normalise_header(header), str(header))

        bound: dict[str, str] = {}
        missing: list[str] = []
        for spec in self.columns:
            actual = by_key.get(normalise_header(spec.header))
            if actual is not None:
                bound[spec.field] = actual
            elif spec.required:
                missing.append(spec.header)

        if missing:
            raise MissingColumnsError(self.source, missing)
        return ResolvedColumns(bound=bound)


@dataclass(frozen=True)
class ResolvedColumns:
    bound: Mapping[str, str] = field(default_factory=dict)

    def has(self, field_name: str) -> bool:
        return field_name in self.bound

    def get(self, row: Mapping[str, Any], field_name: str, default: Any = "") -> Any:
        header = self.bound.get(field_name)
        if header is None:
            return default
        value = row.get(header, default)
        return default if value is None else value


ORDER_REPORT_COLUMNS = ColumnMapping(
    source="order report",
    columns=(
        ColumnSpec("order_id", "Número de Pedido", required=True),
        ColumnSpec("order_date", "Pedido Generado", required=True),
        ColumnSpec("customer_name", "Cliente", required=True),
        ColumnSpec("email", "Correo electrónico del cliente"),
        ColumnSpec("phone", "Celular del cliente"),
        ColumnSpec("city", "Ciudad"),
        ColumnSpec("channel", "Canal"),
        ColumnSpec("status", "Estado"),
        ColumnSpec("identity", "Identidad"),
        ColumnSpec("pos_user", "Usuario POS"),
    ),
)

BILLING_DETAIL_COLUMNS = ColumnMapping(
    source="billing detail",
    columns=(
        ColumnSpec("order_id", "Pedido", required=True),
        ColumnSpec("total", "Total", required=True),
        ColumnSpec("sku", "Codigo"),
        ColumnSpec("description", "Descripcion"),
        ColumnSpec("quantity", "Cantidad"),
        ColumnSpec("identity", "Identidad"),
    ),
)
