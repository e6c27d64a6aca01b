"""Tests for order-report normalisation."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from customer_order_rfm.foundation.normalizer import (
    OrderNormalizer,
    normalise_order_id,
    parse_amount,
    parse_order_date,
)
from customer_order_rfm.foundation.orders import SalesAgent
from customer_order_rfm.ingestion.columns import MissingColumnsError


def order_row(order_id, date="15/03/2024 10:30", **extra):
    row = {
        "Número de Pedido": order_id,
        "Pedido Generado": date,
        "Cliente": extra.pop("name", "Ana Pérez"),
        "Correo electrónico del cliente": extra.pop("email", "ana@example.com"),
        "Celular del cliente": extra.pop("phone", "9999-0000"),
        "Ciudad": extra.pop("city", "Tegucigalpa"),
        "Estado": extra.pop("status", "Entregado"),
    }
    row.update(extra)
    return row


class TestParseAmount:
    """Currency cell parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("L. 1,234.56", Decimal("1234.56")),
            ("HNL 1.234,56", Decimal("1234.56")),
            ("$500", Decimal("500")),
            ("1,5", Decimal("1.5")),
            ("1,234", Decimal("1234")),
            ("(150.00)", Decimal("-150.00")),
            (42, Decimal("42")),
            (12.5, Decimal("12.5")),
        ],
    )
    def test_parses_common_formats(self, value, expected):
        """Locale separators and currency symbols should be stripped."""
        assert parse_amount(value) == expected

    @pytest.mark.parametrize("value", ["", "n/a", None, "abc", float("nan")])
    def test_non_numeric_defaults_to_zero(self, value):
        """Unparseable amounts should degrade to 0, never raise."""
        assert parse_amount(value) == Decimal("0")


class TestParseOrderDate:
    """Date cell parsing."""

    def test_day_first_format(self):
        """The export's DD/MM/YYYY format should be read day first."""
        assert parse_order_date("05/03/2024 14:30") == datetime(2024, 3, 5, 14, 30)

    def test_iso_string(self):
        assert parse_order_date("2024-03-05") == datetime(2024, 3, 5)

    def test_aware_datetime_becomes_naive_utc(self):
        """Aware timestamps should be converted to naive UTC."""
        aware = datetime(2024, 3, 5, 10, 0, tzinfo=timezone(timedelta(hours=-6)))
        assert parse_order_date(aware) == datetime(2024, 3, 5, 16, 0)

    def test_spreadsheet_serial_number(self):
        """Serial day 45000 is 2023-03-15."""
        assert parse_order_date(45000) == datetime(2023, 3, 15)

    @pytest.mark.parametrize("value", ["", "not a date", "31/02/2024", None])
    def test_invalid_values_return_none(self, value):
        assert parse_order_date(value) is None


class TestNormaliseOrderId:
    def test_strips_leading_zeros_and_internal_suffix(self):
        assert normalise_order_id("000123-I") == "123"
        assert normalise_order_id(" 0456 ") == "456"
        assert normalise_order_id("789") == "789"


class TestOrderNormalizer:
    """Row-level normalisation policy."""

    def test_preserves_input_order_and_normalises_contacts(self):
        """Email is lower-cased, phone reduced to digits, order kept."""
        rows = [
            order_row("002", email="  ANA@Example.COM ", phone="+504 9999-0000"),
            order_row("001", email="luis@example.com"),
        ]

        report = OrderNormalizer().normalize(rows)

        assert [p.order_id for p in report.precursors] == ["2", "1"]
        assert [p.raw_id for p in report.precursors] == ["002", "001"]
        first = report.precursors[0]
        assert first.email == "ana@example.com"
        assert first.phone == "50499990000"
        assert first.order_date == datetime(2024, 3, 15, 10, 30)

    def test_invalid_date_is_kept_and_flagged(self):
        """A bad date must not drop the row nor be coerced to now."""
        report = OrderNormalizer().normalize([order_row("10", date="soon")])

        assert len(report.precursors) == 1
        precursor = report.precursors[0]
        assert precursor.order_date is None
        assert not precursor.date_valid
        assert precursor.order_date_raw == "soon"
        assert report.invalid_dates == ["10"]

    def test_only_delivered_orders_are_kept(self):
        """Rows with another status should be filtered and counted."""
        rows = [
            order_row("1", status="Entregado"),
            order_row("2", status="Cancelado"),
            order_row("3", status=" entregado "),
        ]

        report = OrderNormalizer().normalize(rows)

        assert [p.order_id for p in report.precursors] == ["1", "3"]
        assert report.filtered_by_status == 1

    def test_status_filter_can_be_disabled(self):
        rows = [order_row("1", status="Cancelado")]

        report = OrderNormalizer(delivered_only=False).normalize(rows)

        assert len(report.precursors) == 1

    def test_duplicate_order_ids_keep_first_occurrence(self):
        """Duplicates after id normalisation should be dropped and counted."""
        rows = [
            order_row("0100", name="First"),
            order_row("100-I", name="Second"),
        ]

        report = OrderNormalizer().normalize(rows)

        assert [p.customer_name for p in report.precursors] == ["First"]
        assert report.duplicates_dropped == 1

    def test_rows_without_order_id_are_skipped(self):
        report = OrderNormalizer().normalize([order_row(""), order_row("5")])

        assert [p.order_id for p in report.precursors] == ["5"]
        assert report.missing_order_id == 1

    def test_missing_required_columns_is_fatal(self):
        """A file without the order id/date columns should be rejected."""
        with pytest.raises(MissingColumnsError):
            OrderNormalizer().normalize([{"Cliente": "Ana"}])

    def test_empty_input_returns_empty_report(self):
        report = OrderNormalizer().normalize([])

        assert report.precursors == []
        assert report.rows_read == 0

    def test_sales_agent_attribution(self):
        """POS users mapped to an agent should carry agent name and zone."""
        agents = {"CallCenter1@Example.com": SalesAgent(name="Karen", zone="Centro")}
        rows = [
            order_row("1", **{"Usuario POS": "callcenter1@example.com "}),
            order_row("2", **{"Usuario POS": "unknown@example.com"}),
        ]

        report = OrderNormalizer(agents=agents).normalize(rows)

        first, second = report.precursors
        assert (first.agent_name, first.agent_zone) == ("Karen", "Centro")
        assert first.pos_user == "callcenter1@example.com"
        assert second.agent_name is None
        assert second.pos_user == "unknown@example.com"

    def test_zero_identity_is_treated_as_missing(self):
        report = OrderNormalizer().normalize([order_row("1", Identidad="0")])

        assert report.precursors[0].identity is None
