"""Tests for joining order precursors with billing aggregates."""

from datetime import datetime
from decimal import Decimal

from customer_order_rfm.foundation.billing import BillingAggregate
from customer_order_rfm.foundation.joiner import DatasetJoiner, filter_orders_after
from customer_order_rfm.foundation.orders import LineItem, OrderPrecursor


def precursor(raw_id, order_date=datetime(2024, 3, 1), **extra):
    order_id = raw_id.lstrip("0")
    return OrderPrecursor(
        order_id=order_id,
        raw_id=raw_id,
        customer_name=extra.pop("name", "Ana"),
        email=extra.pop("email", "ana@example.com"),
        order_date=order_date,
        **extra,
    )


def aggregate(order_id, *totals, identity=None):
    bucket = BillingAggregate(order_id=order_id, identity=identity)
    for index, total in enumerate(totals):
        bucket.add(LineItem(total=Decimal(total), sku=f"SKU{index}"))
    return bucket


class TestDatasetJoiner:
    """Left join semantics and diagnostics."""

    def test_orders_carry_billing_totals_and_items(self):
        """Matched orders should take total, items and identity from billing."""
        billing = {"0100": aggregate("0100", "10", "5", identity="0801")}

        result = DatasetJoiner().join([precursor("0100")], billing)

        (order,) = result.orders
        assert order.order_id == "100"
        assert order.total_amount == Decimal("15")
        assert [item.sku for item in order.items] == ["SKU0", "SKU1"]
        assert order.identity == "0801"
        assert result.orphan_billing_ids == []

    def test_order_without_billing_survives_with_zero_total(self):
        """Every precursor survives the join even with no billing."""
        result = DatasetJoiner().join([precursor("7")], {})

        (order,) = result.orders
        assert order.total_amount == Decimal("0")
        assert order.items == ()
        assert order.identity is None
        assert result.unmatched_order_ids == ["7"]

    def test_orphan_billing_is_reported_not_emitted(self):
        """Billing ids absent from the order report produce no orders."""
        billing = {"1": aggregate("1", "10"), "999": aggregate("999", "50")}

        result = DatasetJoiner().join([precursor("1")], billing)

        assert [order.order_id for order in result.orders] == ["1"]
        assert result.orphan_billing_ids == ["999"]

    def test_normalised_id_is_fallback_key(self):
        """Billing keyed by the cleaned number should still match."""
        billing = {"100": aggregate("100", "8")}

        result = DatasetJoiner().join([precursor("000100")], billing)

        assert result.orders[0].total_amount == Decimal("8")
        assert result.orphan_billing_ids == []

    def test_raw_id_takes_precedence_over_normalised_id(self):
        billing = {"0100": aggregate("0100", "1"), "100": aggregate("100", "2")}

        result = DatasetJoiner().join([precursor("0100")], billing)

        assert result.orders[0].total_amount == Decimal("1")
        assert result.orphan_billing_ids == ["100"]

    def test_order_report_order_is_preserved(self):
        precursors = [precursor("3"), precursor("1"), precursor("2")]

        result = DatasetJoiner().join(precursors, {})

        assert [order.order_id for order in result.orders] == ["3", "1", "2"]


class TestIncrementalJoin:
    """Cutoff filtering for incremental uploads."""

    def _precursors(self):
        return [
            precursor("1", order_date=datetime(2024, 1, 10)),
            precursor("2", order_date=datetime(2024, 2, 1)),
            precursor("3", order_date=datetime(2024, 2, 1, 0, 0, 1)),
            precursor("4", order_date=None),
            precursor("5", order_date=datetime(2024, 3, 5)),
        ]

    def test_cutoff_emits_subset_of_full_output(self):
        """With cutoff T, output equals the full output filtered to date > T."""
        joiner = DatasetJoiner()
        cutoff = datetime(2024, 2, 1)

        full = joiner.join(self._precursors(), {})
        incremental = joiner.join(self._precursors(), {}, cutoff=cutoff)

        expected = [
            order
            for order in full.orders
            if order.order_date is not None and order.order_date > cutoff
        ]
        assert incremental.orders == expected
        assert [order.order_id for order in incremental.orders] == ["3", "5"]
        assert incremental.excluded_by_cutoff == 3

    def test_no_cutoff_emits_everything(self):
        result = DatasetJoiner().join(self._precursors(), {}, cutoff=None)

        assert len(result.orders) == 5
        assert result.excluded_by_cutoff == 0

    def test_filter_orders_after_drops_undated_orders(self):
        """Orders without a valid date cannot be placed after a cutoff."""
        orders = DatasetJoiner().join(self._precursors(), {}).orders

        kept = filter_orders_after(orders, datetime(2000, 1, 1))

        assert [order.order_id for order in kept] == ["1", "2", "3", "5"]
