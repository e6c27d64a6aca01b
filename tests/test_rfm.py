"""Tests for RFM metrics, quintile scoring and segment aggregation."""

import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from customer_order_rfm.foundation.orders import (
    LineItem,
    Order,
    group_orders_by_customer,
)
from customer_order_rfm.foundation.rfm import (
    RFMEngine,
    RFMProfile,
    calculate_metrics,
    perform_rfm_analysis,
    quintile_cutpoints,
    score_direct,
    score_recency,
)
from customer_order_rfm.foundation.segments import SegmentTag

REFERENCE = datetime(2024, 6, 30, 12, 0)

_counter = iter(range(1, 10_000))


def make_order(email, days_ago, total="100", items=None):
    order_id = str(next(_counter))
    order_date = None if days_ago is None else REFERENCE - timedelta(days=days_ago)
    return Order(
        order_id=order_id,
        raw_id=order_id,
        customer_name=email.split("@")[0].title(),
        order_date=order_date,
        total_amount=Decimal(total),
        items=items or (LineItem(total=Decimal(total), sku="GEN-1"),),
        email=email,
    )


@pytest.fixture
def population():
    """Ten customers with spread-out recency, frequency and spend."""
    orders = []
    for index in range(10):
        email = f"c{index}@example.com"
        for n in range(index + 1):
            orders.append(make_order(email, days_ago=index * 40 + n, total=str(50 * (index + 1))))
    return group_orders_by_customer(orders)


class TestMetrics:
    """Raw metric calculation."""

    def test_frequency_and_monetary(self, population):
        metrics = calculate_metrics(population, REFERENCE)

        for metric in metrics:
            assert metric.frequency == len(metric.customer.orders)
            assert metric.monetary == sum(o.total_amount for o in metric.customer.orders)

    def test_recency_is_whole_days_since_last_valid_order(self):
        customers = group_orders_by_customer(
            [make_order("a@example.com", 12), make_order("a@example.com", 3)]
        )

        (metric,) = calculate_metrics(customers, REFERENCE)

        assert metric.recency == 3

    def test_no_valid_date_means_infinite_recency(self):
        customers = group_orders_by_customer([make_order("a@example.com", None)])

        (metric,) = calculate_metrics(customers, REFERENCE)

        assert math.isinf(metric.recency)
        assert metric.frequency == 1

    def test_filtered_monetary_only_counts_matching_items(self):
        items = (
            LineItem(total=Decimal("30"), sku="CAFE-01"),
            LineItem(total=Decimal("70"), sku="TE-02"),
        )
        customers = group_orders_by_customer(
            [make_order("a@example.com", 5, total="100", items=items)]
        )

        (metric,) = calculate_metrics(customers, REFERENCE, search_terms=["cafe"])

        assert metric.monetary == Decimal("30")
        assert metric.frequency == 1


class TestQuintileScoring:
    """Population-relative scores."""

    def test_cutpoints_use_floor_index(self):
        assert quintile_cutpoints([50, 10, 40, 20, 30]) == [20, 30, 40, 50]

    def test_cutpoints_for_small_population_repeat(self):
        assert quintile_cutpoints([3, 1, 2]) == [1, 2, 2, 3]
        assert quintile_cutpoints([7]) == [7, 7, 7, 7]

    def test_empty_population_has_no_cutpoints(self):
        assert quintile_cutpoints([]) is None

    def test_recency_scores_are_inverted(self):
        cuts = [10, 20, 30, 40]

        assert score_recency(5, cuts, uniform=False) == 5
        assert score_recency(20, cuts, uniform=False) == 4
        assert score_recency(41, cuts, uniform=False) == 1

    def test_infinite_recency_scores_one(self):
        assert score_recency(math.inf, [1, 2, 3, 4], uniform=False) == 1
        assert score_recency(math.inf, [1, 1, 1, 1], uniform=True) == 1

    def test_direct_scores(self):
        cuts = [10, 20, 30, 40]

        assert score_direct(40, cuts, uniform=False) == 5
        assert score_direct(25, cuts, uniform=False) == 3
        assert score_direct(1, cuts, uniform=False) == 1

    def test_uniform_metric_scores_three(self):
        assert score_direct(7, [7, 7, 7, 7], uniform=True) == 3

    def test_scores_within_range_and_total(self, population):
        analysis = RFMEngine().analyze(population, REFERENCE)

        for profile in analysis.profiles:
            for score in (profile.r_score, profile.f_score, profile.m_score):
                assert 1 <= score <= 5
            assert profile.total_score == profile.r_score + profile.f_score + profile.m_score

    def test_more_recent_never_scores_lower(self, population):
        """Recency score is monotonic non-increasing in recency."""
        profiles = sorted(
            RFMEngine().analyze(population, REFERENCE).profiles, key=lambda p: p.recency
        )

        scores = [profile.r_score for profile in profiles]
        assert scores == sorted(scores, reverse=True)

    def test_uniform_frequency_gives_everyone_three(self):
        customers = group_orders_by_customer(
            [make_order(f"u{i}@example.com", i * 10, total=str(10 + i)) for i in range(6)]
        )

        analysis = RFMEngine().analyze(customers, REFERENCE)

        assert {profile.f_score for profile in analysis.profiles} == {3}

    def test_profile_rejects_inconsistent_total(self, population):
        customer = population[0]
        with pytest.raises(ValueError, match="total_score"):
            RFMProfile(
                customer=customer,
                recency=1,
                frequency=1,
                monetary=Decimal("1"),
                r_score=5,
                f_score=5,
                m_score=5,
                total_score=14,
                segment=SegmentTag.CHAMPIONS,
            )


class TestRFMEngine:
    """End-to-end analysis."""

    def test_single_recent_order_is_new_buyer(self):
        customers = group_orders_by_customer([make_order("nuevo@example.com", 10)])

        analysis = perform_rfm_analysis(customers, REFERENCE)

        (profile,) = analysis.profiles
        assert profile.segment is SegmentTag.RECENT_SINGLE_PURCHASE
        assert analysis.stats[SegmentTag.RECENT_SINGLE_PURCHASE].count == 1

    def test_customer_without_dates_scores_lowest_recency(self):
        customers = group_orders_by_customer(
            [
                make_order("a@example.com", None),
                make_order("b@example.com", 5),
                make_order("c@example.com", 50),
            ]
        )

        analysis = RFMEngine().analyze(customers, REFERENCE)

        by_key = {p.customer.identity_key: p for p in analysis.profiles}
        assert by_key["a@example.com"].r_score == 1
        assert by_key["a@example.com"].segment is SegmentTag.LOST

    def test_aware_reference_date_is_converted_to_utc(self):
        customers = group_orders_by_customer([make_order("nuevo@example.com", 10)])
        reference = datetime(2024, 6, 30, 6, 0, tzinfo=timezone(timedelta(hours=-6)))

        analysis = RFMEngine().analyze(customers, reference)

        assert analysis.reference_date == REFERENCE
        assert analysis.profiles[0].recency == 10

    def test_empty_population(self):
        analysis = RFMEngine().analyze([], REFERENCE)

        summary = analysis.as_dict()
        assert summary["totalCustomers"] == 0
        assert summary["stats"] == {}
        assert analysis.profiles == []

    def test_deterministic_for_fixed_reference(self, population):
        first = RFMEngine().analyze(population, REFERENCE).as_dict()
        second = RFMEngine().analyze(population, REFERENCE).as_dict()

        assert first == second

    def test_stats_are_ordered_by_priority_and_add_up(self, population):
        analysis = RFMEngine().analyze(population, REFERENCE)

        priorities = [stats.info.priority for stats in analysis.stats.values()]
        assert priorities == sorted(priorities)
        assert sum(stats.count for stats in analysis.stats.values()) == 10
        revenue = sum(stats.total_revenue for stats in analysis.stats.values())
        assert revenue == sum(c.total_spent for c in population)

    def test_percentages_are_rounded_to_one_decimal(self):
        customers = group_orders_by_customer(
            [make_order(f"p{i}@example.com", 10) for i in range(3)]
        )

        analysis = RFMEngine().analyze(customers, REFERENCE)

        stats = analysis.stats[SegmentTag.RECENT_SINGLE_PURCHASE]
        assert stats.percentage == Decimal("100.0")
        assert stats.avg_recency == 10
        assert stats.avg_monetary == Decimal("100.00")

    def test_unmatched_customers_are_recorded(self):
        """Customers that miss every rule land in the fallback segment."""
        orders = []
        for index in range(5):
            email = f"m{index}@example.com"
            for n in range(index + 1):
                orders.append(make_order(email, days_ago=40 + index * 10 + n, total="100"))
        customers = group_orders_by_customer(orders)

        analysis = RFMEngine().analyze(customers, REFERENCE)

        occasional = [
            p.customer.identity_key
            for p in analysis.profiles
            if p.segment is SegmentTag.OCCASIONAL
        ]
        assert analysis.unmatched == occasional

    def test_query_is_split_into_terms(self, population):
        analysis = RFMEngine().analyze(population, REFERENCE, query="GEN-1, otro")

        assert analysis.search_terms == ["gen-1", "otro"]
        assert analysis.as_dict()["searchTerms"] == ["gen-1", "otro"]
