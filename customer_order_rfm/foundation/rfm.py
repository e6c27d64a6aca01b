"""RFM (Recency-Frequency-Monetary) scoring and segmentation.

The engine is a pure function of a customer list, a reference instant and
an optional search query. It runs four stages:

1. Metrics - recency (days since the last valid order date, ``inf`` when
   there is none), frequency (order count) and monetary value (total spend,
   or only the spend on line items matching the search terms).
2. Quintile scores - 20/40/60/80th percentile cutpoints per metric across
   the population; recency is inverted so more recent scores higher.
3. Segmentation - the ordered rule cascade in
   :mod:`customer_order_rfm.foundation.segments`.
4. Aggregation - per-segment counts, revenue and population share.

**Note on filtered monetary values**: with a search query the monetary
score is relative to topic-scoped spend and is not comparable with an
unfiltered run.
"""

from __future__ import annotations

import logging
import math
import multiprocessing
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Sequence

import pandas as pd  # Used for population cutpoints

from customer_order_rfm.foundation.orders import Customer, to_naive_utc
from customer_order_rfm.foundation.search import parse_search_terms
from customer_order_rfm.foundation.segments import (
    DEFAULT_RULES,
    SEGMENT_INFO,
    ScoreCard,
    SegmentInfo,
    SegmentRule,
    SegmentTag,
    classify,
)

logger = logging.getLogger(__name__)

QUINTILES = (0.2, 0.4, 0.6, 0.8)

# Score given to everyone when a metric has a single distinct value
UNIFORM_SCORE = 3

PERCENTAGE_PRECISION = Decimal("0.1")
MONEY_PRECISION = Decimal("0.01")


@dataclass(frozen=True)
class RFMMetrics:
    """Raw RFM metrics for a single customer.

    Attributes
    ----------
    customer:
        The customer the metrics were computed for
    recency:
        Whole days from the last valid order date to the reference instant,
        or ``math.inf`` when no order has a valid date
    frequency:
        Number of orders
    monetary:
        Total spend, or spend on matching line items when filtered
    """

    customer: Customer
    recency: float
    frequency: int
    monetary: Decimal

    def __post_init__(self) -> None:
        if self.frequency < 0:
            raise ValueError(
                f"Frequency cannot be negative: {self.frequency} "
                f"(customer={self.customer.identity_key})"
            )


@dataclass(frozen=True)
class RFMProfile:
    """Scored and segmented customer."""

    customer: Customer
    recency: float
    frequency: int
    monetary: Decimal
    r_score: int
    f_score: int
    m_score: int
    total_score: int
    segment: SegmentTag

    def __post_init__(self) -> None:
        for name in ("r_score", "f_score", "m_score"):
            value = getattr(self, name)
            if not 1 <= value <= 5:
                raise ValueError(f"{name} must be 1-5: {value}")
        if self.total_score != self.r_score + self.f_score + self.m_score:
            raise ValueError(
                f"total_score ({self.total_score}) != r + f + m "
                f"({self.r_score} + {self.f_score} + {self.m_score})"
            )

    @property
    def rfm_score(self) -> str:
        return f"{self.r_score}{self.f_score}{self.m_score}"


@dataclass
class SegmentStats:
    """Aggregated statistics for one segment."""

    segment: SegmentTag
    count: int = 0
    total_revenue: Decimal = Decimal("0")
    percentage: Decimal = Decimal("0")
    avg_recency: int | None = None
    avg_frequency: Decimal = Decimal("0")
    avg_monetary: Decimal = Decimal("0")
    customers: list[RFMProfile] = field(default_factory=list)

    @property
    def info(self) -> SegmentInfo:
        return SEGMENT_INFO[self.segment]


@dataclass
class RFMAnalysis:
    """Complete result of one engine invocation.

    ``unmatched`` lists identity keys that no segment rule matched and that
    were assigned the fallback segment.
    """

    profiles: list[RFMProfile]
    stats: dict[SegmentTag, SegmentStats]
    reference_date: datetime
    search_terms: list[str] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)

    @property
    def total_customers(self) -> int:
        return len(self.profiles)

    @property
    def total_segments(self) -> int:
        return len(self.stats)

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable summary (member lists excluded)."""

        return {
            "totalCustomers": self.total_customers,
            "totalSegments": self.total_segments,
            "referenceDate": self.reference_date.isoformat(),
            "searchTerms": list(self.search_terms),
            "stats": {
                stats.segment.value: {
                    "label": stats.info.label,
                    "count": stats.count,
                    "totalRevenue": str(stats.total_revenue),
                    "percentage": str(stats.percentage),
                    "avgRecency": stats.avg_recency,
                    "avgFrequency": str(stats.avg_frequency),
                    "avgMonetary": str(stats.avg_monetary),
                }
                for stats in self.stats.values()
            },
            "unmatched": list(self.unmatched),
        }


def _metrics_for_customers(
    customers: Sequence[Customer], reference_date: datetime, terms: Sequence[str]
) -> list[RFMMetrics]:
    """Compute raw metrics for a chunk of customers.

    Module level so that multiprocessing workers can pickle it.
    """

    metrics: list[RFMMetrics] = []
    for customer in customers:
        last_order = customer.last_order_date
        recency = (
            math.inf if last_order is None else (reference_date - last_order).days
        )

        if terms:
            monetary = sum(
                (
                    item.total
                    for order in customer.orders
                    for item in order.items
                    if item.matches_any(terms)
                ),
                Decimal("0"),
            )
        else:
            monetary = customer.total_spent

        metrics.append(
            RFMMetrics(
                customer=customer,
                recency=recency,
                frequency=len(customer.orders),
                monetary=monetary,
            )
        )
    return metrics


def calculate_metrics(
    customers: Sequence[Customer],
    reference_date: datetime,
    search_terms: Sequence[str] = (),
    parallel: bool = True,
    parallel_threshold: int = 1_000_000,
    n_workers: Optional[int] = None,
) -> list[RFMMetrics]:
    """Calculate raw RFM metrics, preserving input order.

    **Parallel Processing**: customers are independent, so populations of
    at least ``parallel_threshold`` customers are split into chunks and
    processed with a multiprocessing pool.
    """

    if not customers:
        return []

    terms = [term.lower() for term in search_terms]
    use_parallel = parallel and len(customers) >= parallel_threshold
    if not use_parallel:
        return _metrics_for_customers(customers, reference_date, terms)

    if n_workers is None:
        workers = os.cpu_count() or 1
    else:
        workers = max(1, n_workers)
    chunk_size = max(1, math.ceil(len(customers) / workers))
    chunks = [
        (list(customers[i : i + chunk_size]), reference_date, terms)
        for i in range(0, len(customers), chunk_size)
    ]
    with multiprocessing.Pool(processes=workers) as pool:
        chunk_results = pool.starmap(_metrics_for_customers, chunks)

    metrics: list[RFMMetrics] = []
    for chunk_result in chunk_results:
        metrics.extend(chunk_result)
    return metrics


def quintile_cutpoints(values: Sequence[Any]) -> list[Any] | None:
    """Return the 20/40/60/80th percentile cutpoints of ``values``.

    Each cutpoint is the element at index ``floor(n * p)`` of the sorted
    population, which is always a valid index, so populations smaller than
    five simply repeat cutpoints. Returns None for an empty population.
    """

    series = pd.Series(list(values), dtype=object)
    if series.empty:
        return None
    ordered = series.sort_values(ignore_index=True)
    n = len(ordered)
    return [ordered.iloc[min(int(math.floor(n * q)), n - 1)] for q in QUINTILES]


def _is_uniform(values: Sequence[Any]) -> bool:
    return pd.Series(list(values), dtype=object).nunique() == 1


def score_recency(value: float, cutpoints: Sequence[Any] | None, uniform: bool) -> int:
    """Lower recency scores higher; no valid order date always scores 1."""

    if math.isinf(value) or cutpoints is None:
        return 1
    if uniform:
        return UNIFORM_SCORE
    for score, cut in zip((5, 4, 3, 2), cutpoints):
        if value <= cut:
            return score
    return 1


def score_direct(value: Any, cutpoints: Sequence[Any] | None, uniform: bool) -> int:
    """Higher values score higher (frequency and monetary)."""

    if cutpoints is None:
        return 1
    if uniform:
        return UNIFORM_SCORE
    for score, cut in zip((5, 4, 3, 2), reversed(cutpoints)):
        if value >= cut:
            return score
    return 1


def score_metrics(
    metrics: Sequence[RFMMetrics], rules: Sequence[SegmentRule] = DEFAULT_RULES
) -> tuple[list[RFMProfile], list[str]]:
    """Assign quintile scores and segments.

    Returns the profiles (input order) and the identity keys that fell back
    to the default segment.
    """

    if not metrics:
        return [], []

    recencies = [m.recency for m in metrics if not math.isinf(m.recency)]
    frequencies = [m.frequency for m in metrics]
    monetaries = [m.monetary for m in metrics]

    r_cuts = quintile_cutpoints(recencies)
    f_cuts = quintile_cutpoints(frequencies)
    m_cuts = quintile_cutpoints(monetaries)
    r_uniform = bool(recencies) and _is_uniform(recencies)
    f_uniform = _is_uniform(frequencies)
    m_uniform = _is_uniform(monetaries)

    profiles: list[RFMProfile] = []
    unmatched: list[str] = []
    for m in metrics:
        r_score = score_recency(m.recency, r_cuts, r_uniform)
        f_score = score_direct(m.frequency, f_cuts, f_uniform)
        m_score = score_direct(m.monetary, m_cuts, m_uniform)
        card = ScoreCard(
            r_score=r_score,
            f_score=f_score,
            m_score=m_score,
            frequency=m.frequency,
            recency=m.recency,
        )
        segment, matched = classify(card, rules)
        if not matched:
            unmatched.append(m.customer.identity_key)

        profiles.append(
            RFMProfile(
                customer=m.customer,
                recency=m.recency,
                frequency=m.frequency,
                monetary=m.monetary,
                r_score=r_score,
                f_score=f_score,
                m_score=m_score,
                total_score=r_score + f_score + m_score,
                segment=segment,
            )
        )
    return profiles, unmatched


def aggregate_segments(profiles: Sequence[RFMProfile]) -> dict[SegmentTag, SegmentStats]:
    """Group profiles by segment, ordered by segment priority.

    Percentages use the full scored population as denominator; average
    recency only considers customers with a finite recency.
    """

    if not profiles:
        return {}

    buckets: dict[SegmentTag, SegmentStats] = {}
    finite_recency: dict[SegmentTag, list[float]] = {}
    for profile in profiles:
        stats = buckets.get(profile.segment)
        if stats is None:
            stats = buckets[profile.segment] = SegmentStats(segment=profile.segment)
            finite_recency[profile.segment] = []
        stats.count += 1
        stats.total_revenue += profile.monetary
        stats.customers.append(profile)
        if not math.isinf(profile.recency):
            finite_recency[profile.segment].append(profile.recency)

    population = Decimal(len(profiles))
    for segment, stats in buckets.items():
        count = Decimal(stats.count)
        stats.percentage = (count / population * 100).quantize(
            PERCENTAGE_PRECISION, rounding=ROUND_HALF_UP
        )
        stats.avg_frequency = (
            Decimal(sum(p.frequency for p in stats.customers)) / count
        ).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)
        stats.avg_monetary = (stats.total_revenue / count).quantize(
            MONEY_PRECISION, rounding=ROUND_HALF_UP
        )
        recencies = finite_recency[segment]
        if recencies:
            stats.avg_recency = int(
                (Decimal(sum(recencies)) / len(recencies)).quantize(
                    Decimal("1"), rounding=ROUND_HALF_UP
                )
            )

    return dict(sorted(buckets.items(), key=lambda item: SEGMENT_INFO[item[0]].priority))


class RFMEngine:
    """Run the four-stage RFM pipeline.

    Parameters
    ----------
    rules:
        Ordered segment rules; defaults to the canonical cascade.
    parallel, parallel_threshold, n_workers:
        Passed through to :func:`calculate_metrics`.
    """

    def __init__(
        self,
        rules: Sequence[SegmentRule] = DEFAULT_RULES,
        parallel: bool = True,
        parallel_threshold: int = 1_000_000,
        n_workers: Optional[int] = None,
    ) -> None:
        self.rules = tuple(rules)
        self.parallel = parallel
        self.parallel_threshold = parallel_threshold
        self.n_workers = n_workers

    def analyze(
        self,
        customers: Sequence[Customer],
        reference_date: datetime | None = None,
        query: str | None = None,
    ) -> RFMAnalysis:
        """Score and segment ``customers`` relative to ``reference_date``.

        ``reference_date`` defaults to now; pass it explicitly for
        reproducible results. Aware values are converted to naive UTC to
        match stored order dates.
        """

        if reference_date is None:
            reference_date = datetime.now(timezone.utc)
        reference_date = to_naive_utc(reference_date)
        terms = parse_search_terms(query)

        metrics = calculate_metrics(
            customers,
            reference_date,
            search_terms=terms,
            parallel=self.parallel,
            parallel_threshold=self.parallel_threshold,
            n_workers=self.n_workers,
        )
        profiles, unmatched = score_metrics(metrics, self.rules)
        stats = aggregate_segments(profiles)

        if unmatched:
            logger.info(
                f"{len(unmatched)} customers matched no segment rule and were "
                f"assigned {SegmentTag.OCCASIONAL.value}"
            )
        logger.info(
            f"RFM analysis: {len(profiles)} customers in {len(stats)} segments "
            f"(reference {reference_date.date()}, terms={terms or 'none'})"
        )
        return RFMAnalysis(
            profiles=profiles,
            stats=stats,
            reference_date=reference_date,
            search_terms=terms,
            unmatched=unmatched,
        )


def perform_rfm_analysis(
    customers: Sequence[Customer],
    reference_date: datetime | None = None,
    query: str | None = None,
) -> RFMAnalysis:
    """Convenience wrapper around :meth:`RFMEngine.analyze` with defaults."""

    return RFMEngine().analyze(customers, reference_date, query)
