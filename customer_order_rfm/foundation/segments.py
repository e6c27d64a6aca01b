"""RFM segment tags and the ordered rule cascade that assigns them.

Rules are evaluated top to bottom and the first match wins. Each rule is a
conjunction of population-relative score thresholds and absolute day or
order-count bounds. A customer matching no rule falls back to
:attr:`SegmentTag.OCCASIONAL` and the miss is recorded for auditing.

Rule order (canonical):

1. Nuevos Compradores Recientes - exactly one order, placed within 60 days.
2. Campeones - R, F and M scores all >= 4 and last order within 30 days.
3. Clientes Leales - R >= 3, F >= 4, M >= 3.
4. Potenciales Leales - R >= 4, at least two orders, F <= 3, M >= 2.
5. No Podemos Perderlos - R <= 2, F >= 4, M >= 4.
6. Perdidos - R == 1 and no order in the last 180 days.
7. Compradores Únicos Inactivos - exactly one order (older than 60 days,
   since rule 1 did not match).
8. Hibernando - R <= 2 and F <= 2.

Because rule 1 runs first, a single-purchase customer can never reach
Campeones.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

RECENT_PURCHASE_DAYS = 60
CHAMPION_MAX_RECENCY_DAYS = 30
LOST_MIN_RECENCY_DAYS = 180


class SegmentTag(str, Enum):
    """Closed set of marketing segments."""

    RECENT_SINGLE_PURCHASE = "Nuevos Compradores Recientes"
    CHAMPIONS = "Campeones"
    LOYAL = "Clientes Leales"
    POTENTIAL_LOYALISTS = "Potenciales Leales"
    CANT_LOSE_THEM = "No Podemos Perderlos"
    LOST = "Perdidos"
    INACTIVE_SINGLE_PURCHASE = "Compradores Únicos Inactivos"
    HIBERNATING = "Hibernando"
    OCCASIONAL = "Compradores Ocasionales"


FALLBACK_SEGMENT = SegmentTag.OCCASIONAL


@dataclass(frozen=True)
class ScoreCard:
    """Inputs a segment rule may inspect."""

    r_score: int
    f_score: int
    m_score: int
    frequency: int
    recency: float


@dataclass(frozen=True)
class SegmentRule:
    tag: SegmentTag
    predicate: Callable[[ScoreCard], bool]
    summary: str

    def matches(self, card: ScoreCard) -> bool:
        return self.predicate(card)


def _recent_single_purchase(c: ScoreCard) -> bool:
    return c.frequency == 1 and c.recency <= RECENT_PURCHASE_DAYS


def _champions(c: ScoreCard) -> bool:
    return (
        c.r_score >= 4
        and c.f_score >= 4
        and c.m_score >= 4
        and c.recency <= CHAMPION_MAX_RECENCY_DAYS
    )


def _loyal(c: ScoreCard) -> bool:
    return c.r_score >= 3 and c.f_score >= 4 and c.m_score >= 3


def _potential_loyalists(c: ScoreCard) -> bool:
    return c.r_score >= 4 and c.frequency >= 2 and c.f_score <= 3 and c.m_score >= 2


def _cant_lose_them(c: ScoreCard) -> bool:
    return c.r_score <= 2 and c.f_score >= 4 and c.m_score >= 4


def _lost(c: ScoreCard) -> bool:
    return c.r_score == 1 and c.recency > LOST_MIN_RECENCY_DAYS


def _inactive_single_purchase(c: ScoreCard) -> bool:
    return c.frequency == 1


def _hibernating(c: ScoreCard) -> bool:
    return c.r_score <= 2 and c.f_score <= 2


DEFAULT_RULES: tuple[SegmentRule, ...] = (
    SegmentRule(
        SegmentTag.RECENT_SINGLE_PURCHASE,
        _recent_single_purchase,
        f"frequency == 1 and recency <= {RECENT_PURCHASE_DAYS}",
    ),
    SegmentRule(
        SegmentTag.CHAMPIONS,
        _champions,
        f"R >= 4, F >= 4, M >= 4 and recency <= {CHAMPION_MAX_RECENCY_DAYS}",
    ),
    SegmentRule(SegmentTag.LOYAL, _loyal, "R >= 3, F >= 4, M >= 3"),
    SegmentRule(
        SegmentTag.POTENTIAL_LOYALISTS,
        _potential_loyalists,
        "R >= 4, frequency >= 2, F <= 3, M >= 2",
    ),
    SegmentRule(SegmentTag.CANT_LOSE_THEM, _cant_lose_them, "R <= 2, F >= 4, M >= 4"),
    SegmentRule(
        SegmentTag.LOST, _lost, f"R == 1 and recency > {LOST_MIN_RECENCY_DAYS}"
    ),
    SegmentRule(
        SegmentTag.INACTIVE_SINGLE_PURCHASE,
        _inactive_single_purchase,
        "frequency == 1",
    ),
    SegmentRule(SegmentTag.HIBERNATING, _hibernating, "R <= 2 and F <= 2"),
)


def classify(
    card: ScoreCard, rules: Sequence[SegmentRule] = DEFAULT_RULES
) -> tuple[SegmentTag, bool]:
    """Return the first matching segment and whether a rule matched.

    Never raises: an unmatched card yields ``(FALLBACK_SEGMENT, False)``.
    """

    for rule in rules:
        if rule.matches(card):
            return rule.tag, True
    return FALLBACK_SEGMENT, False


@dataclass(frozen=True)
class SegmentInfo:
    """Presentation metadata for a segment."""

    label: str
    description: str
    action: str
    priority: int


SEGMENT_INFO: dict[SegmentTag, SegmentInfo] = {
    SegmentTag.CHAMPIONS: SegmentInfo(
        "Champions",
        "Buy often, bought recently and spend the most.",
        "Reward them and ask for referrals.",
        1,
    ),
    SegmentTag.LOYAL: SegmentInfo(
        "Loyal",
        "Regular buyers with consistent spend.",
        "Upsell higher-value products.",
        2,
    ),
    SegmentTag.POTENTIAL_LOYALISTS: SegmentInfo(
        "Potential Loyalists",
        "Recent customers with moderate frequency.",
        "Offer membership or loyalty programmes.",
        3,
    ),
    SegmentTag.RECENT_SINGLE_PURCHASE: SegmentInfo(
        "Recent Single-Purchase",
        "Made their first and only purchase recently.",
        "Onboard them and encourage a second order.",
        4,
    ),
    SegmentTag.CANT_LOSE_THEM: SegmentInfo(
        "Can't Lose Them",
        "High spenders who have not bought recently.",
        "Win them back with personalised offers.",
        5,
    ),
    SegmentTag.HIBERNATING: SegmentInfo(
        "Hibernating",
        "Low frequency and no recent purchases.",
        "Reactivate with relevant promotions.",
        6,
    ),
    SegmentTag.INACTIVE_SINGLE_PURCHASE: SegmentInfo(
        "Inactive Single-Purchase",
        "Bought once and have not returned.",
        "Send a reminder campaign.",
        7,
    ),
    SegmentTag.LOST: SegmentInfo(
        "Lost",
        "No activity in a long time.",
        "Low-cost reactivation only.",
        8,
    ),
    SegmentTag.OCCASIONAL: SegmentInfo(
        "Occasional",
        "Mixed purchase patterns outside the main segments.",
        "Review individually.",
        9,
    ),
}


def get_segment_info(segment: SegmentTag | str) -> SegmentInfo:
    """Look up presentation metadata, defaulting to the fallback segment."""

    try:
        return SEGMENT_INFO[SegmentTag(segment)]
    except ValueError:
        return SEGMENT_INFO[FALLBACK_SEGMENT]
