"""Place/show estimator — field-size aware place and show chances from win.

    P(place) ~ P(win) * m_place(n)      1.2 at 3 runners rising to 1.8 at 8+
    P(show)  ~ P(win) * m_show(n)       1.5 at 4 runners rising to 2.5 at 8+

Estimates are clamped to [0.01, 0.95]. Place pools are assumed to pay
about 40% of the win profit and show pools about 20%. Probabilities are
0.0-1.0 and odds are odds-to-1, as in bet_builder.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Tuple


class EstimateConfidence(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class PoolChoice(str, enum.Enum):
    WIN = "WIN"
    PLACE = "PLACE"
    SHOW = "SHOW"
    PASS = "PASS"


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_PLACE_MULTIPLIER = 1.8
_SHOW_MULTIPLIER = 2.5
_MIN_PLACE_MULTIPLIER = 1.2
_MIN_SHOW_MULTIPLIER = 1.5

# Field size at which the full multipliers apply
_FULL_FIELD = 8

_MAX_PROBABILITY = 0.95
_MIN_PROBABILITY = 0.01

# Share of the win profit the place / show pools pay
_PLACE_PAYOUT_SHARE = 0.4
_SHOW_PAYOUT_SHARE = 0.2


@dataclass(frozen=True)
class PlaceShowEstimate:
    probability: float
    confidence: EstimateConfidence
    multiplier: float
    win_probability: float
    field_size: int
    is_reasonable: bool
    warning: Optional[str] = None


@dataclass(frozen=True)
class PoolRecommendation:
    choice: PoolChoice
    reasoning: str
    win_ev: float
    place_ev: float
    show_ev: float


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------

def place_multiplier(field_size: int) -> float:
    if field_size <= 2:
        return 1.0
    if field_size >= _FULL_FIELD:
        return _PLACE_MULTIPLIER
    ratio = (field_size - 3) / (_FULL_FIELD - 3)
    return _MIN_PLACE_MULTIPLIER + ratio * (_PLACE_MULTIPLIER - _MIN_PLACE_MULTIPLIER)


def show_multiplier(field_size: int) -> float:
    if field_size <= 3:
        return 1.0
    if field_size >= _FULL_FIELD:
        return _SHOW_MULTIPLIER
    ratio = (field_size - 4) / (_FULL_FIELD - 4)
    return _MIN_SHOW_MULTIPLIER + ratio * (_SHOW_MULTIPLIER - _MIN_SHOW_MULTIPLIER)


def _confidence(win_probability: float, field_size: int) -> EstimateConfidence:
    if field_size >= 8 and 0.1 <= win_probability <= 0.4:
        return EstimateConfidence.HIGH
    if field_size >= 6 and 0.05 <= win_probability <= 0.5:
        return EstimateConfidence.MEDIUM
    return EstimateConfidence.LOW


# ---------------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------------

def _invalid(win_probability: float, field_size: int) -> PlaceShowEstimate:
    return PlaceShowEstimate(0.0, EstimateConfidence.LOW, 0.0, win_probability, field_size,
                             False, f"Invalid win probability: {win_probability}")


def _scaled(win_probability: float, field_size: int, multiplier: float) -> PlaceShowEstimate:
    p = max(_MIN_PROBABILITY, min(_MAX_PROBABILITY, win_probability * multiplier))
    reasonable = win_probability < p < 1
    return PlaceShowEstimate(
        probability=p,
        confidence=_confidence(win_probability, field_size),
        multiplier=multiplier,
        win_probability=win_probability,
        field_size=field_size,
        is_reasonable=reasonable,
        warning=None if reasonable else "Estimate may be unreliable for this probability/field combination",
    )


def estimate_place_probability(win_probability: float, field_size: int) -> PlaceShowEstimate:
    """Chance of finishing first or second."""
    if not 0 < win_probability < 1:
        return _invalid(win_probability, field_size)
    if field_size < 2:
        return PlaceShowEstimate(win_probability, EstimateConfidence.HIGH, 1.0, win_probability,
                                 field_size, False, "Field too small for place betting")
    return _scaled(win_probability, field_size, place_multiplier(field_size))


def estimate_show_probability(win_probability: float, field_size: int) -> PlaceShowEstimate:
    """Chance of finishing in the first three."""
    if not 0 < win_probability < 1:
        return _invalid(win_probability, field_size)
    if field_size < 3:
        p = win_probability if field_size == 2 else 1.0
        return PlaceShowEstimate(p, EstimateConfidence.HIGH, 1.0, win_probability,
                                 field_size, False, "Field too small for show betting")
    return _scaled(win_probability, field_size, show_multiplier(field_size))


def place_show_odds(win_odds: float, pool: PoolChoice) -> float:
    """Odds-to-1 the place or show pool is expected to pay."""
    share = _PLACE_PAYOUT_SHARE if PoolChoice(pool) is PoolChoice.PLACE else _SHOW_PAYOUT_SHARE
    return win_odds * share


def expected_value(probability: float, odds: float) -> float:
    """EV per $1 staked at odds-to-1."""
    return probability * (odds + 1.0) - 1.0


def pool_evs(win_probability: float, win_odds: float, field_size: int) -> Tuple[float, float, float]:
    place = estimate_place_probability(win_probability, field_size)
    show = estimate_show_probability(win_probability, field_size)
    return (
        expected_value(win_probability, win_odds),
        expected_value(place.probability, place_show_odds(win_odds, PoolChoice.PLACE)),
        expected_value(show.probability, place_show_odds(win_odds, PoolChoice.SHOW)),
    )


def recommend_pool(win_probability: float, win_odds: float, field_size: int) -> PoolRecommendation:
    """Pick the straight pool with the best expected value, or PASS."""
    win_ev, place_ev, show_ev = pool_evs(win_probability, win_odds, field_size)

    def _rec(choice: PoolChoice, reasoning: str) -> PoolRecommendation:
        return PoolRecommendation(choice, reasoning, win_ev, place_ev, show_ev)

    if win_ev < 0 and place_ev < 0 and show_ev < 0:
        return _rec(PoolChoice.PASS, "No positive EV opportunity")
    if win_ev >= place_ev and win_ev >= show_ev and win_ev > 0:
        return _rec(PoolChoice.WIN, f"Win bet has best EV ({win_ev * 100:.1f}%)")
    if place_ev > show_ev and place_ev > 0:
        return _rec(PoolChoice.PLACE, f"Place bet has better EV ({place_ev * 100:.1f}% "
                                      f"vs {win_ev * 100:.1f}% win)")
    if show_ev > 0:
        return _rec(PoolChoice.SHOW, f"Show bet offers positive EV ({show_ev * 100:.1f}%)")
    return _rec(PoolChoice.WIN, "Win bet is the best available option")


def estimate_to_dict(estimate: PlaceShowEstimate) -> dict:
    return {
        "probability": round(estimate.probability, 4),
        "confidence": estimate.confidence.value,
        "multiplier": round(estimate.multiplier, 3),
        "field_size": estimate.field_size,
        "is_reasonable": estimate.is_reasonable,
        "warning": estimate.warning,
    }
