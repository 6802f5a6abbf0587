"""Exotic key tickets — one horse keyed on top, a short list underneath.

    exacta key       key wins, any "with" horse second         n combinations
    trifecta key     key wins, "with" horses fill 2nd-3rd      n * (n - 1)
    superfecta key   key wins, "with" horses fill 2nd-4th      n * (n - 1) * (n - 2)

Hit probabilities here are rough and payouts are not estimated at all, so
every key ticket is flagged speculative. Probabilities are 0.0-1.0 win
probabilities keyed by program number.

Usage:
    from exotic_keys import calculate_trifecta_key, recommend_exotic_keys
    bet = calculate_trifecta_key(3, [5, 7, 8], {3: 0.35, 5: 0.2, 7: 0.15, 8: 0.1})
    recs = recommend_exotic_keys(prepared_field, max_budget=20)
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from combinatorics import permutation_count
from probability_model import ScoredEntry
from window_script import exotic_key_script

logger = logging.getLogger(__name__)


class ExoticKeyType(str, enum.Enum):
    EXACTA_KEY = "EXACTA_KEY"
    TRIFECTA_KEY = "TRIFECTA_KEY"
    SUPERFECTA_KEY = "SUPERFECTA_KEY"

    @property
    def positions(self) -> int:
        return _POSITIONS[self]

    @property
    def base_unit(self) -> float:
        return _BASE_UNITS[self]

    @property
    def min_with(self) -> int:
        return self.positions - 1


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_POSITIONS = {
    ExoticKeyType.EXACTA_KEY: 2,
    ExoticKeyType.TRIFECTA_KEY: 3,
    ExoticKeyType.SUPERFECTA_KEY: 4,
}

# Standard minimum unit at the window for each key type
_BASE_UNITS = {
    ExoticKeyType.EXACTA_KEY: 2.0,
    ExoticKeyType.TRIFECTA_KEY: 1.0,
    ExoticKeyType.SUPERFECTA_KEY: 0.1,
}

_MIN_FIELD_SIZE = {
    ExoticKeyType.EXACTA_KEY: 4,
    ExoticKeyType.TRIFECTA_KEY: 5,
    ExoticKeyType.SUPERFECTA_KEY: 6,
}

# Base-score tiers: a key needs tier 1, the underneath horses tier 2-3
TIER_1_MIN_SCORE = 180.0
UNDERNEATH_MIN_SCORE = 140.0

_DEFAULT_EXOTIC_BUDGET = 20.0

# Caps on the rough hit estimates
_MAX_TRIFECTA_KEY_PROB = 0.5
_MAX_SUPERFECTA_KEY_PROB = 0.2


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExoticKeyBet:
    bet_type: ExoticKeyType
    key_horse: int
    with_horses: Tuple[int, ...]
    combinations: int
    cost_per_unit: float
    total_cost: float
    estimated_probability: float        # 0.0-1.0, very approximate
    reasoning: str = ""
    key_horse_name: str = ""
    key_horse_tier: str = "TIER_1"
    is_speculative: bool = True

    @property
    def window_script(self) -> str:
        if not self.combinations:
            return ""
        return exotic_key_script(self.bet_type.value, self.key_horse, self.with_horses,
                                 self.cost_per_unit)


@dataclass
class ExoticRecommendations:
    bets: List[ExoticKeyBet] = field(default_factory=list)
    total_cost: float = 0.0
    reason: Optional[str] = None        # why nothing was recommended

    @property
    def has_recommendations(self) -> bool:
        return bool(self.bets)


# ---------------------------------------------------------------------------
# Key tickets
# ---------------------------------------------------------------------------

def _key_bet(bet_type: ExoticKeyType, key_horse: int, with_horses: Sequence[int],
             base_amount: float, probability: float, combinations: int,
             reasoning: str) -> ExoticKeyBet:
    return ExoticKeyBet(
        bet_type=bet_type,
        key_horse=key_horse,
        with_horses=tuple(with_horses),
        combinations=combinations,
        cost_per_unit=base_amount,
        total_cost=round(combinations * base_amount, 2),
        estimated_probability=probability,
        reasoning=reasoning,
    )


def _underneath(key_horse: int, with_horses: Sequence[int]) -> List[int]:
    return [h for h in with_horses if h != key_horse]


def calculate_exacta_key(key_horse: int, with_horses: Sequence[int],
                         probabilities: Mapping[int, float],
                         base_amount: float = _BASE_UNITS[ExoticKeyType.EXACTA_KEY]) -> ExoticKeyBet:
    """Key over each "with" horse. The key is dropped from the with list."""
    under = _underneath(key_horse, with_horses)
    key_p = probabilities.get(key_horse, 0.0)
    with_p = sum(probabilities.get(h, 0.0) for h in under)
    # P(one of them second | key wins) ~ their share of what is left
    conditional = with_p / (1.0 - key_p) if key_p < 1 else with_p
    return _key_bet(
        ExoticKeyType.EXACTA_KEY, key_horse, under, base_amount,
        key_p * min(1.0, conditional), len(under),
        f"Key #{key_horse} over {len(under)} horses ({', '.join(str(h) for h in under)})",
    )


def calculate_trifecta_key(key_horse: int, with_horses: Sequence[int],
                           probabilities: Mapping[int, float],
                           base_amount: float = _BASE_UNITS[ExoticKeyType.TRIFECTA_KEY]) -> ExoticKeyBet:
    under = _underneath(key_horse, with_horses)
    if len(under) < 2:
        return _key_bet(ExoticKeyType.TRIFECTA_KEY, key_horse, under, base_amount, 0.0, 0,
                        "Need at least 2 horses underneath for trifecta key")
    combos = permutation_count(len(under), 2)
    key_p = probabilities.get(key_horse, 0.0)
    with_p = sum(probabilities.get(h, 0.0) for h in under)
    estimate = min(_MAX_TRIFECTA_KEY_PROB, key_p * with_p ** 0.7 * 0.3)
    return _key_bet(ExoticKeyType.TRIFECTA_KEY, key_horse, under, base_amount, estimate, combos,
                    f"Key #{key_horse} over {len(under)} horses ({combos} combinations)")


def calculate_superfecta_key(key_horse: int, with_horses: Sequence[int],
                             probabilities: Mapping[int, float],
                             base_amount: float = _BASE_UNITS[ExoticKeyType.SUPERFECTA_KEY]) -> ExoticKeyBet:
    under = _underneath(key_horse, with_horses)
    if len(under) < 3:
        return _key_bet(ExoticKeyType.SUPERFECTA_KEY, key_horse, under, base_amount, 0.0, 0,
                        "Need at least 3 horses underneath for superfecta key")
    combos = permutation_count(len(under), 3)
    estimate = min(_MAX_SUPERFECTA_KEY_PROB, probabilities.get(key_horse, 0.0) * 0.05)
    return _key_bet(ExoticKeyType.SUPERFECTA_KEY, key_horse, under, base_amount, estimate, combos,
                    f"Key #{key_horse} over {len(under)} horses ({combos} combinations)")


_CALCULATORS = {
    ExoticKeyType.EXACTA_KEY: calculate_exacta_key,
    ExoticKeyType.TRIFECTA_KEY: calculate_trifecta_key,
    ExoticKeyType.SUPERFECTA_KEY: calculate_superfecta_key,
}


# ---------------------------------------------------------------------------
# Boxes and validation
# ---------------------------------------------------------------------------

def box_combinations(horses: int, positions: int) -> int:
    """Ordered finishes a box of *horses* covers: n! / (n - positions)!."""
    if horses < positions or positions < 0:
        return 0
    return permutation_count(horses, positions)


def calculate_box_cost(horses: int, bet_type, base_amount: Optional[float] = None) -> float:
    """Cost of boxing *horses* runners at the key type's finishing depth."""
    kind = ExoticKeyType(bet_type)
    amount = kind.base_unit if base_amount is None else base_amount
    return round(box_combinations(horses, kind.positions) * amount, 2)


def validate_exotic_bet(bet: ExoticKeyBet) -> List[str]:
    """Problems with a key ticket; empty when it can be played."""
    errors = []
    if bet.key_horse <= 0:
        errors.append("Invalid key horse number")
    if not bet.with_horses:
        errors.append("No horses selected underneath")
    if bet.key_horse in bet.with_horses:
        errors.append("Key horse cannot be in with horses list")
    if len(bet.with_horses) < bet.bet_type.min_with:
        errors.append(f"{bet.bet_type.value} requires at least {bet.bet_type.min_with} horses underneath")
    return errors


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

def _nothing(reason: str) -> ExoticRecommendations:
    logger.debug("No exotic keys: %s", reason)
    return ExoticRecommendations(reason=reason)


def recommend_exotic_keys(field_: Sequence[ScoredEntry],
                          max_budget: float = _DEFAULT_EXOTIC_BUDGET,
                          tier_1_min: float = TIER_1_MIN_SCORE,
                          underneath_min: float = UNDERNEATH_MIN_SCORE) -> ExoticRecommendations:
    """Key the strongest tier-1 horse over the best tier 2-3 horses.

    Exacta over the top three, trifecta over the top four, superfecta over
    all four, each only when the field is big enough and the ticket still
    fits what is left of *max_budget*.
    """
    size = len(field_)
    if size < _MIN_FIELD_SIZE[ExoticKeyType.EXACTA_KEY]:
        return _nothing(f"Field size ({size}) too small for exotic keys")

    tier_1 = sorted((h for h in field_ if h.score >= tier_1_min), key=lambda h: -h.score)
    if not tier_1:
        return _nothing("No Tier 1 horses identified for key position")
    under = sorted((h for h in field_ if underneath_min <= h.score < tier_1_min),
                   key=lambda h: -h.score)
    if len(under) < 2:
        return _nothing("Not enough Tier 2-3 horses for exotic key underneath")

    key = tier_1[0]
    with_horses = [h.program_number for h in under[:4]]
    probabilities: Dict[int, float] = {h.program_number: h.kelly_probability for h in field_}

    plan = (
        (ExoticKeyType.EXACTA_KEY, 2, 3),
        (ExoticKeyType.TRIFECTA_KEY, 3, 4),
        (ExoticKeyType.SUPERFECTA_KEY, 4, 4),
    )
    recs = ExoticRecommendations()
    for kind, needed, take in plan:
        if size < _MIN_FIELD_SIZE[kind] or len(with_horses) < needed:
            continue
        bet = _CALCULATORS[kind](key.program_number, with_horses[:take], probabilities, kind.base_unit)
        if bet.combinations and bet.total_cost <= max_budget - recs.total_cost + 1e-9:
            recs.bets.append(replace(bet, key_horse_name=key.name))
            recs.total_cost = round(recs.total_cost + bet.total_cost, 2)

    if not recs.bets:
        recs.reason = "No exotic bets fit within budget constraints"
    return recs


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def exotic_key_to_dict(bet: ExoticKeyBet) -> dict:
    return {
        "bet_type": bet.bet_type.value,
        "key_horse": bet.key_horse,
        "key_horse_name": bet.key_horse_name,
        "with_horses": list(bet.with_horses),
        "combinations": bet.combinations,
        "cost_per_unit": bet.cost_per_unit,
        "total_cost": bet.total_cost,
        "estimated_probability": round(bet.estimated_probability, 4),
        "is_speculative": bet.is_speculative,
        "reasoning": bet.reasoning,
        "window_script": bet.window_script,
        "errors": validate_exotic_bet(bet),
    }


def exotic_recommendations_to_dict(recs: ExoticRecommendations) -> dict:
    return {
        "bets": [exotic_key_to_dict(b) for b in recs.bets],
        "total_cost": recs.total_cost,
        "has_recommendations": recs.has_recommendations,
        "reason": recs.reason,
    }
