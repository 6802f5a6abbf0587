"""Wager candidate generation — every legal ticket for a race, with EV.

For each wager family whose minimum field size is met, enumerate every
selection, price it in $1 base units, estimate hit probability from the
sequential score-share model and a payout range from the selected horses'
odds, and compute expected value:

    EV = hit_probability / 100 * likely_payout - stake_cost

Usage:
    from probability_model import prepare_field
    from wager_generator import generate_candidates
    field = prepare_field(entries)
    result = generate_candidates(field)
    result.candidates  # List[WagerCandidate]
"""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from combinatorics import (
    IndexCombinations,
    IndexPermutations,
    combination_count,
    orderings,
    permutation_count,
)
from probability_model import (
    FieldWeights,
    ScoredEntry,
    box_probability,
    field_weights,
    finish_probability,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BASE_UNIT = 1.0

# Candidates under this EV may be dropped before ranking
_MIN_EV_THRESHOLD = -0.5

# Default number of recommendations the ranker is asked for
_DEFAULT_TARGET_COUNT = 25

# Key horses come from the top of the model; "with" horses are capped
_MAX_KEY_HORSES = 5
_MAX_WITH_HORSES = 5

# Every selected horse at or above this line counts as a longshot ticket
_LONGSHOT_ODDS = 10.0


class WagerFamily(str, enum.Enum):
    WIN = "WIN"
    PLACE = "PLACE"
    SHOW = "SHOW"
    QUINELLA = "QUINELLA"
    EXACTA_STRAIGHT = "EXACTA_STRAIGHT"
    EXACTA_BOX_2 = "EXACTA_BOX_2"
    EXACTA_BOX_3 = "EXACTA_BOX_3"
    TRIFECTA_STRAIGHT = "TRIFECTA_STRAIGHT"
    TRIFECTA_BOX_3 = "TRIFECTA_BOX_3"
    TRIFECTA_BOX_4 = "TRIFECTA_BOX_4"
    TRIFECTA_KEY = "TRIFECTA_KEY"
    SUPERFECTA_BOX_4 = "SUPERFECTA_BOX_4"
    SUPERFECTA_BOX_5 = "SUPERFECTA_BOX_5"

    @property
    def min_field(self) -> int:
        return _MIN_FIELD[self]

    @property
    def is_straight(self) -> bool:
        return self in (WagerFamily.WIN, WagerFamily.PLACE, WagerFamily.SHOW)


_MIN_FIELD: Dict[WagerFamily, int] = {
    WagerFamily.WIN: 1,
    WagerFamily.PLACE: 1,
    WagerFamily.SHOW: 1,
    WagerFamily.QUINELLA: 2,
    WagerFamily.EXACTA_STRAIGHT: 2,
    WagerFamily.EXACTA_BOX_2: 2,
    WagerFamily.EXACTA_BOX_3: 3,
    WagerFamily.TRIFECTA_STRAIGHT: 3,
    WagerFamily.TRIFECTA_BOX_3: 3,
    WagerFamily.TRIFECTA_BOX_4: 4,
    WagerFamily.TRIFECTA_KEY: 3,
    WagerFamily.SUPERFECTA_BOX_4: 4,
    WagerFamily.SUPERFECTA_BOX_5: 5,
}

# (base, longshot) payout multipliers, conservative relative to typical tote returns
_PAYOUT_MULTIPLIERS: Dict[WagerFamily, Tuple[float, float]] = {
    WagerFamily.WIN: (1.0, 1.0),
    WagerFamily.PLACE: (0.4, 0.4),
    WagerFamily.SHOW: (0.25, 0.25),
    WagerFamily.QUINELLA: (6.0, 12.0),
    WagerFamily.EXACTA_STRAIGHT: (8.0, 15.0),
    WagerFamily.EXACTA_BOX_2: (8.0, 15.0),
    WagerFamily.EXACTA_BOX_3: (6.0, 12.0),
    WagerFamily.TRIFECTA_STRAIGHT: (80.0, 200.0),
    WagerFamily.TRIFECTA_BOX_3: (60.0, 150.0),
    WagerFamily.TRIFECTA_BOX_4: (40.0, 100.0),
    WagerFamily.TRIFECTA_KEY: (50.0, 120.0),
    WagerFamily.SUPERFECTA_BOX_4: (500.0, 2000.0),
    WagerFamily.SUPERFECTA_BOX_5: (300.0, 1500.0),
}


class FieldOfOnePolicy(str, enum.Enum):
    """What to do when only one horse is left running."""
    DISABLE_EXOTICS = "disable_exotics"     # offer WIN/PLACE/SHOW only
    SIGNAL_PASS = "signal_pass"             # offer nothing, verdict PASS


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PayoutEstimate:
    min: float
    max: float
    likely: float


@dataclass(frozen=True)
class WagerCandidate:
    """One priced ticket before ranking.

    *positions* index the prepared field; *horse_indices* and
    *program_numbers* identify the same horses to the outside world, in
    ticket order (key first for keys, finish order for straights).
    """
    family: WagerFamily
    positions: Tuple[int, ...]
    horse_indices: Tuple[int, ...]
    program_numbers: Tuple[int, ...]
    stake_cost: float
    combinations_covered: int
    hit_probability: float          # 0-100
    estimated_payout: PayoutEstimate
    expected_value: float

    @property
    def dedupe_key(self) -> Tuple[str, Tuple[int, ...]]:
        return self.family.value, tuple(sorted(self.horse_indices))


@dataclass
class GeneratorSettings:
    """Knobs for candidate generation."""
    base_unit: float = _BASE_UNIT
    min_ev_threshold: float = _MIN_EV_THRESHOLD
    target_count: int = _DEFAULT_TARGET_COUNT
    field_of_one_policy: FieldOfOnePolicy = FieldOfOnePolicy.DISABLE_EXOTICS
    max_key_horses: int = _MAX_KEY_HORSES
    max_with_horses: int = _MAX_WITH_HORSES


@dataclass
class GenerationResult:
    candidates: List[WagerCandidate] = field(default_factory=list)
    total_combinations: int = 0     # every candidate priced, before the EV floor
    field_size: int = 0
    verdict: Optional[str] = None   # "PASS" when the field-of-one policy says so
    notes: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------

def _round_half_up(x: float) -> float:
    return float(math.floor(x + 0.5))


def estimate_payout(family: WagerFamily, field_: Sequence[ScoredEntry],
                    positions: Sequence[int], base_cost: float = _BASE_UNIT) -> PayoutEstimate:
    """Dollar payout range for a winning ticket, from the selected horses' odds."""
    selected = [field_[p] for p in positions if 0 <= p < len(field_)]
    if not selected:
        return PayoutEstimate(0.0, 0.0, 0.0)

    odds = [h.odds for h in selected]
    avg, lo, hi = sum(odds) / len(odds), min(odds), max(odds)
    base, longshot = _PAYOUT_MULTIPLIERS[family]
    m = longshot if lo >= _LONGSHOT_ODDS else base
    r = _round_half_up

    if family is WagerFamily.WIN:
        return PayoutEstimate(r(base_cost * (lo + 1)), r(base_cost * (hi + 1)), r(base_cost * (avg + 1)))
    if family is WagerFamily.PLACE:
        return PayoutEstimate(r(base_cost * (lo * 0.4 + 1)), r(base_cost * (hi * 0.5 + 1)),
                              r(base_cost * (avg * 0.45 + 1)))
    if family is WagerFamily.SHOW:
        return PayoutEstimate(r(base_cost * (lo * 0.2 + 1)), r(base_cost * (hi * 0.3 + 1)),
                              r(base_cost * (avg * 0.25 + 1)))
    if family in (WagerFamily.QUINELLA, WagerFamily.EXACTA_BOX_3):
        return PayoutEstimate(r(base_cost * lo * avg * m * 0.6), r(base_cost * hi * avg * m * 1.2),
                              r(base_cost * avg * avg * m * 0.8))
    if family in (WagerFamily.EXACTA_STRAIGHT, WagerFamily.EXACTA_BOX_2):
        return PayoutEstimate(r(base_cost * lo * avg * m * 0.8), r(base_cost * hi * avg * m * 1.5),
                              r(base_cost * avg * avg * m))
    if family in (WagerFamily.TRIFECTA_STRAIGHT, WagerFamily.TRIFECTA_BOX_3, WagerFamily.TRIFECTA_KEY):
        return PayoutEstimate(r(base_cost * lo * avg ** 2 * m * 0.3), r(base_cost * hi * avg ** 2 * m),
                              r(base_cost * avg ** 3 * m * 0.5))
    if family is WagerFamily.TRIFECTA_BOX_4:
        return PayoutEstimate(r(base_cost * lo * avg ** 2 * m * 0.2), r(base_cost * hi * avg ** 2 * m * 0.8),
                              r(base_cost * avg ** 3 * m * 0.3))
    # superfecta boxes
    return PayoutEstimate(r(base_cost * lo * avg ** 3 * m * 0.1), r(base_cost * hi * avg ** 3 * m),
                          r(base_cost * avg ** 4 * m * 0.3))


# ---------------------------------------------------------------------------
# Per-family enumeration
# ---------------------------------------------------------------------------

def _candidate(family: WagerFamily, field_: Sequence[ScoredEntry], positions: Sequence[int],
               combos: int, hit_prob: float, base_unit: float) -> WagerCandidate:
    positions = tuple(positions)
    cost = base_unit * combos
    payout = estimate_payout(family, field_, positions, base_unit)
    hit_prob = min(100.0, max(0.0, hit_prob))
    return WagerCandidate(
        family=family,
        positions=positions,
        horse_indices=tuple(field_[p].index for p in positions),
        program_numbers=tuple(field_[p].program_number for p in positions),
        stake_cost=cost,
        combinations_covered=combos,
        hit_probability=hit_prob,
        estimated_payout=payout,
        expected_value=(hit_prob / 100.0) * payout.likely - cost,
    )


def _straight_bets(field_, base_unit) -> List[WagerCandidate]:
    out: List[WagerCandidate] = []
    for family, attr in ((WagerFamily.WIN, "win_prob"),
                         (WagerFamily.PLACE, "place_prob"),
                         (WagerFamily.SHOW, "show_prob")):
        for pos, horse in enumerate(field_):
            out.append(_candidate(family, field_, [pos], 1, getattr(horse, attr), base_unit))
    return out


def _quinella_bets(field_, fw: FieldWeights, base_unit) -> List[WagerCandidate]:
    # one ticket covering both orders
    return [
        _candidate(WagerFamily.QUINELLA, field_, pair, 1, box_probability(field_, pair, 2, fw), base_unit)
        for pair in IndexCombinations(len(field_), 2)
    ]


def _exacta_straight_bets(field_, fw: FieldWeights, base_unit) -> List[WagerCandidate]:
    return [
        _candidate(WagerFamily.EXACTA_STRAIGHT, field_, order, 1,
                   finish_probability(field_, order, fw), base_unit)
        for order in IndexPermutations(len(field_), 2)
    ]


def _box_bets(family: WagerFamily, field_, fw: FieldWeights, size: int, places: int,
             base_unit) -> List[WagerCandidate]:
    combos = permutation_count(size, places)
    return [
        _candidate(family, field_, box, combos, box_probability(field_, box, places, fw), base_unit)
        for box in IndexCombinations(len(field_), size)
    ]


def _trifecta_straight_bets(field_, fw: FieldWeights, base_unit) -> List[WagerCandidate]:
    return [
        _candidate(WagerFamily.TRIFECTA_STRAIGHT, field_, order, 1,
                   finish_probability(field_, order, fw), base_unit)
        for order in IndexPermutations(len(field_), 3)
    ]


def _trifecta_key_bets(field_, fw: FieldWeights, base_unit, max_key: int,
                       max_with: int) -> List[WagerCandidate]:
    out: List[WagerCandidate] = []
    for key in range(min(max_key, len(field_))):
        with_set = [i for i in range(len(field_)) if i != key][:max_with]
        if len(with_set) < 2:
            continue
        prob = sum(
            finish_probability(field_, (key,) + pair, fw)
            for pair in orderings(with_set, 2)
        )
        combos = len(with_set) * (len(with_set) - 1)
        out.append(_candidate(WagerFamily.TRIFECTA_KEY, field_, [key] + with_set, combos, prob, base_unit))
    return out


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def generate_all(field_: Sequence[ScoredEntry],
                 settings: Optional[GeneratorSettings] = None) -> GenerationResult:
    """Price every legal ticket for the field, no EV filtering.

    Families whose minimum field size is not met are omitted. A single
    active horse follows settings.field_of_one_policy.
    """
    settings = settings or GeneratorSettings()
    n = len(field_)
    result = GenerationResult(field_size=n)
    if n == 0:
        result.notes.append("no active runners")
        return result
    if n == 1 and settings.field_of_one_policy is FieldOfOnePolicy.SIGNAL_PASS:
        result.verdict = "PASS"
        result.notes.append("single runner: pass")
        return result

    unit = settings.base_unit
    fw = field_weights(field_)
    cands: List[WagerCandidate] = _straight_bets(field_, unit)
    if n >= 2:
        cands += _quinella_bets(field_, fw, unit)
        cands += _exacta_straight_bets(field_, fw, unit)
        cands += _box_bets(WagerFamily.EXACTA_BOX_2, field_, fw, 2, 2, unit)
    if n >= 3:
        cands += _box_bets(WagerFamily.EXACTA_BOX_3, field_, fw, 3, 2, unit)
        cands += _trifecta_straight_bets(field_, fw, unit)
        cands += _box_bets(WagerFamily.TRIFECTA_BOX_3, field_, fw, 3, 3, unit)
        cands += _trifecta_key_bets(field_, fw, unit, settings.max_key_horses, settings.max_with_horses)
    if n >= 4:
        cands += _box_bets(WagerFamily.TRIFECTA_BOX_4, field_, fw, 4, 3, unit)
        cands += _box_bets(WagerFamily.SUPERFECTA_BOX_4, field_, fw, 4, 4, unit)
    if n >= 5:
        cands += _box_bets(WagerFamily.SUPERFECTA_BOX_5, field_, fw, 5, 4, unit)
    if n == 1:
        result.notes.append("single runner: exotics disabled")

    result.candidates = cands
    result.total_combinations = len(cands)
    return result


def apply_ev_floor(candidates: Sequence[WagerCandidate], min_ev: float = _MIN_EV_THRESHOLD,
                   target_count: int = _DEFAULT_TARGET_COUNT) -> List[WagerCandidate]:
    """Drop candidates below *min_ev*, unless that would leave fewer than target_count."""
    viable = [c for c in candidates if c.expected_value >= min_ev]
    if len(viable) >= target_count:
        return viable
    return list(candidates)


def generate_candidates(field_: Sequence[ScoredEntry],
                        settings: Optional[GeneratorSettings] = None) -> GenerationResult:
    """generate_all followed by the EV floor."""
    settings = settings or GeneratorSettings()
    result = generate_all(field_, settings)
    before = len(result.candidates)
    result.candidates = apply_ev_floor(result.candidates, settings.min_ev_threshold, settings.target_count)
    logger.debug("Generated %d candidates for field of %d (%d after EV floor)",
                 before, result.field_size, len(result.candidates))
    return result


def estimate_candidate_count(field_size: int, max_key_horses: int = _MAX_KEY_HORSES,
                             max_with_horses: int = _MAX_WITH_HORSES) -> int:
    """How many candidates generate_all will price, without enumerating."""
    n = field_size
    if n <= 0:
        return 0
    count = 3 * n
    if n >= 2:
        count += 2 * combination_count(n, 2) + permutation_count(n, 2)
    if n >= 3:
        count += 2 * combination_count(n, 3) + permutation_count(n, 3)
        with_size = min(max_with_horses, n - 1)
        if with_size >= 2:
            count += min(max_key_horses, n)
    if n >= 4:
        count += 2 * combination_count(n, 4)
    if n >= 5:
        count += combination_count(n, 5)
    return count
