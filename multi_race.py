"""Multi-race tickets — build, price and trim daily doubles and pick N.

Each leg either singles a strong value play or spreads across the race's
top contenders, depending on the bettor's risk style. A ticket costs

    combinations = product of horses per leg
    total_cost   = combinations * cost_per_combo

Payouts are rough ranges from typical pool results, scaled up when value
plays at 8-1 or longer are on the ticket. The EV figure built on them is
an approximation for comparing tickets, not a price.

Usage:
    from multi_race import LegContenders, build_multi_race_ticket, adjust_ticket_to_budget
    ticket = build_multi_race_ticket("PICK_3", legs, "balanced")
    ticket = adjust_ticket_to_budget(ticket, 24)
"""
from __future__ import annotations

import enum
import logging
import math
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from day_allocator import RiskStyle
from day_session import MULTI_RACE_TYPES, MultiRaceBet, make_multi_race_bet
from probability_model import ScoredEntry
from window_script import MULTI_RACE_NAMES, multi_race_script

logger = logging.getLogger(__name__)


class LegStrategy(str, enum.Enum):
    SINGLE = "SINGLE"
    SPREAD = "SPREAD"


class TicketConfidence(str, enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class EVRating(str, enum.Enum):
    POSITIVE = "POSITIVE"
    NEUTRAL = "NEUTRAL"
    NEGATIVE = "NEGATIVE"


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_COST_PER_COMBO = {
    "DAILY_DOUBLE": 2.0,
    "PICK_3": 1.0,
    "PICK_4": 1.0,
    "PICK_5": 0.5,
    "PICK_6": 0.5,
}

# Typical $1-equivalent payouts when every favourite wins
_BASE_PAYOUTS = {
    "DAILY_DOUBLE": (20.0, 50.0),
    "PICK_3": (50.0, 150.0),
    "PICK_4": (100.0, 300.0),
    "PICK_5": (200.0, 600.0),
    "PICK_6": (500.0, 1500.0),
}

# (min, max) multipliers by number of longshot value plays on the ticket
_LONGSHOT_MULTIPLIERS = {
    1: (3.0, 8.0),
    2: (10.0, 30.0),
    3: (30.0, 100.0),
}

_LONGSHOT_ODDS = 8.0
_DEFAULT_AVERAGE_ODDS = 5.0

# Hit rate assumed for a multi-race ticket with no longshots
_BASE_HIT_PROBABILITY = 0.15
_LONGSHOT_HIT_FACTOR = 0.7

# A value play this far over its fair price gets singled
_SINGLE_MIN_EDGE = 100.0
_MAX_CONTENDER_RANK = 6
_MIN_SPREAD = 2

# risk style -> (prefer singles, max horses in a spread)
_STYLE_RULES = {
    RiskStyle.SAFE: (False, 4),
    RiskStyle.BALANCED: (True, 3),
    RiskStyle.AGGRESSIVE: (True, 2),
}


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValuePlay:
    program_number: int
    name: str = ""
    edge: float = 0.0       # percent over the fair line


@dataclass(frozen=True)
class LegContenders:
    """What the ticket builder knows about one race in the sequence."""
    race_number: int
    field: Tuple[ScoredEntry, ...]      # prepared field, best first
    value_play: Optional[ValuePlay] = None


@dataclass(frozen=True)
class MultiRaceLeg:
    race_number: int
    horses: Tuple[int, ...]             # program numbers, ascending
    horse_names: Tuple[str, ...]
    horse_odds: Tuple[Optional[float], ...]
    horse_ranks: Tuple[int, ...]
    strategy: LegStrategy
    reasoning: str = ""
    value_play_horse: Optional[int] = None

    @property
    def has_value_play(self) -> bool:
        return self.value_play_horse is not None

    def without(self, program_number: int) -> "MultiRaceLeg":
        keep = [i for i, h in enumerate(self.horses) if h != program_number]
        return replace(
            self,
            horses=tuple(self.horses[i] for i in keep),
            horse_names=tuple(self.horse_names[i] for i in keep),
            horse_odds=tuple(self.horse_odds[i] for i in keep),
            horse_ranks=tuple(self.horse_ranks[i] for i in keep),
        )


@dataclass(frozen=True)
class ApproximateEV:
    ev: int
    ev_percent: int
    rating: EVRating


@dataclass(frozen=True)
class MultiRaceTicket:
    id: str
    bet_type: str
    legs: Tuple[MultiRaceLeg, ...]
    cost_per_combo: float
    payout_min: float
    payout_max: float
    confidence: TicketConfidence
    explanation: str = ""
    quality: Optional[str] = None

    @property
    def starting_race(self) -> int:
        return self.legs[0].race_number

    @property
    def ending_race(self) -> int:
        return self.legs[-1].race_number

    @property
    def combinations(self) -> int:
        return ticket_combinations(self.legs)

    @property
    def total_cost(self) -> float:
        return round(self.combinations * self.cost_per_combo, 2)

    @property
    def value_play_count(self) -> int:
        return sum(1 for leg in self.legs if leg.has_value_play)

    @property
    def longshot_count(self) -> int:
        return count_longshots(self.legs)

    @property
    def window_script(self) -> str:
        return multi_race_script(self.bet_type, [leg.horses for leg in self.legs],
                                 self.starting_race, self.cost_per_combo)

    @property
    def approximate_ev(self) -> ApproximateEV:
        return calculate_approximate_ev(self.total_cost, self.payout_min, self.payout_max,
                                        self.longshot_count)

    def to_bet(self) -> MultiRaceBet:
        """The day-session form of this ticket."""
        return make_multi_race_bet(
            self.bet_type, self.starting_race, [leg.horses for leg in self.legs],
            cost_per_combo=self.cost_per_combo, bet_id=self.id, explanation=self.explanation,
        )


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------

def _round_to(x: float, step: float) -> float:
    return math.floor(x / step + 0.5) * step


def value_play_from_dict(d: Optional[Mapping[str, Any]]) -> Optional[ValuePlay]:
    """Read a card's value-play dict (program_number, name, edge)."""
    if not d or d.get("program_number") is None:
        return None
    return ValuePlay(
        program_number=int(d["program_number"]),
        name=str(d.get("name") or d.get("horse_name") or ""),
        edge=float(d.get("edge", d.get("value_edge", 0.0)) or 0.0),
    )


def count_longshots(legs: Sequence[MultiRaceLeg]) -> int:
    """Legs whose value play is at 8-1 or longer."""
    count = 0
    for leg in legs:
        if not leg.has_value_play or leg.value_play_horse not in leg.horses:
            continue
        odds = leg.horse_odds[leg.horses.index(leg.value_play_horse)]
        if (odds if odds is not None else _DEFAULT_AVERAGE_ODDS) >= _LONGSHOT_ODDS:
            count += 1
    return count


def average_odds(legs: Sequence[MultiRaceLeg]) -> float:
    odds = [o for leg in legs for o in leg.horse_odds if o is not None]
    if not odds:
        return _DEFAULT_AVERAGE_ODDS
    return sum(odds) / len(odds)


def estimate_multi_race_payout(bet_type: str, legs: Sequence[MultiRaceLeg]) -> Tuple[float, float]:
    """(min, max) payout range for a ticket's selections."""
    kind = bet_type.upper()
    if kind not in _BASE_PAYOUTS:
        raise ValueError(f"unknown multi-race bet type: {bet_type}")
    base_min, base_max = _BASE_PAYOUTS[kind]
    low, high = base_min, base_max

    longshots = count_longshots(legs)
    if longshots:
        mult_min, mult_max = _LONGSHOT_MULTIPLIERS[min(longshots, 3)]
        low *= mult_min
        high *= mult_max

    avg = average_odds(legs)
    if avg > 10:
        high *= 1 + (avg - 10) / 20

    return max(_round_to(low, 10), base_min), _round_to(high, 50)


def calculate_approximate_ev(total_cost: float, payout_min: float, payout_max: float,
                             longshot_count: int = 0) -> ApproximateEV:
    """Expected value of a ticket at a flat hit rate, cut 30% per longshot."""
    hit = _BASE_HIT_PROBABILITY * (_LONGSHOT_HIT_FACTOR ** longshot_count if longshot_count > 0 else 1.0)
    avg_payout = (payout_min + payout_max) / 2
    ev = avg_payout * hit - total_cost * (1 - hit)
    ev_percent = ev / total_cost * 100 if total_cost > 0 else 0.0
    if ev_percent > 10:
        rating = EVRating.POSITIVE
    elif ev_percent > -10:
        rating = EVRating.NEUTRAL
    else:
        rating = EVRating.NEGATIVE
    return ApproximateEV(int(_round_to(ev, 1)), int(_round_to(ev_percent, 1)), rating)


# ---------------------------------------------------------------------------
# Ticket construction
# ---------------------------------------------------------------------------

def ticket_combinations(legs: Sequence[MultiRaceLeg]) -> int:
    if not legs:
        return 0
    n = 1
    for leg in legs:
        n *= len(leg.horses)
    return n


def _contenders(field_: Sequence[ScoredEntry], count: int) -> List[ScoredEntry]:
    ranked = sorted((h for h in field_ if h.model_rank <= _MAX_CONTENDER_RANK),
                    key=lambda h: h.model_rank)
    return ranked[:count]


def _leg_strategy(race: LegContenders, style: RiskStyle) -> LegStrategy:
    prefer_singles, _ = _STYLE_RULES[style]
    if prefer_singles and race.value_play is not None and race.value_play.edge >= _SINGLE_MIN_EDGE:
        return LegStrategy.SINGLE
    return LegStrategy.SPREAD


def _select(race: LegContenders, strategy: LegStrategy,
            style: RiskStyle) -> Tuple[List[ScoredEntry], Optional[int]]:
    by_number = {h.program_number: h for h in race.field}
    value = race.value_play
    value_horse = by_number.get(value.program_number) if value is not None else None

    if strategy is LegStrategy.SINGLE:
        if value_horse is not None:
            return [value_horse], value_horse.program_number
        return _contenders(race.field, 1), None

    _, max_spread = _STYLE_RULES[style]
    chosen: List[ScoredEntry] = [value_horse] if value_horse is not None else []
    contenders = _contenders(race.field, _MAX_CONTENDER_RANK)
    for horse in contenders:
        if len(chosen) >= max_spread:
            break
        if horse not in chosen:
            chosen.append(horse)
    for horse in contenders[:_MIN_SPREAD]:
        if len(chosen) >= _MIN_SPREAD:
            break
        if horse not in chosen:
            chosen.append(horse)
    chosen.sort(key=lambda h: h.program_number)
    return chosen, value_horse.program_number if value_horse is not None else None


def _leg_reasoning(strategy: LegStrategy, value: Optional[ValuePlay], count: int) -> str:
    if strategy is LegStrategy.SINGLE and value is not None:
        return (f"{value.name or '#' + str(value.program_number)} is a strong value play at "
                f"+{value.edge:.0f}% edge. Singling for max payout.")
    if strategy is LegStrategy.SINGLE:
        return "Singling the top contender."
    if value is not None:
        others = count - 1
        return f"Value play + {others} contender{'s' if others > 1 else ''} for safety."
    if count == 2:
        return "Using top 2 contenders."
    return f"Competitive race, spreading to {count} contenders."


def _ticket_confidence(value_plays: int, combinations: int) -> TicketConfidence:
    if value_plays >= 2 and combinations <= 50:
        return TicketConfidence.HIGH
    if value_plays >= 1 or combinations <= 30:
        return TicketConfidence.MEDIUM
    return TicketConfidence.LOW


def _ticket_explanation(bet_type: str, legs: Sequence[MultiRaceLeg], combinations: int) -> str:
    name = MULTI_RACE_NAMES.get(bet_type, bet_type)
    value_legs = [leg for leg in legs if leg.has_value_play]
    if len(value_legs) >= 2:
        return (f"This {name} has {len(value_legs)} value plays in the sequence. "
                f"Strong opportunity with {combinations} combinations.")
    if value_legs:
        return (f"Value play in Race {value_legs[0].race_number}. "
                f"{combinations} combinations across {len(legs)} races.")
    return f"{combinations} combinations. Spreading multiple races for coverage."


def build_multi_race_ticket(bet_type: str, races: Sequence[LegContenders], risk_style="balanced",
                            cost_per_combo: Optional[float] = None,
                            quality: Optional[str] = None) -> MultiRaceTicket:
    """Build a ticket over consecutive races.

    Raises ValueError for an unknown bet type, a race count that does not
    match it, races that are not consecutive, or a race with no runners.
    """
    kind = bet_type.upper()
    expected = MULTI_RACE_TYPES.get(kind)
    if expected is None:
        raise ValueError(f"unknown multi-race bet type: {bet_type}")
    if len(races) != expected:
        raise ValueError(f"{kind} needs {expected} races, got {len(races)}")
    ordered = sorted(races, key=lambda r: r.race_number)
    numbers = [r.race_number for r in ordered]
    if numbers != list(range(numbers[0], numbers[0] + expected)):
        raise ValueError(f"{kind} races must be consecutive, got {numbers}")
    style = RiskStyle(risk_style)
    unit = DEFAULT_COST_PER_COMBO[kind] if cost_per_combo is None else cost_per_combo
    if unit <= 0:
        raise ValueError("cost_per_combo must be positive")

    legs: List[MultiRaceLeg] = []
    for race in ordered:
        if not race.field:
            raise ValueError(f"race {race.race_number} has no runners")
        strategy = _leg_strategy(race, style)
        horses, value_horse = _select(race, strategy, style)
        legs.append(MultiRaceLeg(
            race_number=race.race_number,
            horses=tuple(h.program_number for h in horses),
            horse_names=tuple(h.name for h in horses),
            horse_odds=tuple(h.odds for h in horses),
            horse_ranks=tuple(h.model_rank for h in horses),
            strategy=strategy,
            reasoning=_leg_reasoning(strategy, race.value_play if value_horse is not None else None,
                                     len(horses)),
            value_play_horse=value_horse,
        ))

    combos = ticket_combinations(legs)
    low, high = estimate_multi_race_payout(kind, legs)
    ticket = MultiRaceTicket(
        id=f"{kind}_R{numbers[0]}_{uuid.uuid4().hex[:8]}",
        bet_type=kind,
        legs=tuple(legs),
        cost_per_combo=unit,
        payout_min=low,
        payout_max=high,
        confidence=_ticket_confidence(sum(1 for leg in legs if leg.has_value_play), combos),
        explanation=_ticket_explanation(kind, legs, combos),
        quality=quality,
    )
    logger.debug("Built %s: %d combinations, $%.2f", ticket.id, combos, ticket.total_cost)
    return ticket


def _weakest(leg: MultiRaceLeg) -> int:
    """Program number of the lowest-ranked horse that is not the value play."""
    candidates = [(rank, h) for h, rank in zip(leg.horses, leg.horse_ranks) if h != leg.value_play_horse]
    if not candidates:
        candidates = list(zip(leg.horse_ranks, leg.horses))
    return max(candidates)[1]


def adjust_ticket_to_budget(ticket: MultiRaceTicket, max_budget: float) -> MultiRaceTicket:
    """Trim spreads, widest leg first, until the ticket fits *max_budget*.

    Singles are never cut. A ticket that cannot be brought under budget
    comes back unchanged; compare its total_cost with the budget.
    """
    if ticket.total_cost <= max_budget:
        return ticket

    legs = list(ticket.legs)
    order = sorted(range(len(legs)), key=lambda i: -len(legs[i].horses))
    for i in order:
        while len(legs[i].horses) > 1:
            legs[i] = legs[i].without(_weakest(legs[i]))
            cost = round(ticket_combinations(legs) * ticket.cost_per_combo, 2)
            if cost <= max_budget:
                return replace(ticket, legs=tuple(legs))
    logger.info("%s cannot be cut to $%.2f; smallest ticket costs $%.2f",
                ticket.id, max_budget, ticket_combinations(legs) * ticket.cost_per_combo)
    return ticket


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def ticket_to_dict(ticket: MultiRaceTicket) -> Dict[str, Any]:
    ev = ticket.approximate_ev
    return {
        "id": ticket.id,
        "bet_type": ticket.bet_type,
        "starting_race": ticket.starting_race,
        "ending_race": ticket.ending_race,
        "legs": [
            {
                "race_number": leg.race_number,
                "horses": list(leg.horses),
                "horse_names": list(leg.horse_names),
                "strategy": leg.strategy.value,
                "reasoning": leg.reasoning,
                "value_play_horse": leg.value_play_horse,
            }
            for leg in ticket.legs
        ],
        "combinations": ticket.combinations,
        "cost_per_combo": ticket.cost_per_combo,
        "total_cost": ticket.total_cost,
        "potential_return": {"min": ticket.payout_min, "max": ticket.payout_max},
        "confidence": ticket.confidence.value,
        "approximate_ev": {"ev": ev.ev, "ev_percent": ev.ev_percent, "rating": ev.rating.value},
        "explanation": ticket.explanation,
        "quality": ticket.quality,
        "window_script": ticket.window_script,
    }
