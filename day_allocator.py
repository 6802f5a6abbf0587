"""Day budget allocation across a race card.

A slice of the day's bankroll is held back for multi-race wagers. The rest
is split across BET / CAUTION / PASS races by the bettor's risk style,
divided evenly inside each verdict bucket, rounded to $5 with a $10 floor,
and then trued up so that

    sum(race budgets) + multi-race reserve == total bankroll

exactly. Amounts are handled in whole cents internally.

Usage:
    from day_allocator import RaceVerdict, allocate_day_budget
    plan = allocate_day_budget(500, [RaceVerdict(1, "BET", edge=40.0), ...],
                               track_name="GP", risk_style="balanced")
"""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

class Verdict(str, enum.Enum):
    BET = "BET"
    CAUTION = "CAUTION"
    PASS = "PASS"


class RiskStyle(str, enum.Enum):
    SAFE = "safe"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


# Share of the single-race bankroll per verdict bucket
_VERDICT_SHARES: Dict[RiskStyle, Dict[Verdict, float]] = {
    RiskStyle.SAFE: {Verdict.BET: 0.35, Verdict.CAUTION: 0.25, Verdict.PASS: 0.40},
    RiskStyle.BALANCED: {Verdict.BET: 0.50, Verdict.CAUTION: 0.20, Verdict.PASS: 0.30},
    RiskStyle.AGGRESSIVE: {Verdict.BET: 0.65, Verdict.CAUTION: 0.20, Verdict.PASS: 0.15},
}

_MULTI_RACE_RESERVE: Dict[RiskStyle, float] = {
    RiskStyle.SAFE: 0.05,
    RiskStyle.BALANCED: 0.15,
    RiskStyle.AGGRESSIVE: 0.25,
}

# Order in which an empty bucket's share is handed on
_BUCKET_PRECEDENCE = (Verdict.BET, Verdict.CAUTION, Verdict.PASS)

MIN_RACE_BUDGET = 10.0
_ROUND_TO = 5.0

_MIN_CENTS = int(MIN_RACE_BUDGET * 100)
_STEP_CENTS = int(_ROUND_TO * 100)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RaceVerdict:
    """Per-race input: the card analysis verdict and its best value play."""
    race_number: int
    verdict: Verdict
    edge: Optional[float] = None
    value_play: Optional[Dict[str, Any]] = None
    post_time: Optional[str] = None


@dataclass(frozen=True)
class RaceAllocation:
    race_number: int
    verdict: Verdict
    allocated_budget: float
    track_name: str = ""
    value_play: Optional[Dict[str, Any]] = None
    edge: Optional[float] = None
    post_time: Optional[str] = None


@dataclass
class DayAllocation:
    total_bankroll: float
    risk_style: RiskStyle
    race_allocations: List[RaceAllocation] = field(default_factory=list)
    multi_race_reserve: float = 0.0
    total_allocated: float = 0.0
    unallocated: float = 0.0    # non-zero only with no races, or a card too big for the bankroll
    verdict_counts: Dict[str, int] = field(default_factory=dict)
    verdict_budgets: Dict[str, float] = field(default_factory=dict)


@dataclass
class AdjustmentResult:
    """Outcome of a per-race override.

    When *applied* is False the allocations are the partial plan, returned
    for inspection only; the caller's plan must stay as it was.
    """
    allocations: List[RaceAllocation]
    applied: bool
    affected: List[Tuple[int, float]] = field(default_factory=list)   # (race_number, change)
    unabsorbed: float = 0.0
    reason: str = ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _coerce_style(style) -> RiskStyle:
    try:
        return RiskStyle(style)
    except ValueError:
        raise ValueError(f"unknown risk style: {style!r}") from None


def _cents(amount: float) -> int:
    return int(round(amount * 100))


def _round_to_five(amount: float) -> float:
    # half up, so 42.50 -> 45
    return math.floor(amount / _ROUND_TO + 0.5) * _ROUND_TO


def multi_race_reserve_percent(risk_style) -> float:
    return _MULTI_RACE_RESERVE[_coerce_style(risk_style)]


def bucket_shares(risk_style, counts: Dict[Verdict, int]) -> Dict[Verdict, float]:
    """Verdict shares with empty buckets handed to the first non-empty one."""
    shares = dict(_VERDICT_SHARES[_coerce_style(risk_style)])
    non_empty = [v for v in _BUCKET_PRECEDENCE if counts.get(v, 0) > 0]
    if not non_empty:
        return {v: 0.0 for v in _BUCKET_PRECEDENCE}
    for v in _BUCKET_PRECEDENCE:
        if counts.get(v, 0) == 0:
            shares[non_empty[0]] += shares[v]
            shares[v] = 0.0
    return shares


def _adjust_groups(allocs: Sequence[RaceAllocation], skip: Optional[int] = None) -> List[List[int]]:
    """Positions grouped BET, CAUTION, PASS; highest edge first inside each."""
    groups = []
    for verdict in _BUCKET_PRECEDENCE:
        members = [i for i, a in enumerate(allocs) if a.verdict is verdict and i != skip]
        members.sort(key=lambda i: (-(allocs[i].edge or 0.0), allocs[i].race_number))
        groups.append(members)
    return groups


def _first_eligible(groups: List[List[int]], cents: List[int], sign: int, step: int) -> List[int]:
    for group in groups:
        eligible = [i for i in group if sign > 0 or cents[i] - step >= _MIN_CENTS]
        if eligible:
            return eligible
    return []


def _resolve_remainder(cents: List[int], groups: List[List[int]], target: int) -> int:
    """True race budgets up to *target* cents; returns what could not be placed."""
    diff = target - sum(cents)
    while abs(diff) >= _STEP_CENTS:
        sign = 1 if diff > 0 else -1
        eligible = _first_eligible(groups, cents, sign, _STEP_CENTS)
        if not eligible:
            break
        for i in eligible:
            if abs(diff) < _STEP_CENTS:
                break
            cents[i] += sign * _STEP_CENTS
            diff -= sign * _STEP_CENTS
    if diff:
        sign = 1 if diff > 0 else -1
        eligible = _first_eligible(groups, cents, sign, abs(diff))
        if eligible:
            cents[eligible[0]] += diff
            diff = 0
    return diff


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------

def allocate_day_budget(
    total_bankroll: float,
    races: Sequence[RaceVerdict],
    track_name: str = "",
    risk_style="balanced",
) -> DayAllocation:
    """Split a day's bankroll across the card by verdict and risk style."""
    if total_bankroll < 0:
        raise ValueError("total_bankroll cannot be negative")
    style = _coerce_style(risk_style)

    reserve = _round_to_five(total_bankroll * _MULTI_RACE_RESERVE[style])
    single = total_bankroll - reserve

    counts = {v: sum(1 for r in races if Verdict(r.verdict) is v) for v in Verdict}
    shares = bucket_shares(style, counts)

    allocs: List[RaceAllocation] = []
    for pos, race in enumerate(races):
        verdict = Verdict(race.verdict)
        per_race = single * shares[verdict] / counts[verdict]
        allocs.append(RaceAllocation(
            race_number=race.race_number or pos + 1,
            verdict=verdict,
            allocated_budget=max(MIN_RACE_BUDGET, _round_to_five(per_race)),
            track_name=track_name,
            value_play=race.value_play,
            edge=race.edge,
            post_time=race.post_time,
        ))

    cents = [_cents(a.allocated_budget) for a in allocs]
    left = _resolve_remainder(cents, _adjust_groups(allocs), _cents(single))
    reserve_cents = _cents(reserve)
    if left < 0 and allocs:
        # every race is at the floor: borrow from the multi-race reserve
        borrowed = min(reserve_cents, -left)
        reserve_cents -= borrowed
        left += borrowed
    if left and allocs:
        logger.warning("Bankroll $%.2f cannot cover %d races at the $%.0f minimum",
                       total_bankroll, len(allocs), MIN_RACE_BUDGET)

    allocs = [replace(a, allocated_budget=c / 100.0) for a, c in zip(allocs, cents)]
    result = DayAllocation(
        total_bankroll=total_bankroll,
        risk_style=style,
        race_allocations=allocs,
        multi_race_reserve=reserve_cents / 100.0,
        total_allocated=sum(cents) / 100.0,
        unallocated=left / 100.0,
        verdict_counts={v.value: counts[v] for v in Verdict},
        verdict_budgets={
            v.value: sum(c for a, c in zip(allocs, cents) if a.verdict is v) / 100.0
            for v in Verdict
        },
    )
    logger.debug("Allocated $%.2f over %d races (%s), reserve $%.2f",
                 total_bankroll, len(allocs), style.value, result.multi_race_reserve)
    return result


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------

def _take_from(cents: List[int], group: List[int], amount: int) -> int:
    """Remove *amount* cents spread evenly over *group*, never below the floor."""
    pool = [i for i in group if cents[i] > _MIN_CENTS]
    while amount > 0 and pool:
        share, extra = divmod(amount, len(pool))
        keep = []
        for k, i in enumerate(pool):
            want = share + (1 if k < extra else 0)
            got = min(want, cents[i] - _MIN_CENTS)
            cents[i] -= got
            amount -= got
            if cents[i] > _MIN_CENTS:
                keep.append(i)
        pool = keep
    return amount


def _give_to(cents: List[int], group: List[int], amount: int) -> int:
    if not group:
        return amount
    share, extra = divmod(amount, len(group))
    for k, i in enumerate(group):
        cents[i] += share + (1 if k < extra else 0)
    return 0


def adjust_race_budget(allocations: Sequence[RaceAllocation], race_number: int,
                       new_budget: float) -> AdjustmentResult:
    """Set one race's budget and rebalance the difference.

    The difference comes out of (or goes into) PASS races first, then
    CAUTION races; BET races are never touched. If non-BET races cannot
    absorb all of it without dropping below the minimum, the result is
    not applied.
    """
    allocs = list(allocations)
    pos = next((i for i, a in enumerate(allocs) if a.race_number == race_number), None)
    if pos is None:
        return AdjustmentResult(allocs, False, reason=f"race {race_number} not on the card")
    if new_budget < MIN_RACE_BUDGET:
        return AdjustmentResult(allocs, False, reason=f"budget below ${MIN_RACE_BUDGET:.0f} minimum")

    cents = [_cents(a.allocated_budget) for a in allocs]
    before = list(cents)
    delta = _cents(new_budget) - cents[pos]
    cents[pos] = _cents(new_budget)

    groups = _adjust_groups(allocs, skip=pos)
    non_bet = [sorted(g, key=lambda i: allocs[i].race_number) for g in (groups[2], groups[1])]
    remaining = abs(delta)
    for group in non_bet:
        if not remaining:
            break
        if delta > 0:
            remaining = _take_from(cents, group, remaining)
        else:
            remaining = _give_to(cents, group, remaining)

    updated = [replace(a, allocated_budget=c / 100.0) for a, c in zip(allocs, cents)]
    affected = [
        (allocs[i].race_number, (cents[i] - before[i]) / 100.0)
        for i in range(len(allocs)) if i != pos and cents[i] != before[i]
    ]
    if remaining:
        return AdjustmentResult(updated, False, affected, remaining / 100.0,
                                reason="non-BET races cannot absorb the change")
    return AdjustmentResult(updated, True, affected)


def get_adjustment_impact(allocations: Sequence[RaceAllocation], race_number: int,
                          new_budget: float) -> Dict[str, Any]:
    """Preview an override without committing to it."""
    result = adjust_race_budget(allocations, race_number, new_budget)
    return {
        "can_apply": result.applied,
        "affected_races": [{"race_number": r, "change": c} for r, c in result.affected],
        "unabsorbed": result.unabsorbed,
        "reason": result.reason,
    }


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def allocation_to_dict(plan: DayAllocation) -> dict:
    return {
        "total_bankroll": plan.total_bankroll,
        "risk_style": plan.risk_style.value,
        "multi_race_reserve": plan.multi_race_reserve,
        "total_allocated": plan.total_allocated,
        "unallocated": plan.unallocated,
        "verdict_counts": plan.verdict_counts,
        "verdict_budgets": plan.verdict_budgets,
        "race_allocations": [race_allocation_to_dict(a) for a in plan.race_allocations],
    }


def race_allocation_to_dict(a: RaceAllocation) -> dict:
    return {
        "race_number": a.race_number,
        "verdict": a.verdict.value,
        "allocated_budget": a.allocated_budget,
        "track_name": a.track_name,
        "value_play": a.value_play,
        "edge": a.edge,
        "post_time": a.post_time,
    }


def race_allocation_from_dict(d: Dict[str, Any]) -> RaceAllocation:
    return RaceAllocation(
        race_number=int(d["race_number"]),
        verdict=Verdict(d["verdict"]),
        allocated_budget=float(d["allocated_budget"]),
        track_name=d.get("track_name", ""),
        value_play=d.get("value_play"),
        edge=d.get("edge"),
        post_time=d.get("post_time"),
    )


def allocation_to_csv(plan: DayAllocation) -> str:
    """One row per race plus a reserve row."""
    rows = [
        {"race": a.race_number, "verdict": a.verdict.value,
         "budget": a.allocated_budget, "edge": a.edge, "track": a.track_name}
        for a in plan.race_allocations
    ]
    rows.append({"race": "MULTI", "verdict": "", "budget": plan.multi_race_reserve,
                 "edge": None, "track": ""})
    return pd.DataFrame(rows, columns=["race", "verdict", "budget", "edge", "track"]).to_csv(index=False)
