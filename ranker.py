"""Top-bets ranking with a guaranteed spread across risk tiers.

Pipeline:
    prepare_field -> generate_candidates -> rank_candidates -> recommendations

Ranking takes the best candidates by expected value, then makes sure each
risk tier (by hit probability) is represented by at least a few tickets
before filling the rest of the list by EV again.

Usage:
    from ranker import generate_top_bets
    result = generate_top_bets(entries, race_number=5, track_code="GP")
    for bet in result.top_bets:
        print(bet.rank, bet.window_script)
"""
from __future__ import annotations

import enum
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from probability_model import FieldEntry, OddsLookup, ScoredEntry, ScratchLookup, prepare_field
from wager_generator import (
    GeneratorSettings,
    PayoutEstimate,
    WagerCandidate,
    WagerFamily,
    generate_candidates,
)
from window_script import FAMILY_NAMES, format_payout_range, unit_stake, window_script

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CONSERVATIVE_MIN_PROB = 15.0   # strictly above
_MODERATE_MIN_PROB = 5.0        # inclusive

_SEED_COUNT = 15
_MIN_PER_TIER = 3
_DEFAULT_TARGET_COUNT = 25

# Edge levels used when wording the rationale
_BIG_EDGE = 50.0
_PAIR_EDGE = 25.0


class RiskTier(str, enum.Enum):
    CONSERVATIVE = "Conservative"
    MODERATE = "Moderate"
    AGGRESSIVE = "Aggressive"


def risk_tier(hit_probability: float) -> RiskTier:
    if hit_probability > _CONSERVATIVE_MIN_PROB:
        return RiskTier.CONSERVATIVE
    if hit_probability >= _MODERATE_MIN_PROB:
        return RiskTier.MODERATE
    return RiskTier.AGGRESSIVE


FAMILY_EXPLANATIONS = {
    WagerFamily.WIN: "Pays if your horse finishes 1st. Biggest straight payout, but it has to win.",
    WagerFamily.PLACE: "Pays if your horse finishes 1st or 2nd. Smaller payout, safer ticket.",
    WagerFamily.SHOW: "Pays if your horse finishes 1st, 2nd or 3rd. Safest ticket, smallest payout.",
    WagerFamily.QUINELLA: "Pays if your two horses run 1st and 2nd in either order, on one ticket.",
    WagerFamily.EXACTA_STRAIGHT: "Pays if your two horses run 1st and 2nd in exactly the order picked.",
    WagerFamily.EXACTA_BOX_2: "Pays if your two horses run 1st and 2nd in either order. Two tickets.",
    WagerFamily.EXACTA_BOX_3: "Pays if any two of your three horses run 1-2 in either order. Six tickets.",
    WagerFamily.TRIFECTA_STRAIGHT: "Pays if your three horses run 1-2-3 in exactly the order picked.",
    WagerFamily.TRIFECTA_BOX_3: "Pays if your three horses fill the top three in any order. Six tickets.",
    WagerFamily.TRIFECTA_BOX_4: "Any three of your four horses in the top three, any order. 24 tickets.",
    WagerFamily.TRIFECTA_KEY: "Your key horse must win; the others fill 2nd and 3rd in any order.",
    WagerFamily.SUPERFECTA_BOX_4: "Your four horses fill the top four in any order. Hard to hit, big payouts.",
    WagerFamily.SUPERFECTA_BOX_5: "Any four of your five horses in the top four, any order. 120 tickets.",
}


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TicketHorse:
    program_number: int
    name: str
    position: Optional[str] = None      # Key / With / Over / Under


@dataclass(frozen=True)
class RankedRecommendation:
    """A ranked candidate, ready to show a bettor."""
    rank: int
    risk_tier: RiskTier
    family: WagerFamily
    bet_type: str
    horse_indices: Tuple[int, ...]
    program_numbers: Tuple[int, ...]
    horses: Tuple[TicketHorse, ...]
    stake_cost: float
    combinations_covered: int
    hit_probability: float
    estimated_payout: PayoutEstimate
    expected_value: float
    window_script: str
    rationale: str
    explanation: str
    payout_display: str


@dataclass
class TopBetsResult:
    top_bets: List[RankedRecommendation] = field(default_factory=list)
    total_combinations_analyzed: int = 0
    race_context: Dict[str, Any] = field(default_factory=dict)
    generated_at: str = ""
    generation_time_ms: float = 0.0
    verdict: Optional[str] = None


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def _by_ev(cands: Sequence[WagerCandidate]) -> List[WagerCandidate]:
    # ties fall back to generation order, which is deterministic
    return sorted(cands, key=lambda c: -c.expected_value)


def rank_candidates(candidates: Sequence[WagerCandidate],
                    target_count: int = _DEFAULT_TARGET_COUNT) -> List[WagerCandidate]:
    """Pick up to *target_count* candidates, EV-descending, tier-diverse.

    Seed with the best by EV, top up each risk tier to its minimum from
    that tier's own EV order, backfill from the global EV order, then sort.
    No (family, horse set) pair appears twice.
    """
    if target_count <= 0 or not candidates:
        return []

    ordered = _by_ev(candidates)
    tiers: Dict[RiskTier, List[WagerCandidate]] = {t: [] for t in RiskTier}
    for c in ordered:
        tiers[risk_tier(c.hit_probability)].append(c)

    seen = set()
    picked: List[WagerCandidate] = []

    def _take(c: WagerCandidate) -> bool:
        key = c.dedupe_key
        if key in seen:
            return False
        seen.add(key)
        picked.append(c)
        return True

    seed = min(_SEED_COUNT, target_count)
    for c in ordered:
        if len(picked) >= seed:
            break
        _take(c)

    for tier in RiskTier:
        have = sum(1 for c in picked if risk_tier(c.hit_probability) is tier)
        for c in tiers[tier]:
            if have >= _MIN_PER_TIER:
                break
            if _take(c):
                have += 1

    for c in ordered:
        if len(picked) >= target_count:
            break
        _take(c)

    picked = _by_ev(picked)
    while len(picked) > target_count:
        picked.remove(_trim_victim(picked))
    return picked


def _trim_victim(picked: List[WagerCandidate]) -> WagerCandidate:
    """Lowest-EV entry whose tier can spare one; lowest overall otherwise."""
    counts: Dict[RiskTier, int] = {t: 0 for t in RiskTier}
    for c in picked:
        counts[risk_tier(c.hit_probability)] += 1
    for c in reversed(picked):
        if counts[risk_tier(c.hit_probability)] > _MIN_PER_TIER:
            return c
    return picked[-1]


# ---------------------------------------------------------------------------
# Wording
# ---------------------------------------------------------------------------

def _positions(family: WagerFamily, count: int) -> List[Optional[str]]:
    if family is WagerFamily.TRIFECTA_KEY:
        return ["Key"] + ["With"] * (count - 1)
    if family is WagerFamily.EXACTA_STRAIGHT:
        return ["Over", "Under"]
    if family is WagerFamily.TRIFECTA_STRAIGHT:
        return ["Over", None, "Under"]
    return [None] * count


def _rationale(cand: WagerCandidate, field_: Sequence[ScoredEntry]) -> str:
    horses = [field_[p] for p in cand.positions]
    if not horses:
        return ""
    fam = cand.family
    first = horses[0]

    if len(horses) == 1:
        if first.edge_percent >= _BIG_EDGE:
            fair = first.fair_odds
            fair_txt = f"{round(fair)}-1" if fair is not None else "shorter"
            return (f"{first.name} (#{first.program_number}) ranks #{first.model_rank} in the model "
                    f"with a +{round(first.edge_percent)}% edge. The board says {first.odds_display}; "
                    f"fair odds are about {fair_txt}.")
        if first.model_rank <= 3:
            return (f"{first.name} (#{first.program_number}) ranks #{first.model_rank} in the model "
                    f"with a {round(first.win_prob)}% win chance at {first.odds_display}.")
        return (f"{first.name} (#{first.program_number}) at {first.odds_display} is a value play: "
                f"the model gives {round(first.win_prob)}%, more than the odds imply.")

    if fam is WagerFamily.TRIFECTA_KEY:
        under = ", ".join(f"#{h.program_number}" for h in horses[1:])
        return (f"Keying #{first.program_number} {first.name} on top; if it wins, any two of "
                f"{under} underneath cash the ticket.")

    ranks = ", ".join(str(h.model_rank) for h in horses)
    if len(horses) == 2:
        second = horses[1]
        if first.edge_percent >= _PAIR_EDGE and second.edge_percent >= _PAIR_EDGE:
            return (f"Two overlays together: #{first.program_number} (+{round(first.edge_percent)}%) "
                    f"and #{second.program_number} (+{round(second.edge_percent)}%).")
        if fam is WagerFamily.EXACTA_STRAIGHT:
            return (f"Model rank #{first.model_rank} over #{second.model_rank}: this order carries "
                    f"the best value of the pair.")
        return f"Covers #{first.program_number} and #{second.program_number} both ways (model ranks {ranks})."

    if fam is WagerFamily.TRIFECTA_STRAIGHT:
        avg_edge = sum(h.edge_percent for h in horses) / len(horses)
        return f"Model ranks {ranks} in this exact order, average edge {round(avg_edge):+d}%."
    if fam in (WagerFamily.SUPERFECTA_BOX_4, WagerFamily.SUPERFECTA_BOX_5):
        longshot = any(h.odds >= 10 for h in horses)
        tail = " with a live longshot in the mix" if longshot else ""
        return f"Superfecta coverage of model ranks {ranks}{tail}. Hard to hit, large payout."
    return f"Boxes model ranks {ranks} across {cand.combinations_covered} combinations."


def recommend(ranked: Sequence[WagerCandidate], field_: Sequence[ScoredEntry],
              race_number: Optional[int] = None) -> List[RankedRecommendation]:
    """Attach rank, tier, window script and wording to ranked candidates."""
    out: List[RankedRecommendation] = []
    for rank, cand in enumerate(ranked, start=1):
        labels = _positions(cand.family, len(cand.positions))
        horses = tuple(
            TicketHorse(field_[p].program_number, field_[p].name, labels[i])
            for i, p in enumerate(cand.positions)
        )
        payout = cand.estimated_payout
        out.append(RankedRecommendation(
            rank=rank,
            risk_tier=risk_tier(cand.hit_probability),
            family=cand.family,
            bet_type=FAMILY_NAMES[cand.family],
            horse_indices=cand.horse_indices,
            program_numbers=cand.program_numbers,
            horses=horses,
            stake_cost=cand.stake_cost,
            combinations_covered=cand.combinations_covered,
            hit_probability=round(cand.hit_probability, 2),
            estimated_payout=payout,
            expected_value=round(cand.expected_value, 2),
            window_script=window_script(cand.family, cand.program_numbers, amount=unit_stake(cand),
                                        race_number=race_number),
            rationale=_rationale(cand, field_),
            explanation=FAMILY_EXPLANATIONS[cand.family],
            payout_display=format_payout_range(payout.min, payout.max, payout.likely),
        ))
    return out


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def generate_top_bets(
    entries: Sequence[FieldEntry],
    race_number: int = 0,
    track_code: str = "UNKNOWN",
    surface: str = "dirt",
    odds_lookup: Optional[OddsLookup] = None,
    scratch_lookup: Optional[ScratchLookup] = None,
    settings: Optional[GeneratorSettings] = None,
) -> TopBetsResult:
    """Full race pipeline: probabilities, candidates, ranking, wording."""
    settings = settings or GeneratorSettings()
    started = time.perf_counter()

    field_ = prepare_field(entries, odds_lookup, scratch_lookup)
    gen = generate_candidates(field_, settings)
    ranked = rank_candidates(gen.candidates, settings.target_count)
    # window scripts stay race-less; the bet slip adds the race prefix
    top = recommend(ranked, field_)

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    logger.info(
        "Top bets generated: race=%s track=%s field=%d combinations=%d picked=%d in %.0fms",
        race_number, track_code, len(field_), gen.total_combinations, len(top), elapsed_ms,
    )
    return TopBetsResult(
        top_bets=top,
        total_combinations_analyzed=gen.total_combinations,
        race_context={
            "track_code": track_code or "UNKNOWN",
            "race_number": race_number,
            "field_size": len(field_),
            "surface": surface or "dirt",
        },
        generated_at=datetime.utcnow().isoformat(),
        generation_time_ms=elapsed_ms,
        verdict=gen.verdict,
    )


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def top_bets_to_dict(result: TopBetsResult) -> dict:
    """JSON-serializable form of a TopBetsResult."""
    bets = []
    for bet in result.top_bets:
        d = asdict(bet)
        d["risk_tier"] = bet.risk_tier.value
        d["family"] = bet.family.value
        bets.append(d)
    return {
        "top_bets": bets,
        "total_combinations_analyzed": result.total_combinations_analyzed,
        "race_context": result.race_context,
        "generated_at": result.generated_at,
        "generation_time_ms": round(result.generation_time_ms, 1),
        "verdict": result.verdict,
    }


def top_bets_to_text(result: TopBetsResult) -> str:
    ctx = result.race_context
    lines = [f"=== TOP BETS: {ctx.get('track_code', '')} Race {ctx.get('race_number', '')} ==="]
    lines.append(f"Field size: {ctx.get('field_size', 0)}  "
                 f"Combinations analyzed: {result.total_combinations_analyzed}")
    if result.verdict:
        lines.append(f"Verdict: {result.verdict}")
    lines.append("")
    for bet in result.top_bets:
        lines.append(f"{bet.rank:>2}. [{bet.risk_tier.value}] {bet.window_script}  "
                     f"(cost ${bet.stake_cost:.0f}, hit {bet.hit_probability:.1f}%, EV {bet.expected_value:+.2f})")
        lines.append(f"    {bet.rationale}")
    return "\n".join(lines)


def top_bets_to_csv(result: TopBetsResult) -> str:
    """Recommendations as CSV, one row per ticket."""
    rows = [
        {
            "rank": bet.rank,
            "risk_tier": bet.risk_tier.value,
            "bet_type": bet.bet_type,
            "horses": "-".join(str(n) for n in bet.program_numbers),
            "cost": bet.stake_cost,
            "hit_probability": bet.hit_probability,
            "expected_value": bet.expected_value,
            "payout": bet.payout_display,
            "window_script": bet.window_script,
        }
        for bet in result.top_bets
    ]
    columns = ["rank", "risk_tier", "bet_type", "horses", "cost",
               "hit_probability", "expected_value", "payout", "window_script"]
    return pd.DataFrame(rows, columns=columns).to_csv(index=False)
