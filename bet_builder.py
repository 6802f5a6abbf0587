"""Bet Builder — fractional-Kelly sizing with bankroll guardrails.

Odds are odds-to-1 throughout (3.0 means 3-1, a $1 winner returns $4).

    raw Kelly        f* = (p * (odds + 1) - 1) / odds
    fractional       f  = f* * multiplier (quarter by default), capped

A sized stake is bankroll * f, clamped to [min_bet, bankroll * max_bet_percent]
and rounded to the configured increment. When several horses in the same
race are sized at once, a second pass shrinks every stake by one common
factor so the race's total exposure stays under a fixed share of bankroll.

Usage:
    from bet_builder import SizingConfig, calculate_kelly, size_bet
    kelly = calculate_kelly(0.30, 4.0, bankroll=500)
    bet = size_bet(kelly, SizingConfig())
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict, replace
from typing import List, Optional, Dict, Any, Sequence

from probability_model import ScoredEntry
from wager_generator import WagerFamily
from window_script import window_script


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

KELLY_MULTIPLIERS = {
    "full": 1.0,
    "half": 0.5,
    "quarter": 0.25,
    "eighth": 0.125,
}

# Ceiling on the Kelly fraction itself (percent of bankroll)
_MAX_BET_PERCENT = 5.0

# Default stake bounds for a recreational bettor
_SIZING_MAX_BET_PERCENT = 2.0
_MAX_BET_AMOUNT = 100.0
_MIN_EDGE_PERCENT = 2.0

# Aggregate same-race exposure as a fraction of bankroll
_MAX_TOTAL_EXPOSURE = 0.10

_MIN_BET = 2.0
_ROUNDING_INCREMENT = 1.0

CAP_MAX_PERCENT = "max_percent"
CAP_MAX_AMOUNT = "max_amount"
CAP_MIN_AMOUNT = "min_amount"
CAP_NEGATIVE_EV = "negative_ev"
CAP_BELOW_EDGE = "below_edge"

_CAP_LABELS = {
    CAP_MAX_PERCENT: "Capped at max % of bankroll",
    CAP_MAX_AMOUNT: "Capped at max bet amount",
    CAP_MIN_AMOUNT: "Set to minimum bet",
    CAP_NEGATIVE_EV: "No bet - negative EV",
    CAP_BELOW_EDGE: "No bet - edge below threshold",
}


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass
class SizingConfig:
    """User-configurable sizing parameters."""
    kelly_fraction: str = "quarter"         # full / half / quarter / eighth
    max_bet_percent: float = _SIZING_MAX_BET_PERCENT   # % of bankroll per bet
    min_bet: float = _MIN_BET
    max_bet_amount: Optional[float] = _MAX_BET_AMOUNT  # hard dollar cap, None = no cap
    rounding_increment: float = _ROUNDING_INCREMENT
    min_edge_percent: float = _MIN_EDGE_PERCENT
    max_total_exposure: float = _MAX_TOTAL_EXPOSURE

    @property
    def multiplier(self) -> float:
        return KELLY_MULTIPLIERS.get(self.kelly_fraction, KELLY_MULTIPLIERS["quarter"])

    def validate(self) -> List[str]:
        """Problems with this config; empty when usable."""
        errors = []
        if self.kelly_fraction not in KELLY_MULTIPLIERS:
            errors.append(f"kelly_fraction must be one of {sorted(KELLY_MULTIPLIERS)}")
        if self.max_bet_percent <= 0 or self.max_bet_percent > 100:
            errors.append("max_bet_percent must be between 0 and 100")
        if self.min_bet < 0:
            errors.append("min_bet cannot be negative")
        if self.max_bet_amount is not None and self.max_bet_amount < self.min_bet:
            errors.append("max_bet_amount must be >= min_bet")
        if self.rounding_increment < 0:
            errors.append("rounding_increment cannot be negative")
        if self.min_edge_percent < 0:
            errors.append("min_edge_percent cannot be negative")
        if not 0 < self.max_total_exposure <= 1:
            errors.append("max_total_exposure must be in (0, 1]")
        return errors

    @classmethod
    def for_risk_tolerance(cls, tolerance: str) -> "SizingConfig":
        """Preset for conservative / moderate / aggressive bettors."""
        if tolerance == "conservative":
            return cls(kelly_fraction="eighth", max_bet_percent=1.0, min_bet=2.0,
                       max_bet_amount=50.0, rounding_increment=1.0, min_edge_percent=3.0)
        if tolerance == "aggressive":
            return cls(kelly_fraction="half", max_bet_percent=5.0, min_bet=5.0,
                       max_bet_amount=250.0, rounding_increment=5.0, min_edge_percent=5.0)
        return cls()

    @classmethod
    def recommended(cls, bankroll: float) -> "SizingConfig":
        """Preset scaled to bankroll size; small bankrolls size smaller."""
        if bankroll < 100:
            return replace(cls.for_risk_tolerance("conservative"),
                           max_bet_amount=max(2.0, math.floor(bankroll * 0.05)))
        if bankroll < 500:
            return replace(cls.for_risk_tolerance("conservative"),
                           max_bet_amount=min(50.0, math.floor(bankroll * 0.1)))
        if bankroll < 2000:
            return cls()
        return cls(max_bet_amount=200.0, rounding_increment=5.0)


@dataclass(frozen=True)
class KellyResult:
    """Kelly computation for one horse, with the inputs that produced it."""
    probability: float
    decimal_odds: float
    bankroll: float
    raw_kelly_fraction: float
    fractional_kelly_fraction: float
    should_bet: bool
    is_positive_ev: bool
    implied_probability: float = 0.0
    edge_percent: float = 0.0
    expected_value: float = 0.0         # per $1 staked
    expected_growth: float = 0.0
    risk_of_ruin: float = 1.0
    reason: str = ""

    @property
    def suggested_bet(self) -> float:
        return self.bankroll * self.fractional_kelly_fraction if self.should_bet else 0.0


@dataclass(frozen=True)
class SizedBet:
    raw_dollar_amount: float
    bounded_final_amount: float
    capped_by_max_percent: bool
    cap_reason: Optional[str] = None
    effective_bet_percent: float = 0.0


@dataclass(frozen=True)
class AdjustedBet:
    """A SizedBet after the same-race exposure pass."""
    bet_index: int
    original_amount: float
    final_amount: float
    reduction_percent: float
    sized: SizedBet


@dataclass
class HorseBet:
    """A sized WIN stake on one runner."""
    program_number: int
    name: str
    probability: float
    odds: float
    kelly: KellyResult
    sized: SizedBet
    final_amount: float = 0.0
    reduction_percent: float = 0.0
    window_script: str = ""


@dataclass
class RaceSizing:
    bankroll: float
    bets: List[HorseBet] = field(default_factory=list)
    total_exposure: float = 0.0
    exposure_cap: float = 0.0
    settings: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Kelly
# ---------------------------------------------------------------------------

def kelly_fraction(odds: float, win_prob: float, multiplier: float = 0.25,
                   max_fraction: float = _MAX_BET_PERCENT / 100.0) -> float:
    """Fractional Kelly share of bankroll, 0.0 on no edge or bad input.

    *odds* is odds-to-1 (3.0 means 3-1). *win_prob* is 0.0-1.0.
    """
    if odds <= 0 or win_prob <= 0 or win_prob >= 1:
        return 0.0
    f = (win_prob * (odds + 1.0) - 1.0) / odds
    if f <= 0:
        return 0.0
    return min(f * multiplier, max_fraction)


def _expected_growth(p: float, odds: float, f: float) -> float:
    if f <= 0 or f >= 1:
        return 0.0
    return p * math.log(1.0 + odds * f) + (1.0 - p) * math.log(1.0 - f)


def _risk_of_ruin(p: float, f: float) -> float:
    """Classic (1-e)/(1+e) approximation with 1/f betting units."""
    if f <= 0:
        return 1.0
    edge = 2.0 * p - 1.0
    if edge <= 0:
        return 1.0
    ratio = (1.0 - edge) / (1.0 + edge)
    return min(1.0, max(0.0, ratio ** (1.0 / f)))


def calculate_kelly(probability: float, decimal_odds: float, bankroll: float,
                    fraction: str = "quarter",
                    max_bet_percent: float = _MAX_BET_PERCENT) -> KellyResult:
    """Kelly stake fraction for a win bet.

    Never raises: invalid input (probability outside (0, 1), odds <= 0,
    bankroll <= 0) comes back with should_bet=False and a reason.
    """
    p, o, b = probability, decimal_odds, bankroll

    def _no_bet(reason: str, raw: float = 0.0, implied: float = 0.0, edge: float = 0.0,
                ev: float = 0.0, positive: bool = False) -> KellyResult:
        return KellyResult(
            probability=p, decimal_odds=o, bankroll=b,
            raw_kelly_fraction=raw, fractional_kelly_fraction=0.0,
            should_bet=False, is_positive_ev=positive,
            implied_probability=implied, edge_percent=edge, expected_value=ev,
            reason=reason,
        )

    if p is None or o is None or b is None:
        return _no_bet("missing input")
    if p <= 0 or p >= 1:
        return _no_bet("probability must be between 0 and 1")
    if o <= 0:
        return _no_bet("odds must be positive")

    implied = 1.0 / (o + 1.0)
    edge = (p - implied) / implied * 100.0
    ev = p * (o + 1.0) - 1.0
    positive = p * (o + 1.0) > 1.0

    if b <= 0:
        return _no_bet("bankroll must be positive", implied=implied, edge=edge, ev=ev, positive=positive)

    raw = ev / o
    if raw <= 0:
        return _no_bet("no edge over the market", raw=max(raw, 0.0), implied=implied,
                       edge=edge, ev=ev, positive=positive)

    multiplier = KELLY_MULTIPLIERS.get(fraction, KELLY_MULTIPLIERS["quarter"])
    used = kelly_fraction(o, p, multiplier, max_bet_percent / 100.0)
    return KellyResult(
        probability=p, decimal_odds=o, bankroll=b,
        raw_kelly_fraction=raw,
        fractional_kelly_fraction=used,
        should_bet=True,
        is_positive_ev=positive,
        implied_probability=implied,
        edge_percent=edge,
        expected_value=ev,
        expected_growth=_expected_growth(p, o, used),
        risk_of_ruin=_risk_of_ruin(p, used),
    )


# ---------------------------------------------------------------------------
# Sizing
# ---------------------------------------------------------------------------

def _round_to(amount: float, increment: float) -> float:
    # half-up: 12.5 rounds to 13
    if increment <= 0:
        return math.floor(amount * 100 + 0.5) / 100.0
    return math.floor(amount / increment + 0.5) * increment


def _floor_to(amount: float, increment: float) -> float:
    if increment <= 0:
        return math.floor(amount * 100) / 100.0
    # tolerance keeps 0.3 / 0.1 from flooring to 2
    return math.floor(amount / increment + 1e-9) * increment


def size_bet(kelly: KellyResult, config: Optional[SizingConfig] = None) -> SizedBet:
    """Turn a Kelly result into a bounded, rounded dollar stake."""
    config = config or SizingConfig()
    bankroll = kelly.bankroll

    if not kelly.should_bet or not kelly.is_positive_ev:
        return SizedBet(0.0, 0.0, False, CAP_NEGATIVE_EV)
    if kelly.edge_percent < config.min_edge_percent:
        return SizedBet(0.0, 0.0, False, CAP_BELOW_EDGE)

    fraction = min(kelly.raw_kelly_fraction * config.multiplier, config.max_bet_percent / 100.0)
    raw = bankroll * kelly.raw_kelly_fraction * config.multiplier
    cap = bankroll * config.max_bet_percent / 100.0
    if config.max_bet_amount is not None:
        cap = min(cap, config.max_bet_amount)

    amount = bankroll * fraction
    reason = None
    by_percent = False
    if raw > bankroll * config.max_bet_percent / 100.0:
        reason, by_percent = CAP_MAX_PERCENT, True
    if config.max_bet_amount is not None and amount > config.max_bet_amount:
        amount = config.max_bet_amount
        reason = CAP_MAX_AMOUNT

    if amount < config.min_bet:
        if config.min_bet > cap:
            # the floor and the ceiling cross: nothing placeable
            return SizedBet(raw, 0.0, by_percent, CAP_MIN_AMOUNT)
        amount = config.min_bet
        reason = CAP_MIN_AMOUNT

    final = _round_to(amount, config.rounding_increment)
    if final > cap + 1e-9:
        final = _floor_to(cap, config.rounding_increment)
    if final < config.min_bet - 1e-9:
        return SizedBet(raw, 0.0, by_percent, CAP_MIN_AMOUNT)

    return SizedBet(
        raw_dollar_amount=raw,
        bounded_final_amount=final,
        capped_by_max_percent=by_percent,
        cap_reason=reason,
        effective_bet_percent=final / bankroll * 100.0 if bankroll > 0 else 0.0,
    )


def adjust_for_simultaneous_bets(bets: Sequence[SizedBet], bankroll: float,
                                 max_total_exposure: float = _MAX_TOTAL_EXPOSURE,
                                 rounding_increment: float = _ROUNDING_INCREMENT) -> List[AdjustedBet]:
    """Shrink same-race stakes proportionally so their sum fits the exposure cap.

    Every stake is scaled by the same factor and floored to the increment,
    so the adjusted total never exceeds bankroll * max_total_exposure.
    """
    total = sum(b.bounded_final_amount for b in bets)
    cap = bankroll * max_total_exposure
    if total <= cap or total <= 0:
        return [
            AdjustedBet(i, b.bounded_final_amount, b.bounded_final_amount, 0.0, b)
            for i, b in enumerate(bets)
        ]

    factor = cap / total
    reduction = (1.0 - factor) * 100.0
    return [
        AdjustedBet(
            bet_index=i,
            original_amount=b.bounded_final_amount,
            final_amount=_floor_to(b.bounded_final_amount * factor, rounding_increment),
            reduction_percent=reduction,
            sized=b,
        )
        for i, b in enumerate(bets)
    ]


def total_exposure(bets: Sequence[AdjustedBet]) -> float:
    return sum(b.final_amount for b in bets)


def size_race_bets(field_: Sequence[ScoredEntry], bankroll: float,
                   config: Optional[SizingConfig] = None,
                   race_number: Optional[int] = None) -> RaceSizing:
    """Size a WIN stake on every runner with an edge, then cap race exposure."""
    config = config or SizingConfig()
    candidates = []
    for horse in field_:
        kelly = calculate_kelly(horse.kelly_probability, horse.odds, bankroll,
                                fraction=config.kelly_fraction,
                                max_bet_percent=config.max_bet_percent)
        sized = size_bet(kelly, config)
        if sized.bounded_final_amount > 0:
            candidates.append((horse, kelly, sized))

    adjusted = adjust_for_simultaneous_bets(
        [s for _, _, s in candidates], bankroll,
        config.max_total_exposure, config.rounding_increment,
    )
    plan = RaceSizing(
        bankroll=bankroll,
        exposure_cap=bankroll * config.max_total_exposure,
        settings=asdict(config),
    )
    for (horse, kelly, sized), adj in zip(candidates, adjusted):
        plan.bets.append(HorseBet(
            program_number=horse.program_number,
            name=horse.name,
            probability=kelly.probability,
            odds=horse.odds,
            kelly=kelly,
            sized=sized,
            final_amount=adj.final_amount,
            reduction_percent=round(adj.reduction_percent, 2),
            window_script=window_script(WagerFamily.WIN, [horse.program_number],
                                        amount=adj.final_amount, race_number=race_number)
            if adj.final_amount > 0 else "",
        ))
    plan.total_exposure = total_exposure(adjusted)
    return plan


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def describe_cap(sized: SizedBet) -> str:
    if sized.cap_reason:
        return _CAP_LABELS.get(sized.cap_reason, sized.cap_reason)
    return "No cap"


def race_sizing_to_dict(plan: RaceSizing) -> dict:
    """Convert RaceSizing to a JSON-serializable dict."""
    return {
        "bankroll": plan.bankroll,
        "total_exposure": plan.total_exposure,
        "exposure_cap": plan.exposure_cap,
        "settings": plan.settings,
        "bets": [
            {
                "program_number": b.program_number,
                "name": b.name,
                "probability": round(b.probability, 4),
                "odds": b.odds,
                "raw_kelly_fraction": round(b.kelly.raw_kelly_fraction, 4),
                "fractional_kelly_fraction": round(b.kelly.fractional_kelly_fraction, 4),
                "edge_percent": round(b.kelly.edge_percent, 1),
                "raw_amount": round(b.sized.raw_dollar_amount, 2),
                "sized_amount": b.sized.bounded_final_amount,
                "final_amount": b.final_amount,
                "reduction_percent": b.reduction_percent,
                "cap": describe_cap(b.sized),
                "window_script": b.window_script,
            }
            for b in plan.bets
        ],
    }


def race_sizing_to_text(plan: RaceSizing) -> str:
    lines = [f"Bankroll: ${plan.bankroll:.0f}  Exposure: ${plan.total_exposure:.0f} "
             f"of ${plan.exposure_cap:.0f} allowed"]
    if not plan.bets:
        lines.append("No positive-edge WIN bets.")
    for b in plan.bets:
        lines.append(f"  #{b.program_number} {b.name}: ${b.final_amount:.0f} "
                     f"(Kelly {b.kelly.raw_kelly_fraction:.3f}, edge {b.kelly.edge_percent:+.0f}%)")
    return "\n".join(lines)
