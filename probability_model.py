"""Probability adapter — turns a scored field into per-horse probabilities.

Win probability is each horse's share of the field's total base score.
Place and show are scaled from win. Finish-order probabilities for exotics
use sequential share-of-remaining-score: the winner's share of the full
field, then the runner-up's share of the field with the winner removed, and
so on. This is a heuristic, not a multinomial finish model, and the wager
generator depends on it exactly as written.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union


logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Odds assumed when a horse has no usable line
_DEFAULT_ODDS = 10.0

_PLACE_SCALE = 1.6
_SHOW_SCALE = 2.0
_MAX_PLACE_PROB = 95.0
_MAX_SHOW_PROB = 98.0

_MIN_IMPLIED_PROB = 0.01

_EVEN_MONEY = {"EVEN", "EVS", "EVN"}
_ODDS_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*[-/]\s*(\d+(?:\.\d+)?)$")
_NUM_RE = re.compile(r"^\d+(?:\.\d+)?$")

OddsValue = Union[str, float, int, None]
OddsLookup = Callable[[int], OddsValue]
ScratchLookup = Callable[[int], bool]


# ---------------------------------------------------------------------------
# Odds parsing
# ---------------------------------------------------------------------------

def parse_odds_decimal(raw: OddsValue) -> Optional[float]:
    """Parse a tote/morning-line odds string to odds-to-1.

    "3/1" -> 3.0, "9/5" -> 1.8, "4-1" -> 4.0, "*6.5" -> 6.5, "even" -> 1.0.
    Returns None for empty, scratched or unreadable values.
    """
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if raw >= 0 else None
    text = str(raw).strip().lstrip("*").strip().upper()
    if not text:
        return None
    if text in _EVEN_MONEY:
        return 1.0
    m = _ODDS_RE.match(text)
    if m:
        num, den = float(m.group(1)), float(m.group(2))
        if den == 0:
            return None
        return num / den
    if _NUM_RE.match(text):
        return float(text)
    return None


def format_odds(odds: float) -> str:
    """Render odds-to-1 the way a tote board shows them ("5-1", "9/5")."""
    if odds == 1.0:
        return "EVEN"
    if float(odds).is_integer():
        return f"{int(odds)}-1"
    # common fractional lines
    for den in (2, 5):
        num = odds * den
        if abs(num - round(num)) < 1e-9:
            return f"{int(round(num))}/{den}"
    return f"{odds:.1f}-1"


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldEntry:
    """One runner as delivered by the scoring model."""
    index: int                  # stable id within the race
    program_number: int
    name: str
    base_score: float
    decimal_odds: Optional[float] = None    # odds-to-1 (3.0 == 3-1)
    model_win_probability: Optional[float] = None   # 0.0-1.0, optional
    odds_raw: str = ""
    scratched: bool = False


@dataclass(frozen=True)
class ScoredEntry:
    """A field entry with the probabilities the generator works from.

    All probabilities are percentages (0-100).
    """
    entry: FieldEntry
    odds: float
    odds_display: str
    win_prob: float
    place_prob: float
    show_prob: float
    implied_prob: float
    edge_percent: float
    model_rank: int

    @property
    def index(self) -> int:
        return self.entry.index

    @property
    def program_number(self) -> int:
        return self.entry.program_number

    @property
    def name(self) -> str:
        return self.entry.name

    @property
    def score(self) -> float:
        return self.entry.base_score

    @property
    def fair_odds(self) -> Optional[float]:
        if self.win_prob <= 0:
            return None
        return round(100.0 / self.win_prob - 1.0, 2)

    @property
    def kelly_probability(self) -> float:
        """Win probability (0-1) to size stakes with.

        The scoring model's own estimate wins when it supplies one.
        """
        p = self.entry.model_win_probability
        if p is not None:
            return p
        return self.win_prob / 100.0


# ---------------------------------------------------------------------------
# Field preparation
# ---------------------------------------------------------------------------

def _resolve_odds(entry: FieldEntry, odds_lookup: Optional[OddsLookup]) -> Tuple[float, str]:
    if odds_lookup is not None:
        override = odds_lookup(entry.index)
        parsed = parse_odds_decimal(override)
        if parsed is not None:
            display = override if isinstance(override, str) else format_odds(parsed)
            return parsed, display
    if entry.decimal_odds is not None and entry.decimal_odds >= 0:
        return float(entry.decimal_odds), entry.odds_raw or format_odds(entry.decimal_odds)
    parsed = parse_odds_decimal(entry.odds_raw)
    if parsed is not None:
        return parsed, entry.odds_raw
    return _DEFAULT_ODDS, format_odds(_DEFAULT_ODDS)


def prepare_field(
    entries: Sequence[FieldEntry],
    odds_lookup: Optional[OddsLookup] = None,
    scratch_lookup: Optional[ScratchLookup] = None,
) -> List[ScoredEntry]:
    """Drop scratches, rank by base score and attach probabilities.

    *odds_lookup* returns live odds for an entry index (None keeps the
    entry's own line). *scratch_lookup* returns True for late scratches.
    The result is sorted best score first; model_rank starts at 1.
    """
    active = [
        e for e in entries
        if not e.scratched and not (scratch_lookup is not None and scratch_lookup(e.index))
    ]
    if not active:
        return []
    # stable on ties so identical input gives identical ranking
    active.sort(key=lambda e: (-e.base_score, e.index))

    total = sum(e.base_score for e in active)
    uniform = 100.0 / len(active)

    scored: List[ScoredEntry] = []
    for rank, entry in enumerate(active, start=1):
        odds, display = _resolve_odds(entry, odds_lookup)
        win = (entry.base_score / total) * 100.0 if total > 0 else uniform
        implied = 100.0 / (odds + 1.0)
        edge = (win - implied) / max(implied, _MIN_IMPLIED_PROB) * 100.0
        scored.append(ScoredEntry(
            entry=entry,
            odds=odds,
            odds_display=display,
            win_prob=win,
            place_prob=min(_MAX_PLACE_PROB, win * _PLACE_SCALE),
            show_prob=min(_MAX_SHOW_PROB, win * _SHOW_SCALE),
            implied_prob=implied,
            edge_percent=edge,
            model_rank=rank,
        ))
    if total <= 0:
        logger.warning("Field of %d has no positive score total; using uniform win probabilities",
                       len(active))
    return scored


# ---------------------------------------------------------------------------
# Finish-order probabilities
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldWeights:
    """Score weights for finish-order maths, built once per prepared field."""
    weights: Tuple[float, ...]
    total: float


def field_weights(field: Sequence[ScoredEntry]) -> FieldWeights:
    if sum(h.score for h in field) > 0:
        weights = tuple(max(h.score, 0.0) for h in field)
    else:
        weights = (1.0,) * len(field)
    return FieldWeights(weights, sum(weights))


def finish_probability(field: Sequence[ScoredEntry], order: Sequence[int],
                       weights: Optional[FieldWeights] = None) -> float:
    """Percent chance that field[order[0]] wins, field[order[1]] runs second, ...

    *order* holds positions into *field* (the prepared, rank-sorted list).
    Pass *weights* from field_weights() when pricing many orders of one field.
    """
    if not order or len(set(order)) != len(order):
        return 0.0
    if any(i < 0 or i >= len(field) for i in order):
        return 0.0
    fw = weights or field_weights(field)
    w = fw.weights
    remaining = fw.total
    prob = 1.0
    for pos in order:
        if remaining <= 0:
            return 0.0
        prob *= w[pos] / remaining
        remaining -= w[pos]
    return prob * 100.0


def box_probability(field: Sequence[ScoredEntry], positions_in_box: Sequence[int],
                    places: int, weights: Optional[FieldWeights] = None) -> float:
    """Percent chance the boxed horses fill the first *places* spots in any order.

    Same value as summing finish_probability over every ordering, but
    orderings that share a prefix share its product.
    """
    box = tuple(positions_in_box)
    if places <= 0 or len(box) < places or len(set(box)) != len(box):
        return 0.0
    if any(i < 0 or i >= len(field) for i in box):
        return 0.0
    fw = weights or field_weights(field)
    w = fw.weights

    def _fill(left: Tuple[int, ...], slots: int, remaining: float) -> float:
        if remaining <= 0:
            return 0.0
        total = 0.0
        for i, pos in enumerate(left):
            share = w[pos] / remaining
            if slots == 1:
                total += share
            else:
                total += share * _fill(left[:i] + left[i + 1:], slots - 1, remaining - w[pos])
        return total

    return _fill(box, places, fw.total) * 100.0


def field_summary(field: Sequence[ScoredEntry]) -> Dict[str, float]:
    """Handy aggregate numbers for logging and API responses."""
    if not field:
        return {"field_size": 0, "total_win_prob": 0.0, "best_edge": 0.0}
    return {
        "field_size": len(field),
        "total_win_prob": round(sum(h.win_prob for h in field), 4),
        "best_edge": round(max(h.edge_percent for h in field), 2),
    }
