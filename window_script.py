"""Window scripts — the literal words to say at a betting window.

    window_script(WagerFamily.TRIFECTA_BOX_3, [3, 5, 7])  -> "$1 TRIFECTA BOX, 3-5-7"
    window_script(WagerFamily.WIN, [9])                   -> "$1 WIN on number 9"
"""
from __future__ import annotations

from typing import Any, List, Optional, Sequence

from wager_generator import WagerFamily


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

FAMILY_NAMES = {
    WagerFamily.WIN: "WIN",
    WagerFamily.PLACE: "PLACE",
    WagerFamily.SHOW: "SHOW",
    WagerFamily.QUINELLA: "QUINELLA",
    WagerFamily.EXACTA_STRAIGHT: "EXACTA",
    WagerFamily.EXACTA_BOX_2: "EXACTA BOX",
    WagerFamily.EXACTA_BOX_3: "EXACTA BOX",
    WagerFamily.TRIFECTA_STRAIGHT: "TRIFECTA",
    WagerFamily.TRIFECTA_BOX_3: "TRIFECTA BOX",
    WagerFamily.TRIFECTA_BOX_4: "TRIFECTA BOX",
    WagerFamily.TRIFECTA_KEY: "TRIFECTA KEY",
    WagerFamily.SUPERFECTA_BOX_4: "SUPERFECTA BOX",
    WagerFamily.SUPERFECTA_BOX_5: "SUPERFECTA BOX",
}

MULTI_RACE_NAMES = {
    "DAILY_DOUBLE": "DAILY DOUBLE",
    "PICK_3": "PICK 3",
    "PICK_4": "PICK 4",
    "PICK_5": "PICK 5",
    "PICK_6": "PICK 6",
}

_SLIP_DIVIDER = "=" * 40


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

def format_amount(amount: float) -> str:
    """Amount as spoken: "$1", "$2.50", or "50 cent" below a dollar."""
    if amount < 1:
        return f"{int(round(amount * 100))} cent"
    if float(amount).is_integer():
        return f"${int(amount)}"
    return f"${amount:.2f}"


def format_currency(amount: float) -> str:
    """Display dollars: $1,234 for whole amounts, $12.50 otherwise."""
    if float(amount).is_integer():
        return f"${int(amount):,}"
    return f"${amount:,.2f}"


def unit_stake(ticket: Any) -> float:
    """Per-combination amount of a priced ticket (stake_cost / combinations_covered)."""
    combos = getattr(ticket, "combinations_covered", 1) or 1
    return ticket.stake_cost / combos


def format_payout_range(low: float, high: float, likely: Optional[float] = None) -> str:
    if low == high:
        return format_currency(likely if likely is not None else low)
    return f"{format_currency(low)}-{format_currency(high)}"


# ---------------------------------------------------------------------------
# Scripts
# ---------------------------------------------------------------------------

def window_script(family: WagerFamily, program_numbers: Sequence[int], amount: float = 1.0,
                  race_number: Optional[int] = None) -> str:
    """Render one ticket in window syntax.

    *program_numbers* are in ticket order: finish order for straights,
    key first for a trifecta key.
    """
    nums = [str(n) for n in program_numbers]
    if not nums:
        return ""
    family = WagerFamily(family)
    prefix = f"Race {race_number}, " if race_number else ""
    amt = format_amount(amount)
    name = FAMILY_NAMES[family]

    if family.is_straight:
        body = f"{name} on number {nums[0]}"
    elif family is WagerFamily.EXACTA_STRAIGHT:
        body = f"{name}, {nums[0]} over {nums[1]}"
    elif family is WagerFamily.TRIFECTA_KEY:
        body = f"{name}, {nums[0]} with {', '.join(nums[1:])}"
    else:
        body = f"{name}, {'-'.join(nums)}"
    return f"{prefix}{amt} {body}"


def exotic_key_script(bet_type: str, key_horse: int, with_horses: Sequence[int],
                      amount: float = 1.0, race_number: Optional[int] = None) -> str:
    """e.g. "$2 EXACTA KEY, 3 with 5, 7, 8"."""
    label = bet_type.upper().replace("_", " ")
    prefix = f"Race {race_number}, " if race_number else ""
    others = ", ".join(str(n) for n in with_horses)
    return f"{prefix}{format_amount(amount)} {label}, {key_horse} with {others}"


def multi_race_script(bet_type: str, legs: Sequence[Sequence[int]], starting_race: int,
                      amount: float = 1.0) -> str:
    """e.g. "Races 3-5, $1 PICK 3, 1,4 / 2 / 5,6,7"."""
    label = MULTI_RACE_NAMES.get(bet_type.upper(), bet_type.upper().replace("_", " "))
    ending = starting_race + len(legs) - 1
    selections = " / ".join(",".join(str(n) for n in leg) for leg in legs)
    return f"Races {starting_race}-{ending}, {format_amount(amount)} {label}, {selections}"


# ---------------------------------------------------------------------------
# Bet slip
# ---------------------------------------------------------------------------

def build_bet_slip(recommendations: Sequence[Any], race_number: int) -> str:
    """Plain-text slip for a set of ranked recommendations.

    Each recommendation needs family, program_numbers, stake_cost,
    combinations_covered and estimated_payout attributes.
    """
    lines: List[str] = [f"Bet Slip - Race {race_number}", _SLIP_DIVIDER]
    total = 0.0
    lows: List[float] = []
    highs: List[float] = []
    for rec in recommendations:
        fam = WagerFamily(rec.family)
        script = window_script(fam, rec.program_numbers, amount=unit_stake(rec), race_number=race_number)
        payout = rec.estimated_payout
        lines.append(f"{FAMILY_NAMES[fam]} ({format_currency(rec.stake_cost)}):")
        lines.append(f"  {script}")
        lines.append(f"  Potential: {format_payout_range(payout.min, payout.max, payout.likely)}")
        lines.append("")
        total += rec.stake_cost
        lows.append(payout.min)
        highs.append(payout.max)
    if recommendations:
        lines.pop()
    lines.append(_SLIP_DIVIDER)
    lines.append(f"Total: {format_currency(total)}")
    if recommendations:
        lines.append(f"Potential Return: {format_currency(min(lows))} - {format_currency(max(highs))}")
    return "\n".join(lines)
