"""Tests for multi-race tickets: building, payouts, EV and budget trimming."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from multi_race import (
    LegStrategy, TicketConfidence, EVRating, ValuePlay, LegContenders, MultiRaceLeg,
    value_play_from_dict, count_longshots, estimate_multi_race_payout,
    calculate_approximate_ev, build_multi_race_ticket, adjust_ticket_to_budget,
    ticket_to_dict,
)
from probability_model import FieldEntry, prepare_field

SCORES = [30, 20, 15, 10, 9, 7, 5]
ODDS = [2, 4, 6, 8, 10, 12, 15]


def _race(number, value_play=None):
    field_ = prepare_field([
        FieldEntry(index=i, program_number=i + 1, name=f"R{number} HORSE {i + 1}",
                   base_score=s, decimal_odds=o)
        for i, (s, o) in enumerate(zip(SCORES, ODDS))
    ])
    return LegContenders(number, tuple(field_), value_play)


def _pick3_races():
    # R3: big overlay on #6 (12-1), R4: no value, R5: mild overlay on #4 (8-1)
    return [
        _race(3, ValuePlay(6, "LONG SHOT", 150.0)),
        _race(4),
        _race(5, ValuePlay(4, "MILD", 40.0)),
    ]


def _leg(number, horses, odds, value=None):
    return MultiRaceLeg(number, tuple(horses), tuple(f"H{h}" for h in horses), tuple(odds),
                        tuple(range(1, len(horses) + 1)), LegStrategy.SPREAD, value_play_horse=value)


# ===========================================================================
# Building
# ===========================================================================

class TestBuild:
    def test_balanced_pick3(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "balanced")
        assert [leg.horses for leg in t.legs] == [(6,), (1, 2, 3), (1, 2, 4)]
        assert t.legs[0].strategy is LegStrategy.SINGLE
        assert t.legs[1].strategy is LegStrategy.SPREAD
        assert t.combinations == 9
        assert t.cost_per_combo == 1.0
        assert t.total_cost == 9.0
        assert t.starting_race == 3
        assert t.ending_race == 5

    def test_balanced_pick3_pricing(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "balanced")
        assert t.value_play_count == 2
        assert t.longshot_count == 2
        assert (t.payout_min, t.payout_max) == (500, 4500)
        assert t.confidence is TicketConfidence.HIGH
        assert t.explanation == ("This PICK 3 has 2 value plays in the sequence. "
                                 "Strong opportunity with 9 combinations.")

    def test_window_script(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "balanced")
        assert t.window_script == "Races 3-5, $1 PICK 3, 6 / 1,2,3 / 1,2,4"

    def test_leg_reasoning(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "balanced")
        assert t.legs[0].reasoning.startswith("LONG SHOT is a strong value play at +150% edge")
        assert t.legs[1].reasoning == "Competitive race, spreading to 3 contenders."
        assert t.legs[2].reasoning == "Value play + 2 contenders for safety."

    def test_safe_never_singles(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "safe")
        assert all(leg.strategy is LegStrategy.SPREAD for leg in t.legs)
        assert [leg.horses for leg in t.legs] == [(1, 2, 3, 6), (1, 2, 3, 4), (1, 2, 3, 4)]
        assert t.combinations == 64

    def test_aggressive_spreads_two(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "aggressive")
        assert [leg.horses for leg in t.legs] == [(6,), (1, 2), (1, 4)]
        assert t.combinations == 4

    def test_races_sorted(self):
        races = list(reversed(_pick3_races()))
        assert build_multi_race_ticket("PICK_3", races).starting_race == 3

    def test_daily_double_default_unit(self):
        t = build_multi_race_ticket("daily_double", [_race(1), _race(2)])
        assert t.bet_type == "DAILY_DOUBLE"
        assert t.cost_per_combo == 2.0
        assert t.confidence is TicketConfidence.MEDIUM
        assert t.id.startswith("DAILY_DOUBLE_R1_")

    def test_quality_carried(self):
        t = build_multi_race_ticket("DAILY_DOUBLE", [_race(1), _race(2)], quality="GOOD")
        assert t.quality == "GOOD"

    def test_value_play_not_in_field_ignored(self):
        t = build_multi_race_ticket("DAILY_DOUBLE", [_race(1, ValuePlay(99, "GONE", 300.0)), _race(2)])
        assert t.legs[0].horses == (1,)
        assert t.legs[0].value_play_horse is None
        assert t.legs[0].reasoning == "Singling the top contender."

    @pytest.mark.parametrize("bet_type,races", [
        ("PICK_3", [3, 4]),
        ("PICK_3", [3, 4, 6]),
        ("PICK_9", [1, 2]),
    ])
    def test_bad_sequence(self, bet_type, races):
        with pytest.raises(ValueError):
            build_multi_race_ticket(bet_type, [_race(n) for n in races])

    def test_empty_race(self):
        with pytest.raises(ValueError):
            build_multi_race_ticket("DAILY_DOUBLE", [_race(1), LegContenders(2, ())])

    def test_bad_unit(self):
        with pytest.raises(ValueError):
            build_multi_race_ticket("DAILY_DOUBLE", [_race(1), _race(2)], cost_per_combo=0)

    def test_bad_style(self):
        with pytest.raises(ValueError):
            build_multi_race_ticket("DAILY_DOUBLE", [_race(1), _race(2)], "reckless")


# ===========================================================================
# Payouts and EV
# ===========================================================================

class TestPayouts:
    def test_no_longshots(self):
        legs = [_leg(1, [1, 2], [2, 4]), _leg(2, [1], [3])]
        assert estimate_multi_race_payout("DAILY_DOUBLE", legs) == (20, 50)

    def test_one_longshot(self):
        legs = [_leg(1, [5], [10], value=5), _leg(2, [1], [3])]
        assert count_longshots(legs) == 1
        assert estimate_multi_race_payout("DAILY_DOUBLE", legs) == (60, 400)

    def test_long_average_odds_scale_max(self):
        # average 20-1 scales the max by 1.5: 75 rounds half up to 100
        legs = [_leg(1, [1], [20]), _leg(2, [1], [20])]
        assert estimate_multi_race_payout("DAILY_DOUBLE", legs) == (20, 100)

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            estimate_multi_race_payout("QUINELLA", [])


class TestApproximateEV:
    def test_negative(self):
        ev = calculate_approximate_ev(10, 20, 50)
        assert (ev.ev, ev.ev_percent, ev.rating) == (-3, -32, EVRating.NEGATIVE)

    def test_positive_with_longshots(self):
        ev = calculate_approximate_ev(9, 500, 4500, longshot_count=2)
        assert (ev.ev, ev.ev_percent, ev.rating) == (175, 1949, EVRating.POSITIVE)

    def test_neutral(self):
        # 0.15 * 60 - 10 * 0.85 = 0.5 on $10
        assert calculate_approximate_ev(10, 60, 60).rating is EVRating.NEUTRAL

    def test_zero_cost(self):
        assert calculate_approximate_ev(0, 20, 50).ev_percent == 0


# ===========================================================================
# Budget trimming
# ===========================================================================

class TestAdjustToBudget:
    def test_already_fits(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "balanced")
        assert adjust_ticket_to_budget(t, 20) is t

    def test_widest_leg_trimmed_first(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "safe")
        cut = adjust_ticket_to_budget(t, 20)
        # R3 loses 3, 2, then 1; the value play #6 stays
        assert [leg.horses for leg in cut.legs] == [(6,), (1, 2, 3, 4), (1, 2, 3, 4)]
        assert cut.total_cost == 16.0
        assert cut.id == t.id

    def test_value_play_kept(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "safe")
        cut = adjust_ticket_to_budget(t, 4)
        assert cut.total_cost <= 4
        assert 6 in cut.legs[0].horses
        assert 4 in cut.legs[2].horses

    def test_cannot_fit(self, caplog):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "safe")
        with caplog.at_level("INFO"):
            assert adjust_ticket_to_budget(t, 0.5) is t
        assert "cannot be cut" in caplog.text


# ===========================================================================
# Conversions
# ===========================================================================

class TestConversions:
    def test_value_play_from_dict(self):
        vp = value_play_from_dict({"program_number": "6", "horse_name": "X", "value_edge": 120})
        assert vp == ValuePlay(6, "X", 120.0)

    @pytest.mark.parametrize("d", [None, {}, {"name": "X"}])
    def test_value_play_missing(self, d):
        assert value_play_from_dict(d) is None

    def test_to_bet(self):
        t = build_multi_race_ticket("PICK_3", _pick3_races(), "balanced")
        bet = t.to_bet()
        assert bet.id == t.id
        assert bet.legs == ((6,), (1, 2, 3), (1, 2, 4))
        assert bet.total_cost == 9.0
        assert bet.explanation == t.explanation

    def test_dict(self):
        d = ticket_to_dict(build_multi_race_ticket("PICK_3", _pick3_races(), "balanced"))
        assert d["combinations"] == 9
        assert d["potential_return"] == {"min": 500, "max": 4500}
        assert d["approximate_ev"]["rating"] == "POSITIVE"
        assert d["legs"][0]["strategy"] == "SINGLE"
        assert d["legs"][0]["value_play_horse"] == 6
