"""Tests for bet_builder — Kelly math, stake bounds, rounding, exposure pass."""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from bet_builder import (
    SizingConfig, SizedBet, kelly_fraction, calculate_kelly, size_bet,
    adjust_for_simultaneous_bets, total_exposure, size_race_bets,
    describe_cap, race_sizing_to_dict, race_sizing_to_text,
    CAP_MAX_PERCENT, CAP_MAX_AMOUNT, CAP_MIN_AMOUNT, CAP_NEGATIVE_EV, CAP_BELOW_EDGE,
    _MAX_BET_PERCENT, _round_to,
)
from probability_model import FieldEntry, prepare_field


# Wider bounds than the defaults so Kelly amounts show through
WIDE = SizingConfig(max_bet_percent=5.0, max_bet_amount=None, min_edge_percent=0.0)


def _field(scores, odds):
    return prepare_field([
        FieldEntry(index=i, program_number=i + 1, name=f"HORSE {i + 1}",
                   base_score=s, decimal_odds=o)
        for i, (s, o) in enumerate(zip(scores, odds))
    ])


class TestKellyFraction:
    def test_positive_edge(self):
        # 5-1 odds, 30% win prob: (0.3 * 6 - 1) / 5 = 0.16, quarter = 0.04
        assert kelly_fraction(5.0, 0.30) == pytest.approx(0.04)

    def test_no_edge(self):
        # 2-1 odds, 20% win prob → 0.2 * 3 - 1 < 0
        assert kelly_fraction(2.0, 0.20) == 0.0

    def test_capped(self):
        assert kelly_fraction(5.0, 0.60) == pytest.approx(_MAX_BET_PERCENT / 100.0)

    def test_bad_input(self):
        assert kelly_fraction(0.0, 0.5) == 0.0
        assert kelly_fraction(3.0, 0.0) == 0.0
        assert kelly_fraction(3.0, 1.0) == 0.0

    @pytest.mark.parametrize("fraction,multiplier", [("full", 1.0), ("half", 0.5), ("eighth", 0.125)])
    def test_matches_calculate_kelly(self, fraction, multiplier):
        k = calculate_kelly(0.30, 4.0, 1000, fraction=fraction)
        assert k.fractional_kelly_fraction == pytest.approx(kelly_fraction(4.0, 0.30, multiplier))


class TestCalculateKelly:
    def test_basic(self):
        k = calculate_kelly(0.30, 4.0, 1000)
        assert k.should_bet
        assert k.is_positive_ev
        assert k.raw_kelly_fraction == pytest.approx(0.125)
        assert k.fractional_kelly_fraction == pytest.approx(0.03125)
        assert k.suggested_bet == pytest.approx(31.25)
        assert k.implied_probability == pytest.approx(0.2)
        assert k.edge_percent == pytest.approx(50.0)

    def test_fraction_capped(self):
        k = calculate_kelly(0.30, 4.0, 1000, fraction="full")
        assert k.fractional_kelly_fraction == pytest.approx(0.05)

    def test_half(self):
        k = calculate_kelly(0.30, 4.0, 1000, fraction="half", max_bet_percent=10.0)
        assert k.fractional_kelly_fraction == pytest.approx(0.0625)

    def test_negative_edge(self):
        k = calculate_kelly(0.20, 2.0, 1000)
        assert not k.should_bet
        assert not k.is_positive_ev
        assert k.reason

    def test_break_even_is_not_positive(self):
        k = calculate_kelly(0.25, 3.0, 1000)
        assert not k.is_positive_ev
        assert not k.should_bet

    @pytest.mark.parametrize("p,odds,bankroll", [
        (0.0, 3.0, 100), (1.0, 3.0, 100), (-0.1, 3.0, 100),
        (0.3, 0.0, 100), (0.3, -2.0, 100), (0.3, 4.0, 0), (0.3, 4.0, -50),
    ])
    def test_invalid_input_never_raises(self, p, odds, bankroll):
        k = calculate_kelly(p, odds, bankroll)
        assert not k.should_bet
        assert k.fractional_kelly_fraction == 0.0
        assert k.reason

    def test_positive_ev_with_bad_bankroll(self):
        k = calculate_kelly(0.30, 4.0, 0)
        assert k.is_positive_ev
        assert not k.should_bet

    def test_extras(self):
        k = calculate_kelly(0.60, 1.0, 1000)
        assert k.expected_growth > 0
        assert 0.0 <= k.risk_of_ruin < 1.0


class TestSizeBet:
    def test_default(self):
        # 2% of 1000 caps the 31.25 quarter-Kelly stake
        sized = size_bet(calculate_kelly(0.30, 4.0, 1000))
        assert sized.bounded_final_amount == 20
        assert sized.raw_dollar_amount == pytest.approx(31.25)
        assert sized.capped_by_max_percent
        assert sized.cap_reason == CAP_MAX_PERCENT

    def test_uncapped(self):
        sized = size_bet(calculate_kelly(0.30, 4.0, 1000), WIDE)
        assert sized.bounded_final_amount == 31
        assert sized.raw_dollar_amount == pytest.approx(31.25)
        assert not sized.capped_by_max_percent
        assert sized.cap_reason is None
        assert sized.effective_bet_percent == pytest.approx(3.1)

    def test_max_percent(self):
        cfg = SizingConfig(kelly_fraction="full", max_bet_percent=5.0)
        sized = size_bet(calculate_kelly(0.30, 4.0, 1000, fraction="full"), cfg)
        assert sized.bounded_final_amount == 50
        assert sized.capped_by_max_percent
        assert sized.cap_reason == CAP_MAX_PERCENT

    def test_max_amount(self):
        sized = size_bet(calculate_kelly(0.30, 4.0, 1000), SizingConfig(max_bet_percent=5.0, max_bet_amount=20.0))
        assert sized.bounded_final_amount == 20
        assert sized.cap_reason == CAP_MAX_AMOUNT

    def test_raised_to_min_bet(self):
        sized = size_bet(calculate_kelly(0.30, 4.0, 40), WIDE)
        assert sized.bounded_final_amount == 2
        assert sized.cap_reason == CAP_MIN_AMOUNT

    def test_min_bet_above_cap(self):
        # cap is 2% of 30 = 0.60, below the $2 minimum
        sized = size_bet(calculate_kelly(0.30, 4.0, 30))
        assert sized.bounded_final_amount == 0
        assert sized.cap_reason == CAP_MIN_AMOUNT

    def test_rounding_never_exceeds_cap(self):
        cfg = SizingConfig(kelly_fraction="full", max_bet_percent=4.8, rounding_increment=5.0)
        sized = size_bet(calculate_kelly(0.30, 4.0, 1000, fraction="full", max_bet_percent=4.8), cfg)
        assert sized.bounded_final_amount == 45

    def test_negative_ev(self):
        sized = size_bet(calculate_kelly(0.20, 2.0, 1000))
        assert sized.bounded_final_amount == 0
        assert sized.cap_reason == CAP_NEGATIVE_EV

    def test_below_edge(self):
        sized = size_bet(calculate_kelly(0.30, 4.0, 1000), SizingConfig(min_edge_percent=60.0))
        assert sized.bounded_final_amount == 0
        assert sized.cap_reason == CAP_BELOW_EDGE

    @pytest.mark.parametrize("bankroll", [50, 120, 333, 1000, 2500, 10000])
    def test_bounds_hold(self, bankroll):
        cfg = SizingConfig(kelly_fraction="half")
        sized = size_bet(calculate_kelly(0.35, 3.0, bankroll, fraction="half"), cfg)
        if sized.bounded_final_amount:
            assert cfg.min_bet <= sized.bounded_final_amount <= bankroll * cfg.max_bet_percent / 100.0

    def test_rounds_half_up(self):
        # quarter Kelly on 400 is 12.50
        sized = size_bet(calculate_kelly(0.30, 4.0, 400), WIDE)
        assert sized.bounded_final_amount == 13

    @pytest.mark.parametrize("amount,increment,expected", [
        (12.5, 1.0, 13), (13.5, 1.0, 14), (12.49, 1.0, 12), (22.5, 5.0, 25), (3.456, 0, 3.46),
    ])
    def test_round_to(self, amount, increment, expected):
        assert _round_to(amount, increment) == pytest.approx(expected)

    def test_describe_cap(self):
        assert describe_cap(SizedBet(0, 0, False, CAP_NEGATIVE_EV)) == "No bet - negative EV"
        assert describe_cap(SizedBet(10, 10, False)) == "No cap"


class TestSizingConfig:
    def test_validate(self):
        assert SizingConfig().validate() == []
        errors = SizingConfig(kelly_fraction="double", max_bet_percent=0).validate()
        assert len(errors) == 2

    def test_moderate_defaults(self):
        cfg = SizingConfig()
        assert (cfg.kelly_fraction, cfg.max_bet_percent, cfg.min_bet) == ("quarter", 2.0, 2.0)
        assert (cfg.max_bet_amount, cfg.rounding_increment, cfg.min_edge_percent) == (100.0, 1.0, 2.0)
        assert SizingConfig.for_risk_tolerance("moderate") == cfg

    def test_presets(self):
        conservative = SizingConfig.for_risk_tolerance("conservative")
        assert (conservative.kelly_fraction, conservative.max_bet_percent) == ("eighth", 1.0)
        assert (conservative.max_bet_amount, conservative.min_edge_percent) == (50.0, 3.0)
        aggressive = SizingConfig.for_risk_tolerance("aggressive")
        assert (aggressive.kelly_fraction, aggressive.max_bet_percent) == ("half", 5.0)
        assert (aggressive.min_bet, aggressive.max_bet_amount, aggressive.rounding_increment) == (5.0, 250.0, 5.0)

    @pytest.mark.parametrize("bankroll,max_amount", [(50, 2.0), (99, 4.0), (60.0, 3.0)])
    def test_recommended_tiny_bankroll(self, bankroll, max_amount):
        cfg = SizingConfig.recommended(bankroll)
        assert cfg.kelly_fraction == "eighth"
        assert cfg.max_bet_amount == max_amount

    @pytest.mark.parametrize("bankroll,max_amount", [(100, 10.0), (250, 25.0), (499, 49.0)])
    def test_recommended_small_bankroll(self, bankroll, max_amount):
        cfg = SizingConfig.recommended(bankroll)
        assert cfg.kelly_fraction == "eighth"
        assert cfg.max_bet_amount == max_amount

    @pytest.mark.parametrize("bankroll", [500, 1000, 1999])
    def test_recommended_medium_bankroll(self, bankroll):
        assert SizingConfig.recommended(bankroll) == SizingConfig()

    @pytest.mark.parametrize("bankroll", [2000, 5000])
    def test_recommended_large_bankroll(self, bankroll):
        cfg = SizingConfig.recommended(bankroll)
        assert cfg.max_bet_amount == 200.0
        assert cfg.rounding_increment == 5.0
        assert cfg.max_bet_percent == 2.0
        assert cfg.validate() == []


class TestSimultaneousBets:
    def test_under_cap_unchanged(self):
        bets = [SizedBet(40, 40, False), SizedBet(30, 30, False)]
        adjusted = adjust_for_simultaneous_bets(bets, 1000)
        assert [a.final_amount for a in adjusted] == [40, 30]
        assert all(a.reduction_percent == 0 for a in adjusted)

    def test_scaled_proportionally(self):
        bets = [SizedBet(50, 50, False)] * 3
        adjusted = adjust_for_simultaneous_bets(bets, 1000)
        assert [a.final_amount for a in adjusted] == [33, 33, 33]
        assert adjusted[0].reduction_percent == pytest.approx(100 / 3)
        assert total_exposure(adjusted) <= 100

    @pytest.mark.parametrize("amounts", [[50, 50, 50], [37, 29, 44, 12], [99, 1], [45, 45, 45, 45, 45]])
    def test_never_over_cap(self, amounts):
        bets = [SizedBet(a, a, False) for a in amounts]
        adjusted = adjust_for_simultaneous_bets(bets, 1000, 0.10, 1.0)
        assert total_exposure(adjusted) <= 100 + 1e-9


class TestSizeRaceBets:
    def test_exposure_pass(self):
        plan = size_race_bets(_field([50, 30, 20], [3.0, 5.0, 10.0]), 1000, WIDE, race_number=3)
        assert [b.final_amount for b in plan.bets] == [41, 33, 25]
        assert plan.total_exposure == 99
        assert plan.bets[0].window_script == "Race 3, $41 WIN on number 1"

    def test_no_edge_skipped(self):
        plan = size_race_bets(_field([50, 30, 20], [3.0, 5.0, 2.0]), 1000, WIDE)
        assert [b.program_number for b in plan.bets] == [1, 2]
        assert plan.total_exposure == 90

    def test_export(self):
        plan = size_race_bets(_field([50, 30, 20], [3.0, 5.0, 10.0]), 1000, WIDE)
        d = race_sizing_to_dict(plan)
        assert d["exposure_cap"] == 100
        assert d["bets"][0]["cap"] == "Capped at max % of bankroll"
        assert "Bankroll: $1000" in race_sizing_to_text(plan)
