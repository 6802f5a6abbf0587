"""Tests for day budget allocation and per-race overrides."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from day_allocator import (
    Verdict, RiskStyle, RaceVerdict, MIN_RACE_BUDGET,
    allocate_day_budget, adjust_race_budget, get_adjustment_impact, bucket_shares,
    multi_race_reserve_percent, allocation_to_dict, allocation_to_csv,
    race_allocation_to_dict, race_allocation_from_dict,
)


def _card(verdicts, edges=None):
    edges = edges or [None] * len(verdicts)
    return [RaceVerdict(race_number=i + 1, verdict=v, edge=e)
            for i, (v, e) in enumerate(zip(verdicts, edges))]


# 5 BET (edges falling with race number), 3 CAUTION, 2 PASS
CARD = _card(["BET"] * 5 + ["CAUTION"] * 3 + ["PASS"] * 2,
             edges=[50, 40, 30, 20, 10, None, None, None, None, None])


def _budgets(plan):
    return [a.allocated_budget for a in plan.race_allocations]


def _total(plan):
    return sum(_budgets(plan)) + plan.multi_race_reserve


# ===========================================================================
# Allocation
# ===========================================================================

class TestAllocateDayBudget:
    def test_balanced_reference_card(self):
        plan = allocate_day_budget(500, CARD, track_name="GP")
        assert plan.multi_race_reserve == 75
        assert _budgets(plan) == [40, 40, 40, 40, 45, 30, 30, 30, 65, 65]
        assert plan.verdict_budgets == {"BET": 205, "CAUTION": 90, "PASS": 130}
        assert _total(plan) == 500
        assert plan.unallocated == 0

    def test_reserve_by_style(self):
        assert allocate_day_budget(500, CARD, risk_style="safe").multi_race_reserve == 25
        assert allocate_day_budget(500, CARD, risk_style="aggressive").multi_race_reserve == 125
        assert multi_race_reserve_percent("balanced") == 0.15

    @pytest.mark.parametrize("style", ["safe", "balanced", "aggressive"])
    @pytest.mark.parametrize("bankroll", [200, 500, 1000, 1234.56, 3333])
    def test_sums_exactly(self, style, bankroll):
        plan = allocate_day_budget(bankroll, CARD, risk_style=style)
        assert _total(plan) == pytest.approx(bankroll, abs=0.005)
        assert all(b >= MIN_RACE_BUDGET for b in _budgets(plan))

    def test_empty_bucket_goes_to_bet(self):
        plan = allocate_day_budget(300, _card(["BET", "BET", "BET"]))
        assert plan.multi_race_reserve == 45
        assert _budgets(plan) == [85, 85, 85]

    def test_empty_bucket_precedence(self):
        shares = bucket_shares("balanced", {Verdict.BET: 0, Verdict.CAUTION: 2, Verdict.PASS: 1})
        assert shares[Verdict.CAUTION] == pytest.approx(0.70)
        assert shares[Verdict.PASS] == pytest.approx(0.30)
        assert shares[Verdict.BET] == 0

    def test_all_pass(self):
        plan = allocate_day_budget(200, _card(["PASS"] * 4))
        assert _total(plan) == 200
        assert plan.verdict_counts == {"BET": 0, "CAUTION": 0, "PASS": 4}

    def test_no_races(self):
        plan = allocate_day_budget(500, [])
        assert plan.race_allocations == []
        assert plan.multi_race_reserve == 75
        assert plan.unallocated == 425

    def test_card_too_big_borrows_reserve(self):
        plan = allocate_day_budget(50, _card(["PASS"] * 10))
        assert _budgets(plan) == [10] * 10
        assert plan.multi_race_reserve == 0
        assert plan.unallocated == -50

    def test_metadata_copied(self):
        races = [RaceVerdict(3, "BET", edge=22.0, value_play={"program_number": 4}, post_time="1:15")]
        a = allocate_day_budget(100, races, track_name="SA").race_allocations[0]
        assert a.race_number == 3
        assert a.track_name == "SA"
        assert a.value_play == {"program_number": 4}
        assert a.post_time == "1:15"

    def test_bad_input(self):
        with pytest.raises(ValueError):
            allocate_day_budget(-1, CARD)
        with pytest.raises(ValueError):
            allocate_day_budget(500, CARD, risk_style="reckless")
        with pytest.raises(ValueError):
            allocate_day_budget(500, _card(["MAYBE"]))

    def test_style_enum_accepted(self):
        plan = allocate_day_budget(500, CARD, risk_style=RiskStyle.SAFE)
        assert plan.risk_style is RiskStyle.SAFE


# ===========================================================================
# Overrides
# ===========================================================================

class TestAdjustRaceBudget:
    def setup_method(self):
        self.plan = allocate_day_budget(500, CARD)

    def test_increase_taken_from_pass(self):
        result = adjust_race_budget(self.plan.race_allocations, 1, 60)
        assert result.applied
        budgets = [a.allocated_budget for a in result.allocations]
        assert budgets[0] == 60
        assert budgets[8:] == [55, 55]
        assert result.affected == [(9, -10.0), (10, -10.0)]
        assert sum(budgets) == sum(_budgets(self.plan))

    def test_decrease_given_to_pass(self):
        result = adjust_race_budget(self.plan.race_allocations, 1, 20)
        assert result.applied
        budgets = [a.allocated_budget for a in result.allocations]
        assert budgets[8:] == [75, 75]
        assert budgets[1:5] == [40, 40, 40, 45]

    def test_spills_into_caution(self):
        # PASS can give 110, the rest comes from CAUTION
        result = adjust_race_budget(self.plan.race_allocations, 1, 170)
        assert result.applied
        budgets = [a.allocated_budget for a in result.allocations]
        assert budgets[8:] == [10, 10]
        assert sum(budgets[5:8]) == 70
        assert all(b >= 10 for b in budgets)

    def test_bet_races_untouched(self):
        result = adjust_race_budget(self.plan.race_allocations, 6, 60)
        assert [a.allocated_budget for a in result.allocations][:5] == [40, 40, 40, 40, 45]

    def test_unabsorbable(self):
        result = adjust_race_budget(self.plan.race_allocations, 1, 400)
        assert not result.applied
        assert result.unabsorbed == 190
        assert result.reason
        # caller's plan untouched
        assert _budgets(self.plan)[0] == 40

    def test_round_trip(self):
        up = adjust_race_budget(self.plan.race_allocations, 1, 60)
        down = adjust_race_budget(up.allocations, 1, 40)
        assert [a.allocated_budget for a in down.allocations] == _budgets(self.plan)

    def test_unknown_race(self):
        result = adjust_race_budget(self.plan.race_allocations, 42, 50)
        assert not result.applied

    def test_below_minimum(self):
        result = adjust_race_budget(self.plan.race_allocations, 1, 5)
        assert not result.applied

    def test_impact_preview(self):
        impact = get_adjustment_impact(self.plan.race_allocations, 1, 60)
        assert impact["can_apply"]
        assert impact["affected_races"] == [
            {"race_number": 9, "change": -10.0},
            {"race_number": 10, "change": -10.0},
        ]


# ===========================================================================
# Export
# ===========================================================================

class TestExport:
    def test_dict(self):
        d = allocation_to_dict(allocate_day_budget(500, CARD))
        assert d["risk_style"] == "balanced"
        assert d["race_allocations"][0]["verdict"] == "BET"

    def test_race_allocation_round_trip(self):
        a = allocate_day_budget(500, CARD).race_allocations[0]
        assert race_allocation_from_dict(race_allocation_to_dict(a)) == a

    def test_csv(self):
        lines = allocation_to_csv(allocate_day_budget(500, CARD)).strip().splitlines()
        assert lines[0] == "race,verdict,budget,edge,track"
        assert len(lines) == len(CARD) + 2
        assert lines[-1].startswith("MULTI,,75.0")
