"""Tests for odds parsing and field probability preparation."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from probability_model import (
    FieldEntry, parse_odds_decimal, format_odds, prepare_field,
    finish_probability, box_probability, field_summary,
)


def _field(scores, odds=None):
    odds = odds or [None] * len(scores)
    return [
        FieldEntry(index=i, program_number=i + 1, name=f"HORSE {i + 1}",
                   base_score=s, decimal_odds=o)
        for i, (s, o) in enumerate(zip(scores, odds))
    ]


# ===========================================================================
# Odds parsing
# ===========================================================================

class TestParseOddsDecimal:
    def test_fraction_simple(self):
        assert parse_odds_decimal("3/1") == 3.0

    def test_fraction_non_unit(self):
        assert abs(parse_odds_decimal("9/5") - 1.8) < 1e-9

    def test_decimal_string(self):
        assert parse_odds_decimal("5.0") == 5.0

    def test_asterisk_prefix(self):
        assert parse_odds_decimal("*6.5") == 6.5

    def test_dash_format(self):
        assert parse_odds_decimal("4-1") == 4.0

    def test_even(self):
        assert parse_odds_decimal("even") == 1.0
        assert parse_odds_decimal("evs") == 1.0

    def test_numeric_input(self):
        assert parse_odds_decimal(7) == 7.0

    def test_empty_and_none(self):
        assert parse_odds_decimal("") is None
        assert parse_odds_decimal(None) is None
        assert parse_odds_decimal("*") is None

    def test_garbage(self):
        assert parse_odds_decimal("SCR") is None

    def test_zero_denominator(self):
        assert parse_odds_decimal("3/0") is None


class TestFormatOdds:
    def test_whole(self):
        assert format_odds(5.0) == "5-1"

    def test_even(self):
        assert format_odds(1.0) == "EVEN"

    def test_fraction(self):
        assert format_odds(1.8) == "9/5"
        assert format_odds(2.5) == "5/2"


# ===========================================================================
# Field preparation
# ===========================================================================

class TestPrepareField:
    def test_win_probs_are_score_shares(self):
        field = prepare_field(_field([50, 30, 20]))
        assert [h.win_prob for h in field] == pytest.approx([50.0, 30.0, 20.0])
        assert sum(h.win_prob for h in field) == pytest.approx(100.0)

    def test_sorted_by_score_with_rank(self):
        field = prepare_field(_field([20, 50, 30]))
        assert [h.index for h in field] == [1, 2, 0]
        assert [h.model_rank for h in field] == [1, 2, 3]

    def test_ties_break_on_index(self):
        field = prepare_field(_field([40, 40, 20]))
        assert [h.index for h in field] == [0, 1, 2]

    def test_place_and_show_capped(self):
        field = prepare_field(_field([90, 10]))
        top = field[0]
        assert top.place_prob == 95.0
        assert top.show_prob == 98.0
        assert field[1].place_prob == pytest.approx(16.0)
        assert field[1].show_prob == pytest.approx(20.0)

    def test_default_odds(self):
        field = prepare_field(_field([60, 40]))
        assert all(h.odds == 10.0 for h in field)
        assert field[0].implied_prob == pytest.approx(100.0 / 11.0)

    def test_edge(self):
        field = prepare_field(_field([50, 50], odds=[3.0, 1.0]))
        # 50% model vs 25% implied
        assert field[0].edge_percent == pytest.approx(100.0)

    def test_scratches_removed(self):
        entries = _field([50, 30, 20])
        entries[0] = FieldEntry(index=0, program_number=1, name="HORSE 1",
                                base_score=50, scratched=True)
        field = prepare_field(entries, scratch_lookup=lambda idx: idx == 2)
        assert [h.index for h in field] == [1]
        assert field[0].win_prob == pytest.approx(100.0)

    def test_odds_lookup_overrides(self):
        field = prepare_field(_field([60, 40], odds=[5.0, 5.0]),
                              odds_lookup=lambda idx: "9/5" if idx == 0 else None)
        assert field[0].odds == pytest.approx(1.8)
        assert field[0].odds_display == "9/5"
        assert field[1].odds == 5.0

    def test_raw_odds_used(self):
        entries = [FieldEntry(index=0, program_number=1, name="A", base_score=10, odds_raw="5-2")]
        field = prepare_field(entries)
        assert field[0].odds == 2.5
        assert field[0].odds_display == "5-2"

    def test_zero_scores_uniform(self):
        field = prepare_field(_field([0, 0, 0, 0]))
        assert [h.win_prob for h in field] == pytest.approx([25.0] * 4)

    def test_empty(self):
        assert prepare_field([]) == []

    def test_kelly_probability_prefers_model(self):
        entries = [
            FieldEntry(index=0, program_number=1, name="A", base_score=60, model_win_probability=0.4),
            FieldEntry(index=1, program_number=2, name="B", base_score=40),
        ]
        field = prepare_field(entries)
        assert field[0].kelly_probability == 0.4
        assert field[1].kelly_probability == pytest.approx(0.4)


class TestFinishProbability:
    def test_sequential_share(self):
        field = prepare_field(_field([50, 30, 20]))
        # 0.5 * (0.3 / 0.5) = 0.3
        assert finish_probability(field, [0, 1]) == pytest.approx(30.0)

    def test_full_order_sums_to_100(self):
        field = prepare_field(_field([40, 30, 20, 10]))
        total = box_probability(field, [0, 1, 2, 3], 2)
        # every exacta ordering of a 4-horse field
        assert total == pytest.approx(100.0)

    def test_invalid_order(self):
        field = prepare_field(_field([50, 50]))
        assert finish_probability(field, [0, 0]) == 0.0
        assert finish_probability(field, [0, 5]) == 0.0
        assert finish_probability(field, []) == 0.0

    def test_box_too_small(self):
        field = prepare_field(_field([50, 50]))
        assert box_probability(field, [0], 2) == 0.0

    def test_field_summary(self):
        summary = field_summary(prepare_field(_field([50, 50])))
        assert summary["field_size"] == 2
        assert summary["total_win_prob"] == 100.0
        assert field_summary([])["field_size"] == 0
