"""Tests for day sessions: operations, invariants, the owner and staleness."""
from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest
from day_allocator import RaceVerdict, allocate_day_budget, adjust_race_budget
from day_session import (
    ExperienceLevel, DaySessionOwner, make_multi_race_bet,
    create_day_session, session_from_allocation,
    mark_race_as_bet, unmark_race_as_bet, update_race_allocations,
    add_multi_race_bet, remove_multi_race_bet, update_multi_race_bet,
    race_allocation, is_race_completed, is_session_complete, session_progress,
    day_summary, multi_race_remaining, can_afford_multi_race_bet, multi_race_summary,
    session_to_dict, session_from_dict,
)
from persistence import Persistence

TODAY = "2026-10-16"

CARD = [
    RaceVerdict(1, "BET", edge=40.0),
    RaceVerdict(2, "CAUTION"),
    RaceVerdict(3, "PASS"),
    RaceVerdict(4, "BET", edge=25.0),
]


def _session(bankroll=500, race_date=TODAY):
    plan = allocate_day_budget(bankroll, CARD, track_name="GP")
    return session_from_allocation(plan, "GP", "beginner", race_date=race_date)


def _invariant(s):
    assert s.amount_remaining == pytest.approx(s.total_bankroll - s.amount_wagered)
    assert s.amount_wagered >= 0


@pytest.fixture
def db(tmp_path):
    return Persistence(tmp_path / "test.db")


# ===========================================================================
# Operations
# ===========================================================================

class TestCreate:
    def test_from_allocation(self):
        s = _session()
        assert s.total_bankroll == 500
        assert s.experience_level is ExperienceLevel.BEGINNER
        assert len(s.race_allocations) == 4
        assert s.multi_race_reserve == 75
        assert s.version == 0
        assert s.amount_remaining == 500
        assert s.race_date == TODAY

    def test_defaults_to_today(self):
        s = create_day_session("SA", 200)
        assert len(s.race_date) == 10
        assert s.created_at

    def test_bad_values(self):
        with pytest.raises(ValueError):
            create_day_session("SA", -5)
        with pytest.raises(ValueError):
            create_day_session("SA", 100, experience_level="wizard")


class TestMarkRace:
    def test_mark(self):
        s = mark_race_as_bet(_session(), 1, 40)
        assert s.amount_wagered == 40
        assert s.amount_remaining == 460
        assert is_race_completed(s, 1)
        assert s.version == 1
        _invariant(s)

    def test_mark_twice_no_double_count(self):
        s = mark_race_as_bet(_session(), 1, 40)
        again = mark_race_as_bet(s, 1, 40)
        assert again is s
        assert again.amount_wagered == 40

    def test_unmark_refunds(self):
        s = unmark_race_as_bet(mark_race_as_bet(_session(), 1, 40), 1)
        assert s.amount_wagered == 0
        assert not is_race_completed(s, 1)
        assert s.version == 2
        _invariant(s)

    def test_unmark_unknown_is_noop(self):
        s = _session()
        assert unmark_race_as_bet(s, 3) is s

    def test_unknown_race(self):
        with pytest.raises(ValueError):
            mark_race_as_bet(_session(), 9, 10)

    def test_negative_amount(self):
        with pytest.raises(ValueError):
            mark_race_as_bet(_session(), 1, -10)

    def test_completion(self):
        s = _session()
        for race in (1, 2, 3):
            s = mark_race_as_bet(s, race, 10)
        assert not is_session_complete(s)
        s = mark_race_as_bet(s, 4, 10)
        assert is_session_complete(s)
        progress = session_progress(s)
        assert progress["completed_races"] == 4
        assert progress["progress_percent"] == 100

    def test_wagers_read_only(self):
        s = mark_race_as_bet(_session(), 1, 40)
        with pytest.raises(TypeError):
            s.race_wagers[2] = 10
        assert dict(s.race_wagers) == {1: 40}
        assert s.amount_wagered == 40

    def test_earlier_snapshot_unchanged(self):
        first = mark_race_as_bet(_session(), 1, 40)
        second = mark_race_as_bet(first, 2, 15)
        assert dict(first.race_wagers) == {1: 40}
        assert dict(second.race_wagers) == {1: 40, 2: 15}

    def test_wagers_copied_from_caller(self):
        wagers = {1: 40.0}
        s = replace(_session(), race_wagers=wagers)
        wagers[2] = 99.0
        assert 2 not in s.race_wagers


class TestAllocations:
    def test_update(self):
        s = _session()
        result = adjust_race_budget(s.race_allocations, 1, race_allocation(s, 1).allocated_budget + 10)
        assert result.applied
        updated = update_race_allocations(s, result.allocations)
        assert race_allocation(updated, 1).allocated_budget == race_allocation(s, 1).allocated_budget + 10
        assert updated.version == s.version + 1

    def test_lookup_missing(self):
        assert race_allocation(_session(), 99) is None


class TestMultiRace:
    def test_bet_shape(self):
        bet = make_multi_race_bet("pick_3", 2, [[1, 4], [2], [5, 6, 7]], bet_id="p3")
        assert bet.bet_type == "PICK_3"
        assert bet.combinations == 6
        assert bet.total_cost == 6
        assert bet.ending_race == 4
        assert bet.window_script == "Races 2-4, $1 PICK 3, 1,4 / 2 / 5,6,7"

    def test_leg_count_checked(self):
        with pytest.raises(ValueError):
            make_multi_race_bet("PICK_4", 1, [[1], [2]])
        with pytest.raises(ValueError):
            make_multi_race_bet("PICK_9", 1, [[1]])
        with pytest.raises(ValueError):
            make_multi_race_bet("DAILY_DOUBLE", 1, [[1], []])

    def test_add_and_remove(self):
        s = _session()
        bet = make_multi_race_bet("DAILY_DOUBLE", 1, [[1, 2], [3, 4]], cost_per_combo=2, bet_id="dd")
        s = add_multi_race_bet(s, bet)
        assert s.multi_race_wagered == 8
        assert s.amount_wagered == 8
        assert multi_race_remaining(s) == 67
        _invariant(s)
        s = remove_multi_race_bet(s, "dd")
        assert s.multi_race_bets == ()
        assert s.multi_race_wagered == 0
        assert s.amount_wagered == 0
        _invariant(s)

    def test_duplicate_ignored(self):
        bet = make_multi_race_bet("DAILY_DOUBLE", 1, [[1], [3]], bet_id="dd")
        s = add_multi_race_bet(_session(), bet)
        assert add_multi_race_bet(s, bet) is s

    def test_update(self):
        s = add_multi_race_bet(_session(), make_multi_race_bet("DAILY_DOUBLE", 1, [[1], [3]], bet_id="dd"))
        s = update_multi_race_bet(s, make_multi_race_bet("DAILY_DOUBLE", 1, [[1, 2], [3, 4, 5]], bet_id="dd"))
        assert len(s.multi_race_bets) == 1
        assert s.multi_race_wagered == 6
        assert s.amount_wagered == 6
        _invariant(s)

    def test_update_unknown_adds(self):
        s = update_multi_race_bet(_session(), make_multi_race_bet("DAILY_DOUBLE", 1, [[1], [3]], bet_id="x"))
        assert len(s.multi_race_bets) == 1

    def test_remove_unknown_noop(self):
        s = _session()
        assert remove_multi_race_bet(s, "nope") is s

    def test_affordability(self):
        s = _session()
        assert can_afford_multi_race_bet(s, 75)
        assert not can_afford_multi_race_bet(s, 76)

    def test_remaining_never_negative(self):
        bet = make_multi_race_bet("PICK_4", 1, [[1, 2, 3]] * 4, bet_id="big")
        s = add_multi_race_bet(_session(), bet)
        assert s.multi_race_wagered == 81
        assert multi_race_remaining(s) == 0
        assert multi_race_summary(s)["bet_count"] == 1


class TestViews:
    def test_day_summary(self):
        s = mark_race_as_bet(mark_race_as_bet(_session(), 1, 20), 3, 10)
        summary = day_summary(s)
        assert summary["races_bet"] == 2
        assert summary["value_races_bet"] == 1
        assert summary["total_wagered"] == 30
        bet_budget = sum(a.allocated_budget for a in s.race_allocations if a.verdict.value == "BET")
        assert summary["value_races_budget"] == bet_budget

    def test_serialization_round_trip(self):
        s = _session()
        s = mark_race_as_bet(s, 2, 15)
        s = add_multi_race_bet(s, make_multi_race_bet("PICK_3", 2, [[1], [2, 3], [4]], bet_id="p3"))
        assert session_from_dict(session_to_dict(s)) == s


# ===========================================================================
# Owner
# ===========================================================================

class TestDaySessionOwner:
    def test_persists_each_change(self, db):
        owner = DaySessionOwner.start(_session(), db)
        owner.mark_race_as_bet(1, 40)
        stored = db.load_day_session(owner.session.id)
        assert stored["version"] == 1
        assert stored["amount_wagered"] == 40

    def test_reload_same_day(self, db):
        owner = DaySessionOwner.start(_session(), db)
        owner.add_multi_race_bet(make_multi_race_bet("DAILY_DOUBLE", 1, [[1], [2]], bet_id="dd"))
        again = DaySessionOwner.load(db, owner.session.id, today=TODAY)
        assert again.session == owner.session

    def test_latest_session(self, db):
        owner = DaySessionOwner.start(_session(), db)
        again = DaySessionOwner.load(db, today=TODAY)
        assert again.session.id == owner.session.id

    def test_stale_session_discarded(self, db):
        owner = DaySessionOwner.start(_session(race_date="2026-10-15"), db)
        assert DaySessionOwner.load(db, owner.session.id, today=TODAY) is None
        assert db.load_day_session(owner.session.id) is None

    def test_missing(self, db):
        assert DaySessionOwner.load(db, "nope", today=TODAY) is None

    def test_failed_save_keeps_memory(self, caplog):
        class FailingStore:
            def save_day_session(self, snapshot):
                return False

        owner = DaySessionOwner.start(_session(), FailingStore())
        owner.mark_race_as_bet(1, 10)
        assert owner.session.amount_wagered == 10
        assert "kept in memory only" in caplog.text

    def test_noop_not_saved(self, db):
        owner = DaySessionOwner.start(_session(), db)
        owner.unmark_race_as_bet(2)
        assert db.load_day_session(owner.session.id)["version"] == 0
