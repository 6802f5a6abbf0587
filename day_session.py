"""Day session: the bettor's plan and progress for one card.

A DaySession snapshot is immutable. Each named operation returns a new
snapshot with version + 1 (or the same snapshot when nothing changes), and
DaySessionOwner saves the whole snapshot after every change. Sessions are
scoped to a race date; loading one from another day discards it.
"""
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from day_allocator import (
    DayAllocation,
    RaceAllocation,
    RiskStyle,
    Verdict,
    race_allocation_from_dict,
    race_allocation_to_dict,
)
from window_script import multi_race_script

logger = logging.getLogger(__name__)


class ExperienceLevel(str, enum.Enum):
    BEGINNER = "beginner"
    STANDARD = "standard"
    EXPERT = "expert"


MULTI_RACE_TYPES = {"DAILY_DOUBLE": 2, "PICK_3": 3, "PICK_4": 4, "PICK_5": 5, "PICK_6": 6}


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MultiRaceBet:
    """A multi-leg ticket (daily double, pick N)."""
    id: str
    bet_type: str
    starting_race: int
    legs: Tuple[Tuple[int, ...], ...]
    cost_per_combo: float = 1.0
    confidence: Optional[float] = None
    explanation: str = ""

    @property
    def ending_race(self) -> int:
        return self.starting_race + len(self.legs) - 1

    @property
    def combinations(self) -> int:
        n = 1
        for leg in self.legs:
            n *= len(leg)
        return n if self.legs else 0

    @property
    def total_cost(self) -> float:
        return round(self.combinations * self.cost_per_combo, 2)

    @property
    def window_script(self) -> str:
        return multi_race_script(self.bet_type, self.legs, self.starting_race, self.cost_per_combo)


def make_multi_race_bet(bet_type: str, starting_race: int, legs: Sequence[Sequence[int]],
                        cost_per_combo: float = 1.0, bet_id: Optional[str] = None,
                        **extra) -> MultiRaceBet:
    """Build a MultiRaceBet, checking the leg count matches the bet type."""
    kind = bet_type.upper()
    expected = MULTI_RACE_TYPES.get(kind)
    if expected is None:
        raise ValueError(f"unknown multi-race bet type: {bet_type}")
    if len(legs) != expected:
        raise ValueError(f"{kind} needs {expected} legs, got {len(legs)}")
    if any(not leg for leg in legs):
        raise ValueError("every leg needs at least one horse")
    if cost_per_combo <= 0:
        raise ValueError("cost_per_combo must be positive")
    return MultiRaceBet(
        id=bet_id or uuid.uuid4().hex,
        bet_type=kind,
        starting_race=starting_race,
        legs=tuple(tuple(int(n) for n in leg) for leg in legs),
        cost_per_combo=cost_per_combo,
        **extra,
    )


@dataclass(frozen=True)
class DaySession:
    id: str
    track_name: str
    race_date: str                      # YYYY-MM-DD
    total_bankroll: float
    experience_level: ExperienceLevel
    risk_style: RiskStyle
    created_at: str = ""
    version: int = 0
    race_allocations: Tuple[RaceAllocation, ...] = ()
    multi_race_reserve: float = 0.0
    race_wagers: Mapping[int, float] = field(default_factory=dict)    # race_number -> amount bet, read-only
    amount_wagered: float = 0.0
    multi_race_bets: Tuple[MultiRaceBet, ...] = ()
    multi_race_wagered: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "race_wagers", MappingProxyType(dict(self.race_wagers)))

    @property
    def amount_remaining(self) -> float:
        return self.total_bankroll - self.amount_wagered

    @property
    def races_completed(self) -> frozenset:
        return frozenset(self.race_wagers)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def _today() -> str:
    return date.today().isoformat()


def _bump(session: DaySession, **changes) -> DaySession:
    return replace(session, version=session.version + 1, **changes)


def create_day_session(
    track_name: str,
    total_bankroll: float,
    experience_level="standard",
    risk_style="balanced",
    race_allocations: Sequence[RaceAllocation] = (),
    multi_race_reserve: float = 0.0,
    race_date: Optional[str] = None,
) -> DaySession:
    if total_bankroll < 0:
        raise ValueError("total_bankroll cannot be negative")
    return DaySession(
        id=uuid.uuid4().hex,
        track_name=track_name,
        race_date=race_date or _today(),
        total_bankroll=float(total_bankroll),
        experience_level=ExperienceLevel(experience_level),
        risk_style=RiskStyle(risk_style),
        created_at=datetime.utcnow().isoformat(),
        race_allocations=tuple(race_allocations),
        multi_race_reserve=multi_race_reserve,
    )


def session_from_allocation(plan: DayAllocation, track_name: str,
                            experience_level="standard", race_date: Optional[str] = None) -> DaySession:
    return create_day_session(
        track_name=track_name,
        total_bankroll=plan.total_bankroll,
        experience_level=experience_level,
        risk_style=plan.risk_style,
        race_allocations=plan.race_allocations,
        multi_race_reserve=plan.multi_race_reserve,
        race_date=race_date,
    )


def mark_race_as_bet(session: DaySession, race_number: int, amount: float) -> DaySession:
    """Record money bet on a race. Marking a race twice changes nothing."""
    if race_number in session.race_wagers:
        return session
    if amount < 0:
        raise ValueError("amount cannot be negative")
    if race_allocation(session, race_number) is None:
        raise ValueError(f"race {race_number} is not on the card")
    wagers = dict(session.race_wagers)
    wagers[race_number] = amount
    return _bump(session, race_wagers=wagers, amount_wagered=session.amount_wagered + amount)


def unmark_race_as_bet(session: DaySession, race_number: int) -> DaySession:
    """Undo mark_race_as_bet, refunding what was recorded for the race."""
    if race_number not in session.race_wagers:
        return session
    wagers = dict(session.race_wagers)
    refund = wagers.pop(race_number)
    return _bump(session, race_wagers=wagers, amount_wagered=max(0.0, session.amount_wagered - refund))


def update_race_allocations(session: DaySession,
                            allocations: Sequence[RaceAllocation]) -> DaySession:
    return _bump(session, race_allocations=tuple(allocations))


def add_multi_race_bet(session: DaySession, bet: MultiRaceBet) -> DaySession:
    """Add a multi-race ticket; an id already in the session is ignored."""
    if any(b.id == bet.id for b in session.multi_race_bets):
        return session
    cost = bet.total_cost
    return _bump(
        session,
        multi_race_bets=session.multi_race_bets + (bet,),
        multi_race_wagered=session.multi_race_wagered + cost,
        amount_wagered=session.amount_wagered + cost,
    )


def remove_multi_race_bet(session: DaySession, bet_id: str) -> DaySession:
    bet = next((b for b in session.multi_race_bets if b.id == bet_id), None)
    if bet is None:
        return session
    cost = bet.total_cost
    return _bump(
        session,
        multi_race_bets=tuple(b for b in session.multi_race_bets if b.id != bet_id),
        multi_race_wagered=max(0.0, session.multi_race_wagered - cost),
        amount_wagered=max(0.0, session.amount_wagered - cost),
    )


def update_multi_race_bet(session: DaySession, bet: MultiRaceBet) -> DaySession:
    """Replace a ticket by id; unknown ids are added."""
    old = next((b for b in session.multi_race_bets if b.id == bet.id), None)
    if old is None:
        return add_multi_race_bet(session, bet)
    diff = bet.total_cost - old.total_cost
    return _bump(
        session,
        multi_race_bets=tuple(bet if b.id == bet.id else b for b in session.multi_race_bets),
        multi_race_wagered=session.multi_race_wagered + diff,
        amount_wagered=session.amount_wagered + diff,
    )


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def race_allocation(session: DaySession, race_number: int) -> Optional[RaceAllocation]:
    return next((a for a in session.race_allocations if a.race_number == race_number), None)


def is_race_completed(session: DaySession, race_number: int) -> bool:
    return race_number in session.race_wagers


def is_session_complete(session: DaySession) -> bool:
    return len(session.race_wagers) >= len(session.race_allocations)


def session_progress(session: DaySession) -> Dict[str, Any]:
    total = len(session.race_allocations)
    done = len(session.race_wagers)
    return {
        "total_races": total,
        "completed_races": done,
        "remaining_races": total - done,
        "progress_percent": round(done / total * 100) if total else 0,
        "amount_wagered": session.amount_wagered,
        "amount_remaining": session.amount_remaining,
    }


def day_summary(session: DaySession) -> Dict[str, Any]:
    value_races = [a for a in session.race_allocations if a.verdict is Verdict.BET]
    return {
        "bankroll": session.total_bankroll,
        "total_wagered": session.amount_wagered,
        "total_races": len(session.race_allocations),
        "races_bet": len(session.race_wagers),
        "value_races_bet": sum(1 for a in value_races if a.race_number in session.race_wagers),
        "value_races_budget": sum(a.allocated_budget for a in value_races),
    }


def multi_race_remaining(session: DaySession) -> float:
    return max(0.0, session.multi_race_reserve - session.multi_race_wagered)


def can_afford_multi_race_bet(session: DaySession, cost: float) -> bool:
    return cost <= multi_race_remaining(session)


def multi_race_summary(session: DaySession) -> Dict[str, Any]:
    return {
        "reserve": session.multi_race_reserve,
        "wagered": session.multi_race_wagered,
        "remaining": multi_race_remaining(session),
        "bet_count": len(session.multi_race_bets),
    }


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def session_to_dict(session: DaySession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "version": session.version,
        "created_at": session.created_at,
        "track_name": session.track_name,
        "race_date": session.race_date,
        "total_bankroll": session.total_bankroll,
        "experience_level": session.experience_level.value,
        "risk_style": session.risk_style.value,
        "race_allocations": [race_allocation_to_dict(a) for a in session.race_allocations],
        "multi_race_reserve": session.multi_race_reserve,
        "races_completed": sorted(session.race_wagers),
        # JSON object keys are strings
        "race_wagers": {str(k): v for k, v in session.race_wagers.items()},
        "amount_wagered": session.amount_wagered,
        "amount_remaining": session.amount_remaining,
        "multi_race_bets": [
            {
                "id": b.id,
                "bet_type": b.bet_type,
                "starting_race": b.starting_race,
                "ending_race": b.ending_race,
                "legs": [list(leg) for leg in b.legs],
                "cost_per_combo": b.cost_per_combo,
                "combinations": b.combinations,
                "total_cost": b.total_cost,
                "confidence": b.confidence,
                "explanation": b.explanation,
                "window_script": b.window_script,
            }
            for b in session.multi_race_bets
        ],
        "multi_race_wagered": session.multi_race_wagered,
    }


def session_from_dict(d: Dict[str, Any]) -> DaySession:
    bets = tuple(
        MultiRaceBet(
            id=b["id"],
            bet_type=b["bet_type"],
            starting_race=int(b["starting_race"]),
            legs=tuple(tuple(leg) for leg in b["legs"]),
            cost_per_combo=float(b.get("cost_per_combo", 1.0)),
            confidence=b.get("confidence"),
            explanation=b.get("explanation", ""),
        )
        for b in d.get("multi_race_bets", [])
    )
    return DaySession(
        id=d["id"],
        track_name=d.get("track_name", ""),
        race_date=d["race_date"],
        total_bankroll=float(d["total_bankroll"]),
        experience_level=ExperienceLevel(d.get("experience_level", "standard")),
        risk_style=RiskStyle(d.get("risk_style", "balanced")),
        created_at=d.get("created_at", ""),
        version=int(d.get("version", 0)),
        race_allocations=tuple(race_allocation_from_dict(a) for a in d.get("race_allocations", [])),
        multi_race_reserve=float(d.get("multi_race_reserve", 0.0)),
        race_wagers={int(k): float(v) for k, v in d.get("race_wagers", {}).items()},
        amount_wagered=float(d.get("amount_wagered", 0.0)),
        multi_race_bets=bets,
        multi_race_wagered=float(d.get("multi_race_wagered", 0.0)),
    )


# ---------------------------------------------------------------------------
# Owner
# ---------------------------------------------------------------------------

class DaySessionOwner:
    """Holds the current DaySession and saves each new snapshot.

    *store* needs save_day_session(dict) -> bool, load_day_session(id),
    latest_day_session() and delete_day_session(id); persistence.Persistence
    provides them. Save failures are logged and the in-memory session is kept.
    """

    def __init__(self, session: DaySession, store=None):
        self.store = store
        self._session = session

    @classmethod
    def start(cls, session: DaySession, store=None) -> "DaySessionOwner":
        owner = cls(session, store)
        owner._save()
        return owner

    @classmethod
    def load(cls, store, session_id: Optional[str] = None,
             today: Optional[str] = None) -> Optional["DaySessionOwner"]:
        """Reopen a saved session, or the latest one. Other-day sessions are discarded."""
        payload = store.load_day_session(session_id) if session_id else store.latest_day_session()
        if payload is None:
            return None
        session = session_from_dict(payload)
        if session.race_date != (today or _today()):
            logger.info("Discarding day session %s from %s", session.id, session.race_date)
            store.delete_day_session(session.id)
            return None
        return cls(session, store)

    @property
    def session(self) -> DaySession:
        return self._session

    def _save(self) -> None:
        if self.store is None:
            return
        if not self.store.save_day_session(session_to_dict(self._session)):
            logger.warning("Day session %s v%d kept in memory only",
                           self._session.id, self._session.version)

    def _apply(self, new_session: DaySession) -> DaySession:
        if new_session is not self._session:
            self._session = new_session
            self._save()
        return self._session

    def mark_race_as_bet(self, race_number: int, amount: float) -> DaySession:
        return self._apply(mark_race_as_bet(self._session, race_number, amount))

    def unmark_race_as_bet(self, race_number: int) -> DaySession:
        return self._apply(unmark_race_as_bet(self._session, race_number))

    def update_race_allocations(self, allocations: Sequence[RaceAllocation]) -> DaySession:
        return self._apply(update_race_allocations(self._session, allocations))

    def add_multi_race_bet(self, bet: MultiRaceBet) -> DaySession:
        return self._apply(add_multi_race_bet(self._session, bet))

    def remove_multi_race_bet(self, bet_id: str) -> DaySession:
        return self._apply(remove_multi_race_bet(self._session, bet_id))

    def update_multi_race_bet(self, bet: MultiRaceBet) -> DaySession:
        return self._apply(update_multi_race_bet(self._session, bet))
