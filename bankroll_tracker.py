"""Session bankroll ledger.

A ledger tracks one sitting: stakes placed, wins and losses recorded, and
the running bankroll. Every operation takes a LedgerState snapshot and
returns a new one with version + 1; nothing mutates a snapshot in place.
BankrollTracker owns the current snapshot and saves it after each change.

One bet may be open at a time: place_bet opens it, record_win or
record_loss settles it.

    current_bankroll == starting_bankroll + total_returned - total_wagered
                        - total_withdrawn
(deposits are added to both current and starting bankroll).
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_HISTORY_SIZE = 100

# % of starting bankroll remaining -> risk level
_RISK_LEVELS = (
    (80.0, "LOW", "Bankroll is healthy"),
    (60.0, "MEDIUM", "Consider reducing bet sizes"),
    (40.0, "HIGH", "Reduce bet sizes significantly or take a break"),
)
_CRITICAL = ("CRITICAL", "Consider stopping for today")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LedgerError(Exception):
    """Ledger operation used out of order or with bad input."""


class InsufficientBankrollError(LedgerError):
    def __init__(self, available: float, requested: float):
        super().__init__(f"Insufficient bankroll: {available:.2f} < {requested:.2f}")
        self.available = available
        self.requested = requested


class OutstandingBetError(LedgerError):
    """A bet is still open; settle it before placing another."""


class NoOpenBetError(LedgerError):
    """No open bet to settle."""


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BetRecord:
    id: str
    amount: float
    placed_at: str
    won: Optional[bool] = None      # None while open
    payout: float = 0.0
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LedgerState:
    ledger_id: str
    starting_bankroll: float
    current_bankroll: float
    session_start: str
    version: int = 0
    bets_placed: int = 0
    bets_won: int = 0
    bets_lost: int = 0
    total_wagered: float = 0.0
    total_returned: float = 0.0
    total_withdrawn: float = 0.0
    current_streak: int = 0         # +n wins, -n losses
    longest_win_streak: int = 0
    longest_loss_streak: int = 0
    largest_bet: float = 0.0
    largest_win: float = 0.0        # profit, not payout
    largest_loss: float = 0.0
    pending_bet: Optional[float] = None
    history: Tuple[BetRecord, ...] = ()

    @property
    def net_profit(self) -> float:
        return self.total_returned - self.total_wagered

    @property
    def roi(self) -> float:
        """Net profit as a percentage of total wagered."""
        return self.net_profit / self.total_wagered * 100.0 if self.total_wagered > 0 else 0.0

    @property
    def win_rate(self) -> float:
        return self.bets_won / self.bets_placed * 100.0 if self.bets_placed > 0 else 0.0

    @property
    def average_bet(self) -> float:
        return self.total_wagered / self.bets_placed if self.bets_placed > 0 else 0.0

    @property
    def has_open_bet(self) -> bool:
        return self.pending_bet is not None


@dataclass(frozen=True)
class SessionRisk:
    risk_level: str
    percent_remaining: float
    recommendation: str


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def _now() -> str:
    return datetime.utcnow().isoformat()


def new_ledger(starting_bankroll: float, ledger_id: Optional[str] = None) -> LedgerState:
    if starting_bankroll < 0:
        raise LedgerError("starting bankroll cannot be negative")
    return LedgerState(
        ledger_id=ledger_id or uuid.uuid4().hex,
        starting_bankroll=float(starting_bankroll),
        current_bankroll=float(starting_bankroll),
        session_start=_now(),
    )


def _settle_last(history: Tuple[BetRecord, ...], won: bool, payout: float) -> Tuple[BetRecord, ...]:
    if not history:
        return history
    return history[:-1] + (replace(history[-1], won=won, payout=payout),)


def place_bet(state: LedgerState, amount: float,
              details: Optional[Dict[str, Any]] = None) -> LedgerState:
    """Open a bet: the stake leaves the bankroll now.

    A non-positive amount is ignored and the same snapshot comes back.
    """
    if amount <= 0:
        return state
    if state.has_open_bet:
        raise OutstandingBetError(f"bet of {state.pending_bet:.2f} is still open")
    if amount > state.current_bankroll:
        raise InsufficientBankrollError(state.current_bankroll, amount)

    record = BetRecord(id=uuid.uuid4().hex, amount=amount, placed_at=_now(), details=dict(details or {}))
    history = (state.history + (record,))[-MAX_HISTORY_SIZE:]
    return replace(
        state,
        version=state.version + 1,
        current_bankroll=state.current_bankroll - amount,
        total_wagered=state.total_wagered + amount,
        bets_placed=state.bets_placed + 1,
        largest_bet=max(state.largest_bet, amount),
        pending_bet=amount,
        history=history,
    )


def record_win(state: LedgerState, payout: float) -> LedgerState:
    """Settle the open bet as a winner. *payout* includes the returned stake."""
    if not state.has_open_bet:
        raise NoOpenBetError("record_win called with no open bet")
    if payout < 0:
        raise LedgerError("payout cannot be negative")
    streak = state.current_streak + 1 if state.current_streak >= 0 else 1
    return replace(
        state,
        version=state.version + 1,
        current_bankroll=state.current_bankroll + payout,
        total_returned=state.total_returned + payout,
        bets_won=state.bets_won + 1,
        current_streak=streak,
        longest_win_streak=max(state.longest_win_streak, streak),
        largest_win=max(state.largest_win, payout - state.pending_bet),
        pending_bet=None,
        history=_settle_last(state.history, True, payout),
    )


def record_loss(state: LedgerState) -> LedgerState:
    """Settle the open bet as a loser."""
    if not state.has_open_bet:
        raise NoOpenBetError("record_loss called with no open bet")
    streak = state.current_streak - 1 if state.current_streak <= 0 else -1
    return replace(
        state,
        version=state.version + 1,
        bets_lost=state.bets_lost + 1,
        current_streak=streak,
        longest_loss_streak=max(state.longest_loss_streak, -streak),
        largest_loss=max(state.largest_loss, state.pending_bet),
        pending_bet=None,
        history=_settle_last(state.history, False, 0.0),
    )


def adjust_bankroll(state: LedgerState, amount: float) -> LedgerState:
    """Deposit (positive) or withdraw (negative) money outside of betting.

    Deposits count as new starting capital, so they don't show up as profit.
    """
    if amount == 0:
        return state
    if amount > 0:
        return replace(
            state,
            version=state.version + 1,
            current_bankroll=state.current_bankroll + amount,
            starting_bankroll=state.starting_bankroll + amount,
        )
    if -amount > state.current_bankroll:
        raise InsufficientBankrollError(state.current_bankroll, -amount)
    return replace(
        state,
        version=state.version + 1,
        current_bankroll=state.current_bankroll + amount,
        total_withdrawn=state.total_withdrawn - amount,
    )


def reset(state: LedgerState, new_bankroll: float) -> LedgerState:
    """Start over with a fresh bankroll; keeps the ledger id and version line."""
    fresh = new_ledger(new_bankroll, ledger_id=state.ledger_id)
    return replace(fresh, version=state.version + 1)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def session_risk(state: LedgerState) -> SessionRisk:
    if state.starting_bankroll <= 0:
        return SessionRisk(_CRITICAL[0], 0.0, _CRITICAL[1])
    pct = state.current_bankroll / state.starting_bankroll * 100.0
    for floor, level, advice in _RISK_LEVELS:
        if pct >= floor:
            return SessionRisk(level, pct, advice)
    return SessionRisk(_CRITICAL[0], pct, _CRITICAL[1])


def session_duration(state: LedgerState, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    elapsed = now - datetime.fromisoformat(state.session_start)
    minutes = max(0, int(elapsed.total_seconds() // 60))
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m" if hours else f"{minutes}m"


def format_ledger(state: LedgerState) -> Dict[str, str]:
    """Display strings: bankroll, profit, roi, win rate, record, streak."""
    net = state.net_profit
    streak = state.current_streak
    return {
        "bankroll": f"${state.current_bankroll:.2f}",
        "profit": f"{'+' if net >= 0 else '-'}${abs(net):.2f}",
        "profit_class": "positive" if net > 0 else "negative" if net < 0 else "neutral",
        "roi": f"{state.roi:+.1f}%",
        "win_rate": f"{state.win_rate:.1f}%",
        "record": f"{state.bets_won}W-{state.bets_lost}L",
        "streak": f"{streak}W" if streak >= 0 else f"{-streak}L",
    }


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def ledger_to_dict(state: LedgerState) -> Dict[str, Any]:
    return {
        "ledger_id": state.ledger_id,
        "version": state.version,
        "session_start": state.session_start,
        "starting_bankroll": state.starting_bankroll,
        "current_bankroll": state.current_bankroll,
        "bets_placed": state.bets_placed,
        "bets_won": state.bets_won,
        "bets_lost": state.bets_lost,
        "total_wagered": state.total_wagered,
        "total_returned": state.total_returned,
        "total_withdrawn": state.total_withdrawn,
        "current_streak": state.current_streak,
        "longest_win_streak": state.longest_win_streak,
        "longest_loss_streak": state.longest_loss_streak,
        "largest_bet": state.largest_bet,
        "largest_win": state.largest_win,
        "largest_loss": state.largest_loss,
        "pending_bet": state.pending_bet,
        "history": [
            {"id": b.id, "amount": b.amount, "placed_at": b.placed_at,
             "won": b.won, "payout": b.payout, "details": b.details}
            for b in state.history
        ],
    }


def ledger_from_dict(d: Dict[str, Any]) -> LedgerState:
    history = tuple(
        BetRecord(id=b["id"], amount=b["amount"], placed_at=b["placed_at"],
                  won=b.get("won"), payout=b.get("payout", 0.0), details=b.get("details") or {})
        for b in d.get("history", [])
    )
    keys = {k: v for k, v in d.items() if k != "history"}
    return LedgerState(history=history, **keys)


def ledger_summary(state: LedgerState) -> Dict[str, Any]:
    """Snapshot plus derived views, for APIs and exports."""
    out = ledger_to_dict(state)
    out.update({
        "net_profit": state.net_profit,
        "roi": state.roi,
        "win_rate": state.win_rate,
        "average_bet": state.average_bet,
        "risk": asdict(session_risk(state)),
        "display": format_ledger(state),
    })
    return out


# ---------------------------------------------------------------------------
# Owner
# ---------------------------------------------------------------------------

class BankrollTracker:
    """Owns one ledger and saves every new snapshot.

    *store* is anything with save_ledger(state_dict) -> bool, normally
    persistence.Persistence. A failed save is logged; the in-memory
    snapshot stays authoritative.
    """

    def __init__(self, starting_bankroll: float = 0.0, store=None,
                 state: Optional[LedgerState] = None):
        self.store = store
        self._state = state or new_ledger(starting_bankroll)
        if state is None:
            self._save()

    @classmethod
    def load(cls, store, ledger_id: str) -> Optional["BankrollTracker"]:
        payload = store.load_ledger(ledger_id)
        if payload is None:
            return None
        return cls(store=store, state=ledger_from_dict(payload))

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def history(self) -> List[BetRecord]:
        return list(self._state.history)

    def _apply(self, new_state: LedgerState) -> LedgerState:
        if new_state is not self._state:
            self._state = new_state
            self._save()
        return self._state

    def _save(self) -> None:
        if self.store is None:
            return
        if not self.store.save_ledger(ledger_to_dict(self._state)):
            logger.warning("Ledger %s v%d kept in memory only",
                           self._state.ledger_id, self._state.version)

    def place_bet(self, amount: float, details: Optional[Dict[str, Any]] = None) -> LedgerState:
        return self._apply(place_bet(self._state, amount, details))

    def record_win(self, payout: float) -> LedgerState:
        return self._apply(record_win(self._state, payout))

    def record_loss(self) -> LedgerState:
        return self._apply(record_loss(self._state))

    def adjust_bankroll(self, amount: float) -> LedgerState:
        return self._apply(adjust_bankroll(self._state, amount))

    def reset(self, new_bankroll: float) -> LedgerState:
        return self._apply(reset(self._state, new_bankroll))
