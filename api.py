from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
import uvicorn
from dataclasses import asdict
from typing import List, Dict, Any, Optional, Union
import logging

from config import AppConfig
from persistence import Persistence
from probability_model import FieldEntry, prepare_field
from wager_generator import GeneratorSettings, FieldOfOnePolicy
from ranker import generate_top_bets, top_bets_to_dict, top_bets_to_csv, top_bets_to_text
from window_script import build_bet_slip
from bet_builder import (
    SizingConfig, calculate_kelly, size_bet, describe_cap,
    size_race_bets, race_sizing_to_dict,
)
from day_allocator import (
    AdjustmentResult, RaceVerdict, allocate_day_budget, adjust_race_budget, get_adjustment_impact,
    allocation_to_dict, allocation_to_csv, race_allocation_from_dict, race_allocation_to_dict,
)
from day_session import (
    DaySessionOwner, session_from_allocation, make_multi_race_bet, session_to_dict,
    session_progress, day_summary, multi_race_summary, can_afford_multi_race_bet,
    is_session_complete, multi_race_remaining,
)
from bankroll_tracker import BankrollTracker, LedgerError, ledger_summary
from exotic_keys import recommend_exotic_keys, exotic_recommendations_to_dict
from place_show import (
    estimate_place_probability, estimate_show_probability, estimate_to_dict, recommend_pool,
)
from multi_race import (
    LegContenders, build_multi_race_ticket, adjust_ticket_to_budget, ticket_to_dict,
    value_play_from_dict,
)

config = AppConfig.from_env()

# Configure logging
logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Wager Decision Engine API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_store: Optional[Persistence] = None


def get_store() -> Persistence:
    global _store
    if _store is None:
        _store = Persistence(config.db_path)
    return _store


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class EntryModel(BaseModel):
    index: int
    program_number: int
    name: str
    base_score: float
    odds: Optional[Union[float, str]] = None
    model_win_probability: Optional[float] = None
    scratched: bool = False

    def to_entry(self) -> FieldEntry:
        numeric = isinstance(self.odds, (int, float))
        return FieldEntry(
            index=self.index,
            program_number=self.program_number,
            name=self.name,
            base_score=self.base_score,
            decimal_odds=float(self.odds) if numeric else None,
            model_win_probability=self.model_win_probability,
            odds_raw="" if numeric or self.odds is None else str(self.odds),
            scratched=self.scratched,
        )


class TopBetsRequest(BaseModel):
    entries: List[EntryModel]
    race_number: int = 0
    track_code: str = "UNKNOWN"
    surface: str = "dirt"
    target_count: Optional[int] = None
    base_unit: float = 1.0
    min_ev_threshold: float = -0.5
    field_of_one_policy: FieldOfOnePolicy = FieldOfOnePolicy.DISABLE_EXOTICS
    format: str = "json"
    session_id: Optional[str] = None


class KellyRequest(BaseModel):
    probability: float
    decimal_odds: float
    bankroll: float
    fraction: str = "quarter"
    max_bet_percent: float = 5.0
    risk_tolerance: Optional[str] = None


class SizeBetsRequest(BaseModel):
    entries: List[EntryModel]
    bankroll: float
    race_number: Optional[int] = None
    risk_tolerance: Optional[str] = None
    kelly_fraction: str = "quarter"
    max_total_exposure: float = 0.10


class RaceVerdictModel(BaseModel):
    race_number: int
    verdict: str
    edge: Optional[float] = None
    value_play: Optional[Dict[str, Any]] = None
    post_time: Optional[str] = None


class AllocateRequest(BaseModel):
    total_bankroll: float
    races: List[RaceVerdictModel]
    track_name: str = ""
    risk_style: Optional[str] = None
    format: str = "json"


class AdjustRequest(BaseModel):
    allocations: List[Dict[str, Any]]
    race_number: int
    new_budget: float
    preview: bool = False


class DaySessionRequest(AllocateRequest):
    experience_level: str = "standard"
    race_date: Optional[str] = None


class MarkRaceRequest(BaseModel):
    amount: float


class BudgetOverrideRequest(BaseModel):
    race_number: int
    new_budget: float


class MultiRaceBetModel(BaseModel):
    bet_type: str
    starting_race: int
    legs: List[List[int]]
    cost_per_combo: float = 1.0
    id: Optional[str] = None
    confidence: Optional[float] = None
    explanation: str = ""

    def to_bet(self, bet_id: Optional[str] = None):
        return make_multi_race_bet(
            self.bet_type, self.starting_race, self.legs, self.cost_per_combo,
            bet_id=bet_id or self.id, confidence=self.confidence, explanation=self.explanation,
        )


class ExoticKeysRequest(BaseModel):
    entries: List[EntryModel]
    max_budget: float = 20.0
    tier_1_min: float = 180.0
    underneath_min: float = 140.0


class PlaceShowRequest(BaseModel):
    win_probability: float
    odds: float
    field_size: int


class LegModel(BaseModel):
    race_number: int
    entries: List[EntryModel]
    value_play: Optional[Dict[str, Any]] = None

    def to_leg(self) -> LegContenders:
        field_ = prepare_field([e.to_entry() for e in self.entries])
        return LegContenders(self.race_number, tuple(field_), value_play_from_dict(self.value_play))


class TicketRequest(BaseModel):
    bet_type: str
    races: List[LegModel]
    risk_style: str = "balanced"
    cost_per_combo: Optional[float] = None
    max_budget: Optional[float] = None
    quality: Optional[str] = None

    def build(self, max_budget: Optional[float] = None):
        ticket = build_multi_race_ticket(
            self.bet_type, [r.to_leg() for r in self.races], self.risk_style,
            cost_per_combo=self.cost_per_combo, quality=self.quality,
        )
        limits = [b for b in (self.max_budget, max_budget) if b is not None]
        budget = min(limits) if limits else None
        if budget is not None:
            ticket = adjust_ticket_to_budget(ticket, budget)
        return ticket, budget


class LedgerRequest(BaseModel):
    starting_bankroll: float


class PlaceBetRequest(BaseModel):
    amount: float
    details: Dict[str, Any] = Field(default_factory=dict)


class AmountRequest(BaseModel):
    amount: float


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _verdicts(races: List[RaceVerdictModel]) -> List[RaceVerdict]:
    return [RaceVerdict(r.race_number, r.verdict.upper(), r.edge, r.value_play, r.post_time) for r in races]


def _owner(store: Persistence, session_id: str) -> DaySessionOwner:
    owner = DaySessionOwner.load(store, session_id)
    if owner is None:
        raise HTTPException(status_code=404, detail="Day session not found")
    return owner


def _session_view(owner: DaySessionOwner) -> Dict[str, Any]:
    data = session_to_dict(owner.session)
    data["progress"] = session_progress(owner.session)
    data["complete"] = is_session_complete(owner.session)
    return data


def _adjustment_view(result: AdjustmentResult) -> Dict[str, Any]:
    return {
        "applied": result.applied,
        "reason": result.reason,
        "unabsorbed": result.unabsorbed,
        "affected_races": [{"race_number": r, "change": c} for r, c in result.affected],
        "allocations": [race_allocation_to_dict(a) for a in result.allocations],
    }


def _tracker(store: Persistence, ledger_id: str) -> BankrollTracker:
    tracker = BankrollTracker.load(store, ledger_id)
    if tracker is None:
        raise HTTPException(status_code=404, detail="Ledger not found")
    return tracker


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Wager Decision Engine API",
        "version": "1.0.0",
        "endpoints": {
            "top_bets": "POST /top-bets",
            "kelly": "POST /kelly",
            "size_bets": "POST /size-bets",
            "exotic_keys": "POST /exotic-keys",
            "place_show": "POST /place-show",
            "multi_race_ticket": "POST /multi-race/ticket",
            "allocate": "POST /allocate",
            "adjust": "POST /allocate/adjust",
            "day_sessions": "/day-sessions",
            "ledgers": "/ledgers",
        },
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "db_path": str(config.db_path)}


# ---------------------------------------------------------------------------
# Race analysis
# ---------------------------------------------------------------------------

@app.post("/top-bets")
async def top_bets(req: TopBetsRequest, store: Persistence = Depends(get_store)):
    settings = GeneratorSettings(
        base_unit=req.base_unit,
        min_ev_threshold=req.min_ev_threshold,
        target_count=req.target_count or config.top_bets,
        field_of_one_policy=req.field_of_one_policy,
    )
    result = generate_top_bets(
        [e.to_entry() for e in req.entries],
        race_number=req.race_number,
        track_code=req.track_code,
        surface=req.surface,
        settings=settings,
    )
    if req.session_id:
        store.save_bet_plan(req.session_id, req.race_number, "top_bets", top_bets_to_dict(result))

    if req.format == "csv":
        return PlainTextResponse(top_bets_to_csv(result), media_type="text/csv")
    if req.format == "text":
        return PlainTextResponse(top_bets_to_text(result))
    if req.format == "slip":
        return PlainTextResponse(build_bet_slip(result.top_bets, req.race_number))
    if req.format != "json":
        raise HTTPException(status_code=400, detail="Format must be 'json', 'csv', 'text' or 'slip'")
    return top_bets_to_dict(result)


@app.post("/kelly")
async def kelly(req: KellyRequest):
    sizing = SizingConfig.for_risk_tolerance(req.risk_tolerance) if req.risk_tolerance \
        else SizingConfig(kelly_fraction=req.fraction, max_bet_percent=req.max_bet_percent)
    errors = sizing.validate()
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))
    result = calculate_kelly(req.probability, req.decimal_odds, req.bankroll,
                             fraction=sizing.kelly_fraction, max_bet_percent=sizing.max_bet_percent)
    sized = size_bet(result, sizing)
    out = asdict(result)
    out["suggested_bet"] = result.suggested_bet
    out["sized"] = asdict(sized)
    out["cap"] = describe_cap(sized)
    return out


@app.post("/size-bets")
async def size_bets(req: SizeBetsRequest):
    sizing = SizingConfig.for_risk_tolerance(req.risk_tolerance) if req.risk_tolerance \
        else SizingConfig(kelly_fraction=req.kelly_fraction, max_total_exposure=req.max_total_exposure)
    errors = sizing.validate()
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))
    field_ = prepare_field([e.to_entry() for e in req.entries])
    return race_sizing_to_dict(size_race_bets(field_, req.bankroll, sizing, req.race_number))


@app.post("/exotic-keys")
async def exotic_keys(req: ExoticKeysRequest):
    field_ = prepare_field([e.to_entry() for e in req.entries])
    recs = recommend_exotic_keys(field_, req.max_budget, req.tier_1_min, req.underneath_min)
    return exotic_recommendations_to_dict(recs)


@app.post("/place-show")
async def place_show(req: PlaceShowRequest):
    rec = recommend_pool(req.win_probability, req.odds, req.field_size)
    return {
        "place": estimate_to_dict(estimate_place_probability(req.win_probability, req.field_size)),
        "show": estimate_to_dict(estimate_show_probability(req.win_probability, req.field_size)),
        "recommendation": rec.choice.value,
        "reasoning": rec.reasoning,
        "expected_values": {"win": rec.win_ev, "place": rec.place_ev, "show": rec.show_ev},
    }


@app.post("/multi-race/ticket")
async def multi_race_ticket(req: TicketRequest):
    ticket, budget = req.build()
    data = ticket_to_dict(ticket)
    data["fits_budget"] = budget is None or ticket.total_cost <= budget
    return data

# ---------------------------------------------------------------------------
# Day allocation
# ---------------------------------------------------------------------------

@app.post("/allocate")
async def allocate(req: AllocateRequest):
    plan = allocate_day_budget(req.total_bankroll, _verdicts(req.races), req.track_name,
                               req.risk_style or config.default_risk_style)
    if req.format == "csv":
        return PlainTextResponse(allocation_to_csv(plan), media_type="text/csv")
    return allocation_to_dict(plan)


@app.post("/allocate/adjust")
async def adjust(req: AdjustRequest):
    allocations = [race_allocation_from_dict(a) for a in req.allocations]
    if req.preview:
        return get_adjustment_impact(allocations, req.race_number, req.new_budget)
    return _adjustment_view(adjust_race_budget(allocations, req.race_number, req.new_budget))


# ---------------------------------------------------------------------------
# Day sessions
# ---------------------------------------------------------------------------

@app.post("/day-sessions")
async def create_session(req: DaySessionRequest, store: Persistence = Depends(get_store)):
    plan = allocate_day_budget(req.total_bankroll, _verdicts(req.races), req.track_name,
                               req.risk_style or config.default_risk_style)
    session = session_from_allocation(plan, req.track_name, req.experience_level, req.race_date)
    owner = DaySessionOwner.start(session, store)
    logger.info("Day session %s created for %s (%d races)",
                session.id, session.track_name, len(session.race_allocations))
    return _session_view(owner)


@app.get("/day-sessions/current")
async def current_session(store: Persistence = Depends(get_store)):
    owner = DaySessionOwner.load(store)
    if owner is None:
        raise HTTPException(status_code=404, detail="No day session for today")
    return _session_view(owner)


@app.get("/day-sessions/{session_id}")
async def get_session(session_id: str, store: Persistence = Depends(get_store)):
    return _session_view(_owner(store, session_id))


@app.get("/day-sessions/{session_id}/summary")
async def get_session_summary(session_id: str, store: Persistence = Depends(get_store)):
    session = _owner(store, session_id).session
    return {
        "progress": session_progress(session),
        "day": day_summary(session),
        "multi_race": multi_race_summary(session),
        "bet_plans": store.load_bet_plans(session_id),
    }


@app.post("/day-sessions/{session_id}/races/{race_number}/bet")
async def mark_race(session_id: str, race_number: int, req: MarkRaceRequest,
                    store: Persistence = Depends(get_store)):
    owner = _owner(store, session_id)
    owner.mark_race_as_bet(race_number, req.amount)
    return _session_view(owner)


@app.delete("/day-sessions/{session_id}/races/{race_number}/bet")
async def unmark_race(session_id: str, race_number: int, store: Persistence = Depends(get_store)):
    owner = _owner(store, session_id)
    owner.unmark_race_as_bet(race_number)
    return _session_view(owner)


@app.put("/day-sessions/{session_id}/allocations")
async def override_budget(session_id: str, req: BudgetOverrideRequest,
                          store: Persistence = Depends(get_store)):
    owner = _owner(store, session_id)
    result = adjust_race_budget(owner.session.race_allocations, req.race_number, req.new_budget)
    if not result.applied:
        # session left as it was; the partial plan is for inspection
        return _adjustment_view(result)
    owner.update_race_allocations(result.allocations)
    data = _session_view(owner)
    data["applied"] = True
    return data


@app.post("/day-sessions/{session_id}/multi-race")
async def add_multi_race(session_id: str, req: MultiRaceBetModel,
                         store: Persistence = Depends(get_store)):
    owner = _owner(store, session_id)
    bet = req.to_bet()
    if not can_afford_multi_race_bet(owner.session, bet.total_cost):
        logger.warning("Multi-race bet $%.2f exceeds remaining reserve for session %s",
                       bet.total_cost, session_id)
    owner.add_multi_race_bet(bet)
    return _session_view(owner)


@app.post("/day-sessions/{session_id}/multi-race/ticket")
async def add_multi_race_ticket(session_id: str, req: TicketRequest,
                                store: Persistence = Depends(get_store)):
    """Build a ticket sized to the session's remaining reserve and add it."""
    owner = _owner(store, session_id)
    ticket, budget = req.build(multi_race_remaining(owner.session))
    data = ticket_to_dict(ticket)
    data["fits_budget"] = ticket.total_cost <= budget
    if not data["fits_budget"]:
        return {"added": False, "ticket": data, "session": _session_view(owner)}
    owner.add_multi_race_bet(ticket.to_bet())
    return {"added": True, "ticket": data, "session": _session_view(owner)}


@app.put("/day-sessions/{session_id}/multi-race/{bet_id}")
async def update_multi_race(session_id: str, bet_id: str, req: MultiRaceBetModel,
                            store: Persistence = Depends(get_store)):
    owner = _owner(store, session_id)
    owner.update_multi_race_bet(req.to_bet(bet_id))
    return _session_view(owner)


@app.delete("/day-sessions/{session_id}/multi-race/{bet_id}")
async def remove_multi_race(session_id: str, bet_id: str, store: Persistence = Depends(get_store)):
    owner = _owner(store, session_id)
    owner.remove_multi_race_bet(bet_id)
    return _session_view(owner)


# ---------------------------------------------------------------------------
# Bankroll ledgers
# ---------------------------------------------------------------------------

@app.post("/ledgers")
async def create_ledger(req: LedgerRequest, store: Persistence = Depends(get_store)):
    if req.starting_bankroll < 0:
        raise HTTPException(status_code=400, detail="starting_bankroll cannot be negative")
    tracker = BankrollTracker(req.starting_bankroll, store=store)
    return ledger_summary(tracker.state)


@app.get("/ledgers/{ledger_id}")
async def get_ledger(ledger_id: str, store: Persistence = Depends(get_store)):
    return ledger_summary(_tracker(store, ledger_id).state)


@app.post("/ledgers/{ledger_id}/bets")
async def ledger_place_bet(ledger_id: str, req: PlaceBetRequest, store: Persistence = Depends(get_store)):
    return ledger_summary(_tracker(store, ledger_id).place_bet(req.amount, req.details))


@app.post("/ledgers/{ledger_id}/win")
async def ledger_win(ledger_id: str, req: AmountRequest, store: Persistence = Depends(get_store)):
    return ledger_summary(_tracker(store, ledger_id).record_win(req.amount))


@app.post("/ledgers/{ledger_id}/loss")
async def ledger_loss(ledger_id: str, store: Persistence = Depends(get_store)):
    return ledger_summary(_tracker(store, ledger_id).record_loss())


@app.post("/ledgers/{ledger_id}/adjust")
async def ledger_adjust(ledger_id: str, req: AmountRequest, store: Persistence = Depends(get_store)):
    return ledger_summary(_tracker(store, ledger_id).adjust_bankroll(req.amount))


@app.post("/ledgers/{ledger_id}/reset")
async def ledger_reset(ledger_id: str, req: AmountRequest, store: Persistence = Depends(get_store)):
    return ledger_summary(_tracker(store, ledger_id).reset(req.amount))


if __name__ == "__main__":
    uvicorn.run(app, host=config.api_host, port=config.api_port)
