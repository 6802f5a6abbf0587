#!/usr/bin/env python3
"""Command-line access to the wagering engine.

Usage:
    python cli.py top-bets field.csv --race 5 --track GP [--format text|json|csv|slip]
    python cli.py kelly --prob 0.30 --odds 4 --bankroll 1000 [--fraction half]
    python cli.py allocate --bankroll 500 --verdicts BET,BET,CAUTION,PASS [--style safe]
    python cli.py allocate --bankroll 500 --card card.csv --save

field.csv columns: program_number, name, base_score and optionally index,
odds, model_win_probability, scratched. card.csv columns: race_number,
verdict and optionally edge, post_time.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

import pandas as pd

from config import AppConfig
from probability_model import FieldEntry
from wager_generator import GeneratorSettings
from ranker import generate_top_bets, top_bets_to_csv, top_bets_to_dict, top_bets_to_text
from window_script import build_bet_slip
from bet_builder import SizingConfig, calculate_kelly, size_bet, describe_cap
from day_allocator import RaceVerdict, allocate_day_budget, allocation_to_csv, allocation_to_dict
from day_session import DaySessionOwner, session_from_allocation
from persistence import Persistence

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Input loading
# ---------------------------------------------------------------------------

def _cell(row, key, default=None):
    value = row.get(key, default)
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return default
    return value


def load_field(path: str) -> List[FieldEntry]:
    """Read a scored field from CSV."""
    df = pd.read_csv(path, dtype={"odds": str})
    entries = []
    for pos, row in enumerate(df.to_dict("records")):
        prob = _cell(row, "model_win_probability")
        entries.append(FieldEntry(
            index=int(_cell(row, "index", pos)),
            program_number=int(row["program_number"]),
            name=str(row["name"]),
            base_score=float(row["base_score"]),
            model_win_probability=float(prob) if prob is not None else None,
            odds_raw=str(_cell(row, "odds", "")),
            scratched=bool(_cell(row, "scratched", False)),
        ))
    return entries


def load_card(path: str) -> List[RaceVerdict]:
    df = pd.read_csv(path)
    races = []
    for row in df.to_dict("records"):
        edge = _cell(row, "edge")
        races.append(RaceVerdict(
            race_number=int(row["race_number"]),
            verdict=str(row["verdict"]).strip().upper(),
            edge=float(edge) if edge is not None else None,
            post_time=_cell(row, "post_time"),
        ))
    return races


def parse_verdicts(text: str) -> List[RaceVerdict]:
    return [
        RaceVerdict(race_number=i + 1, verdict=v.strip().upper())
        for i, v in enumerate(text.split(","))
        if v.strip()
    ]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_top_bets(args, cfg: AppConfig) -> int:
    entries = load_field(args.field)
    settings = GeneratorSettings(base_unit=args.unit, target_count=args.count or cfg.top_bets)
    result = generate_top_bets(entries, race_number=args.race, track_code=args.track,
                               surface=args.surface, settings=settings)
    if args.format == "json":
        print(json.dumps(top_bets_to_dict(result), indent=2))
    elif args.format == "csv":
        print(top_bets_to_csv(result), end="")
    elif args.format == "slip":
        print(build_bet_slip(result.top_bets, args.race))
    else:
        print(top_bets_to_text(result))
    return 0


def cmd_kelly(args, cfg: AppConfig) -> int:
    sizing = SizingConfig.for_risk_tolerance(args.risk) if args.risk \
        else SizingConfig(kelly_fraction=args.fraction)
    errors = sizing.validate()
    if errors:
        for e in errors:
            print(e, file=sys.stderr)
        return 1
    kelly = calculate_kelly(args.prob, args.odds, args.bankroll,
                            fraction=sizing.kelly_fraction, max_bet_percent=sizing.max_bet_percent)
    if not kelly.should_bet:
        print(f"No bet: {kelly.reason}")
        return 0
    sized = size_bet(kelly, sizing)
    print(f"Raw Kelly:   {kelly.raw_kelly_fraction:.4f}")
    print(f"Used ({sizing.kelly_fraction}): {kelly.fractional_kelly_fraction:.4f}")
    print(f"Edge:        {kelly.edge_percent:+.1f}%")
    print(f"Stake:       ${sized.bounded_final_amount:.2f} ({describe_cap(sized)})")
    return 0


def cmd_allocate(args, cfg: AppConfig) -> int:
    if args.card:
        races = load_card(args.card)
    elif args.verdicts:
        races = parse_verdicts(args.verdicts)
    else:
        print("allocate needs --card or --verdicts", file=sys.stderr)
        return 1
    plan = allocate_day_budget(args.bankroll, races, args.track, args.style or cfg.default_risk_style)

    if args.format == "json":
        print(json.dumps(allocation_to_dict(plan), indent=2))
    else:
        print(allocation_to_csv(plan), end="")

    if args.save:
        db = Persistence(Path(args.db or cfg.db_path))
        owner = DaySessionOwner.start(session_from_allocation(plan, args.track), db)
        print(f"Saved day session {owner.session.id}", file=sys.stderr)
    return 0


def main(argv=None) -> int:
    cfg = AppConfig.from_env()
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO))

    ap = argparse.ArgumentParser(description="Race wagering decisions")
    sub = ap.add_subparsers(dest="command")

    tb = sub.add_parser("top-bets", help="Rank the best tickets for one race")
    tb.add_argument("field", help="CSV of scored entries")
    tb.add_argument("--race", type=int, default=0)
    tb.add_argument("--track", default="UNKNOWN")
    tb.add_argument("--surface", default="dirt")
    tb.add_argument("--unit", type=float, default=1.0, help="Base stake per combination")
    tb.add_argument("--count", type=int, help="Number of recommendations")
    tb.add_argument("--format", choices=["text", "json", "csv", "slip"], default="text")

    kl = sub.add_parser("kelly", help="Kelly stake for a single win bet")
    kl.add_argument("--prob", type=float, required=True, help="Win probability (0-1)")
    kl.add_argument("--odds", type=float, required=True, help="Odds-to-1 (4 == 4-1)")
    kl.add_argument("--bankroll", type=float, required=True)
    kl.add_argument("--fraction", default="quarter", help="full / half / quarter / eighth")
    kl.add_argument("--risk", choices=["conservative", "moderate", "aggressive"])

    al = sub.add_parser("allocate", help="Split a day's bankroll across the card")
    al.add_argument("--bankroll", type=float, required=True)
    al.add_argument("--verdicts", help="Comma-separated verdicts in race order, e.g. BET,PASS")
    al.add_argument("--card", help="CSV with race_number, verdict, edge")
    al.add_argument("--track", default="")
    al.add_argument("--style", choices=["safe", "balanced", "aggressive"])
    al.add_argument("--format", choices=["csv", "json"], default="csv")
    al.add_argument("--save", action="store_true", help="Start a day session from this plan")
    al.add_argument("--db", help="Database path (default: WAGER_DB_PATH or wagers.db)")

    args = ap.parse_args(argv)

    if args.command == "top-bets":
        return cmd_top_bets(args, cfg)
    elif args.command == "kelly":
        return cmd_kelly(args, cfg)
    elif args.command == "allocate":
        return cmd_allocate(args, cfg)
    else:
        ap.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
