"""SQLite persistence for day sessions, bankroll ledgers and bet plans.

Each save writes one JSON snapshot with INSERT OR REPLACE inside a
transaction. Storage errors on save and load are logged and reported as
False, None or an empty list so the in-memory snapshot held by the caller
stays authoritative.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


class Persistence:
    def __init__(self, db_path: Path = None):
        self.db_path = Path(db_path or "wagers.db")
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _init_db(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS day_sessions (
                session_id TEXT PRIMARY KEY,
                race_date TEXT,
                track_name TEXT,
                version INTEGER,
                payload_json TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS bankroll_ledgers (
                ledger_id TEXT PRIMARY KEY,
                version INTEGER,
                payload_json TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS bet_plans (
                plan_id TEXT PRIMARY KEY,
                session_id TEXT,
                race_number INTEGER,
                kind TEXT,
                payload_json TEXT,
                created_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_day_sessions_date ON day_sessions(race_date);
            CREATE INDEX IF NOT EXISTS idx_bet_plans_session ON bet_plans(session_id, race_number);
            """
        )
        self.conn.commit()

    def _write(self, sql: str, params: tuple, what: str) -> bool:
        try:
            with self.conn:
                self.conn.execute(sql, params)
        except sqlite3.Error as exc:
            logger.error("Failed to save %s: %s", what, exc)
            return False
        return True

    def _read(self, sql: str, params: tuple, what: str) -> Optional[List[sqlite3.Row]]:
        try:
            return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            logger.error("Failed to load %s: %s", what, exc)
            return None

    def _first_payload(self, sql: str, params: tuple, what: str) -> Optional[Dict[str, Any]]:
        rows = self._read(sql, params, what)
        return self._payload(rows[0]) if rows else None

    @staticmethod
    def _payload(row) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        try:
            return json.loads(row["payload_json"])
        except (json.JSONDecodeError, TypeError) as exc:
            logger.warning("Unreadable payload: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Day sessions
    # ------------------------------------------------------------------

    def save_day_session(self, snapshot: Dict[str, Any]) -> bool:
        return self._write(
            """
            INSERT OR REPLACE INTO day_sessions(session_id, race_date, track_name, version, payload_json, updated_at)
            VALUES(?, ?, ?, ?, ?, ?)
            """,
            (
                snapshot["id"],
                snapshot.get("race_date"),
                snapshot.get("track_name"),
                int(snapshot.get("version", 0)),
                json.dumps(snapshot),
                datetime.utcnow().isoformat(),
            ),
            f"day session {snapshot.get('id')}",
        )

    def load_day_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._first_payload(
            "SELECT payload_json FROM day_sessions WHERE session_id=?", (session_id,),
            f"day session {session_id}",
        )

    def latest_day_session(self) -> Optional[Dict[str, Any]]:
        return self._first_payload(
            "SELECT payload_json FROM day_sessions ORDER BY updated_at DESC, rowid DESC LIMIT 1", (),
            "latest day session",
        )

    def list_day_sessions(self, race_date: Optional[str] = None) -> List[Dict[str, Any]]:
        where_parts = ["1=1"]
        params: List[Any] = []
        if race_date:
            where_parts.append("race_date = ?")
            params.append(race_date)
        rows = self._read(
            f"SELECT session_id, race_date, track_name, version, updated_at FROM day_sessions "
            f"WHERE {' AND '.join(where_parts)} ORDER BY updated_at DESC, rowid DESC",
            tuple(params), "day session list",
        )
        return [dict(r) for r in rows or []]

    def delete_day_session(self, session_id: str) -> bool:
        return self._write(
            "DELETE FROM day_sessions WHERE session_id=?", (session_id,),
            f"deletion of day session {session_id}",
        )

    # ------------------------------------------------------------------
    # Bankroll ledgers
    # ------------------------------------------------------------------

    def save_ledger(self, snapshot: Dict[str, Any]) -> bool:
        return self._write(
            """
            INSERT OR REPLACE INTO bankroll_ledgers(ledger_id, version, payload_json, updated_at)
            VALUES(?, ?, ?, ?)
            """,
            (
                snapshot["ledger_id"],
                int(snapshot.get("version", 0)),
                json.dumps(snapshot),
                datetime.utcnow().isoformat(),
            ),
            f"ledger {snapshot.get('ledger_id')}",
        )

    def load_ledger(self, ledger_id: str) -> Optional[Dict[str, Any]]:
        return self._first_payload(
            "SELECT payload_json FROM bankroll_ledgers WHERE ledger_id=?", (ledger_id,),
            f"ledger {ledger_id}",
        )

    # ------------------------------------------------------------------
    # Bet plans (exported top-bets / sizing results)
    # ------------------------------------------------------------------

    def save_bet_plan(self, session_id: str, race_number: int, kind: str,
                      payload: Dict[str, Any]) -> Optional[str]:
        plan_id = uuid.uuid4().hex
        ok = self._write(
            """
            INSERT OR REPLACE INTO bet_plans(plan_id, session_id, race_number, kind, payload_json, created_at)
            VALUES(?, ?, ?, ?, ?, ?)
            """,
            (plan_id, session_id, race_number, kind, json.dumps(payload),
             datetime.utcnow().isoformat()),
            f"{kind} plan for race {race_number}",
        )
        return plan_id if ok else None

    def load_bet_plans(self, session_id: str, race_number: Optional[int] = None,
                       kind: Optional[str] = None) -> List[Dict[str, Any]]:
        where_parts = ["session_id = ?"]
        params: List[Any] = [session_id]
        if race_number is not None:
            where_parts.append("race_number = ?")
            params.append(race_number)
        if kind:
            where_parts.append("kind = ?")
            params.append(kind)
        rows = self._read(
            f"SELECT plan_id, race_number, kind, payload_json, created_at FROM bet_plans "
            f"WHERE {' AND '.join(where_parts)} ORDER BY created_at, rowid",
            tuple(params), f"bet plans for session {session_id}",
        )
        plans = []
        for row in rows or []:
            plans.append({
                "plan_id": row["plan_id"],
                "race_number": row["race_number"],
                "kind": row["kind"],
                "created_at": row["created_at"],
                "payload": self._payload(row),
            })
        return plans

    def close(self) -> None:
        self.conn.close()
