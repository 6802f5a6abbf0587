"""Runtime settings read from the environment (and .env via python-dotenv)."""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import dotenv


@dataclass
class AppConfig:
    db_path: Path = Path("wagers.db")
    log_level: str = "INFO"
    top_bets: int = 25
    default_risk_style: str = "balanced"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    @classmethod
    def from_env(cls, load_dotenv: bool = True) -> "AppConfig":
        if load_dotenv:
            dotenv.load_dotenv()
        return cls(
            db_path=Path(os.getenv("WAGER_DB_PATH", "wagers.db")),
            log_level=os.getenv("WAGER_LOG_LEVEL", "INFO").upper(),
            top_bets=int(os.getenv("WAGER_TOP_BETS", "25")),
            default_risk_style=os.getenv("WAGER_DEFAULT_RISK_STYLE", "balanced").lower(),
            api_host=os.getenv("WAGER_API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("WAGER_API_PORT", "8000")),
        )
