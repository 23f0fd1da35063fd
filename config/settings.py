"""
BLOCKSTAKE — Configuration

Two layers:
  - Process settings (database, retries, demo constants, admin access) read
    from the environment / .env once at import time.
  - EconomicConfig: the operator-tunable economic parameters. One typed
    model with explicit defaults, validated whenever it is built. Stored
    versioned in the economic_config table (see tools/economics_store.py).
"""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

load_dotenv()

BASE_DIR = Path(__file__).parent.parent


# ============================================================
# Process Settings
# ============================================================

class EngineConfig:
    DB_PATH = os.getenv("DB_PATH", str(BASE_DIR / "data" / "blockstake.db"))
    DATABASE_URL = os.getenv("DATABASE_URL", "")

    # How many times start_game re-runs the matcher after losing a claim race
    CLAIM_RETRIES = int(os.getenv("CLAIM_RETRIES", "5"))

    # A started game not completed within this many seconds is abandoned:
    # its bet is refunded and its slot goes back to the matcher
    CLAIM_TTL_SECONDS = int(os.getenv("CLAIM_TTL_SECONDS", "1800"))

    # Largest batch a single generate call will build in memory
    MAX_BATCH_GAMES = int(os.getenv("MAX_BATCH_GAMES", "1000000"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


class DemoConfig:
    # Demo sessions never touch the store. Score cap and multiplier mirror
    # the synthetic slot handed to the board.
    REFERENCE_SCORE = int(os.getenv("DEMO_REFERENCE_SCORE", "20000"))
    MULTIPLIER = float(os.getenv("DEMO_MULTIPLIER", "2.5"))
    GAIN_RATE = float(os.getenv("DEMO_GAIN_RATE", "100"))


class AdminConfig:
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").strip().lower()
    SECRET_KEY = os.getenv("FLASK_SECRET_KEY") or os.getenv("SECRET_KEY", "")


# ============================================================
# Economic Configuration
# ============================================================

# Admin-enforced bands (inclusive) for the three share percentages
SHARE_BANDS = {
    "player_share_pct":   (50.0, 90.0),
    "platform_share_pct": (5.0, 40.0),
    "jackpot_share_pct":  (0.0, 20.0),
}


class EconomicConfig(BaseModel):
    """House-edge targets and payout scaling for batch generation."""
    player_share_pct: float = Field(70.0, ge=SHARE_BANDS["player_share_pct"][0],
                                    le=SHARE_BANDS["player_share_pct"][1])
    platform_share_pct: float = Field(20.0, ge=SHARE_BANDS["platform_share_pct"][0],
                                      le=SHARE_BANDS["platform_share_pct"][1])
    jackpot_share_pct: float = Field(10.0, ge=SHARE_BANDS["jackpot_share_pct"][0],
                                     le=SHARE_BANDS["jackpot_share_pct"][1])
    base_return_rate: float = Field(0.01, gt=0)       # currency units per point of score
    max_win_multiplier: float = Field(15.0, ge=10.0, le=1000.0)
    jackpot_trigger_rate: float = Field(0.001, ge=0.0, le=1.0)
    version: int = Field(1, ge=1)
    created_at: Optional[str] = None

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def _shares_sum_to_100(self):
        total = self.player_share_pct + self.platform_share_pct + self.jackpot_share_pct
        if abs(total - 100.0) > 1e-6:
            raise ValueError(f"share percentages must sum to 100 (got {total:g})")
        return self

    def economic_fields(self) -> dict:
        """Tunable fields only (no version bookkeeping)."""
        return self.model_dump(exclude={"version", "created_at"})


DEFAULT_ECONOMIC_CONFIG = EconomicConfig()
