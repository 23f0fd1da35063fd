"""
BLOCKSTAKE — Economics Data Models

Plain dataclasses for the records the engine moves between the store and
its callers. Rows come back from the store as dicts; from_row() builds the
record and to_dict() is what the JSON APIs return.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict, fields
from datetime import datetime, timezone
from typing import Optional


RESULT_LOSS = "loss"
RESULT_WIN = "win"
RESULT_JACKPOT = "jackpot"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pick(cls, row: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in row.items() if k in names}


@dataclass(frozen=True)
class OutcomeTier:
    """One band of the batch payout distribution."""
    name: str
    weight: float
    min_multiplier: float
    max_multiplier: float
    skill_range: tuple


@dataclass
class GameBatch:
    id: str
    batch_name: str
    total_games: int
    average_bet_amount: float
    total_investment: float
    player_payout_target: float
    platform_revenue_target: float
    jackpot_contribution_target: float
    committed_payout: float = 0.0       # sum(expected_payout) at generation
    games_played: int = 0
    actual_player_payout: float = 0.0
    actual_platform_revenue: float = 0.0
    actual_jackpot_contribution: float = 0.0
    config_version: Optional[int] = None
    is_active: bool = False
    created_at: str = ""

    def __post_init__(self):
        self.is_active = bool(self.is_active)
        if not self.created_at:
            self.created_at = utcnow_iso()

    @property
    def jackpot_share(self) -> float:
        """Fraction of every stake earmarked for the jackpot pool."""
        if self.total_investment <= 0:
            return 0.0
        return self.jackpot_contribution_target / self.total_investment

    @classmethod
    def from_row(cls, row: dict) -> "GameBatch":
        return cls(**_pick(cls, row))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PreGeneratedGame:
    """A slot: one pre-computed game outcome waiting for a player."""
    id: str
    batch_id: str
    game_index: int
    tier: str
    bet_amount: float
    max_achievable_score: int
    result_type: str
    expected_payout: float
    skill_requirement: int
    win_multiplier: Optional[float] = None
    is_played: bool = False
    session_id: Optional[str] = None
    claimed_at: Optional[str] = None
    played_at: Optional[str] = None
    actual_score: Optional[int] = None
    actual_payout: Optional[float] = None

    def __post_init__(self):
        self.is_played = bool(self.is_played)

    @classmethod
    def from_row(cls, row: dict) -> "PreGeneratedGame":
        return cls(**_pick(cls, row))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class JackpotPool:
    id: str = "global"
    current_amount: float = 0.0
    total_contributions: float = 0.0
    total_payouts: float = 0.0
    last_winner_id: Optional[str] = None
    last_win_amount: Optional[float] = None
    last_win_date: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "JackpotPool":
        return cls(**_pick(cls, row))

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class GameSession:
    """Handle returned by start_game and passed back to complete_game."""
    id: str
    user_id: Optional[str]
    bet_amount: float
    slot: PreGeneratedGame
    is_demo: bool = False
    skill_level: int = 5
    status: str = "active"            # active / completed / abandoned
    score: Optional[int] = None
    payout_amount: Optional[float] = None
    started_at: str = ""
    completed_at: Optional[str] = None
    batch_id: Optional[str] = None

    def __post_init__(self):
        if not self.started_at:
            self.started_at = utcnow_iso()

    @property
    def max_score(self) -> int:
        """Score cap handed to the board."""
        return self.slot.max_achievable_score

    def to_dict(self) -> dict:
        d = asdict(self)
        d["max_score"] = self.max_score
        return d


@dataclass
class GameOutcome:
    session_id: str
    score: int
    payout: int
    is_win: bool
    is_jackpot: bool
    is_demo: bool = False
    result_type: str = RESULT_LOSS
    score_ratio: float = 0.0
    balance_after: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BatchProgress:
    """Operator view of one batch: plan vs. what has been paid so far."""
    batch_id: str
    batch_name: str
    is_active: bool
    total_games: int
    games_played: int
    completion_pct: float
    targets: dict
    actuals: dict
    committed_payout: float
    paid_vs_committed_pct: float
    stake_collected: float
    realized_player_rtp: float
    remaining_by_tier: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)
