"""
BLOCKSTAKE — Batch Generator

Turns (name, game count, average bet, economic config) into a funded batch
of pre-generated slots whose committed payouts never exceed the player
payout target.

Tier table:
    small    60%   1.1x – 2.0x      skill 1–3
    medium   25%   2.0x – 5.0x      skill 3–6
    big      10%   5.0x – 10.0x     skill 6–8
    huge      4%   10.0x – max      skill 8–10
    jackpot   1%   2x – 5x max      skill 9–10

Each non-jackpot slot is a win with probability 0.70; a winning payout is
capped at 10% of whatever budget is still uncommitted at that point, so no
single slot can drain the batch. Jackpot slots skip that slice but are
still capped by the whole remaining budget.

The RNG is injectable (random.Random) so a seed reproduces a batch exactly.
"""

import logging
import math
import random
import uuid
from typing import Optional

from config.settings import EconomicConfig, EngineConfig
from tools.economics_errors import InvalidInput
from tools.economics_models import (
    GameBatch, OutcomeTier, PreGeneratedGame,
    RESULT_JACKPOT, RESULT_LOSS, RESULT_WIN,
)

logger = logging.getLogger("blockstake.generator")

WIN_PROBABILITY = 0.70
BUDGET_SLICE = 0.10            # max share of remaining budget one win may take
BET_VARIANCE = (0.8, 1.2)
CONSOLATION_FACTOR = 0.3       # losing slots still let the player score bet × 0.3


def build_tiers(max_win_multiplier: float) -> list[OutcomeTier]:
    """Tier table for a given multiplier cap (huge and jackpot scale with it)."""
    return [
        OutcomeTier("small", 0.60, 1.1, 2.0, (1, 3)),
        OutcomeTier("medium", 0.25, 2.0, 5.0, (3, 6)),
        OutcomeTier("big", 0.10, 5.0, 10.0, (6, 8)),
        OutcomeTier("huge", 0.04, 10.0, max(10.0, max_win_multiplier), (8, 10)),
        OutcomeTier("jackpot", 0.01, 2 * max_win_multiplier, 5 * max_win_multiplier, (9, 10)),
    ]


def pick_tier(tiers: list[OutcomeTier], rng: random.Random) -> OutcomeTier:
    """Weighted draw over cumulative tier weights."""
    roll = rng.random()
    cumulative = 0.0
    for tier in tiers:
        cumulative += tier.weight
        if roll < cumulative:
            return tier
    return tiers[-1]


def _floor_cents(amount: float) -> float:
    return math.floor(round(amount * 100, 6)) / 100


def validate_request(batch_name: str, total_games: int, average_bet_amount: float):
    if not batch_name or not str(batch_name).strip():
        raise InvalidInput("batch_name is required")
    if isinstance(total_games, bool) or not isinstance(total_games, int) or total_games <= 0:
        raise InvalidInput(f"total_games must be a positive integer (got {total_games!r})")
    if total_games > EngineConfig.MAX_BATCH_GAMES:
        raise InvalidInput(f"total_games is capped at {EngineConfig.MAX_BATCH_GAMES:,} (got {total_games:,})")
    try:
        avg = float(average_bet_amount)
    except (TypeError, ValueError):
        raise InvalidInput(f"average_bet_amount must be a number (got {average_bet_amount!r})")
    if not math.isfinite(avg) or avg <= 0:
        raise InvalidInput(f"average_bet_amount must be positive (got {average_bet_amount!r})")


def generate(batch_name: str, total_games: int, average_bet_amount: float,
             config: EconomicConfig, rng: Optional[random.Random] = None
             ) -> tuple[GameBatch, list[PreGeneratedGame]]:
    """Build a batch record and its shuffled slots. Pure: nothing is persisted."""
    validate_request(batch_name, total_games, average_bet_amount)
    rng = rng or random.Random()
    avg = float(average_bet_amount)

    total_investment = total_games * avg
    batch = GameBatch(
        id=str(uuid.uuid4()),
        batch_name=str(batch_name).strip(),
        total_games=total_games,
        average_bet_amount=avg,
        total_investment=total_investment,
        player_payout_target=total_investment * config.player_share_pct / 100,
        platform_revenue_target=total_investment * config.platform_share_pct / 100,
        jackpot_contribution_target=total_investment * config.jackpot_share_pct / 100,
        config_version=config.version,
    )

    tiers = build_tiers(config.max_win_multiplier)
    remaining = batch.player_payout_target
    slots = []

    for _ in range(total_games):
        tier = pick_tier(tiers, rng)
        bet = round(avg * rng.uniform(*BET_VARIANCE), 2)
        is_jackpot = tier.name == "jackpot"
        is_win = is_jackpot or rng.random() < WIN_PROBABILITY

        if is_win:
            multiplier = rng.uniform(tier.min_multiplier, tier.max_multiplier)
            cap = remaining if is_jackpot else remaining * BUDGET_SLICE
            cap = max(0.0, cap)
            payout = _floor_cents(min(bet * multiplier, cap))
            if payout > cap:
                payout = math.floor(cap * 100) / 100
            remaining -= payout
            result_type = RESULT_JACKPOT if is_jackpot else RESULT_WIN
            max_score = math.floor(payout / config.base_return_rate)
            win_multiplier = round(multiplier, 4)
        else:
            payout = 0.0
            result_type = RESULT_LOSS
            max_score = math.floor(bet * CONSOLATION_FACTOR / config.base_return_rate)
            win_multiplier = None

        slots.append(PreGeneratedGame(
            id=str(uuid.uuid4()),
            batch_id=batch.id,
            game_index=0,
            tier=tier.name,
            bet_amount=bet,
            max_achievable_score=max_score,
            result_type=result_type,
            expected_payout=payout,
            skill_requirement=rng.randint(*tier.skill_range),
            win_multiplier=win_multiplier,
        ))

    # Fisher–Yates with the injected rng, then index in shuffled order
    rng.shuffle(slots)
    for i, slot in enumerate(slots):
        slot.game_index = i

    batch.committed_payout = round(sum(s.expected_payout for s in slots), 2)
    logger.info(
        f"Generated batch '{batch.batch_name}': {total_games} games, "
        f"investment={total_investment:.2f}, committed={batch.committed_payout:.2f} "
        f"of target {batch.player_payout_target:.2f}"
    )
    return batch, slots


def summarize_slots(slots: list[PreGeneratedGame]) -> dict:
    """Preview numbers for an operator: tier mix, outcomes, committed payout."""
    by_tier = {}
    outcomes = {RESULT_LOSS: 0, RESULT_WIN: 0, RESULT_JACKPOT: 0}
    committed = 0.0
    top = 0.0
    for s in slots:
        t = by_tier.setdefault(s.tier, {"count": 0, "wins": 0, "committed": 0.0})
        t["count"] += 1
        if s.result_type != RESULT_LOSS:
            t["wins"] += 1
        t["committed"] += s.expected_payout
        outcomes[s.result_type] = outcomes.get(s.result_type, 0) + 1
        committed += s.expected_payout
        top = max(top, s.expected_payout)

    n = len(slots)
    for t in by_tier.values():
        t["share"] = round(t["count"] / n, 4) if n else 0.0
        t["committed"] = round(t["committed"], 2)

    return {
        "total_slots": n,
        "by_tier": by_tier,
        "outcomes": outcomes,
        "win_rate": round((n - outcomes[RESULT_LOSS]) / n, 4) if n else 0.0,
        "committed_payout": round(committed, 2),
        "largest_payout": round(top, 2),
    }
