"""
BLOCKSTAKE — Batch Playthrough Simulator

Monte Carlo run of a generated batch: every slot is played once by a
simulated player whose skill is drawn at random, and the score they reach
is a noisy fraction of the slot's cap that improves with skill relative to
the slot's skill requirement. Payouts go through the same compute_payout
the live reconciler uses, so the realised RTP here is what the batch will
actually return if players perform like this.

Nothing touches the store.
"""

import math
import random
from dataclasses import dataclass, field

from tools.economics_models import GameBatch, PreGeneratedGame, RESULT_JACKPOT
from tools.outcome_reconciler import compute_payout

BASE_PERFORMANCE = 0.6       # mean score fraction when skill == requirement
SKILL_STEP = 0.08            # per point of skill above / below requirement
PERFORMANCE_SPREAD = 0.2
CHECKPOINTS = 10


@dataclass
class BatchSimResult:
    batch_name: str
    games: int
    total_wagered: float
    total_returned: float
    committed_payout: float
    target_rtp: float
    rtp: float
    hit_rate: float
    jackpot_hits: int
    paid_vs_committed: float
    convergence: list = field(default_factory=list)     # running RTP at each checkpoint
    by_tier: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "batch_name": self.batch_name,
            "games": self.games,
            "total_wagered": round(self.total_wagered, 2),
            "total_returned": round(self.total_returned, 2),
            "committed_payout": round(self.committed_payout, 2),
            "target_rtp": round(self.target_rtp, 4),
            "rtp": round(self.rtp, 4),
            "hit_rate": round(self.hit_rate, 4),
            "jackpot_hits": self.jackpot_hits,
            "paid_vs_committed": round(self.paid_vs_committed, 4),
            "convergence": [round(x, 4) for x in self.convergence],
            "by_tier": self.by_tier,
        }


def simulate_score(slot: PreGeneratedGame, skill: int, rng: random.Random) -> int:
    mean = BASE_PERFORMANCE + SKILL_STEP * (skill - slot.skill_requirement)
    fraction = min(1.0, max(0.0, rng.gauss(mean, PERFORMANCE_SPREAD)))
    return math.floor(slot.max_achievable_score * fraction)


def simulate(batch: GameBatch, slots: list[PreGeneratedGame], seed: int = 42) -> BatchSimResult:
    """Play every slot once in game_index order."""
    rng = random.Random(seed)
    ordered = sorted(slots, key=lambda s: s.game_index)
    n = len(ordered)

    wagered = 0.0
    returned = 0.0
    wins = 0
    jackpots = 0
    convergence = []
    tiers = {}
    every = max(1, n // CHECKPOINTS)

    for i, slot in enumerate(ordered, start=1):
        skill = rng.randint(1, 10)
        payout = compute_payout(slot, simulate_score(slot, skill, rng))

        wagered += slot.bet_amount
        returned += payout
        if payout > 0:
            wins += 1
            if slot.result_type == RESULT_JACKPOT:
                jackpots += 1

        t = tiers.setdefault(slot.tier, {"plays": 0, "hits": 0, "paid": 0.0})
        t["plays"] += 1
        t["hits"] += 1 if payout > 0 else 0
        t["paid"] += payout

        if i % every == 0 or i == n:
            convergence.append(returned / wagered if wagered else 0.0)

    committed = sum(s.expected_payout for s in ordered)
    return BatchSimResult(
        batch_name=batch.batch_name,
        games=n,
        total_wagered=wagered,
        total_returned=returned,
        committed_payout=committed,
        target_rtp=batch.player_payout_target / batch.total_investment
        if batch.total_investment else 0.0,
        rtp=returned / wagered if wagered else 0.0,
        hit_rate=wins / n if n else 0.0,
        jackpot_hits=jackpots,
        paid_vs_committed=returned / committed if committed else 0.0,
        convergence=convergence,
        by_tier={k: {**v, "paid": round(v["paid"], 2)} for k, v in sorted(tiers.items())},
    )
