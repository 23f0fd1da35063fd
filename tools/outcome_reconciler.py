"""
BLOCKSTAKE — Outcome Reconciler

Settles a played slot against the player's real score:

    score_ratio = min(score / max_achievable_score, 1)
    win      and ratio >= 0.5  → expected_payout × ratio
    jackpot  and ratio >= 0.8  → expected_payout (pool resets)
    anything else              → 0

Payouts are whole currency units (floored), so they never exceed the
pre-committed expected_payout.

complete() must run inside a store transaction. The slot flip is a
conditional update; if another completion already flipped it, nothing
else is touched and AlreadyConsumed is raised.
"""

import logging
import math
from typing import Optional

from tools.economics_errors import AlreadyConsumed, InvalidInput, UnknownRecord
from tools.economics_models import (
    PreGeneratedGame, RESULT_JACKPOT, RESULT_WIN, utcnow_iso,
)
from tools.wallet_ledger import TX_GAME_WIN

logger = logging.getLogger("blockstake.reconciler")

WIN_RATIO_THRESHOLD = 0.5
JACKPOT_RATIO_THRESHOLD = 0.8


def score_ratio(slot: PreGeneratedGame, actual_score: int) -> float:
    if slot.max_achievable_score <= 0:
        return 1.0
    return min(actual_score / slot.max_achievable_score, 1.0)


def validate_score(actual_score) -> int:
    if isinstance(actual_score, bool):
        raise InvalidInput("score must be a number")
    try:
        value = float(actual_score)
    except (TypeError, ValueError):
        raise InvalidInput(f"score must be a number (got {actual_score!r})")
    if not math.isfinite(value) or value < 0:
        raise InvalidInput(f"score must be a non-negative number (got {actual_score})")
    return int(math.floor(value))


def compute_payout(slot: PreGeneratedGame, actual_score: int) -> int:
    """Pure payout rule. Never exceeds slot.expected_payout."""
    score = validate_score(actual_score)
    ratio = score_ratio(slot, score)
    if slot.result_type == RESULT_WIN and ratio >= WIN_RATIO_THRESHOLD:
        raw = slot.expected_payout * ratio
    elif slot.result_type == RESULT_JACKPOT and ratio >= JACKPOT_RATIO_THRESHOLD:
        raw = slot.expected_payout
    else:
        return 0
    # round first so 299.99999999 from float math still floors to 300
    return int(math.floor(round(raw, 4)))


class OutcomeReconciler:

    def __init__(self, store, wallet=None):
        self.store = store
        self.wallet = wallet

    def complete(self, db, slot_id: str, actual_score: int, user_id: Optional[str] = None,
                 stake: Optional[float] = None, reference_id: str = None) -> dict:
        """Consume the slot, update batch + jackpot aggregates, credit the winner."""
        score = validate_score(actual_score)
        slot = self.store.get_slot(db, slot_id)
        if slot is None:
            raise UnknownRecord(f"slot {slot_id} not found")

        payout = compute_payout(slot, score)
        now = utcnow_iso()
        if not self.store.mark_slot_played(db, slot.id, score, payout, now):
            logger.warning(f"Slot {slot.id} (#{slot.game_index}) already consumed; "
                           f"ignoring completion with score {score}")
            raise AlreadyConsumed(f"slot {slot.id} has already been played")

        batch = self.store.get_batch(db, slot.batch_id)
        stake = slot.bet_amount if stake is None else float(stake)
        jackpot_part = stake * batch.jackpot_share if batch else 0.0
        self.store.update_batch_aggregates(db, slot.batch_id, {
            "games_played": 1,
            "actual_player_payout": payout,
            "actual_jackpot_contribution": jackpot_part,
            "actual_platform_revenue": stake - payout - jackpot_part,
        })

        is_jackpot = slot.result_type == RESULT_JACKPOT and payout > 0
        if is_jackpot:
            self.store.award_jackpot(db, user_id, payout, now)
            logger.info(f"JACKPOT: {payout} paid on slot #{slot.game_index} to {user_id or 'anonymous'}")

        balance_after = None
        if payout > 0 and user_id and self.wallet is not None:
            balance_after = self.wallet.credit(db, user_id, payout, tx_type=TX_GAME_WIN,
                                               reference_id=reference_id or slot.id)

        logger.info(f"Settled slot #{slot.game_index} ({slot.result_type}): "
                    f"score={score}/{slot.max_achievable_score} payout={payout}")
        return {
            "slot_id": slot.id,
            "score": score,
            "payout": payout,
            "result_type": slot.result_type,
            "score_ratio": round(score_ratio(slot, score), 4),
            "is_win": payout > 0,
            "is_jackpot": is_jackpot,
            "balance_after": balance_after,
        }
