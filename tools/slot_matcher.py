"""
BLOCKSTAKE — Slot Matcher

Finds an unplayed, unclaimed slot in the active batch for a player's bet
and skill. Widens the bet window step by step, then falls back to any open
slot, so a batch with open slots never turns a player away.

Read-only: the engine claims the returned slot when it creates the session.
"""

import logging
from typing import Optional

from tools.economics_errors import InvalidInput
from tools.economics_models import GameBatch, PreGeneratedGame

logger = logging.getLogger("blockstake.matcher")

SKILL_MIN, SKILL_MAX = 1, 10
SKILL_SPREAD = 2

# (bet low factor, bet high factor, constrain skill)
SEARCH_WINDOWS = [
    (0.9, 1.1, True),
    (0.7, 1.3, True),
    (0.5, 2.0, True),
    (0.1, 5.0, False),
]


def validate_player(bet_amount, skill_level) -> tuple[float, int]:
    try:
        bet = float(bet_amount)
    except (TypeError, ValueError):
        raise InvalidInput(f"bet_amount must be a number (got {bet_amount!r})")
    if not bet > 0:
        raise InvalidInput(f"bet_amount must be positive (got {bet_amount!r})")
    if isinstance(skill_level, bool) or not isinstance(skill_level, int):
        raise InvalidInput(f"skill_level must be an integer 1-10 (got {skill_level!r})")
    if not SKILL_MIN <= skill_level <= SKILL_MAX:
        raise InvalidInput(f"skill_level must be between 1 and 10 (got {skill_level})")
    return bet, skill_level


class SlotMatcher:

    def __init__(self, store):
        self.store = store

    def reserve(self, db, batch: GameBatch, bet_amount: float,
                skill_level: int = 5) -> Optional[PreGeneratedGame]:
        """Best open slot for this bet/skill, or None if the batch is exhausted."""
        bet, skill = validate_player(bet_amount, skill_level)
        skill_lo = max(SKILL_MIN, skill - SKILL_SPREAD)
        skill_hi = min(SKILL_MAX, skill + SKILL_SPREAD)

        for step, (lo, hi, with_skill) in enumerate(SEARCH_WINDOWS, start=1):
            filters = {"min_bet": bet * lo, "max_bet": bet * hi}
            if with_skill:
                filters.update(min_skill=skill_lo, max_skill=skill_hi)
            slot = self.store.query_unplayed_slot(db, batch.id, filters)
            if slot:
                logger.debug(f"Matched slot #{slot.game_index} in window {step} "
                             f"(bet={bet}, skill={skill})")
                return slot

        slot = self.store.query_unplayed_slot(db, batch.id)
        if slot:
            logger.info(f"Fallback match: slot #{slot.game_index} for bet={bet}, skill={skill}")
        else:
            logger.warning(f"Batch {batch.id} has no open slots left")
        return slot
