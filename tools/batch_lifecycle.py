"""
BLOCKSTAKE — Batch Lifecycle

Which batch is live, and how far along each one is. At most one batch is
active at any time: activation deactivates everything else in the same
transaction, and the partial unique index on is_active backs that up if
two operators race.
"""

import logging
from typing import Optional

from tools.economics_errors import UnknownRecord
from tools.economics_models import BatchProgress, GameBatch

logger = logging.getLogger("blockstake.lifecycle")


class BatchLifecycle:

    def __init__(self, store):
        self.store = store

    def activate(self, batch_id: str) -> GameBatch:
        with self.store.transaction() as db:
            if self.store.get_batch(db, batch_id) is None:
                raise UnknownRecord(f"batch {batch_id} not found")
            self.store.set_active_batch(db, batch_id)
            batch = self.store.get_batch(db, batch_id)
        logger.info(f"Activated batch '{batch.batch_name}' ({batch_id})")
        return batch

    def deactivate(self, batch_id: str) -> GameBatch:
        with self.store.transaction() as db:
            if self.store.get_batch(db, batch_id) is None:
                raise UnknownRecord(f"batch {batch_id} not found")
            if self.store.clear_active_batch(db, batch_id):
                logger.info(f"Deactivated batch {batch_id}")
            batch = self.store.get_batch(db, batch_id)
        return batch

    def list_all(self) -> list[GameBatch]:
        with self.store.reading() as db:
            return self.store.list_batches(db)

    def get_active(self) -> Optional[GameBatch]:
        with self.store.reading() as db:
            return self.store.get_active_batch(db)

    def get(self, batch_id: str) -> GameBatch:
        with self.store.reading() as db:
            batch = self.store.get_batch(db, batch_id)
        if batch is None:
            raise UnknownRecord(f"batch {batch_id} not found")
        return batch

    def progress(self, batch_id: str) -> BatchProgress:
        with self.store.reading() as db:
            batch = self.store.get_batch(db, batch_id)
            if batch is None:
                raise UnknownRecord(f"batch {batch_id} not found")
            remaining = self.store.open_slots_by_tier(db, batch_id)
            paid = self.store.paid_payout_total(db, batch_id)

        # Every completed stake is split across exactly these three
        stake = (batch.actual_player_payout + batch.actual_platform_revenue
                 + batch.actual_jackpot_contribution)
        return BatchProgress(
            batch_id=batch.id,
            batch_name=batch.batch_name,
            is_active=batch.is_active,
            total_games=batch.total_games,
            games_played=batch.games_played,
            completion_pct=round(100 * batch.games_played / batch.total_games, 2)
            if batch.total_games else 0.0,
            targets={
                "player_payout": round(batch.player_payout_target, 2),
                "platform_revenue": round(batch.platform_revenue_target, 2),
                "jackpot_contribution": round(batch.jackpot_contribution_target, 2),
            },
            actuals={
                "player_payout": round(batch.actual_player_payout, 2),
                "platform_revenue": round(batch.actual_platform_revenue, 2),
                "jackpot_contribution": round(batch.actual_jackpot_contribution, 2),
            },
            committed_payout=round(batch.committed_payout, 2),
            paid_vs_committed_pct=round(100 * paid / batch.committed_payout, 2)
            if batch.committed_payout else 0.0,
            stake_collected=round(stake, 2),
            realized_player_rtp=round(batch.actual_player_payout / stake, 4) if stake else 0.0,
            remaining_by_tier=remaining,
        )
