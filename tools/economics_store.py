"""
BLOCKSTAKE — Economics Store

Durable home of the economic config, batches, slots, jackpot pool and game
sessions. Every method takes an open DatabaseConnection so callers can
compose several writes into one transaction:

    store = EconomicsStore("data/blockstake.db")
    with store.transaction() as db:
        store.persist_batch(db, batch)
        store.persist_slots(db, slots)

Shared aggregates are only ever changed with single-statement atomic
updates (x = x + ?), and slot consumption / claims are conditional updates
whose rowcount tells the caller whether it won.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Optional

from pydantic import ValidationError

from config.database import DB_ERRORS, connect, default_target, init_db
from config.settings import DEFAULT_ECONOMIC_CONFIG, EconomicConfig
from tools.economics_errors import InvalidInput, PersistenceFailure
from tools.economics_models import (
    GameBatch, GameSession, JackpotPool, PreGeneratedGame, utcnow_iso,
)

logger = logging.getLogger("blockstake.store")

JACKPOT_ID = "global"

# Columns update_batch_aggregates may touch (all are += deltas)
_AGGREGATE_COLUMNS = {
    "games_played",
    "actual_player_payout",
    "actual_platform_revenue",
    "actual_jackpot_contribution",
}

_SLOT_COLUMNS = (
    "id", "batch_id", "game_index", "tier", "bet_amount", "max_achievable_score",
    "result_type", "win_multiplier", "expected_payout", "skill_requirement", "is_played",
)

_SLOT_SORTS = {
    "game_index": "game_index ASC",
    "target_score": "max_achievable_score DESC",
    "max_payout": "expected_payout DESC",
    "played_at": "played_at DESC",
}


class EconomicsStore:
    """Table-level operations for the economics engine."""

    def __init__(self, target: str = None):
        self.target = target or default_target()
        init_db(self.target)
        self._seed_default_config()

    # ─── Connections ─────────────────────────────────────────

    def connect(self):
        return connect(self.target)

    @contextmanager
    def transaction(self):
        """Open a connection and run one atomic unit of work on it.

        Driver errors roll the whole unit back and surface as
        PersistenceFailure so nothing is left half-committed.
        """
        try:
            db = self.connect()
        except DB_ERRORS as e:
            raise PersistenceFailure(f"store unavailable: {e}") from e
        try:
            with db.transaction():
                yield db
        except DB_ERRORS as e:
            logger.error(f"Transaction aborted: {e}")
            raise PersistenceFailure(f"transaction aborted: {e}") from e
        finally:
            db.close()

    @contextmanager
    def reading(self):
        """Connection for read-only queries."""
        try:
            db = self.connect()
        except DB_ERRORS as e:
            raise PersistenceFailure(f"store unavailable: {e}") from e
        try:
            yield db
        except DB_ERRORS as e:
            raise PersistenceFailure(f"query failed: {e}") from e
        finally:
            db.close()

    # ─── Economic Config ─────────────────────────────────────

    def _seed_default_config(self):
        with self.transaction() as db:
            db.execute("SELECT COUNT(*) AS n FROM economic_config")
            if db.fetchone()["n"] == 0:
                self._insert_config_row(db, DEFAULT_ECONOMIC_CONFIG, version=1,
                                        updated_by="system", on_conflict_ignore=True)
                logger.info("Seeded default economic config (version 1)")

    def get_config(self, db) -> EconomicConfig:
        """Latest config version (defaults if the table is somehow empty)."""
        row = db.execute(
            "SELECT * FROM economic_config ORDER BY version DESC LIMIT 1"
        ).fetchone()
        if not row:
            return DEFAULT_ECONOMIC_CONFIG
        try:
            return EconomicConfig(
                player_share_pct=row["player_share_pct"],
                platform_share_pct=row["platform_share_pct"],
                jackpot_share_pct=row["jackpot_share_pct"],
                base_return_rate=row["base_return_rate"],
                max_win_multiplier=row["max_win_multiplier"],
                jackpot_trigger_rate=row["jackpot_trigger_rate"],
                version=row["version"],
                created_at=row["created_at"],
            )
        except ValidationError as e:
            raise InvalidInput(f"stored economic config v{row['version']} is invalid: {e}") from e

    def insert_config(self, db, config: EconomicConfig, updated_by: str = None) -> EconomicConfig:
        """Write config as the next version. Older versions stay."""
        row = db.execute("SELECT COALESCE(MAX(version), 0) AS v FROM economic_config").fetchone()
        version = int(row["v"]) + 1
        return self._insert_config_row(db, config, version=version, updated_by=updated_by)

    def _insert_config_row(self, db, config: EconomicConfig, version: int,
                           updated_by: str = None, on_conflict_ignore: bool = False):
        created_at = utcnow_iso()
        sql = (
            """INSERT INTO economic_config
               (id, version, player_share_pct, platform_share_pct, jackpot_share_pct,
                base_return_rate, max_win_multiplier, jackpot_trigger_rate,
                updated_by, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"""
        )
        if on_conflict_ignore:
            sql += " ON CONFLICT (version) DO NOTHING"
        db.execute(sql, (
            str(uuid.uuid4()), version, config.player_share_pct, config.platform_share_pct,
            config.jackpot_share_pct, config.base_return_rate, config.max_win_multiplier,
            config.jackpot_trigger_rate, updated_by, created_at,
        ))
        return config.model_copy(update={"version": version, "created_at": created_at})

    # ─── Batches ─────────────────────────────────────────────

    def persist_batch(self, db, batch: GameBatch):
        db.execute(
            """INSERT INTO game_batches
               (id, batch_name, total_games, average_bet_amount, total_investment,
                player_payout_target, platform_revenue_target, jackpot_contribution_target,
                committed_payout, config_version, is_active, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (batch.id, batch.batch_name, batch.total_games, batch.average_bet_amount,
             batch.total_investment, batch.player_payout_target,
             batch.platform_revenue_target, batch.jackpot_contribution_target,
             batch.committed_payout, batch.config_version, int(batch.is_active),
             batch.created_at),
        )

    def get_batch(self, db, batch_id: str) -> Optional[GameBatch]:
        row = db.execute("SELECT * FROM game_batches WHERE id=?", (batch_id,)).fetchone()
        return GameBatch.from_row(row) if row else None

    def list_batches(self, db) -> list[GameBatch]:
        rows = db.execute(
            "SELECT * FROM game_batches ORDER BY created_at DESC, id"
        ).fetchall()
        return [GameBatch.from_row(r) for r in rows]

    def get_active_batch(self, db) -> Optional[GameBatch]:
        row = db.execute("SELECT * FROM game_batches WHERE is_active=1").fetchone()
        return GameBatch.from_row(row) if row else None

    def count_active_batches(self, db) -> int:
        return db.execute(
            "SELECT COUNT(*) AS n FROM game_batches WHERE is_active=1"
        ).fetchone()["n"]

    def set_active_batch(self, db, batch_id: str) -> bool:
        """Make batch_id the only active batch. Call inside a transaction."""
        db.execute("UPDATE game_batches SET is_active=0 WHERE is_active=1 AND id<>?", (batch_id,))
        db.execute("UPDATE game_batches SET is_active=1 WHERE id=?", (batch_id,))
        return db.rowcount == 1

    def clear_active_batch(self, db, batch_id: str) -> bool:
        db.execute("UPDATE game_batches SET is_active=0 WHERE id=? AND is_active=1", (batch_id,))
        return db.rowcount == 1

    def update_batch_aggregates(self, db, batch_id: str, deltas: dict):
        """Atomically add deltas to the batch running aggregates."""
        bad = set(deltas) - _AGGREGATE_COLUMNS
        if bad:
            raise ValueError(f"Invalid aggregate columns: {bad}")
        if not deltas:
            return
        cols = sorted(deltas)
        sets = ", ".join(f"{c} = {c} + ?" for c in cols)
        db.execute(f"UPDATE game_batches SET {sets} WHERE id=?",
                   [deltas[c] for c in cols] + [batch_id])

    # ─── Slots ───────────────────────────────────────────────

    def persist_slots(self, db, slots: list[PreGeneratedGame]):
        placeholders = ", ".join("?" for _ in _SLOT_COLUMNS)
        db.executemany(
            f"INSERT INTO pre_generated_games ({', '.join(_SLOT_COLUMNS)}) VALUES ({placeholders})",
            [
                (s.id, s.batch_id, s.game_index, s.tier, s.bet_amount, s.max_achievable_score,
                 s.result_type, s.win_multiplier, s.expected_payout, s.skill_requirement,
                 int(s.is_played))
                for s in slots
            ],
        )

    def get_slot(self, db, slot_id: str) -> Optional[PreGeneratedGame]:
        row = db.execute("SELECT * FROM pre_generated_games WHERE id=?", (slot_id,)).fetchone()
        return PreGeneratedGame.from_row(row) if row else None

    def query_unplayed_slot(self, db, batch_id: str, filters: dict = None) -> Optional[PreGeneratedGame]:
        """Lowest game_index slot that is neither played nor claimed.

        filters: optional min_bet / max_bet / min_skill / max_skill bounds.
        """
        filters = filters or {}
        sql = ("SELECT * FROM pre_generated_games "
               "WHERE batch_id=? AND is_played=0 AND session_id IS NULL")
        params = [batch_id]
        if filters.get("min_bet") is not None:
            sql += " AND bet_amount >= ?"
            params.append(filters["min_bet"])
        if filters.get("max_bet") is not None:
            sql += " AND bet_amount <= ?"
            params.append(filters["max_bet"])
        if filters.get("min_skill") is not None:
            sql += " AND skill_requirement >= ?"
            params.append(filters["min_skill"])
        if filters.get("max_skill") is not None:
            sql += " AND skill_requirement <= ?"
            params.append(filters["max_skill"])
        sql += " ORDER BY game_index LIMIT 1"
        row = db.execute(sql, params).fetchone()
        return PreGeneratedGame.from_row(row) if row else None

    def claim_slot(self, db, slot_id: str, session_id: str) -> bool:
        """Claim an open slot for a session. False if someone got there first."""
        db.execute(
            """UPDATE pre_generated_games SET session_id=?, claimed_at=?
               WHERE id=? AND is_played=0 AND session_id IS NULL""",
            (session_id, utcnow_iso(), slot_id),
        )
        return db.rowcount == 1

    def mark_slot_played(self, db, slot_id: str, actual_score: int, actual_payout: float,
                         played_at: str) -> bool:
        """Flip is_played 0→1 exactly once. False if it was already played."""
        db.execute(
            """UPDATE pre_generated_games
               SET is_played=1, played_at=?, actual_score=?, actual_payout=?
               WHERE id=? AND is_played=0""",
            (played_at, actual_score, actual_payout, slot_id),
        )
        return db.rowcount == 1

    def list_slots(self, db, batch_id: str, status: str = "all",
                   sort_by: str = "game_index", limit: int = 500, offset: int = 0) -> list[PreGeneratedGame]:
        sql = "SELECT * FROM pre_generated_games WHERE batch_id=?"
        params = [batch_id]
        if status == "played":
            sql += " AND is_played=1"
        elif status == "unplayed":
            sql += " AND is_played=0"
        sql += f" ORDER BY {_SLOT_SORTS.get(sort_by, 'game_index ASC')}, game_index"
        sql += " LIMIT ? OFFSET ?"
        params.extend([int(limit), int(offset)])
        return [PreGeneratedGame.from_row(r) for r in db.execute(sql, params).fetchall()]

    def open_slots_by_tier(self, db, batch_id: str) -> dict:
        rows = db.execute(
            """SELECT tier, COUNT(*) AS n FROM pre_generated_games
               WHERE batch_id=? AND is_played=0 GROUP BY tier""",
            (batch_id,),
        ).fetchall()
        return {r["tier"]: r["n"] for r in rows}

    def paid_payout_total(self, db, batch_id: str) -> float:
        row = db.execute(
            """SELECT COALESCE(SUM(actual_payout), 0) AS paid FROM pre_generated_games
               WHERE batch_id=? AND is_played=1""",
            (batch_id,),
        ).fetchone()
        return float(row["paid"] or 0)

    # ─── Jackpot Pool ────────────────────────────────────────

    def get_jackpot(self, db) -> JackpotPool:
        row = db.execute("SELECT * FROM jackpot_pool WHERE id=?", (JACKPOT_ID,)).fetchone()
        return JackpotPool.from_row(row) if row else JackpotPool()

    def fund_jackpot(self, db, amount: float):
        db.execute(
            """UPDATE jackpot_pool
               SET current_amount = current_amount + ?,
                   total_contributions = total_contributions + ?, updated_at=?
               WHERE id=?""",
            (amount, amount, utcnow_iso(), JACKPOT_ID),
        )

    def award_jackpot(self, db, winner_id: Optional[str], amount: float, when: str):
        """Pay the pool out: reset to zero and record the winner."""
        db.execute(
            """UPDATE jackpot_pool
               SET current_amount=0, total_payouts = total_payouts + ?,
                   last_winner_id=?, last_win_amount=?, last_win_date=?, updated_at=?
               WHERE id=?""",
            (amount, winner_id, amount, when, when, JACKPOT_ID),
        )

    # ─── Game Sessions ───────────────────────────────────────

    def insert_session(self, db, session: GameSession):
        db.execute(
            """INSERT INTO game_sessions
               (id, user_id, slot_id, batch_id, bet_amount, skill_level, status, started_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (session.id, session.user_id, session.slot.id, session.batch_id,
             session.bet_amount, session.skill_level, session.status, session.started_at),
        )

    def get_session_row(self, db, session_id: str) -> Optional[dict]:
        return db.execute("SELECT * FROM game_sessions WHERE id=?", (session_id,)).fetchone()

    def close_session(self, db, session_id: str, score: int, payout: float, when: str) -> bool:
        db.execute(
            """UPDATE game_sessions
               SET status='completed', score=?, payout_amount=?, completed_at=?
               WHERE id=? AND status='active'""",
            (score, payout, when, session_id),
        )
        return db.rowcount == 1

    def stale_sessions(self, db, started_before: str, limit: int = 100) -> list[dict]:
        """Active sessions opened before the cutoff, oldest first."""
        return db.execute(
            """SELECT * FROM game_sessions WHERE status='active' AND started_at < ?
               ORDER BY started_at LIMIT ?""",
            (started_before, int(limit)),
        ).fetchall()

    def abandon_session(self, db, session_id: str, when: str) -> bool:
        db.execute(
            """UPDATE game_sessions SET status='abandoned', completed_at=?
               WHERE id=? AND status='active'""",
            (when, session_id),
        )
        return db.rowcount == 1

    def release_slot(self, db, slot_id: str, session_id: str) -> bool:
        """Hand an unplayed slot back to the matcher if session_id still holds it."""
        db.execute(
            """UPDATE pre_generated_games SET session_id=NULL, claimed_at=NULL
               WHERE id=? AND session_id=? AND is_played=0""",
            (slot_id, session_id),
        )
        return db.rowcount == 1
