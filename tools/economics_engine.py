"""
BLOCKSTAKE — Economics Engine

The one object the web layer, the admin console and the CLI talk to. It
wires the store, generator, matcher, reconciler, lifecycle and wallet
together and owns the transaction boundaries.

Player flow:
    engine = EconomicsEngine()
    session = engine.start_game("user-1", bet_amount=1000, skill_level=6)
    # ... board is played up to session.max_score ...
    outcome = engine.complete_game(session.id, final_score=31250)
    # or, if the player walks away: bet refunded, slot back in play
    engine.abandon_game(session.id)

Operator flow:
    batch = engine.generate_batch("Week 12", total_games=5000, average_bet_amount=500)
    engine.activate_batch(batch.id)
    engine.batch_progress(batch.id)
"""

import logging
import math
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from pydantic import ValidationError

from config.settings import DemoConfig, EconomicConfig, EngineConfig
from tools import batch_generator
from tools.batch_lifecycle import BatchLifecycle
from tools.economics_errors import (
    AlreadyConsumed, InvalidInput, NoActiveBatch, NoMatchingSlot, UnknownRecord,
)
from tools.economics_models import (
    GameBatch, GameOutcome, GameSession, JackpotPool, PreGeneratedGame,
    RESULT_WIN, utcnow_iso,
)
from tools.economics_store import EconomicsStore
from tools.outcome_reconciler import OutcomeReconciler, validate_score
from tools.slot_matcher import SlotMatcher, validate_player
from tools.wallet_ledger import TX_GAME_BET, TX_GAME_REFUND, WalletLedger

logger = logging.getLogger("blockstake.engine")

DEMO_PREFIX = "demo-"


class _ClaimLost(Exception):
    """Another session claimed the matched slot first."""


class EconomicsEngine:

    def __init__(self, target: str = None, claim_retries: int = None,
                 claim_ttl_seconds: int = None):
        self.store = EconomicsStore(target)
        self.wallet = WalletLedger()
        self.matcher = SlotMatcher(self.store)
        self.reconciler = OutcomeReconciler(self.store, self.wallet)
        self.lifecycle = BatchLifecycle(self.store)
        self.claim_retries = max(1, claim_retries or EngineConfig.CLAIM_RETRIES)
        self.claim_ttl_seconds = (EngineConfig.CLAIM_TTL_SECONDS if claim_ttl_seconds is None
                                  else max(0, int(claim_ttl_seconds)))

    # ═══════════════════════════════════════════════
    # Game start / game over
    # ═══════════════════════════════════════════════

    def start_game(self, user_id: Optional[str], bet_amount: float, skill_level: int = 5,
                   is_demo: bool = False) -> GameSession:
        bet, skill = validate_player(bet_amount, skill_level)
        bet = round(bet, 2)
        if is_demo:
            return self._start_demo(user_id, bet, skill)
        if not user_id:
            raise InvalidInput("user_id is required for real-money games")

        for attempt in range(1, self.claim_retries + 1):
            try:
                return self._claim_and_open(user_id, bet, skill)
            except _ClaimLost:
                logger.info(f"Claim race lost for {user_id} (attempt {attempt}/{self.claim_retries})")
        raise NoMatchingSlot(f"could not reserve a slot after {self.claim_retries} attempts")

    def _claim_and_open(self, user_id: str, bet: float, skill: int) -> GameSession:
        """Match, claim, open the session and take the bet as one unit."""
        with self.store.transaction() as db:
            self._expire_stale(db)
            batch = self.store.get_active_batch(db)
            if batch is None:
                raise NoActiveBatch("no batch is active")
            slot = self.matcher.reserve(db, batch, bet, skill)
            if slot is None:
                raise NoMatchingSlot(f"batch '{batch.batch_name}' has no open slots")

            session_id = str(uuid.uuid4())
            if not self.store.claim_slot(db, slot.id, session_id):
                raise _ClaimLost(slot.id)
            slot.session_id = session_id

            session = GameSession(id=session_id, user_id=user_id, bet_amount=bet,
                                  slot=slot, skill_level=skill, batch_id=batch.id)
            self.store.insert_session(db, session)
            self.wallet.debit(db, user_id, bet, tx_type=TX_GAME_BET, reference_id=session_id)

        logger.info(f"Session {session_id} started: user={user_id} bet={bet} "
                    f"slot=#{slot.game_index} max_score={slot.max_achievable_score}")
        return session

    def _start_demo(self, user_id, bet: float, skill: int) -> GameSession:
        session_id = DEMO_PREFIX + uuid.uuid4().hex
        slot = PreGeneratedGame(
            id=session_id,
            batch_id="demo",
            game_index=0,
            tier="demo",
            bet_amount=bet,
            max_achievable_score=DemoConfig.REFERENCE_SCORE,
            result_type=RESULT_WIN,
            expected_payout=round(bet * DemoConfig.MULTIPLIER, 2),
            skill_requirement=skill,
            win_multiplier=DemoConfig.MULTIPLIER,
        )
        return GameSession(id=session_id, user_id=user_id, bet_amount=bet, slot=slot,
                           is_demo=True, skill_level=skill)

    def complete_game(self, session: Union[GameSession, str], final_score,
                      user_id: str = None) -> GameOutcome:
        """Settle a session. If user_id is given the session must belong to it."""
        session_id = session.id if isinstance(session, GameSession) else str(session or "")
        is_demo = (session.is_demo if isinstance(session, GameSession)
                   else session_id.startswith(DEMO_PREFIX))
        score = validate_score(final_score)
        if is_demo:
            return self._complete_demo(session_id, score)

        with self.store.transaction() as db:
            row = self.store.get_session_row(db, session_id)
            if row is None or (user_id and row["user_id"] != user_id):
                raise UnknownRecord(f"session {session_id} not found")
            if row["status"] != "active":
                logger.warning(f"Session {session_id} is {row['status']}; ignoring score {score}")
                raise AlreadyConsumed(f"session {session_id} is already {row['status']}")

            result = self.reconciler.complete(
                db, row["slot_id"], score, user_id=row["user_id"],
                stake=row["bet_amount"], reference_id=session_id,
            )
            if not self.store.close_session(db, session_id, score, result["payout"], utcnow_iso()):
                raise AlreadyConsumed(f"session {session_id} was completed concurrently")
            balance = (result["balance_after"] if result["balance_after"] is not None
                       else self.wallet.get_balance(db, row["user_id"]))

        return GameOutcome(
            session_id=session_id,
            score=score,
            payout=result["payout"],
            is_win=result["is_win"],
            is_jackpot=result["is_jackpot"],
            result_type=result["result_type"],
            score_ratio=result["score_ratio"],
            balance_after=balance,
        )

    # ═══════════════════════════════════════════════
    # Abandoned games
    # ═══════════════════════════════════════════════

    def abandon_game(self, session_id: str, user_id: str = None) -> dict:
        """Give up a started game: refund the bet and free its slot."""
        with self.store.transaction() as db:
            row = self.store.get_session_row(db, session_id)
            if row is None or (user_id and row["user_id"] != user_id):
                raise UnknownRecord(f"session {session_id} not found")
            if row["status"] != "active" or not self._abandon(db, row, utcnow_iso()):
                raise AlreadyConsumed(f"session {session_id} is already {row['status']}")
            balance = self.wallet.get_balance(db, row["user_id"])
        return {"session_id": session_id, "refund": float(row["bet_amount"]),
                "balance_after": balance}

    def expire_sessions(self, max_age_seconds: int = None) -> int:
        """Abandon every session older than the claim TTL. Returns how many."""
        with self.store.transaction() as db:
            return self._expire_stale(db, max_age_seconds)

    def _expire_stale(self, db, max_age_seconds: int = None) -> int:
        ttl = self.claim_ttl_seconds if max_age_seconds is None else max_age_seconds
        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=ttl)).isoformat()
        when = utcnow_iso()
        expired = sum(1 for row in self.store.stale_sessions(db, cutoff)
                      if self._abandon(db, row, when))
        if expired:
            logger.info(f"Expired {expired} session(s) older than {ttl}s")
        return expired

    def _abandon(self, db, row: dict, when: str) -> bool:
        if not self.store.abandon_session(db, row["id"], when):
            return False
        self.store.release_slot(db, row["slot_id"], row["id"])
        self.wallet.credit(db, row["user_id"], row["bet_amount"],
                           tx_type=TX_GAME_REFUND, reference_id=row["id"])
        logger.warning(f"Session {row['id']} abandoned; refunded {row['bet_amount']} "
                       f"to {row['user_id']} and released slot {row['slot_id']}")
        return True

    def _complete_demo(self, session_id: str, score: int) -> GameOutcome:
        ref = DemoConfig.REFERENCE_SCORE
        payout = math.floor(round(score / ref * DemoConfig.MULTIPLIER * DemoConfig.GAIN_RATE, 4))
        return GameOutcome(
            session_id=session_id,
            score=score,
            payout=payout,
            is_win=payout > 0,
            is_jackpot=False,
            is_demo=True,
            result_type=RESULT_WIN,
            score_ratio=round(min(score / ref, 1.0), 4) if ref else 1.0,
        )

    # ═══════════════════════════════════════════════
    # Batches
    # ═══════════════════════════════════════════════

    def preview_batch(self, batch_name: str, total_games: int, average_bet_amount: float,
                      seed: int = None) -> dict:
        """Generate in memory only and report what the batch would look like."""
        config = self.get_config()
        batch, slots = batch_generator.generate(batch_name, total_games, average_bet_amount,
                                                config, random.Random(seed))
        return {"batch": batch.to_dict(), "summary": batch_generator.summarize_slots(slots)}

    def generate_batch(self, batch_name: str, total_games: int, average_bet_amount: float,
                       seed: int = None, activate: bool = False) -> GameBatch:
        config = self.get_config()
        batch, slots = batch_generator.generate(batch_name, total_games, average_bet_amount,
                                                config, random.Random(seed))
        with self.store.transaction() as db:
            self.store.persist_batch(db, batch)
            self.store.persist_slots(db, slots)
            if batch.jackpot_contribution_target > 0:
                self.store.fund_jackpot(db, batch.jackpot_contribution_target)
        logger.info(f"Persisted batch {batch.id} with {len(slots)} slots "
                    f"(config v{config.version})")
        if activate:
            return self.activate_batch(batch.id)
        return batch

    def activate_batch(self, batch_id: str) -> GameBatch:
        return self.lifecycle.activate(batch_id)

    def deactivate_batch(self, batch_id: str) -> GameBatch:
        return self.lifecycle.deactivate(batch_id)

    def list_batches(self) -> list[GameBatch]:
        return self.lifecycle.list_all()

    def get_active_batch(self) -> Optional[GameBatch]:
        return self.lifecycle.get_active()

    def get_batch(self, batch_id: str) -> GameBatch:
        return self.lifecycle.get(batch_id)

    def batch_progress(self, batch_id: str):
        return self.lifecycle.progress(batch_id)

    def list_batch_slots(self, batch_id: str, status: str = "all", sort_by: str = "game_index",
                         limit: int = 500, offset: int = 0) -> list[PreGeneratedGame]:
        if status not in ("all", "played", "unplayed"):
            raise InvalidInput(f"status must be all, played or unplayed (got {status!r})")
        with self.store.reading() as db:
            if self.store.get_batch(db, batch_id) is None:
                raise UnknownRecord(f"batch {batch_id} not found")
            return self.store.list_slots(db, batch_id, status=status, sort_by=sort_by,
                                         limit=limit, offset=offset)

    # ═══════════════════════════════════════════════
    # Config / jackpot / wallet
    # ═══════════════════════════════════════════════

    def get_config(self) -> EconomicConfig:
        with self.store.reading() as db:
            return self.store.get_config(db)

    def update_config(self, changes: dict, updated_by: str = None) -> EconomicConfig:
        """Merge changes over the current config and store it as a new version."""
        if not isinstance(changes, dict) or not changes:
            raise InvalidInput("config update must be a non-empty object")
        with self.store.transaction() as db:
            current = self.store.get_config(db)
            merged = current.economic_fields()
            unknown = set(changes) - set(merged)
            if unknown:
                raise InvalidInput(f"unknown config fields: {sorted(unknown)}")
            merged.update(changes)
            try:
                config = EconomicConfig(**merged)
            except ValidationError as e:
                raise InvalidInput(f"invalid economic config: {e.errors()[0]['msg']}") from e
            saved = self.store.insert_config(db, config, updated_by=updated_by)
        logger.info(f"Economic config v{saved.version} saved by {updated_by or 'unknown'}: {changes}")
        return saved

    def get_jackpot(self) -> JackpotPool:
        with self.store.reading() as db:
            return self.store.get_jackpot(db)

    def get_wallet(self, user_id: str) -> dict:
        with self.store.reading() as db:
            return self.wallet.get_wallet(db, user_id)

    def deposit(self, user_id: str, amount) -> float:
        if not user_id:
            raise InvalidInput("user_id is required")
        with self.store.transaction() as db:
            return self.wallet.deposit(db, user_id, amount)
