#!/usr/bin/env python3
"""
BLOCKSTAKE — Unit & Integration Test Suite

Run: python tests.py
     python tests.py -v                  # verbose
     python tests.py TestBatchGenerator  # run specific class

Test categories:
  TestEconomicConfig    — share bands, sum-to-100, defaults
  TestBatchGenerator    — budget bound, tier mix, loss slots, reproducibility
  TestPayoutRule        — score ratio thresholds, flooring, edge cases
  TestSlotMatcher       — window order, fallback, exhaustion
  TestGameFlow          — start/complete, wallet, exactly-once, jackpot
  TestAbandonedGames    — refunds, claim expiry, slot takeover
  TestBatchLifecycle    — single active batch, progress report
  TestConfigVersions    — partial updates, validation, versioning
  TestDemoMode          — stateless demo sessions
  TestBatchSimulator    — playthrough simulation
  TestEconomicsCli      — operator CLI through main()
"""

import io
import math
import random
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# ── Ensure project root is on sys.path ──
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from rich.console import Console

from config.settings import DEFAULT_ECONOMIC_CONFIG, DemoConfig, EconomicConfig, EngineConfig
from tools import batch_generator
from tools.batch_generator import build_tiers, generate, summarize_slots
from tools.economics_engine import EconomicsEngine
from tools.economics_errors import (
    AlreadyConsumed, InsufficientFunds, InvalidInput, NoActiveBatch,
    NoMatchingSlot, PersistenceFailure, UnknownRecord,
)
from tools.economics_models import GameBatch, PreGeneratedGame
from tools.outcome_reconciler import compute_payout


def _slot(result_type="win", expected=500.0, max_score=50_000, **kw):
    fields = dict(id="s1", batch_id="b1", game_index=0, tier="medium", bet_amount=100.0,
                  max_achievable_score=max_score, result_type=result_type,
                  expected_payout=expected, skill_requirement=5)
    fields.update(kw)
    return PreGeneratedGame(**fields)


class _EngineCase(unittest.TestCase):
    """Fresh engine on a throwaway SQLite file per test."""

    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="blockstake-")
        self.engine = EconomicsEngine(str(Path(self.tmp) / "test.db"))

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def manual_batch(self, specs, name="manual", activate=True, jackpot_pct=0.0):
        """Persist a batch with hand-written slots: specs = [(bet, skill, result, expected, max_score)]."""
        total = sum(s[0] for s in specs)
        batch = GameBatch(
            id=f"batch-{name}", batch_name=name, total_games=len(specs),
            average_bet_amount=total / len(specs), total_investment=total,
            player_payout_target=total * 0.7, platform_revenue_target=total * (0.3 - jackpot_pct),
            jackpot_contribution_target=total * jackpot_pct,
            committed_payout=sum(s[3] for s in specs),
        )
        slots = [
            PreGeneratedGame(id=f"{name}-{i}", batch_id=batch.id, game_index=i, tier="medium",
                             bet_amount=bet, max_achievable_score=max_score, result_type=result,
                             expected_payout=expected, skill_requirement=skill,
                             win_multiplier=None if result == "loss" else 2.0)
            for i, (bet, skill, result, expected, max_score) in enumerate(specs)
        ]
        with self.engine.store.transaction() as db:
            self.engine.store.persist_batch(db, batch)
            self.engine.store.persist_slots(db, slots)
        if activate:
            self.engine.activate_batch(batch.id)
        return batch

    def funded(self, user_id="u1", amount=1_000_000):
        self.engine.deposit(user_id, amount)
        return user_id


# ============================================================
# Economic Config
# ============================================================

class TestEconomicConfig(unittest.TestCase):

    def test_defaults(self):
        cfg = DEFAULT_ECONOMIC_CONFIG
        self.assertEqual((cfg.player_share_pct, cfg.platform_share_pct, cfg.jackpot_share_pct),
                         (70.0, 20.0, 10.0))
        self.assertEqual(cfg.base_return_rate, 0.01)
        self.assertEqual(cfg.max_win_multiplier, 15.0)

    def test_shares_must_sum_to_100(self):
        with self.assertRaises(ValueError):
            EconomicConfig(player_share_pct=70, platform_share_pct=20, jackpot_share_pct=5)

    def test_share_bands(self):
        with self.assertRaises(ValueError):
            EconomicConfig(player_share_pct=95, platform_share_pct=5, jackpot_share_pct=0)
        with self.assertRaises(ValueError):
            EconomicConfig(player_share_pct=50, platform_share_pct=45, jackpot_share_pct=5)
        EconomicConfig(player_share_pct=90, platform_share_pct=10, jackpot_share_pct=0)

    def test_return_rate_and_multiplier_bounds(self):
        with self.assertRaises(ValueError):
            EconomicConfig(base_return_rate=0)
        with self.assertRaises(ValueError):
            EconomicConfig(max_win_multiplier=5)

    def test_unknown_field_rejected(self):
        with self.assertRaises(ValueError):
            EconomicConfig(house_edge=3)


# ============================================================
# Batch Generator
# ============================================================

class TestBatchGenerator(unittest.TestCase):

    def test_targets_from_shares(self):
        """100 games × 1000 at 70% → player target 70,000."""
        batch, slots = generate("b", 100, 1000, DEFAULT_ECONOMIC_CONFIG, random.Random(1))
        self.assertEqual(batch.total_investment, 100_000)
        self.assertAlmostEqual(batch.player_payout_target, 70_000)
        self.assertAlmostEqual(batch.platform_revenue_target, 20_000)
        self.assertAlmostEqual(batch.jackpot_contribution_target, 10_000)
        self.assertEqual(len(slots), 100)
        self.assertLessEqual(sum(s.expected_payout for s in slots), 70_000 + 1e-6)

    def test_budget_bound_many_seeds(self):
        for seed in range(40):
            games = 10 + seed * 37
            batch, slots = generate("b", games, 250, DEFAULT_ECONOMIC_CONFIG, random.Random(seed))
            committed = sum(s.expected_payout for s in slots)
            self.assertLessEqual(committed, batch.player_payout_target + 1e-6, f"seed {seed}")

    def test_budget_bound_with_high_multiplier(self):
        cfg = EconomicConfig(max_win_multiplier=1000)
        for seed in range(10):
            batch, slots = generate("b", 500, 100, cfg, random.Random(seed))
            self.assertLessEqual(sum(s.expected_payout for s in slots),
                                 batch.player_payout_target + 1e-6)

    def test_tier_distribution(self):
        """Tier shares within 2 percentage points of their weights over 10,000 slots."""
        _, slots = generate("big", 10_000, 100, DEFAULT_ECONOMIC_CONFIG, random.Random(1234))
        counts = {}
        for s in slots:
            counts[s.tier] = counts.get(s.tier, 0) + 1
        for tier in build_tiers(DEFAULT_ECONOMIC_CONFIG.max_win_multiplier):
            share = counts.get(tier.name, 0) / len(slots)
            self.assertAlmostEqual(share, tier.weight, delta=0.02, msg=tier.name)

    def test_indexes_are_a_permutation(self):
        _, slots = generate("b", 250, 100, DEFAULT_ECONOMIC_CONFIG, random.Random(3))
        self.assertEqual(sorted(s.game_index for s in slots), list(range(250)))

    def test_slot_shapes(self):
        _, slots = generate("b", 2000, 100, DEFAULT_ECONOMIC_CONFIG, random.Random(5))
        tiers = {t.name: t for t in build_tiers(DEFAULT_ECONOMIC_CONFIG.max_win_multiplier)}
        for s in slots:
            self.assertGreaterEqual(s.bet_amount, 80.0)
            self.assertLessEqual(s.bet_amount, 120.0)
            lo, hi = tiers[s.tier].skill_range
            self.assertTrue(lo <= s.skill_requirement <= hi)
            if s.result_type == "loss":
                self.assertEqual(s.expected_payout, 0)
                self.assertIsNone(s.win_multiplier)
                self.assertEqual(s.max_achievable_score, math.floor(s.bet_amount * 0.3 / 0.01))
            else:
                self.assertEqual(s.max_achievable_score, math.floor(s.expected_payout / 0.01))
            if s.tier == "jackpot":
                self.assertEqual(s.result_type, "jackpot")

    def test_win_rate_roughly_seventy_percent(self):
        _, slots = generate("b", 10_000, 100, DEFAULT_ECONOMIC_CONFIG, random.Random(9))
        non_jackpot = [s for s in slots if s.tier != "jackpot"]
        wins = sum(1 for s in non_jackpot if s.result_type == "win")
        self.assertAlmostEqual(wins / len(non_jackpot), 0.70, delta=0.02)

    def test_seed_reproduces_batch(self):
        def shape(seed):
            _, slots = generate("b", 300, 50, DEFAULT_ECONOMIC_CONFIG, random.Random(seed))
            return [(s.game_index, s.tier, s.bet_amount, s.result_type, s.expected_payout,
                     s.skill_requirement, s.max_achievable_score) for s in slots]
        self.assertEqual(shape(11), shape(11))
        self.assertNotEqual(shape(11), shape(12))

    def test_invalid_requests(self):
        with self.assertRaises(InvalidInput):
            generate("b", 0, 100, DEFAULT_ECONOMIC_CONFIG)
        with self.assertRaises(InvalidInput):
            generate("b", 10, -5, DEFAULT_ECONOMIC_CONFIG)
        with self.assertRaises(InvalidInput):
            generate("  ", 10, 100, DEFAULT_ECONOMIC_CONFIG)

    def test_batch_size_capped(self):
        with patch.object(EngineConfig, "MAX_BATCH_GAMES", 50):
            with self.assertRaises(InvalidInput):
                generate("b", 51, 100, DEFAULT_ECONOMIC_CONFIG)
            batch, slots = generate("b", 50, 100, DEFAULT_ECONOMIC_CONFIG, random.Random(1))
        self.assertEqual(len(slots), 50)
        with self.assertRaises(InvalidInput):
            generate("b", 2.5, 100, DEFAULT_ECONOMIC_CONFIG)

    def test_summarize_slots(self):
        _, slots = generate("b", 500, 100, DEFAULT_ECONOMIC_CONFIG, random.Random(2))
        summary = summarize_slots(slots)
        self.assertEqual(summary["total_slots"], 500)
        self.assertEqual(sum(t["count"] for t in summary["by_tier"].values()), 500)
        self.assertEqual(sum(summary["outcomes"].values()), 500)
        self.assertAlmostEqual(summary["committed_payout"],
                               round(sum(s.expected_payout for s in slots), 2), places=2)


# ============================================================
# Payout Rule
# ============================================================

class TestPayoutRule(unittest.TestCase):

    def test_win_scaled_by_score_ratio(self):
        """expected 500, cap 50,000: 30,000 → 300; 10,000 → 0."""
        slot = _slot("win", 500, 50_000)
        self.assertEqual(compute_payout(slot, 30_000), 300)
        self.assertEqual(compute_payout(slot, 10_000), 0)
        self.assertEqual(compute_payout(slot, 25_000), 250)
        self.assertEqual(compute_payout(slot, 24_999), 0)

    def test_ratio_clamped_to_one(self):
        self.assertEqual(compute_payout(_slot("win", 500, 50_000), 999_999), 500)

    def test_payout_floored(self):
        self.assertEqual(compute_payout(_slot("win", 123.45, 12_345), 12_345), 123)
        self.assertEqual(compute_payout(_slot("win", 10.0, 1000), 999), 9)

    def test_jackpot_threshold(self):
        slot = _slot("jackpot", 2000, 200_000)
        self.assertEqual(compute_payout(slot, 160_000), 2000)
        self.assertEqual(compute_payout(slot, 159_999), 0)

    def test_loss_pays_nothing(self):
        self.assertEqual(compute_payout(_slot("loss", 0, 3000), 3000), 0)

    def test_zero_cap_counts_as_full_ratio(self):
        self.assertEqual(compute_payout(_slot("win", 0.0, 0), 0), 0)
        self.assertEqual(compute_payout(_slot("loss", 0.0, 0), 10), 0)

    def test_negative_score_rejected(self):
        with self.assertRaises(InvalidInput):
            compute_payout(_slot(), -1)

    def test_never_exceeds_expected(self):
        rng = random.Random(0)
        for _ in range(2000):
            expected = round(rng.uniform(0, 5000), 2)
            cap = max(0, math.floor(expected / 0.01))
            slot = _slot(rng.choice(["win", "jackpot", "loss"]), expected, cap)
            self.assertLessEqual(compute_payout(slot, rng.randint(0, cap * 2 + 1)), expected)


# ============================================================
# Slot Matcher
# ============================================================

class TestSlotMatcher(_EngineCase):

    def _reserve(self, batch, bet, skill=5):
        with self.engine.store.reading() as db:
            return self.engine.matcher.reserve(db, batch, bet, skill)

    def test_tight_window_first(self):
        batch = self.manual_batch([
            (500, 9, "win", 100, 10_000),
            (1000, 5, "win", 200, 20_000),
            (1000, 5, "loss", 0, 30_000),
        ])
        self.assertEqual(self._reserve(batch, 1000, 5).game_index, 1)

    def test_skill_band_then_unconstrained(self):
        batch = self.manual_batch([
            (500, 9, "win", 100, 10_000),
            (1000, 5, "win", 200, 20_000),
        ])
        # skill 1 → band 1..3 matches nothing; last window drops skill and takes lowest index
        self.assertEqual(self._reserve(batch, 1000, 1).game_index, 0)

    def test_wider_bet_window(self):
        batch = self.manual_batch([
            (100, 5, "win", 50, 5_000),
            (1800, 5, "win", 200, 20_000),
        ])
        # 1800 is outside ×1.3 of 1000 but inside ×2.0
        self.assertEqual(self._reserve(batch, 1000, 5).game_index, 1)

    def test_fallback_when_nothing_fits(self):
        batch = self.manual_batch([(5000, 10, "win", 100, 10_000)])
        self.assertEqual(self._reserve(batch, 1, 1).game_index, 0)

    def test_none_only_when_exhausted(self):
        batch = self.manual_batch([(100, 5, "loss", 0, 3000)])
        self.assertIsNotNone(self._reserve(batch, 100))
        s = self.engine.start_game(self.funded(), 100)
        self.engine.complete_game(s.id, 0)
        self.assertIsNone(self._reserve(batch, 100))

    def test_abandoned_slot_matchable_again(self):
        batch = self.manual_batch([(100, 5, "loss", 0, 3000)])
        s = self.engine.start_game(self.funded(), 100)
        # in flight: held for its own session
        self.assertIsNone(self._reserve(batch, 100))
        self.engine.abandon_game(s.id)
        self.assertEqual(self._reserve(batch, 100).id, "manual-0")

    def test_invalid_player_inputs(self):
        batch = self.manual_batch([(100, 5, "loss", 0, 3000)])
        with self.assertRaises(InvalidInput):
            self._reserve(batch, 0)
        with self.assertRaises(InvalidInput):
            self._reserve(batch, 100, 11)


# ============================================================
# Game Flow
# ============================================================

class TestGameFlow(_EngineCase):

    def test_requires_active_batch(self):
        self.funded()
        with self.assertRaises(NoActiveBatch):
            self.engine.start_game("u1", 100)

    def test_requires_user_for_real_money(self):
        self.manual_batch([(100, 5, "win", 50, 5000)])
        with self.assertRaises(InvalidInput):
            self.engine.start_game(None, 100)

    def test_start_debits_and_claims(self):
        self.manual_batch([(100, 5, "win", 150, 15_000)])
        uid = self.funded(amount=1000)
        session = self.engine.start_game(uid, 100, 5)
        self.assertEqual(session.max_score, 15_000)
        self.assertEqual(self.engine.get_wallet(uid)["balance"], 900)
        slots = self.engine.list_batch_slots("batch-manual")
        self.assertEqual(slots[0].session_id, session.id)
        self.assertFalse(slots[0].is_played)

    def test_insufficient_funds_leaves_slot_open(self):
        self.manual_batch([(100, 5, "win", 150, 15_000)])
        self.engine.deposit("poor", 10)
        with self.assertRaises(InsufficientFunds):
            self.engine.start_game("poor", 100)
        self.assertIsNone(self.engine.list_batch_slots("batch-manual")[0].session_id)
        self.assertEqual(self.engine.get_wallet("poor")["balance"], 10)

    def test_complete_pays_and_updates_aggregates(self):
        batch = self.manual_batch([(1000, 5, "win", 500, 50_000)], jackpot_pct=0.1)
        uid = self.funded(amount=5000)
        session = self.engine.start_game(uid, 1000)
        outcome = self.engine.complete_game(session.id, 30_000)

        self.assertEqual(outcome.payout, 300)
        self.assertTrue(outcome.is_win)
        self.assertEqual(outcome.balance_after, 5000 - 1000 + 300)

        b = self.engine.get_batch(batch.id)
        self.assertEqual(b.games_played, 1)
        self.assertAlmostEqual(b.actual_player_payout, 300)
        self.assertAlmostEqual(b.actual_jackpot_contribution, 100)
        self.assertAlmostEqual(b.actual_platform_revenue, 1000 - 300 - 100)

        slot = self.engine.list_batch_slots(batch.id)[0]
        self.assertTrue(slot.is_played)
        self.assertEqual(slot.actual_score, 30_000)
        self.assertEqual(slot.actual_payout, 300)

        types = [t["type"] for t in self.engine.get_wallet(uid)["transactions"]]
        self.assertIn("game_bet", types)
        self.assertIn("game_win", types)

    def test_low_score_pays_nothing(self):
        self.manual_batch([(1000, 5, "win", 500, 50_000)])
        uid = self.funded(amount=1000)
        session = self.engine.start_game(uid, 1000)
        outcome = self.engine.complete_game(session.id, 10_000)
        self.assertEqual(outcome.payout, 0)
        self.assertFalse(outcome.is_win)
        self.assertEqual(outcome.balance_after, 0)

    def test_double_completion_rejected(self):
        batch = self.manual_batch([(1000, 5, "win", 500, 50_000)])
        uid = self.funded()
        session = self.engine.start_game(uid, 1000)
        self.engine.complete_game(session.id, 50_000)
        before = self.engine.get_batch(batch.id)
        balance = self.engine.get_wallet(uid)["balance"]

        with self.assertRaises(AlreadyConsumed):
            self.engine.complete_game(session.id, 50_000)

        after = self.engine.get_batch(batch.id)
        self.assertEqual(after.games_played, before.games_played)
        self.assertEqual(after.actual_player_payout, before.actual_player_payout)
        self.assertEqual(self.engine.get_wallet(uid)["balance"], balance)

    def test_reconciler_rejects_second_consumption(self):
        batch = self.manual_batch([(1000, 5, "win", 500, 50_000)], activate=False)
        with self.engine.store.transaction() as db:
            self.engine.reconciler.complete(db, "manual-0", 50_000)
        with self.assertRaises(AlreadyConsumed):
            with self.engine.store.transaction() as db:
                self.engine.reconciler.complete(db, "manual-0", 50_000)
        self.assertEqual(self.engine.get_batch(batch.id).games_played, 1)

    def test_unknown_session(self):
        with self.assertRaises(UnknownRecord):
            self.engine.complete_game("nope", 10)

    def test_session_owner_checked(self):
        self.manual_batch([(1000, 5, "win", 500, 50_000)])
        session = self.engine.start_game(self.funded("u1"), 1000)
        with self.assertRaises(UnknownRecord):
            self.engine.complete_game(session.id, 100, user_id="someone-else")

    def test_jackpot_resets_pool(self):
        self.manual_batch([(1000, 10, "jackpot", 1000, 100_000)])
        with self.engine.store.transaction() as db:
            self.engine.store.fund_jackpot(db, 2500)
        uid = self.funded()
        session = self.engine.start_game(uid, 1000, 9)
        outcome = self.engine.complete_game(session.id, 80_000)

        self.assertTrue(outcome.is_jackpot)
        self.assertEqual(outcome.payout, 1000)
        pool = self.engine.get_jackpot()
        self.assertEqual(pool.current_amount, 0)
        self.assertEqual(pool.total_payouts, 1000)
        self.assertEqual(pool.last_winner_id, uid)
        self.assertEqual(pool.last_win_amount, 1000)
        self.assertIsNotNone(pool.last_win_date)

    def test_exhausted_batch(self):
        self.manual_batch([(100, 5, "loss", 0, 3000), (100, 5, "loss", 0, 3000)])
        uid = self.funded()
        self.engine.start_game(uid, 100)
        self.engine.start_game(uid, 100)
        with self.assertRaises(NoMatchingSlot):
            self.engine.start_game(uid, 100)

    def test_full_playthrough_respects_budget(self):
        batch = self.engine.generate_batch("run", 200, 100, seed=21, activate=True)
        uid = self.funded(amount=10_000_000)
        paid = 0
        for _ in range(200):
            session = self.engine.start_game(uid, 100, 5)
            paid += self.engine.complete_game(session.id, session.max_score).payout
        for slot in self.engine.list_batch_slots(batch.id):
            self.assertTrue(slot.is_played)
            self.assertLessEqual(slot.actual_payout, slot.expected_payout)
        b = self.engine.get_batch(batch.id)
        self.assertEqual(b.games_played, 200)
        self.assertAlmostEqual(b.actual_player_payout, paid)
        self.assertLessEqual(paid, b.player_payout_target)
        with self.assertRaises(NoMatchingSlot):
            self.engine.start_game(uid, 100)

    def test_generate_funds_jackpot(self):
        batch = self.engine.generate_batch("fund", 100, 1000, seed=1)
        self.assertAlmostEqual(self.engine.get_jackpot().current_amount,
                               batch.jackpot_contribution_target)
        self.assertAlmostEqual(batch.jackpot_contribution_target, 10_000)
        self.assertEqual(len(self.engine.list_batch_slots(batch.id)), 100)

    def test_failed_generation_leaves_nothing_behind(self):
        real_generate = batch_generator.generate

        def clashing_indexes(*args, **kwargs):
            batch, slots = real_generate(*args, **kwargs)
            for s in slots:
                s.game_index = 0
            return batch, slots

        pool_before = self.engine.get_jackpot().current_amount
        with patch("tools.batch_generator.generate", side_effect=clashing_indexes):
            with self.assertRaises(PersistenceFailure) as ctx:
                self.engine.generate_batch("broken", 20, 1000, seed=3, activate=True)
        self.assertTrue(ctx.exception.retryable)

        self.assertEqual(self.engine.list_batches(), [])
        self.assertIsNone(self.engine.get_active_batch())
        self.assertEqual(self.engine.get_jackpot().current_amount, pool_before)
        with self.engine.store.reading() as db:
            row = db.execute("SELECT COUNT(*) AS n FROM pre_generated_games").fetchone()
        self.assertEqual(row["n"], 0)


# ============================================================
# Abandoned Games
# ============================================================

class TestAbandonedGames(_EngineCase):

    def test_abandon_refunds_and_frees_slot(self):
        batch = self.manual_batch([(100, 5, "win", 150, 15_000)])
        uid = self.funded(amount=1000)
        session = self.engine.start_game(uid, 100)

        result = self.engine.abandon_game(session.id, user_id=uid)
        self.assertEqual(result["refund"], 100)
        self.assertEqual(result["balance_after"], 1000)
        types = [t["type"] for t in self.engine.get_wallet(uid)["transactions"]]
        self.assertIn("game_refund", types)

        slot = self.engine.list_batch_slots(batch.id)[0]
        self.assertIsNone(slot.session_id)
        self.assertFalse(slot.is_played)
        self.assertEqual(self.engine.get_batch(batch.id).games_played, 0)

        again = self.engine.start_game(self.funded("u2"), 100)
        self.assertEqual(again.slot.id, slot.id)

    def test_abandoned_session_cannot_complete(self):
        self.manual_batch([(100, 5, "win", 150, 15_000)])
        session = self.engine.start_game(self.funded(), 100)
        self.engine.abandon_game(session.id)
        with self.assertRaises(AlreadyConsumed):
            self.engine.complete_game(session.id, 15_000)
        with self.assertRaises(AlreadyConsumed):
            self.engine.abandon_game(session.id)

    def test_completed_session_cannot_be_abandoned(self):
        self.manual_batch([(100, 5, "win", 150, 15_000)])
        session = self.engine.start_game(self.funded(), 100)
        self.engine.complete_game(session.id, 15_000)
        with self.assertRaises(AlreadyConsumed):
            self.engine.abandon_game(session.id)

    def test_abandon_checks_owner(self):
        self.manual_batch([(100, 5, "win", 150, 15_000)])
        session = self.engine.start_game(self.funded(), 100)
        with self.assertRaises(UnknownRecord):
            self.engine.abandon_game(session.id, user_id="someone-else")
        with self.assertRaises(UnknownRecord):
            self.engine.abandon_game("nope")

    def test_fresh_claim_is_not_expired(self):
        self.manual_batch([(100, 5, "loss", 0, 3000)])
        self.engine.start_game(self.funded("u1"), 100)
        self.assertEqual(self.engine.expire_sessions(), 0)
        with self.assertRaises(NoMatchingSlot):
            self.engine.start_game(self.funded("u2"), 100)

    def test_stale_claim_taken_over_by_next_start(self):
        batch = self.manual_batch([(100, 5, "win", 150, 15_000)])
        first = self.engine.start_game(self.funded("u1", 1000), 100)
        self.engine.claim_ttl_seconds = 0

        second = self.engine.start_game(self.funded("u2", 1000), 100)
        self.assertEqual(second.slot.id, first.slot.id)
        self.assertEqual(self.engine.get_wallet("u1")["balance"], 1000)

        with self.assertRaises(AlreadyConsumed):
            self.engine.complete_game(first.id, 15_000)
        outcome = self.engine.complete_game(second.id, 15_000)
        self.assertEqual(outcome.payout, 150)
        self.assertEqual(self.engine.get_batch(batch.id).games_played, 1)

    def test_expire_sessions_sweeps_all_stale(self):
        batch = self.manual_batch([(100, 5, "loss", 0, 3000), (100, 5, "loss", 0, 3000)])
        uid = self.funded(amount=500)
        self.engine.start_game(uid, 100)
        self.engine.start_game(uid, 100)

        self.assertEqual(self.engine.expire_sessions(max_age_seconds=0), 2)
        self.assertEqual(self.engine.expire_sessions(max_age_seconds=0), 0)
        self.assertEqual(self.engine.get_wallet(uid)["balance"], 500)
        self.assertTrue(all(s.session_id is None for s in self.engine.list_batch_slots(batch.id)))


# ============================================================
# Batch Lifecycle
# ============================================================

class TestBatchLifecycle(_EngineCase):

    def test_single_active_batch(self):
        a = self.engine.generate_batch("a", 10, 100, seed=1)
        b = self.engine.generate_batch("b", 10, 100, seed=2)
        self.engine.activate_batch(a.id)
        self.engine.activate_batch(b.id)
        active = [x for x in self.engine.list_batches() if x.is_active]
        self.assertEqual([x.id for x in active], [b.id])
        self.assertEqual(self.engine.get_active_batch().id, b.id)

    def test_reactivating_is_idempotent(self):
        a = self.engine.generate_batch("a", 10, 100, seed=1, activate=True)
        self.engine.activate_batch(a.id)
        self.assertEqual(self.engine.get_active_batch().id, a.id)

    def test_deactivate(self):
        a = self.engine.generate_batch("a", 10, 100, seed=1, activate=True)
        self.engine.deactivate_batch(a.id)
        self.assertIsNone(self.engine.get_active_batch())

    def test_unknown_batch(self):
        with self.assertRaises(UnknownRecord):
            self.engine.activate_batch("missing")
        with self.assertRaises(UnknownRecord):
            self.engine.batch_progress("missing")
        with self.assertRaises(UnknownRecord):
            self.engine.list_batch_slots("missing")

    def test_list_newest_first(self):
        a = self.engine.generate_batch("a", 5, 100, seed=1)
        b = self.engine.generate_batch("b", 5, 100, seed=2)
        ids = [x.id for x in self.engine.list_batches()]
        self.assertEqual(set(ids), {a.id, b.id})
        self.assertEqual(ids[0], b.id)

    def test_progress_report(self):
        self.manual_batch([
            (1000, 5, "win", 500, 50_000),
            (1000, 5, "loss", 0, 30_000),
            (1000, 5, "win", 400, 40_000),
        ], jackpot_pct=0.1)
        uid = self.funded()
        s1 = self.engine.start_game(uid, 1000)
        self.engine.complete_game(s1.id, s1.max_score)

        p = self.engine.batch_progress("batch-manual")
        self.assertEqual(p.games_played, 1)
        self.assertAlmostEqual(p.completion_pct, 33.33)
        self.assertAlmostEqual(p.stake_collected, 1000)
        self.assertEqual(sum(p.remaining_by_tier.values()), 2)
        self.assertAlmostEqual(p.targets["player_payout"], 2100)
        self.assertAlmostEqual(p.actuals["jackpot_contribution"], 100)
        self.assertEqual(p.committed_payout, 900)
        self.assertIn("realized_player_rtp", p.to_dict())

    def test_slot_listing_filters(self):
        self.manual_batch([(100, 5, "loss", 0, 3000), (100, 5, "win", 90, 9000)])
        uid = self.funded()
        s = self.engine.start_game(uid, 100)
        self.engine.complete_game(s.id, 0)
        self.assertEqual(len(self.engine.list_batch_slots("batch-manual", status="played")), 1)
        self.assertEqual(len(self.engine.list_batch_slots("batch-manual", status="unplayed")), 1)
        by_payout = self.engine.list_batch_slots("batch-manual", sort_by="max_payout")
        self.assertEqual(by_payout[0].expected_payout, 90)
        with self.assertRaises(InvalidInput):
            self.engine.list_batch_slots("batch-manual", status="bogus")


# ============================================================
# Config Versions
# ============================================================

class TestConfigVersions(_EngineCase):

    def test_seeded_defaults(self):
        cfg = self.engine.get_config()
        self.assertEqual(cfg.version, 1)
        self.assertEqual(cfg.player_share_pct, 70)

    def test_partial_update_creates_version(self):
        cfg = self.engine.update_config({"player_share_pct": 75, "platform_share_pct": 15},
                                        updated_by="ops")
        self.assertEqual(cfg.version, 2)
        self.assertEqual(cfg.jackpot_share_pct, 10)
        self.assertEqual(self.engine.get_config().player_share_pct, 75)

        batch = self.engine.generate_batch("v2", 100, 1000, seed=1)
        self.assertEqual(batch.config_version, 2)
        self.assertAlmostEqual(batch.player_payout_target, 75_000)

    def test_invalid_update_writes_nothing(self):
        with self.assertRaises(InvalidInput):
            self.engine.update_config({"player_share_pct": 80})
        with self.assertRaises(InvalidInput):
            self.engine.update_config({"house_edge": 4})
        with self.assertRaises(InvalidInput):
            self.engine.update_config({"player_share_pct": 95, "platform_share_pct": 5,
                                       "jackpot_share_pct": 0})
        with self.assertRaises(InvalidInput):
            self.engine.update_config({})
        self.assertEqual(self.engine.get_config().version, 1)


# ============================================================
# Demo Mode
# ============================================================

class TestDemoMode(_EngineCase):

    def test_demo_needs_no_batch_or_wallet(self):
        session = self.engine.start_game(None, 500, is_demo=True)
        self.assertTrue(session.id.startswith("demo-"))
        self.assertTrue(session.is_demo)
        self.assertEqual(session.max_score, DemoConfig.REFERENCE_SCORE)
        self.assertEqual(session.slot.win_multiplier, 2.5)
        self.assertEqual(session.slot.expected_payout, 1250)

    def test_demo_payout_formula(self):
        session = self.engine.start_game("u1", 500, is_demo=True)
        outcome = self.engine.complete_game(session, 10_000)
        expected = math.floor(10_000 / DemoConfig.REFERENCE_SCORE * DemoConfig.MULTIPLIER
                              * DemoConfig.GAIN_RATE)
        self.assertEqual(outcome.payout, expected)
        self.assertTrue(outcome.is_demo)
        self.assertFalse(outcome.is_jackpot)

    def test_demo_leaves_store_untouched(self):
        batch = self.engine.generate_batch("live", 20, 100, seed=3, activate=True)
        pool = self.engine.get_jackpot().current_amount
        session = self.engine.start_game("u1", 100, is_demo=True)
        self.engine.complete_game(session.id, 20_000)
        b = self.engine.get_batch(batch.id)
        self.assertEqual(b.games_played, 0)
        self.assertEqual(self.engine.get_jackpot().current_amount, pool)
        self.assertEqual(self.engine.get_wallet("u1")["balance"], 0)
        self.assertTrue(all(s.session_id is None for s in self.engine.list_batch_slots(batch.id)))


# ============================================================
# Batch Simulator
# ============================================================

class TestBatchSimulator(unittest.TestCase):

    def test_simulation_stays_within_commitment(self):
        from sim_engine.batch_sim import simulate
        batch, slots = generate("sim", 5000, 100, DEFAULT_ECONOMIC_CONFIG, random.Random(8))
        result = simulate(batch, slots, seed=8)
        self.assertEqual(result.games, 5000)
        self.assertLessEqual(result.total_returned, result.committed_payout + 1e-6)
        self.assertGreater(result.hit_rate, 0)
        self.assertAlmostEqual(result.target_rtp, 0.70)
        self.assertTrue(1 <= len(result.convergence) <= 11)
        self.assertEqual(sum(t["plays"] for t in result.by_tier.values()), 5000)

    def test_simulation_reproducible(self):
        from sim_engine.batch_sim import simulate
        batch, slots = generate("sim", 800, 100, DEFAULT_ECONOMIC_CONFIG, random.Random(4))
        self.assertEqual(simulate(batch, slots, seed=1).to_dict(),
                         simulate(batch, slots, seed=1).to_dict())


# ============================================================
# Operator CLI
# ============================================================

class TestEconomicsCli(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="blockstake-cli-")
        self.db = str(Path(self.tmp) / "cli.db")
        self.out = io.StringIO()
        self._console = patch("tools.economics_cli.console", Console(file=self.out, width=160))
        self._console.start()

    def tearDown(self):
        self._console.stop()
        shutil.rmtree(self.tmp, ignore_errors=True)

    def run_cli(self, *args):
        from tools.economics_cli import main
        return main(["--db", self.db, *args])

    def test_generate_preview_persists_nothing(self):
        code = self.run_cli("generate", "dry", "--games", "50", "--avg-bet", "10", "--preview")
        self.assertEqual(code, 0)
        self.assertIn("Preview: dry", self.out.getvalue())
        self.assertEqual(EconomicsEngine(self.db).list_batches(), [])

    def test_generate_and_activate(self):
        code = self.run_cli("generate", "Week 1", "--games", "40", "--avg-bet", "25",
                            "--seed", "4", "--activate")
        self.assertEqual(code, 0)
        self.assertIn("Batch generated", self.out.getvalue())
        active = EconomicsEngine(self.db).get_active_batch()
        self.assertEqual(active.batch_name, "Week 1")
        self.assertEqual(active.total_games, 40)

    def test_simulate(self):
        code = self.run_cli("simulate", "--games", "500", "--avg-bet", "20", "--seed", "3")
        self.assertEqual(code, 0)
        out = self.out.getvalue()
        self.assertIn("Simulated 500 plays", out)
        self.assertIn("Target RTP: 70.00%", out)

    def test_expire(self):
        engine = EconomicsEngine(self.db)
        engine.generate_batch("cli", 5, 100, seed=2, activate=True)
        engine.deposit("p", 1000)
        engine.start_game("p", 100)
        self.assertEqual(self.run_cli("expire", "--max-age", "0"), 0)
        self.assertIn("Expired 1", self.out.getvalue())
        self.assertEqual(engine.get_wallet("p")["balance"], 1000)

    def test_errors_return_nonzero(self):
        self.assertEqual(self.run_cli("set-config", "player_share_pct=99"), 1)
        self.assertIn("invalid_input", self.out.getvalue())
        self.assertEqual(self.run_cli("generate", "bad", "--games", "0", "--avg-bet", "10"), 1)
        self.assertEqual(self.run_cli("progress", "missing"), 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
