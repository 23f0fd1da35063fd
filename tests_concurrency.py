#!/usr/bin/env python3
"""
BLOCKSTAKE — Concurrency Stress Tests

Many threads, one SQLite file, separate connections per thread (the same
shape as several gunicorn workers sharing a database).

  A) Racing claims on one slot: at most one wins
  B) Racing game starts: every slot handed out at most once
  C) Racing completions: no lost aggregate increments
  D) Racing completions (or abandonment) of one session: exactly one settles
  E) Racing activations: never more than one active batch

Run: python tests_concurrency.py
"""

import shutil
import sys
import tempfile
import threading
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from tools.economics_engine import EconomicsEngine
from tools.economics_errors import AlreadyConsumed, NoMatchingSlot


def _run_threads(n, target):
    """Start n threads on target(i), release them together, collect results/errors."""
    barrier = threading.Barrier(n)
    results, errors = [], []
    lock = threading.Lock()

    def worker(i):
        barrier.wait()
        try:
            r = target(i)
            with lock:
                results.append(r)
        except Exception as e:
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=120)
    return results, errors


class _ConcurrentCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.mkdtemp(prefix="blockstake-conc-")
        self.engine = EconomicsEngine(str(Path(self.tmp) / "conc.db"))

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)


# ============================================================
# A) Claims
# ============================================================

class TestConcurrentClaims(_ConcurrentCase):

    def test_one_slot_claimed_once(self):
        batch = self.engine.generate_batch("claims", 5, 100, seed=1)
        slot_id = self.engine.list_batch_slots(batch.id)[0].id
        store = self.engine.store

        def claim(i):
            with store.transaction() as db:
                return store.claim_slot(db, slot_id, f"session-{i}")

        results, errors = _run_threads(16, claim)
        self.assertEqual(errors, [])
        self.assertEqual(results.count(True), 1)
        self.assertEqual(results.count(False), 15)


# ============================================================
# B) Game starts
# ============================================================

class TestConcurrentStarts(_ConcurrentCase):

    def test_slots_never_double_assigned(self):
        self.engine.generate_batch("starts", 20, 100, seed=2, activate=True)
        for i in range(40):
            self.engine.deposit(f"p{i}", 10_000)

        results, errors = _run_threads(40, lambda i: self.engine.start_game(f"p{i}", 100))

        self.assertEqual(len(results), 20)
        self.assertEqual(len(errors), 20)
        self.assertTrue(all(isinstance(e, NoMatchingSlot) for e in errors), errors)
        slot_ids = [s.slot.id for s in results]
        self.assertEqual(len(set(slot_ids)), 20)


# ============================================================
# C, D) Completions
# ============================================================

class TestConcurrentCompletions(_ConcurrentCase):

    def test_no_lost_increments(self):
        batch = self.engine.generate_batch("done", 30, 100, seed=3, activate=True)
        self.engine.deposit("p", 1_000_000)
        sessions = [self.engine.start_game("p", 100) for _ in range(30)]

        results, errors = _run_threads(
            30, lambda i: self.engine.complete_game(sessions[i].id, sessions[i].max_score))

        self.assertEqual(errors, [])
        b = self.engine.get_batch(batch.id)
        self.assertEqual(b.games_played, 30)
        self.assertAlmostEqual(b.actual_player_payout, sum(o.payout for o in results), places=6)
        stake = sum(s.bet_amount for s in sessions)
        total = b.actual_player_payout + b.actual_platform_revenue + b.actual_jackpot_contribution
        self.assertAlmostEqual(total, stake, places=4)

    def test_same_session_settles_once(self):
        self.engine.generate_batch("once", 5, 100, seed=4, activate=True)
        self.engine.deposit("p", 10_000)
        session = self.engine.start_game("p", 100)

        results, errors = _run_threads(
            12, lambda i: self.engine.complete_game(session.id, session.max_score))

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 11)
        self.assertTrue(all(isinstance(e, AlreadyConsumed) for e in errors), errors)
        self.assertEqual(self.engine.get_batch(session.batch_id).games_played, 1)

    def test_completion_races_abandonment(self):
        self.engine.generate_batch("race", 5, 100, seed=5, activate=True)
        self.engine.deposit("p", 10_000)
        session = self.engine.start_game("p", 100)

        def settle(i):
            if i % 2:
                return self.engine.abandon_game(session.id)
            return self.engine.complete_game(session.id, 0)

        results, errors = _run_threads(10, settle)

        self.assertEqual(len(results), 1)
        self.assertTrue(all(isinstance(e, AlreadyConsumed) for e in errors), errors)
        played = self.engine.get_batch(session.batch_id).games_played
        balance = self.engine.get_wallet("p")["balance"]
        if isinstance(results[0], dict):
            self.assertEqual((played, balance), (0, 10_000))
        else:
            self.assertEqual((played, balance), (1, 9_900))


# ============================================================
# E) Activations
# ============================================================

class TestConcurrentActivation(_ConcurrentCase):

    def test_at_most_one_active(self):
        batches = [self.engine.generate_batch(f"b{i}", 3, 100, seed=i) for i in range(8)]

        results, errors = _run_threads(8, lambda i: self.engine.activate_batch(batches[i].id))

        self.assertEqual(errors, [])
        active = [b for b in self.engine.list_batches() if b.is_active]
        self.assertEqual(len(active), 1)
        with self.engine.store.reading() as db:
            self.assertEqual(self.engine.store.count_active_batches(db), 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
