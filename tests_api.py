#!/usr/bin/env python3
"""
BLOCKSTAKE — HTTP Surface Tests

  TestGameApi      — /api/game/* player flow (start, complete, abandon) via Flask test_client
  TestAdminApi     — /admin/* access control, batch + config APIs, pages

Run: python tests_api.py
"""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

ADMIN = {"id": "ops-1", "email": "ops@example.com"}
PLAYER = {"id": "player-1", "email": "player@example.com"}


class _AppCase(unittest.TestCase):

    def setUp(self):
        from web_app import create_app
        self.tmp = tempfile.mkdtemp(prefix="blockstake-api-")
        self.app = create_app(str(Path(self.tmp) / "api.db"), config={
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "ADMIN_EMAIL": ADMIN["email"],
        })
        self.engine = self.app.config["ENGINE"]
        self.client = self.app.test_client()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def login(self, user):
        with self.client.session_transaction() as sess:
            sess["user"] = dict(user)

    def live_batch(self, games=10, avg_bet=100):
        return self.engine.generate_batch("live", games, avg_bet, seed=7, activate=True)


# ============================================================
# Player API
# ============================================================

class TestGameApi(_AppCase):

    def test_start_requires_login(self):
        resp = self.client.post("/api/game/start", json={"bet_amount": 100})
        self.assertEqual(resp.status_code, 401)

    def test_demo_round_trip_without_login(self):
        resp = self.client.post("/api/game/start", json={"bet_amount": 500, "is_demo": True})
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertTrue(data["session_id"].startswith("demo-"))
        self.assertEqual(data["max_score"], 20_000)

        resp = self.client.post("/api/game/complete",
                                json={"session_id": data["session_id"], "score": 20_000})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["payout"], 250)
        self.assertTrue(resp.get_json()["is_demo"])

    def test_no_active_batch(self):
        self.login(PLAYER)
        self.client.post("/api/game/wallet/deposit", json={"amount": 1000})
        resp = self.client.post("/api/game/start", json={"bet_amount": 100})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["code"], "no_active_batch")

    def test_insufficient_funds(self):
        self.live_batch()
        self.login(PLAYER)
        resp = self.client.post("/api/game/start", json={"bet_amount": 100})
        self.assertEqual(resp.status_code, 402)
        self.assertEqual(resp.get_json()["code"], "insufficient_funds")

    def test_invalid_bet(self):
        self.live_batch()
        self.login(PLAYER)
        resp = self.client.post("/api/game/start", json={"bet_amount": -5})
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(resp.get_json()["retryable"])

    def test_full_game(self):
        self.live_batch()
        self.login(PLAYER)
        resp = self.client.post("/api/game/wallet/deposit", json={"amount": 1000})
        self.assertEqual(resp.get_json()["balance"], 1000)

        start = self.client.post("/api/game/start", json={"bet_amount": 100, "skill_level": 4})
        self.assertEqual(start.status_code, 200)
        sid = start.get_json()["session_id"]
        max_score = start.get_json()["max_score"]

        done = self.client.post("/api/game/complete", json={"session_id": sid, "score": max_score})
        self.assertEqual(done.status_code, 200)
        outcome = done.get_json()
        self.assertGreaterEqual(outcome["payout"], 0)

        wallet = self.client.get("/api/game/wallet").get_json()
        self.assertAlmostEqual(wallet["balance"], outcome["balance_after"])

        again = self.client.post("/api/game/complete", json={"session_id": sid, "score": max_score})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["code"], "already_consumed")

    def test_complete_unknown_session(self):
        self.login(PLAYER)
        resp = self.client.post("/api/game/complete", json={"session_id": "nope", "score": 1})
        self.assertEqual(resp.status_code, 404)

    def test_abandon_refunds_bet(self):
        self.live_batch()
        self.login(PLAYER)
        self.client.post("/api/game/wallet/deposit", json={"amount": 1000})
        sid = self.client.post("/api/game/start", json={"bet_amount": 100}).get_json()["session_id"]

        resp = self.client.post("/api/game/abandon", json={"session_id": sid})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["balance_after"], 1000)

        again = self.client.post("/api/game/complete", json={"session_id": sid, "score": 1})
        self.assertEqual(again.status_code, 409)
        self.assertEqual(self.client.post("/api/game/abandon", json={}).status_code, 400)

    def test_jackpot_endpoint(self):
        self.live_batch(games=10, avg_bet=100)
        data = self.client.get("/api/game/jackpot").get_json()
        self.assertAlmostEqual(data["current_amount"], 100)

    def test_cross_origin_post_blocked(self):
        self.login(PLAYER)
        resp = self.client.post("/api/game/wallet/deposit", json={"amount": 10},
                                headers={"Origin": "https://evil.example"})
        self.assertEqual(resp.status_code, 403)


# ============================================================
# Operator console
# ============================================================

class TestAdminApi(_AppCase):

    def test_requires_login(self):
        self.assertEqual(self.client.get("/admin/api/batches").status_code, 401)
        self.assertEqual(self.client.get("/admin/").status_code, 401)
        self.assertEqual(self.client.get("/login").status_code, 404)

    def test_non_admin_forbidden(self):
        self.login(PLAYER)
        self.assertEqual(self.client.get("/admin/api/batches").status_code, 403)
        self.assertEqual(self.client.get("/admin/").status_code, 403)

    def test_generate_activate_progress(self):
        self.login(ADMIN)
        resp = self.client.post("/admin/api/batches", json={
            "batch_name": "Week 1", "total_games": 50, "average_bet_amount": 200, "seed": 3,
        })
        self.assertEqual(resp.status_code, 201)
        batch = resp.get_json()["batch"]
        self.assertAlmostEqual(batch["player_payout_target"], 7000)
        self.assertFalse(batch["is_active"])

        resp = self.client.post(f"/admin/api/batches/{batch['id']}/activate", json={})
        self.assertTrue(resp.get_json()["batch"]["is_active"])

        listed = self.client.get("/admin/api/batches").get_json()["batches"]
        self.assertEqual([b["id"] for b in listed if b["is_active"]], [batch["id"]])

        progress = self.client.get(f"/admin/api/batches/{batch['id']}").get_json()
        self.assertEqual(progress["total_games"], 50)
        self.assertEqual(progress["games_played"], 0)

        slots = self.client.get(f"/admin/api/batches/{batch['id']}/slots?status=unplayed&limit=10")
        self.assertEqual(slots.get_json()["count"], 10)

        resp = self.client.post(f"/admin/api/batches/{batch['id']}/deactivate", json={})
        self.assertFalse(resp.get_json()["batch"]["is_active"])

    def test_preview_does_not_persist(self):
        self.login(ADMIN)
        resp = self.client.post("/admin/api/batches", json={
            "batch_name": "dry", "total_games": 100, "average_bet_amount": 50, "preview": True,
        })
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["summary"]["total_slots"], 100)
        self.assertEqual(self.engine.list_batches(), [])

    def test_invalid_batch_request(self):
        self.login(ADMIN)
        resp = self.client.post("/admin/api/batches", json={
            "batch_name": "bad", "total_games": 0, "average_bet_amount": 50,
        })
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["code"], "invalid_input")

    def test_total_games_must_be_whole_and_bounded(self):
        self.login(ADMIN)
        for bad in (2.5, True, "ten", "2.5", 10 ** 9):
            resp = self.client.post("/admin/api/batches", json={
                "batch_name": "bad", "total_games": bad, "average_bet_amount": 50,
            })
            self.assertEqual(resp.status_code, 400, bad)
            self.assertEqual(resp.get_json()["code"], "invalid_input")
        self.assertEqual(self.engine.list_batches(), [])

        resp = self.client.post("/admin/api/batches", json={
            "batch_name": "whole", "total_games": 20.0, "average_bet_amount": 50,
        })
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.get_json()["batch"]["total_games"], 20)

    def test_unknown_batch(self):
        self.login(ADMIN)
        self.assertEqual(self.client.get("/admin/api/batches/missing").status_code, 404)
        self.assertEqual(
            self.client.post("/admin/api/batches/missing/activate", json={}).status_code, 404)

    def test_config_update(self):
        self.login(ADMIN)
        self.assertEqual(self.client.get("/admin/api/config").get_json()["version"], 1)

        bad = self.client.post("/admin/api/config", json={"player_share_pct": 99})
        self.assertEqual(bad.status_code, 400)

        ok = self.client.post("/admin/api/config",
                              json={"player_share_pct": 80, "platform_share_pct": 10})
        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.get_json()["config"]["version"], 2)
        self.assertEqual(self.engine.get_config().player_share_pct, 80)

    def test_mutations_are_audited(self):
        self.login(ADMIN)
        self.client.post("/admin/api/batches", json={
            "batch_name": "audited", "total_games": 5, "average_bet_amount": 10,
        })
        page = self.client.get("/admin/audit")
        self.assertEqual(page.status_code, 200)
        self.assertIn(b"generate_batch", page.data)

    def test_pages_render(self):
        self.live_batch()
        self.login(ADMIN)
        batch = self.engine.get_active_batch()
        home = self.client.get("/admin/")
        self.assertEqual(home.status_code, 200)
        self.assertIn(b"live", home.data)
        detail = self.client.get(f"/admin/batches/{batch.id}")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(self.client.get("/admin/config").status_code, 200)

    def test_form_generate_redirects(self):
        self.login(ADMIN)
        resp = self.client.post("/admin/api/batches", data={
            "batch_name": "from form", "total_games": "20", "average_bet_amount": "100",
        })
        self.assertEqual(resp.status_code, 302)
        self.assertEqual(len(self.engine.list_batches()), 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
