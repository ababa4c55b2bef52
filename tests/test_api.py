"""Tests for the REST and WebSocket surface, rate limiter, ledger, tokens and stats."""
import asyncio
import os
import sys
import time
import unittest
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

os.environ.setdefault("DATABASE_URL", ":memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-that-is-long-enough-32ch")
os.environ.setdefault("ADMIN_TOKEN", "test-admin")
# Rounds only start when a test asks for one
os.environ.setdefault("FIRST_ROUND_DELAY_MS", "600000")
os.environ.setdefault("JOIN_DEBOUNCE_MS", "600000")
os.environ.setdefault("ROUND_ADVANCE_DELAY_MS", "600000")
os.environ.setdefault("API_RATE_LIMIT_REQUESTS", "100000")
os.environ.setdefault("SUBMIT_RATE_LIMIT_REQUESTS", "100000")
os.environ.setdefault("USER_RATE_LIMIT_REQUESTS", "100000")

import jwt
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mathblitz import database
from mathblitz.config import settings
from mathblitz.main import app
from mathblitz.middleware.rate_limit import RateLimitMiddleware, RateLimitRule
from mathblitz.services.ledger import ScoreLedger
from mathblitz.services.stats import summarize_rounds
from mathblitz.services.token import create_token, decode_token

ADMIN = {"X-Admin-Token": "test-admin"}


def _start_round(client: TestClient) -> float:
    """Force a fresh round and return its answer."""
    resp = client.post("/api/game/reset", headers=ADMIN)
    assert resp.status_code == 200, resp.text
    return client.app.state.game.current_question.answer


def _drain(client: TestClient) -> None:
    """Wait for background ledger writes to finish."""
    client.portal.call(client.app.state.game.shutdown)


# ---------------------------------------------------------------------------
# REST
# ---------------------------------------------------------------------------

class TestRestApi(unittest.TestCase):
    def test_health(self):
        with TestClient(app) as client:
            resp = client.get("/health")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "OK")
        self.assertGreaterEqual(body["uptime"], 0)
        self.assertIn("timestamp", body)

    def test_no_question_yet(self):
        with TestClient(app) as client:
            resp = client.get("/api/game/question")
        self.assertEqual(resp.status_code, 404)

    def test_current_question_hides_answer(self):
        with TestClient(app) as client:
            _start_round(client)
            resp = client.get("/api/game/question")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertNotIn("answer", body["question"])
        self.assertTrue(body["isActive"])
        self.assertIsNone(body["winner"])
        self.assertEqual(body["question"]["difficulty"], "easy")

    def test_reset_requires_admin_token(self):
        with TestClient(app) as client:
            wrong = client.post("/api/game/reset", headers={"X-Admin-Token": "nope"})
            with mock.patch.object(settings, "admin_token", ""):
                disabled = client.post("/api/game/reset", headers=ADMIN)
        self.assertEqual(wrong.status_code, 403)
        self.assertEqual(disabled.status_code, 403)

    def test_submit_validation(self):
        with TestClient(app) as client:
            _start_round(client)
            bad_answer = client.post("/api/game/submit", json={"answer": "42", "username": "alice"})
            short_name = client.post("/api/game/submit", json={"answer": 42, "username": "a"})
            long_name = client.post("/api/game/submit", json={"answer": 42, "username": "x" * 21})
            missing = client.post("/api/game/submit", json={"username": "alice"})
        for resp in (bad_answer, short_name, long_name, missing):
            self.assertEqual(resp.status_code, 422)

    def test_submit_without_round_is_not_an_error(self):
        with TestClient(app) as client:
            resp = client.post("/api/game/submit", json={"answer": 1, "username": "alice"})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertFalse(body["isCorrect"])
        self.assertFalse(body["isWinner"])
        self.assertEqual(body["timeTaken"], 0)
        self.assertTrue(body["userId"])

    def test_first_correct_submission_wins(self):
        with TestClient(app) as client:
            answer = _start_round(client)
            wrong = client.post("/api/game/submit", json={"answer": answer + 5, "username": "carol"})
            first = client.post(
                "/api/game/submit",
                json={"answer": answer, "username": " alice ", "userId": "user-a"},
            )
            second = client.post("/api/game/submit", json={"answer": answer, "username": "bob"})
            question = client.get("/api/game/question").json()
            _drain(client)
            board = client.get("/api/game/leaderboard").json()

        self.assertFalse(wrong.json()["isCorrect"])
        self.assertTrue(first.json()["isWinner"])
        self.assertEqual(first.json()["userId"], "user-a")
        self.assertTrue(second.json()["isCorrect"])
        self.assertFalse(second.json()["isWinner"])
        self.assertFalse(question["isActive"])
        self.assertEqual(question["winner"]["username"], "alice")
        self.assertEqual(board["total"], 1)
        self.assertEqual(board["leaderboard"][0]["username"], "alice")
        self.assertEqual(board["leaderboard"][0]["gamesWon"], 1)

    def test_leaderboard_limits_and_order(self):
        with TestClient(app) as client:
            for i in range(60):
                client.portal.call(database.upsert_score, f"player{i:02d}", 100 + i)
            client.portal.call(database.upsert_score, "player00", 59)
            clamped = client.get("/api/game/leaderboard", params={"limit": 200}).json()
            default = client.get("/api/game/leaderboard").json()
            small = client.get("/api/game/leaderboard", params={"limit": 3}).json()

        self.assertEqual(clamped["total"], 50)
        self.assertEqual(default["total"], 10)
        self.assertEqual(
            [e["username"] for e in small["leaderboard"]],
            ["player00", "player59", "player58"],
        )
        self.assertEqual(small["leaderboard"][0]["gamesWon"], 2)

    def test_create_user(self):
        with TestClient(app) as client:
            ok = client.post("/api/game/user", json={"username": "dana", "email": "d@example.com"})
            blank_email = client.post("/api/game/user", json={"username": "erin", "email": ""})
            bad_email = client.post("/api/game/user", json={"username": "dana", "email": "nope"})
            bad_name = client.post("/api/game/user", json={"username": "d"})
            verified = client.get("/api/game/user/verify", params={"token": ok.json()["token"]})
            rejected = client.get("/api/game/user/verify", params={"token": "garbage"})
            stored = client.portal.call(database.fetch_user, "dana")

        self.assertEqual(ok.status_code, 200)
        self.assertEqual(ok.json()["username"], "dana")
        self.assertEqual(blank_email.status_code, 200)
        self.assertIsNone(blank_email.json()["email"])
        self.assertEqual(bad_email.status_code, 422)
        self.assertEqual(bad_name.status_code, 422)
        self.assertEqual(verified.json()["userId"], ok.json()["userId"])
        self.assertEqual(rejected.status_code, 401)
        self.assertEqual(stored["email"], "d@example.com")
        self.assertEqual(stored["games_won"], 0)

    def test_stats(self):
        with TestClient(app) as client:
            answer = _start_round(client)
            client.post("/api/game/submit", json={"answer": answer, "username": "alice"})
            _drain(client)
            body = client.get("/api/game/stats").json()

        self.assertEqual(body["connectedUsers"], 0)
        self.assertFalse(body["isGameActive"])
        self.assertTrue(body["hasActiveQuestion"])
        self.assertEqual(body["currentWinner"], "alice")
        self.assertEqual(body["recentRounds"]["rounds"], 1)
        self.assertEqual(body["recentRounds"]["won"], 1)


# ---------------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------------

class TestWebSocket(unittest.TestCase):
    def test_join_validation(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/game") as ws:
                ws.send_json({"type": "join", "username": "a"})
                self.assertEqual(ws.receive_json(), {"type": "error", "message": "Invalid username"})

    def test_submit_before_join(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/game") as ws:
                ws.send_json({"type": "submit-answer", "answer": 1})
                msg = ws.receive_json()
        self.assertEqual(msg["type"], "submission-result")
        self.assertIn("join the game first", msg["error"])

    def test_malformed_and_unknown_messages(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/game") as ws:
                ws.send_text("{not json")
                malformed = ws.receive_json()
                ws.send_json({"type": "dance"})
                unknown = ws.receive_json()
                ws.send_json({"type": "ping"})
                pong = ws.receive_json()
        self.assertEqual(malformed["type"], "error")
        self.assertEqual(unknown["type"], "error")
        self.assertEqual(pong, {"type": "pong"})

    def test_round_over_websocket(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/game") as ws:
                ws.send_json({"type": "join", "username": "alice", "userId": "u-alice"})
                joined = ws.receive_json()

                answer = _start_round(client)
                question = ws.receive_json()

                ws.send_json({"type": "submit-answer", "answer": "forty-two"})
                invalid = ws.receive_json()

                ws.send_json({"type": "submit-answer", "answer": answer, "timestamp": time.time()})
                announced = ws.receive_json()
                result = ws.receive_json()

        self.assertEqual(joined["type"], "joined-successfully")
        self.assertEqual(joined["userId"], "u-alice")
        self.assertEqual(joined["participantCount"], 1)

        self.assertEqual(question["type"], "new-question")
        self.assertNotIn("answer", question["question"])
        self.assertEqual(question["gameState"]["participantCount"], 1)
        self.assertTrue(question["gameState"]["isActive"])

        self.assertEqual(invalid["error"], "Invalid answer format")

        self.assertEqual(announced["type"], "winner-announced")
        self.assertEqual(announced["winner"]["userId"], "u-alice")
        self.assertEqual(announced["correctAnswer"], answer)
        self.assertEqual(result["type"], "submission-result")
        self.assertTrue(result["isWinner"])

    def test_presence_broadcasts(self):
        with TestClient(app) as client:
            with client.websocket_connect("/ws/game") as first:
                first.send_json({"type": "join", "username": "alice"})
                first.receive_json()
                with client.websocket_connect("/ws/game") as second:
                    second.send_json({"type": "join-game", "username": "bob"})
                    joined = first.receive_json()
                    second.receive_json()
                left = first.receive_json()

        self.assertEqual(joined, {"type": "user-joined", "username": "bob", "participantCount": 2})
        self.assertEqual(left, {"type": "user-left", "username": "bob", "participantCount": 1})

    def test_join_sends_current_question(self):
        with TestClient(app) as client:
            _start_round(client)
            with client.websocket_connect("/ws/game") as ws:
                ws.send_json({"type": "join", "username": "carol"})
                question = ws.receive_json()
                joined = ws.receive_json()
        self.assertEqual(question["type"], "new-question")
        self.assertEqual(joined["type"], "joined-successfully")

    def test_join_with_identity_token(self):
        with TestClient(app) as client:
            token = client.post("/api/game/user", json={"username": "dana"}).json()["token"]
            with client.websocket_connect("/ws/game") as ws:
                ws.send_json({"type": "join", "username": "dana", "token": token})
                joined = ws.receive_json()
                ws.send_json({"type": "join", "username": "dana", "token": "forged"})
                rejected = ws.receive_json()
        self.assertEqual(joined["userId"], decode_token(token)["user_id"])
        self.assertEqual(rejected, {"type": "error", "message": "Invalid token"})


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

def _limited_app(rules: list[RateLimitRule]) -> FastAPI:
    mini = FastAPI()
    mini.add_middleware(RateLimitMiddleware, rules=rules)

    @mini.get("/ping")
    async def ping():
        return {"ok": True}

    @mini.post("/ping")
    async def ping_post():
        return {"ok": True}

    @mini.get("/other")
    async def other():
        return {"ok": True}

    return mini


class TestRateLimiter(unittest.TestCase):
    def test_blocks_over_limit(self):
        client = TestClient(_limited_app([RateLimitRule("t", "/ping", 2, 60)]))
        codes = [client.get("/ping").status_code for _ in range(3)]
        self.assertEqual(codes, [200, 200, 429])
        blocked = client.get("/ping")
        self.assertEqual(blocked.headers["Retry-After"], "60")
        self.assertEqual(client.get("/other").status_code, 200)

    def test_method_filter(self):
        client = TestClient(_limited_app([RateLimitRule("t", "/ping", 1, 60, method="POST")]))
        self.assertEqual(client.post("/ping").status_code, 200)
        self.assertEqual(client.post("/ping").status_code, 429)
        self.assertEqual(client.get("/ping").status_code, 200)

    def test_separate_clients(self):
        client = TestClient(_limited_app([RateLimitRule("t", "/ping", 1, 60)]))
        self.assertEqual(client.get("/ping", headers={"X-Forwarded-For": "1.1.1.1"}).status_code, 200)
        self.assertEqual(client.get("/ping", headers={"X-Forwarded-For": "2.2.2.2"}).status_code, 200)
        self.assertEqual(client.get("/ping", headers={"X-Forwarded-For": "1.1.1.1"}).status_code, 429)

    def test_window_expires(self):
        client = TestClient(_limited_app([RateLimitRule("t", "/ping", 1, 0.05)]))
        self.assertEqual(client.get("/ping").status_code, 200)
        time.sleep(0.1)
        self.assertEqual(client.get("/ping").status_code, 200)


# ---------------------------------------------------------------------------
# Ledger, tokens, stats
# ---------------------------------------------------------------------------

class TestScoreLedger(unittest.TestCase):
    def _run(self, coro_fn):
        async def _wrapped():
            try:
                return await coro_fn()
            finally:
                await database.close_db()

        return asyncio.run(_wrapped())

    def test_upsert_on_win(self):
        async def _go():
            ledger = ScoreLedger()
            await ledger.record_win("alice", 120)
            await ledger.record_win("alice", 80)
            await ledger.record_win("bob", 200)
            return await ledger.leaderboard(10)

        board = self._run(_go)
        self.assertEqual(board, [
            {"username": "alice", "highScore": 200, "gamesWon": 2},
            {"username": "bob", "highScore": 200, "gamesWon": 1},
        ])

    def test_register_keeps_scores(self):
        async def _go():
            ledger = ScoreLedger()
            await ledger.record_win("carol", 150)
            await ledger.register("carol", "c@example.com")
            await ledger.register("carol")
            return await database.fetch_user("carol")

        row = self._run(_go)
        self.assertEqual(row["high_score"], 150)
        self.assertEqual(row["email"], "c@example.com")


class TestTokenService(unittest.TestCase):
    def test_roundtrip(self):
        payload = decode_token(create_token("user-123", "alice"))
        self.assertEqual(payload["user_id"], "user-123")
        self.assertEqual(payload["username"], "alice")

    def test_invalid_token_raises(self):
        with self.assertRaises(jwt.InvalidTokenError):
            decode_token("not.a.valid.token")

    def test_expired_token_raises(self):
        now = int(time.time())
        token = jwt.encode(
            {"user_id": "x", "username": "x", "exp": now - 10, "iat": now - 100},
            settings.jwt_secret,
            algorithm="HS256",
        )
        with self.assertRaises(jwt.ExpiredSignatureError):
            decode_token(token)


class TestRoundStats(unittest.TestCase):
    def test_summary(self):
        rounds = [
            {"difficulty": "easy", "time_taken_ms": 1000},
            {"difficulty": "easy", "time_taken_ms": 3000},
            {"difficulty": "hard", "time_taken_ms": 2000},
            {"difficulty": "hard", "time_taken_ms": None},
        ]
        summary = summarize_rounds(rounds)
        self.assertEqual(summary["rounds"], 4)
        self.assertEqual(summary["won"], 3)
        self.assertAlmostEqual(summary["meanMs"], 2000.0)
        self.assertAlmostEqual(summary["medianMs"], 2000.0)
        self.assertAlmostEqual(summary["fastestMs"], 1000.0)
        self.assertEqual(summary["byDifficulty"], {"easy": 2, "hard": 2})

    def test_empty(self):
        self.assertEqual(summarize_rounds([]), {"rounds": 0, "won": 0})


if __name__ == "__main__":
    unittest.main(verbosity=2)
