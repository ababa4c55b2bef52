"""Score ledger backed by the aiosqlite users/rounds tables."""
from mathblitz import database
from mathblitz.models.question import Question


class ScoreLedger:
    """Durable per-username score and win count, plus resolved-round history."""

    async def record_win(self, username: str, points: int) -> None:
        await database.upsert_score(username, points)

    async def record_round(
        self, question: Question, winner_username: str | None, time_taken_ms: int | None
    ) -> None:
        await database.insert_round(
            question_id=question.id,
            difficulty=question.difficulty.value,
            problem=question.problem,
            winner_username=winner_username,
            time_taken_ms=time_taken_ms,
        )

    async def register(self, username: str, email: str | None = None) -> None:
        await database.register_user(username, email)

    async def leaderboard(self, limit: int) -> list[dict]:
        rows = await database.fetch_leaderboard(limit)
        return [
            {
                "username": r["username"],
                "highScore": r["high_score"],
                "gamesWon": r["games_won"],
            }
            for r in rows
        ]

    async def recent_rounds(self, limit: int = 50) -> list[dict]:
        return await database.fetch_recent_rounds(limit)
