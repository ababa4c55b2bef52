"""aiosqlite database setup: users (score ledger) and round history tables."""
import time

import aiosqlite

from mathblitz.config import settings

_db: aiosqlite.Connection | None = None


async def get_db() -> aiosqlite.Connection:
    global _db
    if _db is None:
        _db = await aiosqlite.connect(settings.database_url)
        _db.row_factory = aiosqlite.Row
        await _create_tables(_db)
    return _db


async def close_db() -> None:
    global _db
    if _db is not None:
        await _db.close()
        _db = None


async def _create_tables(db: aiosqlite.Connection) -> None:
    await db.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            email TEXT,
            high_score INTEGER NOT NULL DEFAULT 0,
            games_won INTEGER NOT NULL DEFAULT 0,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
    """)
    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_users_leaderboard
        ON users(high_score DESC, games_won DESC)
    """)
    await db.execute("""
        CREATE TABLE IF NOT EXISTS rounds (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            question_id TEXT NOT NULL,
            difficulty TEXT NOT NULL,
            problem TEXT NOT NULL,
            winner_username TEXT,
            time_taken_ms INTEGER,
            ended_at REAL NOT NULL
        )
    """)
    await db.commit()


async def upsert_score(username: str, points: int) -> None:
    """First win creates the row; later wins add points and bump games_won."""
    db = await get_db()
    now = time.time()
    await db.execute(
        """INSERT INTO users (username, high_score, games_won, created_at, updated_at)
           VALUES (?, ?, 1, ?, ?)
           ON CONFLICT(username) DO UPDATE SET
               high_score = high_score + excluded.high_score,
               games_won = games_won + 1,
               updated_at = excluded.updated_at""",
        (username, points, now, now),
    )
    await db.commit()


async def register_user(username: str, email: str | None = None) -> None:
    db = await get_db()
    now = time.time()
    await db.execute(
        """INSERT INTO users (username, email, created_at, updated_at)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(username) DO UPDATE SET
               email = COALESCE(excluded.email, email),
               updated_at = excluded.updated_at""",
        (username, email, now, now),
    )
    await db.commit()


async def fetch_leaderboard(limit: int) -> list[dict]:
    db = await get_db()
    cursor = await db.execute(
        """SELECT username, high_score, games_won FROM users
           ORDER BY high_score DESC, games_won DESC
           LIMIT ?""",
        (limit,),
    )
    rows = await cursor.fetchall()
    return [dict(r) for r in rows]


async def fetch_user(username: str) -> dict | None:
    db = await get_db()
    cursor = await db.execute("SELECT * FROM users WHERE username = ?", (username,))
    row = await cursor.fetchone()
    return dict(row) if row else None


async def insert_round(
    question_id: str,
    difficulty: str,
    problem: str,
    winner_username: str | None,
    time_taken_ms: int | None,
) -> int:
    db = await get_db()
    cursor = await db.execute(
        """INSERT INTO rounds
           (question_id, difficulty, problem, winner_username, time_taken_ms, ended_at)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (question_id, difficulty, problem, winner_username, time_taken_ms, time.time()),
    )
    await db.commit()
    return cursor.lastrowid


async def fetch_recent_rounds(limit: int = 50) -> list[dict]:
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM rounds ORDER BY ended_at DESC, id DESC LIMIT ?",
        (limit,),
    )
    rows = await cursor.fetchall()
    return [dict(r) for r in rows]
