"""REST endpoints under /api/game, plus GET /health."""
import time
import uuid
from datetime import datetime, timezone

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from mathblitz.api.schemas import CreateUserRequest, SubmitRequest
from mathblitz.config import settings
from mathblitz.game.controller import GameController
from mathblitz.services.ledger import ScoreLedger
from mathblitz.services.stats import summarize_rounds
from mathblitz.services.token import create_token, decode_token

router = APIRouter(prefix="/api/game")
health_router = APIRouter()


def get_game(request: Request) -> GameController:
    return request.app.state.game


def get_ledger(request: Request) -> ScoreLedger:
    return request.app.state.ledger


def clamp_leaderboard_limit(limit: int | None) -> int:
    if not limit or limit < 1:
        return settings.leaderboard_default_limit
    return min(limit, settings.leaderboard_max_limit)


@router.get("/question")
async def current_question(game: GameController = Depends(get_game)):
    question = game.current_question
    if question is None:
        raise HTTPException(status_code=404, detail="No active question available")

    current = game.round
    return {
        "question": question.public_dict(),
        "isActive": current.is_active,
        "participants": len(current.participants),
        "participantCount": game.participant_count(),
        "winner": current.winner.to_dict() if current.winner else None,
    }


@router.post("/submit")
async def submit_answer(body: SubmitRequest, game: GameController = Depends(get_game)):
    # Anonymous submitters get a fresh id to store client-side
    user_id = body.user_id or str(uuid.uuid4())
    result = await game.submit_answer(user_id, body.username, body.answer)
    return {**result.to_dict(), "userId": user_id}


@router.get("/leaderboard")
async def leaderboard(
    limit: int | None = Query(None, description="Entries to return (max 50)"),
    ledger: ScoreLedger = Depends(get_ledger),
):
    entries = await ledger.leaderboard(clamp_leaderboard_limit(limit))
    return {"leaderboard": entries, "total": len(entries)}


@router.post("/user")
async def create_user(body: CreateUserRequest, ledger: ScoreLedger = Depends(get_ledger)):
    """Register a username and hand back a stable id plus a signed identity token."""
    user_id = str(uuid.uuid4())
    await ledger.register(body.username, body.email)
    return {
        "userId": user_id,
        "username": body.username,
        "email": body.email,
        "token": create_token(user_id, body.username),
        "message": "User session created successfully",
    }


@router.get("/user/verify")
async def verify_user_token(token: str = Query(..., description="Token issued by POST /user")):
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {e}")
    return {"valid": True, "userId": payload["user_id"], "username": payload["username"]}


@router.get("/stats")
async def stats(
    game: GameController = Depends(get_game),
    ledger: ScoreLedger = Depends(get_ledger),
):
    rounds = await ledger.recent_rounds()
    return {**game.statistics(), "recentRounds": summarize_rounds(rounds)}


@router.post("/reset")
async def force_new_question(
    x_admin_token: str | None = Header(None),
    game: GameController = Depends(get_game),
):
    if not settings.admin_token:
        raise HTTPException(status_code=403, detail="Forced reset is disabled")
    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=403, detail="Invalid admin token")

    question = await game.force_new_question()
    return {"question": question.public_dict(), **game.round_metadata()}


@health_router.get("/health")
async def health(request: Request):
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": time.monotonic() - request.app.state.started_at,
    }
