"""FastAPI application with lifespan, WebSocket, and REST routes."""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from mathblitz.api.hub import ConnectionHub
from mathblitz.api.routes import health_router, router
from mathblitz.api.websocket import websocket_game
from mathblitz.config import settings
from mathblitz.database import close_db, get_db
from mathblitz.game.controller import GameController
from mathblitz.middleware.rate_limit import RateLimitMiddleware
from mathblitz.services.ledger import ScoreLedger
from mathblitz.services.question_gen import QuestionGenerator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_controller(ledger: ScoreLedger, hub: ConnectionHub) -> GameController:
    game = GameController(
        generator=QuestionGenerator(),
        ledger=ledger,
        advance_delay_s=settings.round_advance_delay_ms / 1000.0,
        join_debounce_s=settings.join_debounce_ms / 1000.0,
        tolerance=settings.answer_tolerance,
        ladder=settings.difficulty_ladder,
    )
    game.set_question_callback(hub.announce_question)
    game.set_winner_callback(hub.announce_winner)
    return game


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("MathBlitz starting, initialising database")
    await get_db()

    ledger = ScoreLedger()
    hub = ConnectionHub()
    game = build_controller(ledger, hub)
    app.state.ledger = ledger
    app.state.hub = hub
    app.state.game = game
    app.state.started_at = time.monotonic()

    game.start(settings.first_round_delay_ms / 1000.0)
    yield

    logger.info("MathBlitz shutting down, closing database")
    await game.shutdown()
    await close_db()


app = FastAPI(
    title="MathBlitz",
    description="Real-time multiplayer math quiz: first correct answer wins the round",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.client_url],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(router)
app.include_router(health_router)


@app.websocket("/ws/game")
async def ws_game(websocket: WebSocket):
    await websocket_game(websocket)
