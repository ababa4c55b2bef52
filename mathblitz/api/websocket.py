"""WebSocket handler: one long-lived game connection per participant."""
import json
import logging
import uuid

import jwt
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from mathblitz.api.hub import ConnectionHub
from mathblitz.api.schemas import JoinMessage, SubmitMessage
from mathblitz.game.controller import GameController
from mathblitz.services.token import decode_token

logger = logging.getLogger(__name__)


async def websocket_game(websocket: WebSocket):
    game: GameController = websocket.app.state.game
    hub: ConnectionHub = websocket.app.state.hub

    await websocket.accept()
    sid = uuid.uuid4().hex
    hub.register(sid, websocket)
    logger.info("Client connected sid=%s, %d open sockets", sid, len(hub))

    async def ws_send(data: dict):
        await websocket.send_text(json.dumps(data))

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await ws_send({"type": "error", "message": "Malformed message"})
                continue
            if not isinstance(msg, dict):
                await ws_send({"type": "error", "message": "Malformed message"})
                continue

            handler = _HANDLERS.get(msg.get("type"))
            if handler is None:
                await ws_send({"type": "error", "message": f"Unknown event {msg.get('type')!r}"})
                continue
            await handler(sid, msg, game, hub, ws_send)
    except WebSocketDisconnect:
        logger.info("Client disconnected sid=%s", sid)
    except Exception as exc:
        logger.exception("Unhandled error on game socket sid=%s: %s", sid, exc)
    finally:
        hub.unregister(sid)
        participant = game.remove_user(sid)
        if participant is not None:
            await hub.broadcast({
                "type": "user-left",
                "username": participant.username,
                "participantCount": game.participant_count(),
            })


async def _handle_join(sid: str, msg: dict, game: GameController, hub: ConnectionHub, ws_send):
    try:
        join = JoinMessage.model_validate(msg)
    except ValidationError:
        await ws_send({"type": "error", "message": "Invalid username"})
        return

    user_id = join.user_id
    if join.token:
        try:
            user_id = decode_token(join.token)["user_id"]
        except (jwt.InvalidTokenError, KeyError):
            await ws_send({"type": "error", "message": "Invalid token"})
            return
    user_id = user_id or str(uuid.uuid4())

    game.add_user(sid, user_id, join.username)

    question = game.current_question
    if question is not None:
        await ws_send({
            "type": "new-question",
            "question": question.public_dict(),
            "gameState": game.round_metadata(),
        })

    await hub.broadcast(
        {
            "type": "user-joined",
            "username": join.username,
            "participantCount": game.participant_count(),
        },
        exclude=sid,
    )
    await ws_send({
        "type": "joined-successfully",
        "userId": user_id,
        "username": join.username,
        "participantCount": game.participant_count(),
    })


async def _handle_submit(sid: str, msg: dict, game: GameController, hub: ConnectionHub, ws_send):
    participant = game.participant(sid)
    if participant is None:
        await ws_send({
            "type": "submission-result",
            "error": "Not authenticated. Please join the game first.",
        })
        return

    try:
        submission = SubmitMessage.model_validate(msg)
    except ValidationError:
        await ws_send({"type": "submission-result", "error": "Invalid answer format"})
        return

    result = await game.submit_answer(
        participant.user_id, participant.username, submission.answer
    )
    await ws_send({"type": "submission-result", **result.to_dict()})


async def _handle_ping(sid: str, msg: dict, game: GameController, hub: ConnectionHub, ws_send):
    await ws_send({"type": "pong"})


_HANDLERS = {
    "join": _handle_join,
    "join-game": _handle_join,
    "submit-answer": _handle_submit,
    "ping": _handle_ping,
}
