"""Registry of open game sockets and the push-event broadcasts."""
import json
import logging

from fastapi import WebSocket

from mathblitz.models.question import Question

logger = logging.getLogger(__name__)


class ConnectionHub:
    def __init__(self):
        # sid → socket
        self._sockets: dict[str, WebSocket] = {}

    def register(self, sid: str, websocket: WebSocket) -> None:
        self._sockets[sid] = websocket

    def unregister(self, sid: str) -> None:
        self._sockets.pop(sid, None)

    def __len__(self) -> int:
        return len(self._sockets)

    async def broadcast(self, payload: dict, exclude: str | None = None) -> None:
        text = json.dumps(payload)
        dead = []
        for sid, websocket in list(self._sockets.items()):
            if sid == exclude:
                continue
            try:
                await websocket.send_text(text)
            except Exception as exc:
                logger.warning("Dropping socket sid=%s after send failure: %s", sid, exc)
                dead.append(sid)

        for sid in dead:
            self._sockets.pop(sid, None)

    async def announce_question(self, question: Question, metadata: dict) -> None:
        await self.broadcast({
            "type": "new-question",
            "question": question.public_dict(),
            "gameState": metadata,
        })

    async def announce_winner(self, winner: dict, correct_answer: float) -> None:
        await self.broadcast({
            "type": "winner-announced",
            "winner": winner,
            "correctAnswer": correct_answer,
        })
