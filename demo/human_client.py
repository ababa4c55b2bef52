"""
Terminal player: prints each question and sends whatever number you type.
"""
import asyncio
import json
import os
import sys

import websockets

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from dotenv import load_dotenv
load_dotenv()

WS_URL = os.getenv("WS_URL", "ws://localhost:8000/ws/game")


async def _read_answers(ws):
    while True:
        line = await asyncio.to_thread(input)
        try:
            answer = float(line.strip())
        except ValueError:
            print("[you] numbers only")
            continue
        await ws.send(json.dumps({"type": "submit-answer", "answer": answer}))


async def run(username: str):
    print(f"[you] Connecting to {WS_URL} as {username}")

    async with websockets.connect(WS_URL) as ws:
        await ws.send(json.dumps({"type": "join", "username": username}))
        reader = asyncio.create_task(_read_answers(ws))
        try:
            while True:
                msg = json.loads(await ws.recv())
                msg_type = msg.get("type")

                if msg_type == "new-question":
                    print(f"\n{msg['question']['problem']}  ({msg['question']['difficulty']})")
                elif msg_type == "submission-result":
                    if "error" in msg:
                        print(f"[you] {msg['error']}")
                    elif msg["isWinner"]:
                        print(f"[you] You won! {msg['timeTaken']}ms")
                    elif msg["isCorrect"]:
                        print("[you] Correct, but someone was faster")
                    else:
                        print("[you] Wrong")
                elif msg_type == "winner-announced":
                    print(f"[game] {msg['winner']['username']} wins, answer was {msg['correctAnswer']}")
                elif msg_type in ("user-joined", "user-left"):
                    verb = "joined" if msg_type == "user-joined" else "left"
                    print(f"[game] {msg['username']} {verb} ({msg['participantCount']} playing)")
                elif msg_type == "error":
                    print(f"[game] ERROR: {msg.get('message')}")
                    break
        finally:
            reader.cancel()


if __name__ == "__main__":
    asyncio.run(run(sys.argv[1] if len(sys.argv) > 1 else os.getenv("USERNAME", "player")))
