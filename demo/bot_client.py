"""
Bot player: joins the game, parses each broadcast problem and answers it
after a short "thinking" delay. Run several copies to watch them race.
"""
import ast
import asyncio
import json
import math
import operator
import os
import random
import re
import sys

import websockets

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from dotenv import load_dotenv
load_dotenv()

WS_URL = os.getenv("WS_URL", "ws://localhost:8000/ws/game")
BOT_NAME = os.getenv("BOT_NAME", f"bot-{random.randint(100, 999)}")
THINK_S = float(os.getenv("BOT_THINK_S", "1.5"))

_BINOPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}


def _eval_node(node):
    if isinstance(node, ast.Expression):
        return _eval_node(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINOPS:
        return _BINOPS[type(node.op)](_eval_node(node.left), _eval_node(node.right))
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        return -_eval_node(node.operand)
    raise ValueError(f"unsupported expression node {type(node).__name__}")


def solve(problem: str) -> float | None:
    """Best-effort solver for the problem shapes the server produces."""
    if m := re.match(r"Calculate: (\d+)\^(\d+)$", problem):
        return int(m[1]) ** int(m[2])
    if m := re.match(r"What is √(\d+)\?$", problem):
        return math.isqrt(int(m[1]))
    if m := re.match(r"What is (\d+)% of (\d+)\?$", problem):
        return round(int(m[2]) * int(m[1]) / 100, 2)
    if m := re.match(r"(\d+) is what percent of (\d+)\?$", problem):
        return round(int(m[1]) * 100 / int(m[2]), 2)
    if m := re.match(r"If (\d+)x \+ (\d+) = (-?\d+), find x$", problem):
        return (int(m[3]) - int(m[2])) / int(m[1])
    if m := re.match(r"Solve for x: (\d+)x - (\d+) = (-?\d+)$", problem):
        return (int(m[3]) + int(m[2])) / int(m[1])
    if m := re.match(r"What is x when (\d+)\(x \+ (\d+)\) = (\d+)\?$", problem):
        return int(m[3]) / int(m[1]) - int(m[2])
    if m := re.match(r"Find x: (\d+)x = (\d+)$", problem):
        return int(m[2]) / int(m[1])
    if m := re.match(r"Calculate: (.+?)( \(as decimal\))?$", problem):
        places = 3 if m[2] else 2
        return round(_eval_node(ast.parse(m[1], mode="eval")), places)
    return None


async def run():
    print(f"[{BOT_NAME}] Connecting to {WS_URL}")

    async with websockets.connect(WS_URL) as ws:
        await ws.send(json.dumps({"type": "join", "username": BOT_NAME}))

        while True:
            msg = json.loads(await ws.recv())
            msg_type = msg.get("type")

            if msg_type == "joined-successfully":
                print(f"[{BOT_NAME}] Joined as {msg['userId']} "
                      f"({msg['participantCount']} playing)")

            elif msg_type == "new-question":
                problem = msg["question"]["problem"]
                print(f"[{BOT_NAME}] {msg['question']['difficulty']}: {problem}")
                answer = solve(problem)
                if answer is None:
                    print(f"[{BOT_NAME}]   no idea, skipping")
                    continue
                await asyncio.sleep(random.uniform(0.5, 1.0) * THINK_S)
                await ws.send(json.dumps({"type": "submit-answer", "answer": answer}))

            elif msg_type == "submission-result":
                if "error" in msg:
                    print(f"[{BOT_NAME}]   rejected: {msg['error']}")
                else:
                    print(f"[{BOT_NAME}]   correct={msg['isCorrect']} winner={msg['isWinner']} "
                          f"in {msg['timeTaken']}ms")

            elif msg_type == "winner-announced":
                winner = msg["winner"]
                print(f"[{BOT_NAME}] Winner: {winner['username']} "
                      f"({winner['timeTaken']}ms), answer {msg['correctAnswer']}")

            elif msg_type == "error":
                print(f"[{BOT_NAME}] ERROR: {msg.get('message')}")
                break


if __name__ == "__main__":
    asyncio.run(run())
