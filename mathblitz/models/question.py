"""Difficulty and Question dataclasses."""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


@dataclass(frozen=True)
class Question:
    id: str
    problem: str
    answer: float
    difficulty: Difficulty
    created_at: datetime

    def public_dict(self) -> dict:
        """Wire representation with the answer withheld."""
        return {
            "id": self.id,
            "problem": self.problem,
            "difficulty": self.difficulty.value,
            "createdAt": self.created_at.isoformat(),
        }
