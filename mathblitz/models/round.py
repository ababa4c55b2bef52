"""Round, Winner, Participant and SubmissionResult dataclasses."""
from dataclasses import dataclass, field
from datetime import datetime, timezone

from mathblitz.models.question import Question


@dataclass(frozen=True)
class Participant:
    sid: str
    user_id: str
    username: str


@dataclass(frozen=True)
class Winner:
    user_id: str
    username: str
    submission_time: float

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "username": self.username,
            "submissionTime": _iso(self.submission_time),
        }


@dataclass(frozen=True)
class Round:
    """
    State of the current (or most recently resolved) question.
    Never mutated in place: the controller swaps in a new instance.
    """
    question: Question | None = None
    is_active: bool = False
    started_at: float | None = None
    winner: Winner | None = None
    participants: frozenset[str] = field(default_factory=frozenset)

    def metadata(self, participant_count: int) -> dict:
        return {
            "isActive": self.is_active,
            "participantCount": participant_count,
            "winner": self.winner.to_dict() if self.winner else None,
        }


@dataclass
class SubmissionResult:
    is_correct: bool
    is_winner: bool
    submission_time: float
    time_taken: int = 0

    @classmethod
    def missed(cls, submission_time: float) -> "SubmissionResult":
        return cls(is_correct=False, is_winner=False, submission_time=submission_time)

    def to_dict(self) -> dict:
        return {
            "isCorrect": self.is_correct,
            "isWinner": self.is_winner,
            "submissionTime": _iso(self.submission_time),
            "timeTaken": self.time_taken,
        }


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
