"""Points awarded for winning a round."""
from mathblitz.models.question import Difficulty

_BASE_SCORE = {
    Difficulty.EASY: 100,
    Difficulty.MEDIUM: 250,
    Difficulty.HARD: 500,
}

# Speed bonus decays to zero over this window
_BONUS_WINDOW_MS = 10_000


def score_for_win(difficulty: Difficulty, time_taken_ms: int) -> int:
    base = _BASE_SCORE.get(Difficulty(difficulty), 250)
    bonus = max(0, _BONUS_WINDOW_MS - time_taken_ms)
    return int(base + bonus // 1000)
