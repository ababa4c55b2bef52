"""Participant-count → difficulty step function."""
from mathblitz.models.question import Difficulty

DEFAULT_LADDER: tuple[tuple[int, str], ...] = ((2, "easy"), (5, "medium"))


def difficulty_for(
    participant_count: int,
    ladder: tuple[tuple[int, str], ...] = DEFAULT_LADDER,
    ceiling: Difficulty = Difficulty.HARD,
) -> Difficulty:
    """Return the first tier whose threshold is >= participant_count."""
    for max_participants, tier in ladder:
        if participant_count <= max_participants:
            return Difficulty(tier)
    return ceiling
