"""Session controller: owns the active round and resolves exactly one winner per round."""
import asyncio
import logging
import time
from dataclasses import replace
from typing import Awaitable, Callable

from mathblitz.game.difficulty import DEFAULT_LADDER, difficulty_for
from mathblitz.game.presence import PresenceTracker
from mathblitz.models.question import Difficulty, Question
from mathblitz.models.round import Participant, Round, SubmissionResult, Winner
from mathblitz.services.question_gen import QuestionGenerator
from mathblitz.services.scoring import score_for_win

logger = logging.getLogger(__name__)

QuestionCallback = Callable[[Question, dict], Awaitable[None]]
WinnerCallback = Callable[[dict, float], Awaitable[None]]

# Differences are rounded to 9 places before the strict comparison, so
# 42.01 vs 42 counts as exactly 0.01 and is rejected.
_DIFF_PLACES = 9


def within_tolerance(answer: float, expected: float, tolerance: float) -> bool:
    return round(abs(answer - expected), _DIFF_PLACES) < tolerance


class GameController:
    """
    Round lifecycle: no round -> active -> closed (winner or forced reset)
    -> active again after a delay.

    All state lives on the event loop thread. The winner gate is a plain
    flag tested and set with no await in between, so among interleaved
    submissions only the first to reach it can record a winner.
    """

    def __init__(
        self,
        generator: QuestionGenerator | None = None,
        ledger=None,
        presence: PresenceTracker | None = None,
        *,
        advance_delay_s: float = 3.0,
        join_debounce_s: float = 0.5,
        tolerance: float = 0.01,
        ladder: tuple[tuple[int, str], ...] = DEFAULT_LADDER,
        clock: Callable[[], float] = time.time,
    ):
        self._generator = generator or QuestionGenerator()
        self._ledger = ledger
        self._presence = presence or PresenceTracker()
        self._advance_delay_s = advance_delay_s
        self._join_debounce_s = join_debounce_s
        self._tolerance = tolerance
        self._ladder = ladder
        self._clock = clock

        self._round = Round()
        self._gate_held = False
        self._difficulty = Difficulty.MEDIUM
        self._advance_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._on_question: QuestionCallback | None = None
        self._on_winner: WinnerCallback | None = None

    # ------------------------------------------------------------------
    # Wiring and read-only views
    # ------------------------------------------------------------------

    def set_question_callback(self, callback: QuestionCallback | None) -> None:
        self._on_question = callback

    def set_winner_callback(self, callback: WinnerCallback | None) -> None:
        self._on_winner = callback

    @property
    def round(self) -> Round:
        return self._round

    @property
    def current_question(self) -> Question | None:
        return self._round.question

    @property
    def advance_pending(self) -> bool:
        return self._advance_task is not None and not self._advance_task.done()

    def participants(self) -> set[str]:
        return set(self._round.participants)

    def participant_count(self) -> int:
        return self._presence.count()

    def participant(self, sid: str) -> Participant | None:
        return self._presence.get(sid)

    def round_metadata(self) -> dict:
        return self._round.metadata(self._presence.count())

    def statistics(self) -> dict:
        current = self._round
        return {
            "connectedUsers": self._presence.count(),
            "isGameActive": current.is_active,
            "hasActiveQuestion": current.question is not None,
            "currentWinner": current.winner.username if current.winner else None,
            "participants": len(current.participants),
            "currentDifficulty": self._difficulty.value,
            "questionId": current.question.id if current.question else None,
            "roundStartedAt": current.started_at,
        }

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    async def submit_answer(
        self, user_id: str, username: str, answer: float
    ) -> SubmissionResult:
        submitted_at = self._clock()
        current = self._round

        if current.question is None or current.started_at is None:
            return SubmissionResult.missed(submitted_at)

        question = current.question
        time_taken = int((submitted_at - current.started_at) * 1000)
        is_correct = within_tolerance(answer, question.answer, self._tolerance)
        logger.debug(
            "Answer from %s: got %s expected %s correct=%s",
            username, answer, question.answer, is_correct,
        )
        if not is_correct:
            return SubmissionResult(False, False, submitted_at, time_taken)

        # Closed rounds still grade answers; only the winner slot is gone.
        late = SubmissionResult(True, False, submitted_at, time_taken)
        if self._gate_held or not current.is_active or self._round.winner is not None:
            return late

        self._gate_held = True
        try:
            # Re-check under the gate: the round may have been won, reset or
            # replaced since this submission read it.
            latest = self._round
            if (
                latest.winner is not None
                or not latest.is_active
                or latest.question is not question
            ):
                return late

            winner = Winner(user_id=user_id, username=username, submission_time=submitted_at)
            self._round = replace(latest, winner=winner, is_active=False)
            logger.info("Winner %s in %dms (question %s)", username, time_taken, question.id)

            self._spawn(self._persist_win(question, username, time_taken))
            self._schedule_advance(self._advance_delay_s)
            await self._announce_winner(winner, time_taken, question.answer)
            return SubmissionResult(True, True, submitted_at, time_taken)
        finally:
            self._gate_held = False

    # ------------------------------------------------------------------
    # Round transitions
    # ------------------------------------------------------------------

    async def start_new_question(self) -> Question:
        self._cancel_advance()
        self._adjust_difficulty()

        question = self._generator.generate(self._difficulty)
        self._round = Round(
            question=question,
            is_active=True,
            started_at=self._clock(),
            winner=None,
            participants=frozenset(self._presence.user_ids()),
        )
        self._gate_held = False

        logger.info(
            "New %s question %s for %d participants: %s",
            question.difficulty.value, question.id, self._presence.count(), question.problem,
        )
        logger.debug("Answer for %s: %s", question.id, question.answer)

        await self._announce_question(question)
        return question

    async def force_new_question(self) -> Question:
        """Close the current round without a winner and start a fresh one now."""
        logger.info("Forcing new question")
        self._cancel_advance()
        previous = self._round
        self._round = replace(previous, is_active=False)
        self._gate_held = False

        if previous.question is not None and previous.winner is None:
            self._spawn(self._persist_unresolved(previous.question))
        return await self.start_new_question()

    def start(self, delay_s: float) -> None:
        """Arm the first round of the process."""
        self._schedule_advance(delay_s)

    async def shutdown(self) -> None:
        self._cancel_advance()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _adjust_difficulty(self) -> None:
        count = self._presence.count()
        previous = self._difficulty
        self._difficulty = difficulty_for(count, self._ladder)
        if previous != self._difficulty:
            logger.info(
                "Difficulty adjusted to %s (%d participants)", self._difficulty.value, count
            )

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def add_user(self, sid: str, user_id: str, username: str) -> Participant:
        is_first = self._presence.count() == 0
        previous = self._presence.get(sid)
        participant = self._presence.add(sid, user_id, username)
        participants = self._round.participants | {user_id}
        # A re-join on the same socket may carry a different user id
        if previous is not None and previous.user_id not in self._presence.user_ids():
            participants = participants - {previous.user_id}
        self._round = replace(self._round, participants=participants)
        logger.info(
            "User joined: %s (%s), %d connected", username, sid, self._presence.count()
        )

        if (is_first or self._round.question is None) and not self.advance_pending:
            logger.info("Starting new question for %d users", self._presence.count())
            self._schedule_advance(self._join_debounce_s)
        return participant

    def remove_user(self, sid: str) -> Participant | None:
        participant = self._presence.remove(sid)
        if participant is None:
            return None

        logger.info(
            "User left: %s (%s), %d connected",
            participant.username, sid, self._presence.count(),
        )
        if participant.user_id not in self._presence.user_ids():
            self._round = replace(
                self._round,
                participants=self._round.participants - {participant.user_id},
            )
        return participant

    # ------------------------------------------------------------------
    # Deferred and best-effort work
    # ------------------------------------------------------------------

    def _schedule_advance(self, delay_s: float) -> None:
        self._cancel_advance()
        self._advance_task = asyncio.create_task(self._advance_after(delay_s))

    def _cancel_advance(self) -> None:
        task = self._advance_task
        self._advance_task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _advance_after(self, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        self._advance_task = None
        try:
            await self.start_new_question()
        except Exception:
            logger.exception("Deferred round start failed")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _persist_win(self, question: Question, username: str, time_taken: int) -> None:
        if self._ledger is None:
            return
        points = score_for_win(question.difficulty, time_taken)
        try:
            await self._ledger.record_win(username, points)
            logger.info("Updated score for %s: +%d points (%dms)", username, points, time_taken)
        except Exception:
            logger.exception("Score update failed for %s", username)

        try:
            await self._ledger.record_round(question, username, time_taken)
        except Exception as exc:
            logger.warning("Failed to persist round %s: %s", question.id, exc)

    async def _persist_unresolved(self, question: Question) -> None:
        if self._ledger is None:
            return
        try:
            await self._ledger.record_round(question, None, None)
        except Exception as exc:
            logger.warning("Failed to persist round %s: %s", question.id, exc)

    async def _announce_question(self, question: Question) -> None:
        if self._on_question is None:
            logger.warning("No question callback registered; %s not broadcast", question.id)
            return
        try:
            await self._on_question(question, self.round_metadata())
        except Exception:
            logger.exception("Question broadcast failed for %s", question.id)

    async def _announce_winner(self, winner: Winner, time_taken: int, correct_answer: float) -> None:
        if self._on_winner is None:
            logger.warning("No winner announcement callback registered")
            return
        payload = {
            "userId": winner.user_id,
            "username": winner.username,
            "timeTaken": time_taken,
        }
        try:
            await self._on_winner(payload, correct_answer)
        except Exception:
            logger.exception("Winner announcement failed for %s", winner.username)
