"""Quiz attempt sequencing, scoring and retry policy."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from campusquest.core.clock import Clock, seconds_between, utc_now
from campusquest.domain.defs import DEFAULT_PASSING_SCORE, QuestDef
from campusquest.domain.quest_state import UNANSWERED, QuizProgress

logger = logging.getLogger(__name__)

DEFAULT_RETRY_CAP = 1


class QuizOutcome(Enum):
    """How a finished attempt resolves the quest."""

    PASSED = "passed"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_FINAL = "failed_final"


@dataclass(frozen=True, slots=True)
class QuizResult:
    score_percent: float
    correct_count: int
    total_questions: int
    passed: bool
    time_spent: int
    outcome: QuizOutcome


class QuizService:
    """Pure quiz engine: every call returns a new ``QuizProgress`` or ``None``.

    Attempt lifecycle::

        NotStarted -> InProgress -> Completed (passed | failed-retryable | failed-final)

    A failed-retryable attempt goes back to InProgress only through
    :meth:`retry`. A quest allows ``retry_cap`` retries when its
    ``allow_retries`` flag is set and none otherwise.
    """

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        retry_cap: int = DEFAULT_RETRY_CAP,
        default_passing_score: int = DEFAULT_PASSING_SCORE,
    ) -> None:
        self._clock = clock
        self._retry_cap = retry_cap
        self._default_passing_score = default_passing_score

    def start(self, quest: QuestDef, *, retry_count: int = 0) -> QuizProgress | None:
        """Open a fresh attempt; ``None`` when the quest has no questions."""
        if not quest.questions:
            logger.warning("Quest %s has no quiz questions", quest.quest_id)
            return None
        return QuizProgress.fresh(len(quest.questions), self._clock(), retry_count=retry_count)

    def submit_answer(
        self,
        progress: QuizProgress,
        quest: QuestDef,
        question_index: int,
        answer_index: int,
    ) -> QuizProgress | None:
        """Record one answer; ``None`` when the submission is rejected."""
        if progress.completed:
            logger.warning("Ignoring answer for finished quiz attempt on %s", quest.quest_id)
            return None
        if not 0 <= question_index < len(quest.questions):
            logger.warning("Question index %s out of range for %s", question_index, quest.quest_id)
            return None
        if len(progress.answers) != len(quest.questions):
            logger.warning("Quiz attempt for %s does not match its question list", quest.quest_id)
            return None
        if not 0 <= answer_index < len(quest.questions[question_index].options):
            logger.warning(
                "Answer index %s out of range for %s question %s",
                answer_index,
                quest.quest_id,
                question_index,
            )
            return None

        updated = progress.copy()
        updated.answers[question_index] = answer_index
        updated.score = self._points_scored(updated, quest)
        updated.current_question = self._next_question_index(updated, question_index)
        updated.time_spent = seconds_between(updated.started_at, self._clock())
        return updated

    def finalize(self, progress: QuizProgress | None, quest: QuestDef) -> tuple[QuizProgress, QuizResult] | None:
        """Close the attempt and score it; ``None`` when there is no open attempt."""
        if progress is None or progress.completed:
            return None
        if not quest.questions:
            return None
        updated = progress.copy()
        updated.completed = True
        updated.time_spent = seconds_between(updated.started_at, self._clock())
        updated.score = self._points_scored(updated, quest)
        return updated, self._build_result(updated, quest)

    def results(self, progress: QuizProgress | None, quest: QuestDef) -> QuizResult | None:
        if progress is None or not quest.questions:
            return None
        return self._build_result(progress, quest)

    def retry_cap(self, quest: QuestDef) -> int:
        return self._retry_cap if quest.allow_retries else 0

    def can_retry(self, progress: QuizProgress, quest: QuestDef) -> bool:
        return progress.retry_count < self.retry_cap(quest)

    def retry(self, progress: QuizProgress, quest: QuestDef) -> QuizProgress | None:
        """Start the next attempt after a failed-retryable finish."""
        if not progress.completed:
            logger.warning("Cannot retry %s: the current attempt is still open", quest.quest_id)
            return None
        result = self._build_result(progress, quest)
        if result.outcome is not QuizOutcome.FAILED_RETRYABLE:
            logger.warning("Cannot retry %s: outcome is %s", quest.quest_id, result.outcome.value)
            return None
        return self.start(quest, retry_count=progress.retry_count + 1)

    def passing_score(self, quest: QuestDef) -> int:
        if quest.passing_score is None:
            return self._default_passing_score
        return quest.passing_score

    def _build_result(self, progress: QuizProgress, quest: QuestDef) -> QuizResult:
        total = len(quest.questions)
        correct = self._correct_count(progress, quest)
        score_percent = correct / total * 100
        passed = score_percent >= self.passing_score(quest)
        if passed:
            outcome = QuizOutcome.PASSED
        elif self.can_retry(progress, quest):
            outcome = QuizOutcome.FAILED_RETRYABLE
        else:
            outcome = QuizOutcome.FAILED_FINAL
        return QuizResult(
            score_percent=score_percent,
            correct_count=correct,
            total_questions=total,
            passed=passed,
            time_spent=progress.time_spent,
            outcome=outcome,
        )

    @staticmethod
    def _correct_count(progress: QuizProgress, quest: QuestDef) -> int:
        return sum(
            1
            for question, answer in zip(quest.questions, progress.answers)
            if answer == question.correct_index
        )

    @staticmethod
    def _points_scored(progress: QuizProgress, quest: QuestDef) -> int:
        return sum(
            question.points
            for question, answer in zip(quest.questions, progress.answers)
            if answer == question.correct_index
        )

    @staticmethod
    def _next_question_index(progress: QuizProgress, answered_index: int) -> int:
        for candidate in range(answered_index + 1, len(progress.answers)):
            if progress.answers[candidate] == UNANSWERED:
                return candidate
        return answered_index
