"""Quest state transitions.

Every public method takes the current ``UserProgress`` and returns a
``QuestTransition``. The input is never modified: a transition that changes
anything carries a fresh progress object, one that changes nothing carries
the input back unchanged. That makes the guards (already completed,
prerequisites, geofence, quiz attempt state) testable without a store.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from campusquest.core.clock import Clock, utc_now
from campusquest.core.types import QuestDifficulty, QuestKind, QuestStatus, StartAction
from campusquest.data.repositories import QuestsRepository
from campusquest.domain.defs import QuestDef
from campusquest.domain.geo import DEFAULT_COMPLETION_RADIUS_M, LatLng, is_within_radius
from campusquest.domain.quest_state import InProgressEntry, QuizProgress
from campusquest.domain.state import UserProgress, derive_status
from campusquest.services.quest_events import (
    ActiveQuestChangedEvent,
    CollectibleAlreadyOwnedEvent,
    CollectibleAwardedEvent,
    LocationReachedEvent,
    QuestCompletedEvent,
    QuestEvent,
    QuestStartedEvent,
    QuizFinishedEvent,
    QuizStartedEvent,
)
from campusquest.services.quiz_service import QuizOutcome, QuizResult, QuizService
from campusquest.services.reward_service import RewardOutcome, RewardService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QuestTransition:
    """New progress plus everything that happened while producing it."""

    progress: UserProgress
    success: bool = False
    events: List[QuestEvent] = field(default_factory=list)
    action: StartAction = "none"
    quiz_result: QuizResult | None = None
    reward: RewardOutcome | None = None


@dataclass(slots=True)
class QuestView:
    quest_id: str
    title: str
    kind: QuestKind
    difficulty: QuestDifficulty
    reward_points: int
    status: QuestStatus
    can_start: bool
    location_reached: bool
    has_quiz: bool


class QuestService:
    """Start, locate, quiz and complete quests for one user's progress."""

    def __init__(
        self,
        *,
        quests_repo: QuestsRepository,
        quiz_service: QuizService,
        reward_service: RewardService,
        clock: Clock = utc_now,
        completion_radius_m: float = DEFAULT_COMPLETION_RADIUS_M,
    ) -> None:
        self._quests_repo = quests_repo
        self._quiz_service = quiz_service
        self._reward_service = reward_service
        self._clock = clock
        self._completion_radius_m = completion_radius_m

    @property
    def quiz_service(self) -> QuizService:
        return self._quiz_service

    def get_quest(self, quest_id: str) -> QuestDef | None:
        quest = self._quests_repo.find(quest_id)
        if quest is None:
            logger.warning("Unknown quest id %s", quest_id)
        return quest

    def can_start(self, progress: UserProgress, quest_id: str) -> bool:
        quest = self.get_quest(quest_id)
        if quest is None:
            return False
        return self._can_start(progress, quest)

    def status_of(self, progress: UserProgress, quest_id: str) -> QuestStatus:
        return derive_status(progress, quest_id)

    def start_quest(self, progress: UserProgress, quest_id: str) -> QuestTransition:
        """Begin a quest, or open its quiz once the location has been reached.

        ``action`` tells the caller what to show next: ``"map"`` to navigate to
        the target, ``"quiz"`` when the quiz is unlocked, ``"none"`` on failure.
        """
        quest = self.get_quest(quest_id)
        if quest is None or not self._can_start(progress, quest):
            if quest is not None:
                logger.info("Quest %s cannot be started", quest_id)
            return QuestTransition(progress=progress)

        entry = progress.in_progress.get(quest_id)
        if quest.has_quiz and entry is not None and entry.location_reached:
            return self._open_quiz(progress, quest)

        working = progress.copy()
        events = self._begin(working, quest)
        events.append(QuestStartedEvent(quest_id=quest_id, action="map"))
        return QuestTransition(progress=working, success=True, events=events, action="map")

    def set_active_quest(self, progress: UserProgress, quest_id: str | None) -> QuestTransition:
        """Focus ``quest_id`` for navigation and abandonment tracking, or clear focus."""
        if quest_id is None:
            if progress.active_quest_id is None:
                return QuestTransition(progress=progress, success=True)
            working = progress.copy()
            working.active_quest_id = None
            event = ActiveQuestChangedEvent(quest_id=None, previous_quest_id=progress.active_quest_id)
            return QuestTransition(progress=working, success=True, events=[event])

        quest = self.get_quest(quest_id)
        if quest is None:
            return QuestTransition(progress=progress)
        if progress.is_completed(quest_id):
            logger.info("Refusing to focus completed quest %s", quest_id)
            return QuestTransition(progress=progress)
        if not progress.is_in_progress(quest_id) and not self._can_start(progress, quest):
            return QuestTransition(progress=progress)
        working = progress.copy()
        return QuestTransition(progress=working, success=True, events=self._begin(working, quest))

    def set_paused(self, progress: UserProgress, paused: bool) -> QuestTransition:
        """Pause or resume the active quest; paused quests are never abandoned."""
        active_id = progress.active_quest_id
        if active_id is None or active_id not in progress.in_progress:
            return QuestTransition(progress=progress)
        if progress.in_progress[active_id].paused == paused:
            return QuestTransition(progress=progress, success=True)
        working = progress.copy()
        working.in_progress[active_id].paused = paused
        return QuestTransition(progress=working, success=True)

    def complete_location_quest(
        self,
        progress: UserProgress,
        quest_id: str,
        position: LatLng,
    ) -> QuestTransition:
        """Evaluate the geofence; ``success`` reports arrival, not full completion.

        Quests without a quiz are completed on arrival. Quests with a quiz only
        record ``location_reached`` so the quiz unlocks.
        """
        quest = self.get_quest(quest_id)
        if quest is None or progress.is_completed(quest_id):
            return QuestTransition(progress=progress)
        if not self._prerequisites_met(progress, quest):
            return QuestTransition(progress=progress)
        if not is_within_radius(position, quest.position, self._completion_radius_m):
            return QuestTransition(progress=progress)

        if not quest.has_quiz:
            working = progress.copy()
            transition = self._resolve(working, quest, passed=True)
            transition.success = True
            return transition

        entry = progress.in_progress.get(quest_id)
        if entry is not None and entry.location_reached:
            return QuestTransition(progress=progress, success=True)
        working = progress.copy()
        working_entry = working.in_progress.get(quest_id)
        if working_entry is None:
            working_entry = InProgressEntry(started_at=self._clock())
            working.in_progress[quest_id] = working_entry
        working_entry.location_reached = True
        logger.info("Location reached for %s; quiz unlocked", quest_id)
        event = LocationReachedEvent(quest_id=quest_id, title=quest.title, quiz_unlocked=True)
        return QuestTransition(progress=working, success=True, events=[event])

    def submit_quiz_answer(
        self,
        progress: UserProgress,
        quest_id: str,
        question_index: int,
        answer_index: int,
    ) -> QuestTransition:
        quest = self.get_quest(quest_id)
        if quest is None or progress.is_completed(quest_id):
            return QuestTransition(progress=progress)
        attempt = progress.quiz_progress.get(quest_id)
        if attempt is None:
            logger.warning("No quiz attempt open for %s", quest_id)
            return QuestTransition(progress=progress)
        updated = self._quiz_service.submit_answer(attempt, quest, question_index, answer_index)
        if updated is None:
            return QuestTransition(progress=progress)
        working = progress.copy()
        working.quiz_progress[quest_id] = updated
        return QuestTransition(progress=working, success=True)

    def submit_quiz_answers(
        self,
        progress: UserProgress,
        quest_id: str,
        answers: Sequence[int],
    ) -> QuestTransition:
        """Answer every question at once and finish the attempt.

        Opens an attempt when the location has been reached and none is open.
        ``success`` is True only when the quiz was passed.
        """
        quest = self.get_quest(quest_id)
        if quest is None or not quest.has_quiz or progress.is_completed(quest_id):
            return QuestTransition(progress=progress)
        if len(answers) != len(quest.questions):
            logger.warning(
                "Expected %s answers for %s, got %s", len(quest.questions), quest_id, len(answers)
            )
            return QuestTransition(progress=progress)

        events: List[QuestEvent] = []
        attempt = progress.quiz_progress.get(quest_id)
        if attempt is None:
            entry = progress.in_progress.get(quest_id)
            if entry is None or not entry.location_reached:
                logger.warning("Quiz for %s is locked until the location is reached", quest_id)
                return QuestTransition(progress=progress)
            attempt = self._quiz_service.start(quest)
            if attempt is None:
                return QuestTransition(progress=progress)
            events.append(QuizStartedEvent(quest_id=quest_id, question_count=len(quest.questions), retry_count=0))
        elif attempt.completed:
            logger.warning("Quiz attempt for %s is finished; a retry is required", quest_id)
            return QuestTransition(progress=progress)

        for question_index, answer_index in enumerate(answers):
            updated = self._quiz_service.submit_answer(attempt, quest, question_index, answer_index)
            if updated is None:
                return QuestTransition(progress=progress)
            attempt = updated

        working = progress.copy()
        working.quiz_progress[quest_id] = attempt
        transition = self._finish_quiz(working, quest)
        transition.events[:0] = events
        return transition

    def complete_quiz(self, progress: UserProgress, quest_id: str) -> QuestTransition:
        """Score the open attempt and resolve the quest when the outcome is final."""
        quest = self.get_quest(quest_id)
        if quest is None or not quest.has_quiz or progress.is_completed(quest_id):
            return QuestTransition(progress=progress)
        attempt = progress.quiz_progress.get(quest_id)
        if attempt is None or attempt.completed:
            return QuestTransition(progress=progress)
        return self._finish_quiz(progress.copy(), quest)

    def retry_quiz(self, progress: UserProgress, quest_id: str) -> QuestTransition:
        quest = self.get_quest(quest_id)
        if quest is None or progress.is_completed(quest_id):
            return QuestTransition(progress=progress)
        attempt = progress.quiz_progress.get(quest_id)
        if attempt is None:
            return QuestTransition(progress=progress)
        fresh = self._quiz_service.retry(attempt, quest)
        if fresh is None:
            return QuestTransition(progress=progress)
        working = progress.copy()
        working.quiz_progress[quest_id] = fresh
        event = QuizStartedEvent(quest_id=quest_id, question_count=len(quest.questions), retry_count=fresh.retry_count)
        return QuestTransition(progress=working, success=True, events=[event], action="quiz")

    def quiz_results(self, progress: UserProgress, quest_id: str) -> QuizResult | None:
        quest = self.get_quest(quest_id)
        if quest is None:
            return None
        return self._quiz_service.results(progress.quiz_progress.get(quest_id), quest)

    def normalize(self, progress: UserProgress) -> QuestTransition:
        """Repair a freshly loaded progress: cached points and a dangling active pointer."""
        expected_points = self._reward_service.recalculate_total_points(progress)
        dangling_active = (
            progress.active_quest_id is not None and progress.active_quest_id not in progress.in_progress
        )
        if expected_points == progress.total_points and not dangling_active:
            return QuestTransition(progress=progress, success=True)
        working = progress.copy()
        if expected_points != progress.total_points:
            logger.warning(
                "Stored total points %s disagree with completion history %s; using history",
                progress.total_points,
                expected_points,
            )
            working.total_points = expected_points
        if dangling_active:
            logger.warning("Active quest %s is not in progress; clearing it", progress.active_quest_id)
            working.active_quest_id = None
        return QuestTransition(progress=working, success=True)

    def build_quest_views(self, progress: UserProgress) -> List[QuestView]:
        views: List[QuestView] = []
        for quest in self._quests_repo.all():
            entry = progress.in_progress.get(quest.quest_id)
            views.append(
                QuestView(
                    quest_id=quest.quest_id,
                    title=quest.title,
                    kind=quest.kind,
                    difficulty=quest.difficulty,
                    reward_points=quest.reward_points,
                    status=derive_status(progress, quest.quest_id),
                    can_start=self._can_start(progress, quest),
                    location_reached=bool(entry and entry.location_reached),
                    has_quiz=quest.has_quiz,
                )
            )
        return views

    def _can_start(self, progress: UserProgress, quest: QuestDef) -> bool:
        if progress.is_completed(quest.quest_id):
            return False
        return self._prerequisites_met(progress, quest)

    @staticmethod
    def _prerequisites_met(progress: UserProgress, quest: QuestDef) -> bool:
        return all(progress.is_completed(required_id) for required_id in quest.required_quests)

    def _begin(self, working: UserProgress, quest: QuestDef) -> List[QuestEvent]:
        """Mark ``quest`` in progress (keeping an existing record) and focus it."""
        entry = working.in_progress.get(quest.quest_id)
        if entry is None:
            working.in_progress[quest.quest_id] = InProgressEntry(started_at=self._clock())
        else:
            entry.paused = False
        previous = working.active_quest_id
        working.active_quest_id = quest.quest_id
        if previous == quest.quest_id:
            return []
        return [ActiveQuestChangedEvent(quest_id=quest.quest_id, previous_quest_id=previous)]

    def _open_quiz(self, progress: UserProgress, quest: QuestDef) -> QuestTransition:
        attempt = progress.quiz_progress.get(quest.quest_id)
        if attempt is not None and self._attempt_matches(attempt, quest):
            # Resume the open attempt, or show the finished one's results.
            working = progress.copy()
            events = self._begin(working, quest)
            events.append(QuestStartedEvent(quest_id=quest.quest_id, action="quiz"))
            return QuestTransition(progress=working, success=True, events=events, action="quiz")

        fresh = self._quiz_service.start(quest)
        if fresh is None:
            return QuestTransition(progress=progress)
        working = progress.copy()
        working.quiz_progress[quest.quest_id] = fresh
        events = self._begin(working, quest)
        events.append(QuestStartedEvent(quest_id=quest.quest_id, action="quiz"))
        events.append(QuizStartedEvent(quest_id=quest.quest_id, question_count=len(quest.questions), retry_count=0))
        return QuestTransition(progress=working, success=True, events=events, action="quiz")

    @staticmethod
    def _attempt_matches(attempt: QuizProgress, quest: QuestDef) -> bool:
        return len(attempt.answers) == len(quest.questions)

    def _finish_quiz(self, working: UserProgress, quest: QuestDef) -> QuestTransition:
        finished = self._quiz_service.finalize(working.quiz_progress.get(quest.quest_id), quest)
        if finished is None:
            return QuestTransition(progress=working)
        attempt, result = finished
        working.quiz_progress[quest.quest_id] = attempt
        finished_event = QuizFinishedEvent(
            quest_id=quest.quest_id,
            score_percent=result.score_percent,
            passed=result.passed,
            outcome=result.outcome.value,
        )
        if result.outcome is QuizOutcome.FAILED_RETRYABLE:
            return QuestTransition(
                progress=working,
                success=False,
                events=[finished_event],
                quiz_result=result,
            )
        transition = self._resolve(working, quest, passed=result.passed)
        transition.events.insert(0, finished_event)
        transition.success = result.passed
        transition.quiz_result = result
        return transition

    def _resolve(self, working: UserProgress, quest: QuestDef, *, passed: bool) -> QuestTransition:
        """The single completion transition: in-progress/available -> completed."""
        quest_id = quest.quest_id
        if working.is_completed(quest_id):
            return QuestTransition(progress=working)
        now = self._clock()
        working.in_progress.pop(quest_id, None)
        working.completed_quests.append(quest_id)
        if working.active_quest_id == quest_id:
            working.active_quest_id = None
        if passed:
            reward = self._reward_service.award_completion(working, quest, now=now)
        else:
            reward = self._reward_service.award_failed_final(working, quest, now=now)

        events: List[QuestEvent] = [
            QuestCompletedEvent(
                quest_id=quest_id,
                title=quest.title,
                points=reward.points_delta,
                total_points=working.total_points,
                passed=passed,
            )
        ]
        if reward.collectible is not None:
            event_type = CollectibleAlreadyOwnedEvent if reward.already_owned else CollectibleAwardedEvent
            events.append(
                event_type(
                    quest_id=quest_id,
                    collectible_id=reward.collectible.collectible_id,
                    name=reward.collectible.name,
                )
            )
        logger.info(
            "Completed quest %s (+%s points, total %s)", quest_id, reward.points_delta, working.total_points
        )
        return QuestTransition(progress=working, success=True, events=events, reward=reward)
