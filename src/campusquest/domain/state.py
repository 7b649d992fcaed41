"""User progress state and derived quest status."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List

from campusquest.core.types import ActiveStatus, QuestStatus
from campusquest.domain.quest_state import CompletionRecord, InProgressEntry, OwnedCollectible, QuizProgress


@dataclass
class UserProgress:
    """Everything the engine knows about one user's quests.

    Only the quest services produce new instances; callers treat a
    ``UserProgress`` they have been handed as read-only.
    """

    completed_quests: List[str] = field(default_factory=list)
    in_progress: Dict[str, InProgressEntry] = field(default_factory=dict)
    active_quest_id: str | None = None
    total_points: int = 0
    completion_records: Dict[str, CompletionRecord] = field(default_factory=dict)
    collectibles: List[OwnedCollectible] = field(default_factory=list)
    quiz_progress: Dict[str, QuizProgress] = field(default_factory=dict)

    def is_completed(self, quest_id: str) -> bool:
        return quest_id in self.completed_quests

    def is_in_progress(self, quest_id: str) -> bool:
        return quest_id in self.in_progress

    def owns_collectible(self, collectible_id: str) -> bool:
        return any(entry.collectible_id == collectible_id for entry in self.collectibles)

    def copy(self) -> UserProgress:
        """Return a copy that can be changed without touching this instance."""
        return UserProgress(
            completed_quests=list(self.completed_quests),
            in_progress={quest_id: entry.copy() for quest_id, entry in self.in_progress.items()},
            active_quest_id=self.active_quest_id,
            total_points=self.total_points,
            completion_records=dict(self.completion_records),
            collectibles=list(self.collectibles),
            quiz_progress={quest_id: quiz.copy() for quest_id, quiz in self.quiz_progress.items()},
        )


@dataclass(frozen=True, slots=True)
class ActiveQuest:
    """The single quest currently in focus for navigation and abandonment."""

    quest_id: str
    started_at: datetime
    last_activity: datetime
    status: ActiveStatus = "active"

    def touched(self, now: datetime) -> ActiveQuest:
        return replace(self, last_activity=now)

    def with_status(self, status: ActiveStatus) -> ActiveQuest:
        return replace(self, status=status)


def derive_status(progress: UserProgress, quest_id: str) -> QuestStatus:
    """The one place quest status is computed; it is never stored."""
    if progress.is_completed(quest_id):
        return "completed"
    if progress.is_in_progress(quest_id):
        return "in-progress"
    return "available"
