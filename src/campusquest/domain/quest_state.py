"""Per-quest progress records held inside a user's progress."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List

UNANSWERED = -1


@dataclass(slots=True)
class InProgressEntry:
    """A quest the user has started but not resolved."""

    started_at: datetime
    paused: bool = False
    location_reached: bool = False

    def copy(self) -> InProgressEntry:
        return replace(self)


@dataclass(slots=True)
class QuizProgress:
    """State of one quiz attempt."""

    started_at: datetime
    answers: List[int] = field(default_factory=list)
    current_question: int = 0
    score: int = 0
    completed: bool = False
    time_spent: int = 0
    retry_count: int = 0

    @classmethod
    def fresh(cls, question_count: int, started_at: datetime, retry_count: int = 0) -> QuizProgress:
        return cls(
            started_at=started_at,
            answers=[UNANSWERED] * question_count,
            retry_count=retry_count,
        )

    @property
    def answered_count(self) -> int:
        return sum(1 for answer in self.answers if answer != UNANSWERED)

    @property
    def all_answered(self) -> bool:
        return bool(self.answers) and self.answered_count == len(self.answers)

    def copy(self) -> QuizProgress:
        return replace(self, answers=list(self.answers))


@dataclass(frozen=True, slots=True)
class CompletionRecord:
    points: int
    completed_at: datetime
    title: str


@dataclass(frozen=True, slots=True)
class OwnedCollectible:
    """Snapshot of a collectible attached to a user on award."""

    collectible_id: str
    name: str
    description: str
    icon_url: str
    rarity: str
    difficulty: str
    obtained_at: datetime | None = None
    quest_id: str | None = None
