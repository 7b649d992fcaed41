"""Quest definition data structures."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from campusquest.core.types import QuestDifficulty, QuestKind

DEFAULT_PASSING_SCORE = 70


@dataclass(frozen=True, slots=True)
class Coordinate:
    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class QuizQuestionDef:
    question_id: str
    prompt: str
    options: Tuple[str, ...]
    correct_index: int
    points: int = 1


@dataclass(frozen=True, slots=True)
class QuestDef:
    """Immutable quest as authored by the admin tooling."""

    quest_id: str
    title: str
    description: str
    location: str
    difficulty: QuestDifficulty
    reward_points: int
    kind: QuestKind
    position: Coordinate
    questions: Tuple[QuizQuestionDef, ...] = ()
    required_quests: Tuple[str, ...] = ()
    passing_score: int | None = None
    allow_retries: bool = True
    building: str = ""
    estimated_time: str = ""

    @property
    def has_quiz(self) -> bool:
        return len(self.questions) > 0
