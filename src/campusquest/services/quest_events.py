"""Events emitted to the notification collaborator."""
from __future__ import annotations

from dataclasses import dataclass

from campusquest.core.types import StartAction


@dataclass(slots=True)
class QuestEvent:
    """Base class for quest engine events."""


@dataclass(slots=True)
class QuestStartedEvent(QuestEvent):
    quest_id: str
    action: StartAction


@dataclass(slots=True)
class ActiveQuestChangedEvent(QuestEvent):
    quest_id: str | None
    previous_quest_id: str | None


@dataclass(slots=True)
class LocationReachedEvent(QuestEvent):
    quest_id: str
    title: str
    quiz_unlocked: bool


@dataclass(slots=True)
class QuestCompletedEvent(QuestEvent):
    quest_id: str
    title: str
    points: int
    total_points: int
    passed: bool = True


@dataclass(slots=True)
class CollectibleAwardedEvent(QuestEvent):
    quest_id: str
    collectible_id: str
    name: str


@dataclass(slots=True)
class CollectibleAlreadyOwnedEvent(QuestEvent):
    quest_id: str
    collectible_id: str
    name: str


@dataclass(slots=True)
class QuizStartedEvent(QuestEvent):
    quest_id: str
    question_count: int
    retry_count: int


@dataclass(slots=True)
class QuizFinishedEvent(QuestEvent):
    quest_id: str
    score_percent: float
    passed: bool
    outcome: str


@dataclass(slots=True)
class QuestAbandonedEvent(QuestEvent):
    quest_id: str


@dataclass(slots=True)
class GeolocationErrorEvent(QuestEvent):
    message: str


@dataclass(slots=True)
class PersistenceFailedEvent(QuestEvent):
    user_id: str
    message: str
