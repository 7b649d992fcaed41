"""Service layer exports."""

from .errors import SaveLoadError
from .quest_events import (
    ActiveQuestChangedEvent,
    CollectibleAlreadyOwnedEvent,
    CollectibleAwardedEvent,
    GeolocationErrorEvent,
    LocationReachedEvent,
    PersistenceFailedEvent,
    QuestAbandonedEvent,
    QuestCompletedEvent,
    QuestEvent,
    QuestStartedEvent,
    QuizFinishedEvent,
    QuizStartedEvent,
)
from .quest_service import QuestService, QuestTransition, QuestView
from .quest_store import QuestStore, StartResult, build_quest_store
from .quiz_service import QuizOutcome, QuizResult, QuizService
from .reward_service import RewardOutcome, RewardService

__all__ = [
    "SaveLoadError",
    "ActiveQuestChangedEvent",
    "CollectibleAlreadyOwnedEvent",
    "CollectibleAwardedEvent",
    "GeolocationErrorEvent",
    "LocationReachedEvent",
    "PersistenceFailedEvent",
    "QuestAbandonedEvent",
    "QuestCompletedEvent",
    "QuestEvent",
    "QuestStartedEvent",
    "QuizFinishedEvent",
    "QuizStartedEvent",
    "QuestService",
    "QuestTransition",
    "QuestView",
    "QuestStore",
    "StartResult",
    "build_quest_store",
    "QuizOutcome",
    "QuizResult",
    "QuizService",
    "RewardOutcome",
    "RewardService",
]
