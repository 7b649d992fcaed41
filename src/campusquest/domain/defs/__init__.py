"""Domain definition exports."""

from .collectible_def import CollectibleDef
from .quest_def import DEFAULT_PASSING_SCORE, Coordinate, QuestDef, QuizQuestionDef

__all__ = [
    "CollectibleDef",
    "Coordinate",
    "DEFAULT_PASSING_SCORE",
    "QuestDef",
    "QuizQuestionDef",
]
