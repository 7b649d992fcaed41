"""Shared type aliases for the core and domain layers."""
from typing import Literal

QuestKind = Literal["Location", "Quiz", "Treasure", "Challenge"]
QuestDifficulty = Literal["Easy", "Medium", "Hard"]
QuestStatus = Literal["available", "in-progress", "completed"]
StartAction = Literal["map", "quiz", "none"]
ActiveStatus = Literal["active", "paused"]

QUEST_KINDS: tuple[QuestKind, ...] = ("Location", "Quiz", "Treasure", "Challenge")
QUEST_DIFFICULTIES: tuple[QuestDifficulty, ...] = ("Easy", "Medium", "Hard")

__all__ = [
    "ActiveStatus",
    "QUEST_DIFFICULTIES",
    "QUEST_KINDS",
    "QuestDifficulty",
    "QuestKind",
    "QuestStatus",
    "StartAction",
]
