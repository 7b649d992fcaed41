"""Repository exports."""

from .collectibles_repo import CollectiblesRepository
from .quests_repo import QuestsRepository

__all__ = [
    "CollectiblesRepository",
    "QuestsRepository",
]
