"""Collectible reference data."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CollectibleDef:
    """Reward item matched to quests by difficulty tag."""

    collectible_id: str
    name: str
    description: str
    icon_url: str
    rarity: str
    difficulty: str

    def matches_difficulty(self, difficulty: str) -> bool:
        return self.difficulty.casefold() == difficulty.casefold()
