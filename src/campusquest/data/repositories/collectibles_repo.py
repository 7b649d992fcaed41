"""Repository for collectible reference data."""
from __future__ import annotations

from typing import Dict, List

from campusquest.data.repositories.base import RepositoryBase
from campusquest.domain.defs import CollectibleDef


class CollectiblesRepository(RepositoryBase[CollectibleDef]):
    """Loads collectible definitions and answers difficulty lookups."""

    def __init__(self, *, base_path=None, payload=None) -> None:
        super().__init__("collectibles.json", base_path, payload)

    def _build(self, raw: dict[str, object]) -> Dict[str, CollectibleDef]:
        container = self._require_mapping(raw, "collectibles.json")
        raw_items = self._require_mapping(container.get("collectibles"), "collectibles.json.collectibles")
        definitions: Dict[str, CollectibleDef] = {}
        for collectible_id, payload in raw_items.items():
            ctx = f"collectible '{collectible_id}'"
            mapping = self._require_mapping(payload, ctx)
            definitions[collectible_id] = CollectibleDef(
                collectible_id=collectible_id,
                name=self._require_str(mapping.get("name"), f"{ctx} name"),
                description=self._optional_str(mapping.get("description"), f"{ctx} description", ""),
                icon_url=self._optional_str(mapping.get("iconUrl"), f"{ctx} iconUrl", ""),
                rarity=self._optional_str(mapping.get("rarity"), f"{ctx} rarity", "common"),
                difficulty=self._require_str(mapping.get("difficulty"), f"{ctx} difficulty"),
            )
        return definitions

    def by_difficulty(self, difficulty: str) -> List[CollectibleDef]:
        """Collectibles tagged with ``difficulty``, compared case-insensitively."""
        return [item for item in self.all() if item.matches_difficulty(difficulty)]
