"""Points and collectible allocation on quest completion."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from campusquest.core.rng import RNG
from campusquest.data.repositories import CollectiblesRepository
from campusquest.domain.defs import CollectibleDef, QuestDef
from campusquest.domain.quest_state import CompletionRecord, OwnedCollectible
from campusquest.domain.state import UserProgress

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RewardOutcome:
    points_delta: int
    collectible: CollectibleDef | None = None
    already_owned: bool = False

    @property
    def awarded_collectible(self) -> bool:
        return self.collectible is not None and not self.already_owned


class RewardService:
    """Writes completion records and hands out collectibles.

    Callers must invoke each award at most once per quest; the quest service's
    completion transition is what guarantees that.
    """

    def __init__(self, *, collectibles_repo: CollectiblesRepository, rng: RNG | None = None) -> None:
        self._collectibles_repo = collectibles_repo
        self._rng = rng or RNG()

    def award_completion(self, progress: UserProgress, quest: QuestDef, *, now: datetime) -> RewardOutcome:
        """Record a successful completion in ``progress`` and draw a collectible."""
        self._record(progress, quest, quest.reward_points, now)

        pool = self._collectibles_repo.by_difficulty(quest.difficulty)
        if not pool:
            return RewardOutcome(points_delta=quest.reward_points)
        # The draw is over the whole pool, so an owned pick means no award this time.
        collectible = self._rng.choice(pool)
        if progress.owns_collectible(collectible.collectible_id):
            logger.info("User already owns collectible %s", collectible.collectible_id)
            return RewardOutcome(points_delta=quest.reward_points, collectible=collectible, already_owned=True)
        progress.collectibles.append(
            OwnedCollectible(
                collectible_id=collectible.collectible_id,
                name=collectible.name,
                description=collectible.description,
                icon_url=collectible.icon_url,
                rarity=collectible.rarity,
                difficulty=collectible.difficulty,
                obtained_at=now,
                quest_id=quest.quest_id,
            )
        )
        return RewardOutcome(points_delta=quest.reward_points, collectible=collectible)

    def award_failed_final(self, progress: UserProgress, quest: QuestDef, *, now: datetime) -> RewardOutcome:
        """Close out a quiz the user failed with no retries left; no points, no collectible."""
        self._record(progress, quest, 0, now)
        return RewardOutcome(points_delta=0)

    @staticmethod
    def recalculate_total_points(progress: UserProgress) -> int:
        return sum(record.points for record in progress.completion_records.values())

    def _record(self, progress: UserProgress, quest: QuestDef, points: int, now: datetime) -> None:
        progress.completion_records[quest.quest_id] = CompletionRecord(
            points=points,
            completed_at=now,
            title=quest.title,
        )
        progress.total_points = self.recalculate_total_points(progress)
