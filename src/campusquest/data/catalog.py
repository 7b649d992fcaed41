"""Build reference-data repositories from the document store's collections."""
from __future__ import annotations

from campusquest.data.document_store import COLLECTIBLES, QUESTS, DocumentStore
from campusquest.data.repositories import CollectiblesRepository, QuestsRepository


def quests_from_store(store: DocumentStore) -> QuestsRepository:
    """Quest definitions read from the ``quests`` collection."""
    return QuestsRepository(payload={"quests": dict(store.all(QUESTS))})


def collectibles_from_store(store: DocumentStore) -> CollectiblesRepository:
    """Collectible definitions read from the ``collectibles`` collection."""
    return CollectiblesRepository(payload={"collectibles": dict(store.all(COLLECTIBLES))})
