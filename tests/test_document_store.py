from __future__ import annotations

from pathlib import Path

import pytest

from campusquest.data.document_store import InMemoryDocumentStore, JsonFileDocumentStore
from campusquest.data.errors import PersistenceError


def test_in_memory_store_copies_documents() -> None:
    store = InMemoryDocumentStore()
    payload = {"completedQuests": ["walk"]}
    store.set("userProgress", "u1", payload)
    payload["completedQuests"].append("quiz")

    loaded = store.get("userProgress", "u1")
    loaded["completedQuests"].append("other")

    assert store.get("userProgress", "u1") == {"completedQuests": ["walk"]}
    assert store.get("userProgress", "missing") is None


def test_update_merges_top_level_fields() -> None:
    store = InMemoryDocumentStore()
    store.set("participants", "walk__u1", {"lat": 1.0, "lng": 2.0})

    store.update("participants", "walk__u1", {"lat": 3.0})
    store.update("participants", "quiz__u1", {"lat": 5.0})

    assert store.get("participants", "walk__u1") == {"lat": 3.0, "lng": 2.0}
    assert store.get("participants", "quiz__u1") == {"lat": 5.0}


def test_query_filters_by_field() -> None:
    store = InMemoryDocumentStore(
        {"participants": {"a": {"questId": "walk"}, "b": {"questId": "quiz"}, "c": {"questId": "walk"}}}
    )

    assert [doc_id for doc_id, _ in store.query("participants", "questId", "walk")] == ["a", "c"]
    assert store.all("missing") == []


def test_json_file_store_round_trip(tmp_path: Path) -> None:
    store = JsonFileDocumentStore(tmp_path)

    assert store.get("userProgress", "u1") is None
    store.set("userProgress", "u1", {"totalPoints": 4})
    store.update("userProgress", "u1", {"activeQuestId": "walk"})

    assert store.get("userProgress", "u1") == {"totalPoints": 4, "activeQuestId": "walk"}
    assert [doc_id for doc_id, _ in store.all("userProgress")] == ["u1"]
    assert (tmp_path / "userProgress" / "u1.json").exists()


def test_json_file_store_reports_corrupt_documents(tmp_path: Path) -> None:
    store = JsonFileDocumentStore(tmp_path)
    path = tmp_path / "userProgress" / "u1.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError):
        store.get("userProgress", "u1")


@pytest.mark.parametrize("doc_id", ["", "..", "a/b"])
def test_json_file_store_rejects_unsafe_ids(tmp_path: Path, doc_id: str) -> None:
    with pytest.raises(PersistenceError):
        JsonFileDocumentStore(tmp_path).set("userProgress", doc_id, {})
