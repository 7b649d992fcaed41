import json
from pathlib import Path

import pytest

from campusquest.data.catalog import collectibles_from_store, quests_from_store
from campusquest.data.document_store import InMemoryDocumentStore
from campusquest.data.errors import DataLoadError, DataReferenceError, DataValidationError
from campusquest.data.repositories import CollectiblesRepository, QuestsRepository
from campusquest.domain.defs import Coordinate


def test_quests_repo_loads_file(tmp_path: Path) -> None:
    definitions_dir = _make_definitions_dir(tmp_path)
    _write_json(
        definitions_dir / "quests.json",
        {
            "quests": {
                "library": {
                    "title": "Library",
                    "difficulty": "easy",
                    "points": 12,
                    "type": "location",
                    "lat": 40.1,
                    "lng": -88.2,
                    "building": "LIB",
                },
                "quad": {
                    "title": "Quad",
                    "rewardPoints": 20,
                    "type": "Quiz",
                    "position": {"lat": 40.2, "lng": -88.3},
                    "requiredQuests": ["library"],
                    "quizQuestions": [
                        {"prompt": "Which?", "options": ["a", "b"], "correctAnswer": 1, "points": 2}
                    ],
                },
            }
        },
    )

    repo = QuestsRepository(base_path=definitions_dir)
    library = repo.get("library")
    quad = repo.get("quad")

    assert [quest.quest_id for quest in repo.all()] == ["library", "quad"]
    assert library.difficulty == "Easy"
    assert library.kind == "Location"
    assert library.reward_points == 12
    assert library.position == Coordinate(lat=40.1, lng=-88.2)
    assert library.has_quiz is False
    assert library.building == "LIB"
    assert quad.difficulty == "Medium"
    assert quad.required_quests == ("library",)
    assert quad.passing_score is None
    assert quad.allow_retries is True
    assert quad.questions[0].question_id == "q1"
    assert quad.questions[0].points == 2
    assert repo.find("missing") is None
    with pytest.raises(KeyError):
        repo.get("missing")


@pytest.mark.parametrize(
    "quest",
    [
        {"title": "No position"},
        {"position": {"lat": 91, "lng": 0}},
        {"position": {"lat": 0, "lng": 0}, "difficulty": "Extreme"},
        {"position": {"lat": 0, "lng": 0}, "type": "Race"},
        {"position": {"lat": 0, "lng": 0}, "rewardPoints": -1},
        {"position": {"lat": 0, "lng": 0}, "passingScore": 101},
        {"position": {"lat": 0, "lng": 0}, "questions": [{"question": "?", "options": ["a"], "correctAnswer": 0}]},
        {"position": {"lat": 0, "lng": 0}, "questions": [{"question": "?", "options": ["a", "b"], "correctAnswer": 2}]},
    ],
)
def test_quests_repo_rejects_invalid_definitions(quest: dict) -> None:
    repo = QuestsRepository(payload={"quests": {"bad": quest}})
    with pytest.raises(DataValidationError):
        repo.all()


def test_quests_repo_rejects_unknown_prerequisite() -> None:
    repo = QuestsRepository(
        payload={"quests": {"a": {"position": {"lat": 0, "lng": 0}, "requiredQuests": ["ghost"]}}}
    )
    with pytest.raises(DataReferenceError):
        repo.all()


def test_quests_repo_rejects_self_prerequisite() -> None:
    repo = QuestsRepository(payload={"quests": {"a": {"position": {"lat": 0, "lng": 0}, "requiredQuests": ["a"]}}})
    with pytest.raises(DataReferenceError):
        repo.all()


def test_missing_definition_file_raises(tmp_path: Path) -> None:
    with pytest.raises(DataLoadError):
        CollectiblesRepository(base_path=tmp_path).all()


def test_collectibles_repo_loads_and_reloads(tmp_path: Path) -> None:
    definitions_dir = _make_definitions_dir(tmp_path)
    path = definitions_dir / "collectibles.json"
    _write_json(path, {"collectibles": {"badge": {"name": "Badge", "difficulty": "Easy"}}})

    repo = CollectiblesRepository(base_path=definitions_dir)
    assert repo.get("badge").rarity == "common"

    _write_json(path, {"collectibles": {"pin": {"name": "Pin", "difficulty": "Hard"}}})
    repo.reload()
    assert [item.collectible_id for item in repo.all()] == ["pin"]


def test_catalog_reads_from_document_store() -> None:
    store = InMemoryDocumentStore(
        {
            "quests": {"walk": {"title": "Walk", "position": {"lat": 1.0, "lng": 2.0}}},
            "collectibles": {"badge": {"name": "Badge", "difficulty": "Medium"}},
        }
    )

    assert quests_from_store(store).get("walk").title == "Walk"
    assert collectibles_from_store(store).by_difficulty("medium")[0].name == "Badge"


def test_bundled_definitions_load() -> None:
    quests = QuestsRepository()
    collectibles = CollectiblesRepository()

    assert quests.all()
    for quest in quests.all():
        assert collectibles.by_difficulty(quest.difficulty)


def _make_definitions_dir(tmp_path: Path) -> Path:
    definitions_dir = tmp_path / "definitions"
    definitions_dir.mkdir()
    return definitions_dir


def _write_json(path: Path, payload: dict) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")
