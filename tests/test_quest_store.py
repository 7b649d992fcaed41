from __future__ import annotations

import logging
import threading
from pathlib import Path

from campusquest.config import EngineConfig
from campusquest.data.document_store import (
    PARTICIPANTS,
    USER_PROGRESS,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
)
from campusquest.data.errors import PersistenceError
from campusquest.data.paths import get_definitions_path
from campusquest.services.quest_events import (
    ActiveQuestChangedEvent,
    GeolocationErrorEvent,
    PersistenceFailedEvent,
    QuestAbandonedEvent,
    QuestCompletedEvent,
    QuestEvent,
    QuestStartedEvent,
)
from campusquest.services.quest_store import build_quest_store
from campusquest.services.quiz_service import QuizOutcome
from tests.helpers.builders import (
    QUIZ_POS,
    START_TIME,
    WALK_POS,
    ManualClock,
    at,
    build_store,
)


class _UnwritableStore(InMemoryDocumentStore):
    def set(self, collection, doc_id, payload) -> None:
        raise PersistenceError("backend unavailable")


def _collect(store) -> list[QuestEvent]:
    events: list[QuestEvent] = []
    store.subscribe(events.append)
    return events


def test_load_creates_and_persists_fresh_progress() -> None:
    clock = ManualClock()
    documents = InMemoryDocumentStore()
    store = build_store(clock, document_store=documents)

    progress = store.load("u1")
    store.flush()

    assert progress.completed_quests == []
    assert documents.get(USER_PROGRESS, "u1")["totalPoints"] == 0


def test_load_replaces_corrupt_document_in_memory_only(caplog) -> None:
    documents = InMemoryDocumentStore({USER_PROGRESS: {"u1": {"completedQuests": "walk"}}})
    store = build_store(ManualClock(), document_store=documents)

    with caplog.at_level(logging.ERROR):
        progress = store.load("u1")
    store.flush()

    assert progress.completed_quests == []
    assert documents.get(USER_PROGRESS, "u1") == {"completedQuests": "walk"}
    assert "invalid" in caplog.text


def test_corrupt_document_is_kept_until_refresh_succeeds(caplog) -> None:
    documents = InMemoryDocumentStore({USER_PROGRESS: {"u1": {"completedQuests": "walk"}}})
    store = build_store(ManualClock(), document_store=documents)
    store.load("u1")

    with caplog.at_level(logging.WARNING):
        assert store.start_quest("walk").success is True
    store.flush()

    assert documents.get(USER_PROGRESS, "u1") == {"completedQuests": "walk"}
    assert "until refresh() succeeds" in caplog.text

    documents.set(
        USER_PROGRESS,
        "u1",
        {
            "completedQuests": ["walk"],
            "completedQuestDetails": {
                "walk": {"points": 10, "completedAt": "2024-09-01T10:00:00Z", "title": "Walk to the Library"}
            },
        },
    )
    store.refresh()
    assert store.start_quest("quiz").success is True
    store.flush()

    document = documents.get(USER_PROGRESS, "u1")
    assert document["completedQuests"] == ["walk"]
    assert document["activeQuestId"] == "quiz"
    assert document["totalPoints"] == 10


def test_load_reconciles_cached_points() -> None:
    document = {
        "completedQuests": ["walk"],
        "totalPoints": 500,
        "completedQuestDetails": {
            "walk": {"points": 10, "completedAt": "2024-09-01T10:00:00Z", "title": "Walk to the Library"}
        },
    }
    documents = InMemoryDocumentStore({USER_PROGRESS: {"u1": document}})
    store = build_store(ManualClock(), document_store=documents)

    progress = store.load("u1")
    store.flush()

    assert progress.total_points == 10
    assert documents.get(USER_PROGRESS, "u1")["totalPoints"] == 10
    assert store.status_of("walk") == "completed"


def test_start_quest_writes_through() -> None:
    clock = ManualClock()
    documents = InMemoryDocumentStore()
    store = build_store(clock, document_store=documents)
    events = _collect(store)
    store.load("u1")

    result = store.start_quest("walk")
    store.flush()

    assert result.success is True
    assert result.action == "map"
    assert store.active_quest.quest_id == "walk"
    document = documents.get(USER_PROGRESS, "u1")
    assert document["activeQuestId"] == "walk"
    assert document["inProgressQuests"]["walk"]["startedAt"] == START_TIME.isoformat()
    assert [type(event) for event in events] == [ActiveQuestChangedEvent, QuestStartedEvent]


def test_unknown_quest_does_not_raise() -> None:
    store = build_store(ManualClock())
    store.load("u1")

    result = store.start_quest("nope")

    assert result.success is False
    assert result.action == "none"
    assert store.can_start("nope") is False


def test_idle_active_quest_is_abandoned_after_sixteen_minutes() -> None:
    clock = ManualClock()
    store = build_store(clock)
    events = _collect(store)
    store.load("u1")
    store.start_quest("walk")

    clock.advance(minutes=14)
    assert store.check_abandonment() is False
    clock.advance(minutes=2)
    assert store.check_abandonment() is True

    assert store.poll_abandonment() is True

    assert store.progress.active_quest_id is None
    assert "walk" in store.progress.in_progress
    assert store.status_of("walk") == "in-progress"
    assert store.active_quest is None
    assert isinstance(events[-1], QuestAbandonedEvent)
    assert store.check_abandonment() is False


def test_activity_and_pause_postpone_abandonment() -> None:
    clock = ManualClock()
    store = build_store(clock)
    store.load("u1")
    store.start_quest("walk")

    clock.advance(minutes=10)
    store.update_last_activity()
    clock.advance(minutes=10)
    assert store.check_abandonment() is False

    assert store.pause_active_quest() is True
    clock.advance(hours=1)
    assert store.check_abandonment() is False

    assert store.resume_active_quest() is True
    assert store.active_quest.status == "active"
    assert store.check_abandonment() is False


def test_reselecting_the_active_quest_counts_as_activity() -> None:
    clock = ManualClock()
    store = build_store(clock)
    store.load("u1")
    store.start_quest("walk")

    clock.advance(minutes=14)
    assert store.set_active_quest("walk") is True
    clock.advance(minutes=14)
    assert store.check_abandonment() is False

    assert store.start_quest("walk").success is True
    clock.advance(minutes=14)
    assert store.check_abandonment() is False
    clock.advance(minutes=2)
    assert store.check_abandonment() is True


def test_location_completion_is_debounced() -> None:
    clock = ManualClock()
    store = build_store(clock)
    events = _collect(store)
    store.load("u1")
    store.start_quest("walk")

    assert store.complete_location_quest("walk", at(WALK_POS, clock)) is True
    clock.advance(seconds=2)
    assert store.complete_location_quest("walk", at(WALK_POS, clock)) is False
    clock.advance(seconds=10)
    assert store.complete_location_quest("walk", at(WALK_POS, clock)) is False

    assert store.progress.total_points == 10
    assert sum(isinstance(event, QuestCompletedEvent) for event in events) == 1


def test_concurrent_completion_awards_once() -> None:
    clock = ManualClock()
    store = build_store(clock)
    store.load("u1")
    store.start_quest("walk")
    barrier = threading.Barrier(2)
    results: list[bool] = []

    def worker() -> None:
        barrier.wait()
        results.append(store.complete_location_quest("walk", at(WALK_POS, clock)))

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [False, True]
    assert store.progress.completed_quests == ["walk"]
    assert store.progress.total_points == 10


def test_persistence_failure_keeps_memory_state(caplog) -> None:
    store = build_store(ManualClock(), document_store=_UnwritableStore())
    events = _collect(store)

    with caplog.at_level(logging.WARNING):
        store.load("u1")
        result = store.start_quest("walk")
        store.flush()

    assert result.success is True
    assert store.status_of("walk") == "in-progress"
    failures = [event for event in events if isinstance(event, PersistenceFailedEvent)]
    assert failures and failures[0].user_id == "u1"
    assert "Giving up on userProgress/u1" in caplog.text


def test_position_updates_drive_the_geofence() -> None:
    clock = ManualClock()
    documents = InMemoryDocumentStore()
    store = build_store(clock, document_store=documents)
    store.load("u1")
    store.start_quest("walk")

    assert store.on_position(at(WALK_POS, clock, north_m=55)) is False
    # Eight meters of drift is jitter, even though it lands inside the radius.
    assert store.on_position(at(WALK_POS, clock, north_m=47)) is False
    assert store.status_of("walk") == "in-progress"

    assert store.on_position(at(WALK_POS, clock, north_m=40)) is True
    store.flush()

    assert store.status_of("walk") == "completed"
    participant = documents.get(PARTICIPANTS, "walk__u1")
    assert participant["userId"] == "u1"
    assert 35 < participant["distanceMeters"] < 45


def test_position_without_active_quest_does_nothing() -> None:
    clock = ManualClock()
    store = build_store(clock)
    store.load("u1")

    assert store.on_position(at(WALK_POS, clock)) is False
    assert store.status_of("walk") == "available"


def test_sample_taken_before_starting_still_completes_the_quest() -> None:
    clock = ManualClock()
    store = build_store(clock)
    store.load("u1")

    assert store.on_position(at(WALK_POS, clock)) is False
    store.start_quest("walk")
    clock.advance(seconds=5)

    assert store.on_position(at(WALK_POS, clock)) is True
    assert store.status_of("walk") == "completed"


def test_switching_quests_resets_movement_filter() -> None:
    clock = ManualClock()
    store = build_store(clock)
    store.load("u1")
    store.start_quest("walk")

    assert store.on_position(at(QUIZ_POS, clock, north_m=5)) is False
    store.start_quest("quiz")

    assert store.on_position(at(QUIZ_POS, clock)) is True
    assert store.progress.in_progress["quiz"].location_reached is True


def test_geolocation_error_resets_movement_filter() -> None:
    clock = ManualClock()
    store = build_store(clock)
    events = _collect(store)
    store.load("u1")
    store.start_quest("walk")
    store.on_position(at(WALK_POS, clock, north_m=55))

    store.on_position_error("permission denied")

    assert isinstance(events[-1], GeolocationErrorEvent)
    assert events[-1].message == "permission denied"
    assert store.on_position(at(WALK_POS, clock, north_m=47)) is True


def test_quiz_flow_through_the_store() -> None:
    clock = ManualClock()
    store = build_store(clock)
    store.load("u1")

    assert store.start_quest("quiz").action == "map"
    assert store.on_position(at(QUIZ_POS, clock)) is True
    assert store.status_of("quiz") == "in-progress"
    assert store.start_quest("quiz").action == "quiz"

    assert store.submit_quiz_answer("quiz", 0, 1) is True
    assert store.submit_quiz_answer("quiz", 1, 1) is True
    result = store.complete_quiz("quiz")

    assert result is not None
    assert result.outcome is QuizOutcome.FAILED_RETRYABLE
    assert store.can_retry_quiz("quiz") is True
    assert store.retry_quiz("quiz") is True
    assert store.submit_quiz_answers("quiz", [1, 0]) is True

    assert store.status_of("quiz") == "completed"
    assert store.progress.total_points == 20
    assert store.get_quiz_results("quiz").passed is True
    assert store.complete_quiz("quiz") is None
    assert store.can_retry_quiz("quiz") is False


def test_quest_views_and_refresh() -> None:
    clock = ManualClock()
    documents = InMemoryDocumentStore()
    store = build_store(clock, document_store=documents)
    store.load("u1")
    store.complete_location_quest("walk", at(WALK_POS, clock))
    store.flush()

    other = build_store(clock, document_store=documents)
    other.load("u1")
    views = {view.quest_id: view for view in other.quest_views()}

    assert views["walk"].status == "completed"
    assert views["locked"].can_start is True
    assert other.refresh().total_points == 10


def test_unsubscribe_and_failing_listener() -> None:
    clock = ManualClock()
    store = build_store(clock)
    received: list[QuestEvent] = []

    def broken(event: QuestEvent) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    unsubscribe = store.subscribe(received.append)
    store.load("u1")
    store.start_quest("walk")
    unsubscribe()
    store.set_active_quest(None)

    assert [type(event) for event in received] == [ActiveQuestChangedEvent, QuestStartedEvent]


def test_build_quest_store_with_file_backends(tmp_path: Path) -> None:
    clock = ManualClock()
    documents = JsonFileDocumentStore(tmp_path / "store")
    store = build_quest_store(
        documents,
        config=EngineConfig(write_backoff_s=0.0),
        definitions_path=get_definitions_path(),
        clock=clock,
        auto_monitor=False,
    )
    store.load("student")

    assert store.start_quest("library_visit").success is True
    assert store.can_start("quad_history") is False
    store.close()

    assert (tmp_path / "store" / USER_PROGRESS / "student.json").exists()
    assert documents.get(USER_PROGRESS, "student")["activeQuestId"] == "library_visit"


def test_build_quest_store_from_store_catalog() -> None:
    clock = ManualClock()
    documents = InMemoryDocumentStore(
        {
            "quests": {
                "walk": {"title": "Walk", "difficulty": "Easy", "rewardPoints": 5, "position": WALK_POS},
            },
            "collectibles": {},
        }
    )
    store = build_quest_store(documents, catalog_from_store=True, clock=clock, auto_monitor=False)
    store.load("u1")

    assert store.complete_location_quest("walk", at(WALK_POS, clock)) is True
    assert store.progress.total_points == 5
    store.close()
