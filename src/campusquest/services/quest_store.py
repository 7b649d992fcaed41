"""Per-user quest session: owns progress, persists it and notifies listeners."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Sequence

from campusquest.config import DEFAULT_CONFIG, EngineConfig
from campusquest.core.clock import Clock, utc_now
from campusquest.core.rng import RNG
from campusquest.core.types import QuestStatus, StartAction
from campusquest.data.catalog import collectibles_from_store, quests_from_store
from campusquest.data.document_store import PARTICIPANTS, USER_PROGRESS, DocumentStore
from campusquest.data.errors import PersistenceError
from campusquest.data.repositories import CollectiblesRepository, QuestsRepository
from campusquest.domain.geo import LatLng, PositionSample, distance_m, is_significant_movement
from campusquest.domain.state import ActiveQuest, UserProgress
from campusquest.services.abandonment_service import AbandonmentMonitor
from campusquest.services.errors import SaveLoadError
from campusquest.services.progress_writer import ProgressWriter
from campusquest.services.quest_events import (
    GeolocationErrorEvent,
    PersistenceFailedEvent,
    QuestAbandonedEvent,
    QuestCompletedEvent,
    QuestEvent,
)
from campusquest.services.quest_service import QuestService, QuestTransition, QuestView
from campusquest.services.quiz_service import QuizResult, QuizService
from campusquest.services.reward_service import RewardService
from campusquest.services.save_service import SaveService

logger = logging.getLogger(__name__)

Listener = Callable[[QuestEvent], None]


@dataclass(frozen=True, slots=True)
class StartResult:
    success: bool
    action: StartAction


class QuestStore:
    """The engine's entry point for one signed-in user.

    Operations are serialized by a re-entrant lock, so a position update and
    a click racing to complete the same quest resolve to one completion.
    Each committed change is handed to the :class:`ProgressWriter` and the
    call returns without waiting for the write. Failures are logged and the
    in-memory progress stays authoritative.
    """

    def __init__(
        self,
        *,
        quest_service: QuestService,
        document_store: DocumentStore,
        writer: ProgressWriter | None = None,
        monitor: AbandonmentMonitor | None = None,
        save_service: SaveService | None = None,
        config: EngineConfig = DEFAULT_CONFIG,
        clock: Clock = utc_now,
        auto_monitor: bool = True,
    ) -> None:
        self._quest_service = quest_service
        self._document_store = document_store
        self._writer = writer or ProgressWriter(
            document_store,
            max_attempts=config.write_max_attempts,
            backoff_s=config.write_backoff_s,
            on_failure=self._on_write_failure,
        )
        self._monitor = monitor or AbandonmentMonitor(
            timeout=config.abandonment_timeout,
            poll_interval_s=config.abandonment_poll_interval_s,
            clock=clock,
        )
        self._save_service = save_service or SaveService()
        self._config = config
        self._clock = clock
        self._auto_monitor = auto_monitor
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._user_id: str | None = None
        self._progress = UserProgress()
        self._active: ActiveQuest | None = None
        self._last_position: PositionSample | None = None
        self._writes_blocked = False
        self._recently_completed: Dict[str, datetime] = {}
        self._quiz_completion_handled: set[str] = set()

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def progress(self) -> UserProgress:
        """Current progress snapshot; treat as read-only."""
        with self._lock:
            return self._progress

    @property
    def active_quest(self) -> ActiveQuest | None:
        with self._lock:
            return self._active

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a notification listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def load(self, user_id: str) -> UserProgress:
        """Read the user's progress once per session, creating it when absent."""
        with self._lock:
            self._monitor.stop()
            self._user_id = user_id
            self._recently_completed.clear()
            self._quiz_completion_handled.clear()
            self._last_position = None
            progress, create, readable = self._read_progress(user_id)
            self._writes_blocked = not readable
            transition = self._quest_service.normalize(progress)
            self._progress = transition.progress
            self._active = None
            self._sync_active()
            if create or transition.progress is not progress:
                self._persist()
            return self._progress

    def refresh(self) -> UserProgress:
        """Reload progress for the current user."""
        if self._user_id is None:
            return self.progress
        return self.load(self._user_id)

    def can_start(self, quest_id: str) -> bool:
        with self._lock:
            return self._quest_service.can_start(self._progress, quest_id)

    def status_of(self, quest_id: str) -> QuestStatus:
        with self._lock:
            return self._quest_service.status_of(self._progress, quest_id)

    def quest_views(self) -> List[QuestView]:
        with self._lock:
            return self._quest_service.build_quest_views(self._progress)

    def start_quest(self, quest_id: str) -> StartResult:
        transition = self._run(lambda progress: self._quest_service.start_quest(progress, quest_id))
        if transition.success:
            self.update_last_activity()
        return StartResult(success=transition.success, action=transition.action)

    def set_active_quest(self, quest_id: str | None) -> bool:
        transition = self._run(lambda progress: self._quest_service.set_active_quest(progress, quest_id))
        if transition.success:
            self.update_last_activity()
        return transition.success

    def pause_active_quest(self) -> bool:
        return self._run(lambda progress: self._quest_service.set_paused(progress, True)).success

    def resume_active_quest(self) -> bool:
        return self._run(lambda progress: self._quest_service.set_paused(progress, False)).success

    def complete_location_quest(self, quest_id: str, position: LatLng) -> bool:
        """True when ``position`` satisfies the quest's geofence."""
        with self._lock:
            if self._in_cooldown(quest_id):
                return False
            transition = self._run(
                lambda progress: self._quest_service.complete_location_quest(progress, quest_id, position)
            )
            return transition.success

    def submit_quiz_answer(self, quest_id: str, question_index: int, answer_index: int) -> bool:
        self.update_last_activity()
        transition = self._run(
            lambda progress: self._quest_service.submit_quiz_answer(
                progress, quest_id, question_index, answer_index
            )
        )
        return transition.success

    def submit_quiz_answers(self, quest_id: str, answers: Sequence[int]) -> bool:
        """Answer the whole quiz; True when it was passed."""
        return self._finish_quiz(
            quest_id,
            lambda progress: self._quest_service.submit_quiz_answers(progress, quest_id, answers),
        ).success

    def complete_quiz(self, quest_id: str) -> QuizResult | None:
        """Score the open attempt; ``None`` when there was nothing to finish."""
        return self._finish_quiz(
            quest_id,
            lambda progress: self._quest_service.complete_quiz(progress, quest_id),
        ).quiz_result

    def retry_quiz(self, quest_id: str) -> bool:
        transition = self._run(lambda progress: self._quest_service.retry_quiz(progress, quest_id))
        return transition.success

    def get_quiz_results(self, quest_id: str) -> QuizResult | None:
        with self._lock:
            return self._quest_service.quiz_results(self._progress, quest_id)

    def can_retry_quiz(self, quest_id: str) -> bool:
        with self._lock:
            quest = self._quest_service.get_quest(quest_id)
            attempt = self._progress.quiz_progress.get(quest_id)
            if quest is None or attempt is None or self._progress.is_completed(quest_id):
                return False
            return self._quest_service.quiz_service.can_retry(attempt, quest)

    def check_abandonment(self) -> bool:
        with self._lock:
            return self._monitor.is_abandoned(self._active, self._clock())

    def abandon_active_quest(self) -> bool:
        """Drop focus from the active quest; its in-progress record is kept."""
        with self._lock:
            if self._active is None:
                return False
            quest_id = self._active.quest_id
            transition = self._quest_service.set_active_quest(self._progress, None)
            events = self._commit(transition)
            events.append(QuestAbandonedEvent(quest_id=quest_id))
        logger.info("Quest %s abandoned after inactivity", quest_id)
        self._emit(events)
        return True

    def update_last_activity(self) -> None:
        with self._lock:
            if self._active is not None:
                self._active = self._monitor.touch(self._active, self._clock())

    def poll_abandonment(self) -> bool:
        """One monitor tick: abandon the active quest if it has gone stale."""
        return self._monitor.poll_once(self.check_abandonment, self._abandon_if_stale)

    def on_position(self, sample: PositionSample) -> bool:
        """Feed a geolocation sample; True when it satisfied the active quest's geofence."""
        with self._lock:
            self.update_last_activity()
            if not is_significant_movement(sample, self._last_position, self._config.movement_threshold_m):
                return False
            self._last_position = sample
            quest_id = self._progress.active_quest_id
            if quest_id is None:
                return False
            self._record_participant(quest_id, sample)
            return self.complete_location_quest(quest_id, sample)

    def on_position_error(self, message: str) -> None:
        """Geolocation failed; stop evaluating geofences until a new sample arrives."""
        logger.warning("Geolocation error: %s", message)
        with self._lock:
            self._last_position = None
        self._emit([GeolocationErrorEvent(message=message)])

    def flush(self, timeout: float | None = None) -> None:
        self._writer.flush(timeout)

    def close(self) -> None:
        self._monitor.stop()
        self._writer.close()

    def _run(self, command: Callable[[UserProgress], QuestTransition]) -> QuestTransition:
        with self._lock:
            transition = command(self._progress)
            events = self._commit(transition)
        self._emit(events)
        return transition

    def _finish_quiz(
        self,
        quest_id: str,
        command: Callable[[UserProgress], QuestTransition],
    ) -> QuestTransition:
        with self._lock:
            if quest_id in self._quiz_completion_handled:
                logger.info("Quiz completion for %s already handled", quest_id)
                return QuestTransition(progress=self._progress)
            self._quiz_completion_handled.add(quest_id)
            try:
                transition = command(self._progress)
                events = self._commit(transition)
            finally:
                if not self._progress.is_completed(quest_id):
                    self._quiz_completion_handled.discard(quest_id)
        self._emit(events)
        return transition

    def _commit(self, transition: QuestTransition) -> List[QuestEvent]:
        """Adopt the transition's progress; caller holds the lock."""
        if transition.progress is self._progress:
            return list(transition.events)
        self._progress = transition.progress
        now = self._clock()
        for event in transition.events:
            if isinstance(event, QuestCompletedEvent):
                self._recently_completed[event.quest_id] = now
        self._sync_active()
        self._persist()
        return list(transition.events)

    def _sync_active(self) -> None:
        active_id = self._progress.active_quest_id
        now = self._clock()
        previous_id = self._active.quest_id if self._active is not None else None
        if previous_id != active_id:
            # Movement is measured from samples taken while this quest is focused.
            self._last_position = None
        if active_id is None:
            if self._active is not None:
                self._active = None
                self._monitor.stop()
            return
        entry = self._progress.in_progress.get(active_id)
        status = "paused" if entry is not None and entry.paused else "active"
        if self._active is None or self._active.quest_id != active_id:
            self._active = ActiveQuest(
                quest_id=active_id,
                started_at=entry.started_at if entry is not None else now,
                last_activity=now,
                status=status,
            )
            if self._auto_monitor:
                self._monitor.start(self.check_abandonment, self._abandon_if_stale)
        elif self._active.status != status:
            self._active = self._active.with_status(status).touched(now)

    def _abandon_if_stale(self) -> None:
        with self._lock:
            if not self.check_abandonment():
                return
            self.abandon_active_quest()

    def _in_cooldown(self, quest_id: str) -> bool:
        completed_at = self._recently_completed.get(quest_id)
        if completed_at is None:
            return False
        if self._clock() - completed_at < self._config.completion_cooldown:
            return True
        del self._recently_completed[quest_id]
        return False

    def _read_progress(self, user_id: str) -> tuple[UserProgress, bool, bool]:
        """Return the progress, whether it must be created, and whether the stored copy was readable."""
        try:
            document = self._document_store.get(USER_PROGRESS, user_id)
        except PersistenceError:
            logger.exception("Unable to load progress for %s; starting from empty progress", user_id)
            return UserProgress(), False, False
        if document is None:
            return UserProgress(), True, True
        try:
            return self._save_service.deserialize(document), False, True
        except SaveLoadError:
            logger.exception("Stored progress for %s is invalid; starting from empty progress", user_id)
            return UserProgress(), False, False

    def _persist(self) -> None:
        if self._user_id is None:
            logger.debug("No user loaded; progress kept in memory only")
            return
        if self._writes_blocked:
            logger.warning(
                "Progress for %s was not loaded; keeping changes in memory until refresh() succeeds",
                self._user_id,
            )
            return
        self._writer.submit(USER_PROGRESS, self._user_id, self._save_service.serialize(self._progress))

    def _record_participant(self, quest_id: str, sample: PositionSample) -> None:
        if self._user_id is None:
            return
        quest = self._quest_service.get_quest(quest_id)
        if quest is None:
            return
        payload = {
            "questId": quest_id,
            "userId": self._user_id,
            "lat": sample.lat,
            "lng": sample.lng,
            "accuracy": sample.accuracy,
            "distanceMeters": distance_m(sample, quest.position),
            "updatedAt": self._clock().isoformat(),
        }
        self._writer.submit(PARTICIPANTS, f"{quest_id}__{self._user_id}", payload)

    def _on_write_failure(self, collection: str, doc_id: str, exc: Exception) -> None:
        if collection != USER_PROGRESS:
            return
        self._emit([PersistenceFailedEvent(user_id=doc_id, message=str(exc))])

    def _emit(self, events: List[QuestEvent]) -> None:
        if not events:
            return
        with self._lock:
            listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("Quest event listener failed for %s", type(event).__name__)


def build_quest_store(
    document_store: DocumentStore,
    *,
    config: EngineConfig = DEFAULT_CONFIG,
    definitions_path: Path | str | None = None,
    catalog_from_store: bool = False,
    rng: RNG | None = None,
    clock: Clock = utc_now,
    auto_monitor: bool = True,
) -> QuestStore:
    """Wire repositories and services into a ready-to-load QuestStore.

    Reference data is read from the definition files unless
    ``catalog_from_store`` asks for the store's ``quests`` and
    ``collectibles`` collections.
    """
    quests_repo: QuestsRepository
    collectibles_repo: CollectiblesRepository
    if catalog_from_store:
        quests_repo = quests_from_store(document_store)
        collectibles_repo = collectibles_from_store(document_store)
    else:
        quests_repo = QuestsRepository(base_path=definitions_path)
        collectibles_repo = CollectiblesRepository(base_path=definitions_path)
    quiz_service = QuizService(
        clock=clock,
        retry_cap=config.quiz_retry_cap,
        default_passing_score=config.default_passing_score,
    )
    reward_service = RewardService(collectibles_repo=collectibles_repo, rng=rng)
    quest_service = QuestService(
        quests_repo=quests_repo,
        quiz_service=quiz_service,
        reward_service=reward_service,
        clock=clock,
        completion_radius_m=config.completion_radius_m,
    )
    return QuestStore(
        quest_service=quest_service,
        document_store=document_store,
        config=config,
        clock=clock,
        auto_monitor=auto_monitor,
    )
