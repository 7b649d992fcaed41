"""Conversion between UserProgress and the persisted progress document."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from campusquest.domain.quest_state import (
    UNANSWERED,
    CompletionRecord,
    InProgressEntry,
    OwnedCollectible,
    QuizProgress,
)
from campusquest.domain.state import UserProgress
from campusquest.services.errors import SaveLoadError

ProgressDocument = Dict[str, Any]


class SaveService:
    """Converts runtime progress to/from the camelCase document shape.

    Timestamps are written as ISO-8601 UTC strings; ``datetime`` values
    handed back by a store are accepted as well. Optional sections missing
    from older documents default to empty.
    """

    def serialize(self, progress: UserProgress) -> ProgressDocument:
        """Return a JSON-serializable document for the store."""
        return {
            "completedQuests": list(progress.completed_quests),
            "inProgressQuests": {
                quest_id: self._serialize_in_progress(entry)
                for quest_id, entry in progress.in_progress.items()
            },
            "activeQuestId": progress.active_quest_id,
            "totalPoints": progress.total_points,
            "completedQuestDetails": {
                quest_id: {
                    "points": record.points,
                    "completedAt": self._format_time(record.completed_at),
                    "title": record.title,
                }
                for quest_id, record in progress.completion_records.items()
            },
            "collectibles": [self._serialize_collectible(entry) for entry in progress.collectibles],
            "quizProgress": {
                quest_id: self._serialize_quiz(quiz) for quest_id, quiz in progress.quiz_progress.items()
            },
        }

    def deserialize(self, payload: Mapping[str, Any]) -> UserProgress:
        """Rebuild UserProgress from a stored document; raises SaveLoadError when malformed."""
        if not isinstance(payload, Mapping):
            raise SaveLoadError("Progress document must be a JSON object.")
        progress = UserProgress()
        progress.completed_quests = self._coerce_str_list(payload.get("completedQuests"), "completedQuests")
        progress.in_progress = {
            quest_id: self._coerce_in_progress(entry, f"inProgressQuests[{quest_id}]")
            for quest_id, entry in self._coerce_dict(payload.get("inProgressQuests"), "inProgressQuests").items()
        }
        progress.active_quest_id = self._coerce_optional_str(payload.get("activeQuestId"), "activeQuestId")
        progress.total_points = self._coerce_non_negative_int(payload.get("totalPoints"), "totalPoints", default=0)
        progress.completion_records = {
            quest_id: self._coerce_completion_record(entry, f"completedQuestDetails[{quest_id}]")
            for quest_id, entry in self._coerce_dict(
                payload.get("completedQuestDetails"), "completedQuestDetails"
            ).items()
        }
        progress.collectibles = self._coerce_collectibles(payload.get("collectibles"))
        progress.quiz_progress = {
            quest_id: self._coerce_quiz(entry, f"quizProgress[{quest_id}]")
            for quest_id, entry in self._coerce_dict(payload.get("quizProgress"), "quizProgress").items()
        }
        self._validate_consistency(progress)
        return progress

    def _serialize_in_progress(self, entry: InProgressEntry) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"startedAt": self._format_time(entry.started_at)}
        if entry.location_reached:
            payload["locationReached"] = True
        if entry.paused:
            payload["paused"] = True
        return payload

    def _serialize_collectible(self, entry: OwnedCollectible) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": entry.collectible_id,
            "name": entry.name,
            "description": entry.description,
            "iconUrl": entry.icon_url,
            "rarity": entry.rarity,
            "difficulty": entry.difficulty,
        }
        if entry.obtained_at is not None:
            payload["obtainedAt"] = self._format_time(entry.obtained_at)
        if entry.quest_id is not None:
            payload["questId"] = entry.quest_id
        return payload

    def _serialize_quiz(self, quiz: QuizProgress) -> Dict[str, Any]:
        return {
            "currentQuestion": quiz.current_question,
            "answers": list(quiz.answers),
            "score": quiz.score,
            "completed": quiz.completed,
            "startedAt": self._format_time(quiz.started_at),
            "timeSpent": quiz.time_spent,
            "retryCount": quiz.retry_count,
        }

    def _coerce_in_progress(self, value: Any, context: str) -> InProgressEntry:
        mapping = self._require_dict(value, context)
        return InProgressEntry(
            started_at=self._require_time(mapping.get("startedAt"), f"{context}.startedAt"),
            paused=self._coerce_bool(mapping.get("paused"), f"{context}.paused"),
            location_reached=self._coerce_bool(mapping.get("locationReached"), f"{context}.locationReached"),
        )

    def _coerce_completion_record(self, value: Any, context: str) -> CompletionRecord:
        mapping = self._require_dict(value, context)
        return CompletionRecord(
            points=self._coerce_non_negative_int(mapping.get("points"), f"{context}.points", default=0),
            completed_at=self._require_time(mapping.get("completedAt"), f"{context}.completedAt"),
            title=self._require_str(mapping.get("title"), f"{context}.title"),
        )

    def _coerce_collectibles(self, value: Any) -> List[OwnedCollectible]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise SaveLoadError("collectibles must be a list.")
        result: List[OwnedCollectible] = []
        seen: set[str] = set()
        for index, entry in enumerate(value):
            context = f"collectibles[{index}]"
            mapping = self._require_dict(entry, context)
            collectible_id = self._require_str(mapping.get("id"), f"{context}.id")
            if collectible_id in seen:
                continue
            seen.add(collectible_id)
            obtained_raw = mapping.get("obtainedAt")
            result.append(
                OwnedCollectible(
                    collectible_id=collectible_id,
                    name=self._require_str(mapping.get("name"), f"{context}.name"),
                    description=self._coerce_str(mapping.get("description"), f"{context}.description"),
                    icon_url=self._coerce_str(mapping.get("iconUrl"), f"{context}.iconUrl"),
                    rarity=self._coerce_str(mapping.get("rarity"), f"{context}.rarity"),
                    difficulty=self._coerce_str(mapping.get("difficulty"), f"{context}.difficulty"),
                    obtained_at=(
                        self._require_time(obtained_raw, f"{context}.obtainedAt") if obtained_raw is not None else None
                    ),
                    quest_id=self._coerce_optional_str(mapping.get("questId"), f"{context}.questId"),
                )
            )
        return result

    def _coerce_quiz(self, value: Any, context: str) -> QuizProgress:
        mapping = self._require_dict(value, context)
        answers_raw = mapping.get("answers")
        if not isinstance(answers_raw, list):
            raise SaveLoadError(f"{context}.answers must be a list.")
        answers: List[int] = []
        for answer in answers_raw:
            if isinstance(answer, bool) or not isinstance(answer, int) or answer < UNANSWERED:
                raise SaveLoadError(f"{context}.answers entries must be integers >= {UNANSWERED}.")
            answers.append(answer)
        current = self._coerce_non_negative_int(mapping.get("currentQuestion"), f"{context}.currentQuestion", default=0)
        if answers and current >= len(answers):
            raise SaveLoadError(f"{context}.currentQuestion is out of range.")
        return QuizProgress(
            started_at=self._require_time(mapping.get("startedAt"), f"{context}.startedAt"),
            answers=answers,
            current_question=current,
            score=self._coerce_non_negative_int(mapping.get("score"), f"{context}.score", default=0),
            completed=self._coerce_bool(mapping.get("completed"), f"{context}.completed"),
            time_spent=self._coerce_non_negative_int(mapping.get("timeSpent"), f"{context}.timeSpent", default=0),
            retry_count=self._coerce_non_negative_int(mapping.get("retryCount"), f"{context}.retryCount", default=0),
        )

    @staticmethod
    def _validate_consistency(progress: UserProgress) -> None:
        overlap = set(progress.completed_quests) & set(progress.in_progress)
        if overlap:
            raise SaveLoadError(f"Quests both completed and in progress: {sorted(overlap)}.")
        if len(set(progress.completed_quests)) != len(progress.completed_quests):
            raise SaveLoadError("completedQuests contains duplicates.")
        if progress.active_quest_id is not None and progress.active_quest_id in progress.completed_quests:
            raise SaveLoadError("activeQuestId references a completed quest.")

    @staticmethod
    def _format_time(value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()

    @staticmethod
    def _require_time(value: Any, context: str) -> datetime:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, str):
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError as exc:
                raise SaveLoadError(f"{context} is not an ISO-8601 timestamp.") from exc
        else:
            raise SaveLoadError(f"{context} must be a timestamp.")
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed

    @staticmethod
    def _require_dict(value: Any, context: str) -> Mapping[str, Any]:
        if not isinstance(value, Mapping):
            raise SaveLoadError(f"{context} must be an object.")
        return value

    def _coerce_dict(self, value: Any, context: str) -> Mapping[str, Any]:
        if value is None:
            return {}
        mapping = self._require_dict(value, context)
        for key in mapping:
            if not isinstance(key, str):
                raise SaveLoadError(f"{context} keys must be strings.")
        return mapping

    @staticmethod
    def _require_str(value: Any, context: str) -> str:
        if not isinstance(value, str):
            raise SaveLoadError(f"{context} must be a string.")
        return value

    def _coerce_str(self, value: Any, context: str) -> str:
        if value is None:
            return ""
        return self._require_str(value, context)

    def _coerce_optional_str(self, value: Any, context: str) -> str | None:
        if value is None:
            return None
        return self._require_str(value, context)

    @staticmethod
    def _coerce_bool(value: Any, context: str) -> bool:
        if value is None:
            return False
        if not isinstance(value, bool):
            raise SaveLoadError(f"{context} must be a boolean.")
        return value

    @staticmethod
    def _coerce_non_negative_int(value: Any, context: str, *, default: int) -> int:
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise SaveLoadError(f"{context} must be a non-negative integer.")
        return value

    def _coerce_str_list(self, value: Any, context: str) -> List[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise SaveLoadError(f"{context} must be a list.")
        return [self._require_str(entry, f"{context} entry") for entry in value]
