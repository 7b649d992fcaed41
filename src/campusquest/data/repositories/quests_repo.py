"""Repository for quest definitions."""
from __future__ import annotations

from typing import Dict, List

from campusquest.core.types import QUEST_DIFFICULTIES, QUEST_KINDS, QuestDifficulty, QuestKind
from campusquest.data.errors import DataReferenceError, DataValidationError
from campusquest.data.repositories.base import RepositoryBase
from campusquest.domain.defs import Coordinate, QuestDef, QuizQuestionDef


class QuestsRepository(RepositoryBase[QuestDef]):
    """Loads and validates quest definitions.

    Quest documents use the authoring tool's camelCase field names. Legacy
    aliases written by older admin builds are accepted: ``points`` for
    ``rewardPoints``, ``quizQuestions`` for ``questions``, flat ``lat``/``lng``
    for ``position``, and lowercase ``type``/``difficulty`` values.
    """

    def __init__(self, *, base_path=None, payload=None) -> None:
        super().__init__("quests.json", base_path, payload)

    def _build(self, raw: dict[str, object]) -> Dict[str, QuestDef]:
        container = self._require_mapping(raw, "quests.json")
        raw_quests = self._require_mapping(container.get("quests"), "quests.json.quests")
        definitions: Dict[str, QuestDef] = {}
        for quest_id, quest_payload in raw_quests.items():
            ctx = f"quest '{quest_id}'"
            quest_map = self._require_mapping(quest_payload, ctx)
            definitions[quest_id] = QuestDef(
                quest_id=quest_id,
                title=self._optional_str(quest_map.get("title"), f"{ctx} title", "Untitled Quest"),
                description=self._optional_str(quest_map.get("description"), f"{ctx} description", ""),
                location=self._optional_str(quest_map.get("location"), f"{ctx} location", "Unknown Location"),
                difficulty=self._parse_difficulty(quest_map.get("difficulty"), ctx),
                reward_points=self._parse_reward_points(quest_map, ctx),
                kind=self._parse_kind(quest_map.get("type"), ctx),
                position=self._parse_position(quest_map, ctx),
                questions=tuple(self._parse_questions(quest_map, ctx)),
                required_quests=tuple(
                    self._require_str_list(quest_map.get("requiredQuests", []), f"{ctx} requiredQuests")
                ),
                passing_score=self._parse_passing_score(quest_map.get("passingScore"), ctx),
                allow_retries=self._parse_bool(quest_map.get("allowRetries"), f"{ctx} allowRetries", True),
                building=self._optional_str(quest_map.get("building"), f"{ctx} building", ""),
                estimated_time=self._optional_str(quest_map.get("estimatedTime"), f"{ctx} estimatedTime", ""),
            )
        self._validate_prerequisites(definitions)
        return definitions

    def _parse_difficulty(self, value: object, ctx: str) -> QuestDifficulty:
        if value is None:
            return "Medium"
        label = self._capitalize(self._require_str(value, f"{ctx} difficulty"))
        if label not in QUEST_DIFFICULTIES:
            raise DataValidationError(f"{ctx} difficulty must be one of {', '.join(QUEST_DIFFICULTIES)}.")
        return label  # type: ignore[return-value]

    def _parse_kind(self, value: object, ctx: str) -> QuestKind:
        if value is None:
            return "Location"
        label = self._capitalize(self._require_str(value, f"{ctx} type"))
        if label not in QUEST_KINDS:
            raise DataValidationError(f"{ctx} type must be one of {', '.join(QUEST_KINDS)}.")
        return label  # type: ignore[return-value]

    def _parse_reward_points(self, quest_map: dict[str, object], ctx: str) -> int:
        value = quest_map.get("rewardPoints", quest_map.get("points", 0))
        return self._require_non_negative_int(value, f"{ctx} rewardPoints")

    def _parse_position(self, quest_map: dict[str, object], ctx: str) -> Coordinate:
        position = quest_map.get("position")
        if position is not None:
            mapping = self._require_mapping(position, f"{ctx} position")
            lat, lng = mapping.get("lat"), mapping.get("lng")
        elif "lat" in quest_map and "lng" in quest_map:
            lat, lng = quest_map.get("lat"), quest_map.get("lng")
        else:
            raise DataValidationError(f"{ctx} must define a position.")
        lat_value = self._require_number(lat, f"{ctx} position.lat")
        lng_value = self._require_number(lng, f"{ctx} position.lng")
        if not -90.0 <= lat_value <= 90.0 or not -180.0 <= lng_value <= 180.0:
            raise DataValidationError(f"{ctx} position is out of range.")
        return Coordinate(lat=lat_value, lng=lng_value)

    def _parse_questions(self, quest_map: dict[str, object], ctx: str) -> List[QuizQuestionDef]:
        raw = quest_map.get("questions")
        if raw is None:
            raw = quest_map.get("quizQuestions", [])
        questions: List[QuizQuestionDef] = []
        for index, entry in enumerate(self._require_list(raw, f"{ctx} questions")):
            qctx = f"{ctx} questions[{index}]"
            mapping = self._require_mapping(entry, qctx)
            prompt = mapping.get("question", mapping.get("prompt"))
            options = tuple(self._require_str_list(mapping.get("options"), f"{qctx}.options"))
            if len(options) < 2:
                raise DataValidationError(f"{qctx}.options must contain at least two entries.")
            correct = self._require_non_negative_int(mapping.get("correctAnswer"), f"{qctx}.correctAnswer")
            if correct >= len(options):
                raise DataValidationError(f"{qctx}.correctAnswer must index into options.")
            points = mapping.get("points", 1)
            if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
                raise DataValidationError(f"{qctx}.points must be a positive integer.")
            question_id = mapping.get("id", f"q{index + 1}")
            questions.append(
                QuizQuestionDef(
                    question_id=self._require_str(question_id, f"{qctx}.id"),
                    prompt=self._require_str(prompt, f"{qctx}.question"),
                    options=options,
                    correct_index=correct,
                    points=points,
                )
            )
        return questions

    def _parse_passing_score(self, value: object, ctx: str) -> int | None:
        if value is None:
            return None
        score = self._require_non_negative_int(value, f"{ctx} passingScore")
        if score > 100:
            raise DataValidationError(f"{ctx} passingScore must be between 0 and 100.")
        return score

    @staticmethod
    def _parse_bool(value: object, context: str, default: bool) -> bool:
        if value is None:
            return default
        if not isinstance(value, bool):
            raise DataValidationError(f"{context} must be a boolean.")
        return value

    @staticmethod
    def _capitalize(value: str) -> str:
        return value[:1].upper() + value[1:].lower()

    @staticmethod
    def _validate_prerequisites(definitions: Dict[str, QuestDef]) -> None:
        for quest in definitions.values():
            for required_id in quest.required_quests:
                if required_id == quest.quest_id:
                    raise DataReferenceError(f"quest '{quest.quest_id}' lists itself as a prerequisite.")
                if required_id not in definitions:
                    raise DataReferenceError(
                        f"quest '{quest.quest_id}' requires unknown quest '{required_id}'."
                    )

    @staticmethod
    def _require_str_list(value: object, context: str) -> List[str]:
        if not isinstance(value, list):
            raise DataValidationError(f"{context} must be a list.")
        result: List[str] = []
        for entry in value:
            if not isinstance(entry, str):
                raise DataValidationError(f"{context} entries must be strings.")
            result.append(entry)
        return result
