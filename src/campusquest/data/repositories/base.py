"""Base repository implementation for quest and collectible reference data."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Generic, List, Mapping, TypeVar

from campusquest.data import paths
from campusquest.data.errors import DataValidationError
from campusquest.data.json_loader import load_json

T = TypeVar("T")


class RepositoryBase(Generic[T]):
    """Common caching and loading behavior for repositories.

    Definitions come either from ``<definitions dir>/<filename>`` or from an
    in-memory ``payload`` of the same shape (e.g. documents read from the
    document store).
    """

    def __init__(
        self,
        filename: str,
        base_path: Path | str | None = None,
        payload: Mapping[str, object] | None = None,
    ) -> None:
        self._filename = filename
        self._base_path = Path(base_path) if base_path is not None else None
        self._payload = dict(payload) if payload is not None else None
        self._definitions: Dict[str, T] | None = None

    def _get_file_path(self) -> Path:
        definitions_dir = paths.get_definitions_path(self._base_path)
        return definitions_dir / self._filename

    def _load_raw(self) -> dict[str, object]:
        if self._payload is not None:
            return self._payload
        file_path = self._get_file_path()
        raw = load_json(file_path)
        if not isinstance(raw, dict):
            raise DataValidationError(f"Expected top-level object in {file_path}")
        return raw

    def _build(self, raw: dict[str, object]) -> Dict[str, T]:
        """Convert a raw dict into typed definitions."""
        raise NotImplementedError

    def _ensure_loaded(self) -> Dict[str, T]:
        if self._definitions is None:
            self._definitions = self._build(self._load_raw())
        return self._definitions

    def get(self, def_id: str) -> T:
        """Return a definition by id; raises KeyError when unknown."""
        definitions = self._ensure_loaded()
        try:
            return definitions[def_id]
        except KeyError as exc:
            raise KeyError(def_id) from exc

    def find(self, def_id: str) -> T | None:
        """Return a definition by id, or None when unknown."""
        return self._ensure_loaded().get(def_id)

    def all(self) -> List[T]:
        """Return all definitions sorted deterministically by id."""
        definitions = self._ensure_loaded()
        return [definitions[key] for key in sorted(definitions.keys())]

    def reload(self) -> None:
        """Drop cached definitions so the next access re-reads the source."""
        self._definitions = None

    @staticmethod
    def _require_mapping(value: object, context: str) -> dict[str, object]:
        if not isinstance(value, dict):
            raise DataValidationError(f"{context} must be an object.")
        return value

    @staticmethod
    def _require_list(value: object, context: str) -> list[object]:
        if not isinstance(value, list):
            raise DataValidationError(f"{context} must be a list.")
        return value

    @staticmethod
    def _require_str(value: object, context: str) -> str:
        if not isinstance(value, str):
            raise DataValidationError(f"{context} must be a string.")
        return value

    @staticmethod
    def _optional_str(value: object, context: str, default: str) -> str:
        if value is None:
            return default
        if not isinstance(value, str):
            raise DataValidationError(f"{context} must be a string.")
        return value

    @staticmethod
    def _require_non_negative_int(value: object, context: str) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise DataValidationError(f"{context} must be a non-negative integer.")
        return value

    @staticmethod
    def _require_number(value: object, context: str) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise DataValidationError(f"{context} must be a number.")
        return float(value)
