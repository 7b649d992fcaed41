"""Document store collaborator: the opaque key/value service progress lives in."""
from __future__ import annotations

import copy
import threading
from pathlib import Path
from typing import Any, Dict, List, Tuple

from campusquest.data.errors import DataLoadError, PersistenceError
from campusquest.data.json_loader import dump_json, load_json

Document = Dict[str, Any]

USER_PROGRESS = "userProgress"
QUESTS = "quests"
COLLECTIBLES = "collectibles"
PARTICIPANTS = "participants"


class DocumentStore:
    """Interface the engine uses to reach persistence.

    Implementations raise ``PersistenceError`` when an operation cannot be
    completed; ``get`` returns ``None`` for a document that does not exist.
    """

    def get(self, collection: str, doc_id: str) -> Document | None:
        raise NotImplementedError

    def set(self, collection: str, doc_id: str, payload: Document) -> None:
        raise NotImplementedError

    def update(self, collection: str, doc_id: str, fields: Document) -> None:
        """Merge top-level ``fields`` into an existing or new document."""
        current = self.get(collection, doc_id) or {}
        current.update(fields)
        self.set(collection, doc_id, current)

    def all(self, collection: str) -> List[Tuple[str, Document]]:
        raise NotImplementedError

    def query(self, collection: str, field: str, value: Any) -> List[Tuple[str, Document]]:
        """Documents whose top-level ``field`` equals ``value``."""
        return [(doc_id, doc) for doc_id, doc in self.all(collection) if doc.get(field) == value]


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe dict-backed store; documents are copied in and out."""

    def __init__(self, seed: Dict[str, Dict[str, Document]] | None = None) -> None:
        self._lock = threading.Lock()
        self._collections: Dict[str, Dict[str, Document]] = copy.deepcopy(seed) if seed else {}

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, payload: Document) -> None:
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(payload)

    def update(self, collection: str, doc_id: str, fields: Document) -> None:
        with self._lock:
            doc = self._collections.setdefault(collection, {}).setdefault(doc_id, {})
            doc.update(copy.deepcopy(fields))

    def all(self, collection: str) -> List[Tuple[str, Document]]:
        with self._lock:
            docs = self._collections.get(collection, {})
            return [(doc_id, copy.deepcopy(docs[doc_id])) for doc_id in sorted(docs)]


class JsonFileDocumentStore(DocumentStore):
    """Stores each document as ``<base_dir>/<collection>/<doc_id>.json``."""

    def __init__(self, base_dir: Path | str) -> None:
        self._base_dir = Path(base_dir)
        self._lock = threading.Lock()

    def get(self, collection: str, doc_id: str) -> Document | None:
        path = self._doc_path(collection, doc_id)
        try:
            raw = load_json(path, missing_ok=True)
        except DataLoadError as exc:
            raise PersistenceError(str(exc)) from exc
        if raw is None:
            return None
        if not isinstance(raw, dict):
            raise PersistenceError(f"Document {collection}/{doc_id} is not a JSON object.")
        return raw

    def set(self, collection: str, doc_id: str, payload: Document) -> None:
        path = self._doc_path(collection, doc_id)
        with self._lock:
            try:
                dump_json(path, payload)
            except (OSError, TypeError, ValueError) as exc:
                raise PersistenceError(f"Unable to write {collection}/{doc_id}: {exc}") from exc

    def update(self, collection: str, doc_id: str, fields: Document) -> None:
        with self._lock:
            current = self.get(collection, doc_id) or {}
            current.update(fields)
            try:
                dump_json(self._doc_path(collection, doc_id), current)
            except (OSError, TypeError, ValueError) as exc:
                raise PersistenceError(f"Unable to write {collection}/{doc_id}: {exc}") from exc

    def all(self, collection: str) -> List[Tuple[str, Document]]:
        directory = self._base_dir / collection
        if not directory.exists():
            return []
        documents: List[Tuple[str, Document]] = []
        for path in sorted(directory.glob("*.json")):
            doc = self.get(collection, path.stem)
            if doc is not None:
                documents.append((path.stem, doc))
        return documents

    def _doc_path(self, collection: str, doc_id: str) -> Path:
        if not doc_id or "/" in doc_id or "\\" in doc_id or doc_id in (".", ".."):
            raise PersistenceError(f"Invalid document id: {doc_id!r}")
        return self._base_dir / collection / f"{doc_id}.json"
