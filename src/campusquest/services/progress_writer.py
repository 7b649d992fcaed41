"""Fire-and-forget write-through of progress documents with retry."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Tuple

from campusquest.data.document_store import DocumentStore
from campusquest.data.errors import PersistenceError

logger = logging.getLogger(__name__)

DocumentKey = Tuple[str, str]
FailureCallback = Callable[[str, str, Exception], None]


class ProgressWriter:
    """Outbox in front of the document store.

    Only the latest payload per document is kept; a newer submit replaces
    an older one that has not been written yet. Each write is tried
    ``max_attempts`` times with exponential backoff. A payload whose every
    attempt failed stays in the outbox and is retried on the next submit or
    :meth:`retry_pending`.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        executor: Executor | None = None,
        max_attempts: int = 3,
        backoff_s: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        on_failure: FailureCallback | None = None,
    ) -> None:
        self._store = store
        self._owns_executor = executor is None
        # One worker keeps writes for the same document in submission order.
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="progress-writer")
        self._max_attempts = max(1, max_attempts)
        self._backoff_s = backoff_s
        self._sleep = sleep
        self._on_failure = on_failure
        self._lock = threading.Lock()
        self._pending: Dict[DocumentKey, Dict[str, Any]] = {}
        self._futures: List[Future] = []

    @property
    def pending_keys(self) -> List[DocumentKey]:
        with self._lock:
            return sorted(self._pending)

    def submit(self, collection: str, doc_id: str, payload: Dict[str, Any]) -> Future:
        """Queue a full-document write and return immediately."""
        key = (collection, doc_id)
        with self._lock:
            self._pending[key] = payload
            future = self._executor.submit(self._drain, key)
            self._futures = [item for item in self._futures if not item.done()]
            self._futures.append(future)
        return future

    def retry_pending(self) -> None:
        """Schedule another attempt for every parked payload."""
        with self._lock:
            keys = list(self._pending)
            for key in keys:
                self._futures.append(self._executor.submit(self._drain, key))

    def flush(self, timeout: float | None = None) -> None:
        """Block until every scheduled write has been attempted."""
        with self._lock:
            futures = list(self._futures)
        wait(futures, timeout=timeout)

    def close(self) -> None:
        self.flush()
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def _drain(self, key: DocumentKey) -> bool:
        with self._lock:
            payload = self._pending.get(key)
        if payload is None:
            return True
        collection, doc_id = key
        for attempt in range(1, self._max_attempts + 1):
            try:
                self._store.set(collection, doc_id, payload)
            except PersistenceError as exc:
                logger.warning(
                    "Write of %s/%s failed (attempt %s/%s): %s",
                    collection,
                    doc_id,
                    attempt,
                    self._max_attempts,
                    exc,
                )
                if attempt == self._max_attempts:
                    logger.error("Giving up on %s/%s for now; keeping it queued", collection, doc_id)
                    if self._on_failure is not None:
                        self._on_failure(collection, doc_id, exc)
                    return False
                self._sleep(self._backoff_s * (2 ** (attempt - 1)))
                continue
            with self._lock:
                # A newer payload may have arrived while this one was being written.
                if self._pending.get(key) is payload:
                    del self._pending[key]
            return True
        return False
