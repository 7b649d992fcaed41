"""Inactivity detection for the active quest."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable

from campusquest.core.clock import Clock, utc_now
from campusquest.domain.state import ActiveQuest

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = timedelta(minutes=15)
DEFAULT_POLL_INTERVAL_S = 60.0


class AbandonmentMonitor:
    """Polls on a fixed interval and reports an abandoned active quest.

    The monitor only reads ``last_activity``; refreshing it is the job of
    whoever handles user interaction (see :meth:`touch`).
    """

    def __init__(
        self,
        *,
        timeout: timedelta = DEFAULT_TIMEOUT,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        clock: Clock = utc_now,
    ) -> None:
        self._timeout = timeout
        self._poll_interval_s = poll_interval_s
        self._clock = clock
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def is_abandoned(self, active: ActiveQuest | None, now: datetime | None = None) -> bool:
        if active is None or active.status != "active":
            return False
        current = now or self._clock()
        return current - active.last_activity > self._timeout

    @staticmethod
    def touch(active: ActiveQuest, now: datetime) -> ActiveQuest:
        return active.touched(now)

    def poll_once(self, check: Callable[[], bool], on_abandoned: Callable[[], None]) -> bool:
        """Run one check; call ``on_abandoned`` and return True when it fires."""
        if not check():
            return False
        on_abandoned()
        return True

    def start(self, check: Callable[[], bool], on_abandoned: Callable[[], None]) -> None:
        """Poll in a daemon thread until :meth:`stop` is called."""
        with self._lock:
            if self.running:
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event, check, on_abandoned),
                name="abandonment-monitor",
                daemon=True,
            )
            self._thread.start()

    def stop(self) -> None:
        """Signal the polling thread to exit; does not wait for it."""
        with self._lock:
            self._thread = None
            self._stop_event.set()

    def _run(
        self,
        stop_event: threading.Event,
        check: Callable[[], bool],
        on_abandoned: Callable[[], None],
    ) -> None:
        while not stop_event.wait(self._poll_interval_s):
            try:
                self.poll_once(check, on_abandoned)
            except Exception:
                logger.exception("Abandonment check failed")
