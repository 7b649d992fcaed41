"""Wall-clock helpers; time-dependent services accept any zero-arg clock."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds elapsed from start to end, never negative."""
    return max(0, int((end - start).total_seconds()))
