# onboarding/services/clock.py
from __future__ import annotations

from datetime import datetime, timedelta


class Clock:
    """Injectable time source. Returns naive UTC to match the DB columns."""

    def now(self) -> datetime:
        return datetime.utcnow()


class FixedClock(Clock):
    """Clock pinned to a given instant; ``advance`` moves it forward."""

    def __init__(self, at: datetime):
        self._at = at

    def now(self) -> datetime:
        return self._at

    def advance(self, **delta) -> datetime:
        self._at = self._at + timedelta(**delta)
        return self._at
