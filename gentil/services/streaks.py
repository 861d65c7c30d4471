"""Consecutive-day streaks over UTC calendar days."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable


def current_streak(active_days: Iterable[date], today: date, *, lookback_days: int = 365) -> int:
    """Length of the run of active days ending today or yesterday.

    A day without activity before the anchor ends the run; if the user was
    active neither today nor yesterday the streak is 0.
    """

    days = set(active_days)
    if today in days:
        anchor = today
    elif today - timedelta(days=1) in days:
        anchor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    cursor = anchor
    while cursor in days and streak < lookback_days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak
