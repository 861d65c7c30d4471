"""Level curve: a step function over all-time points."""

from __future__ import annotations

from bisect import bisect_right
from typing import Sequence

from flask import current_app, has_app_context

from config import DEFAULT_LEVEL_THRESHOLDS

from .errors import InvalidArgument


def validate_thresholds(thresholds: Sequence[int]) -> tuple[int, ...]:
    values = tuple(int(value) for value in thresholds)
    if not values or values[0] != 0:
        raise InvalidArgument("level thresholds must start at 0")
    if any(later <= earlier for earlier, later in zip(values, values[1:])):
        raise InvalidArgument("level thresholds must be strictly increasing")
    return values


def level_thresholds() -> tuple[int, ...]:
    if has_app_context():
        configured = current_app.config.get("GAMIFICATION_LEVEL_THRESHOLDS")
        if configured:
            return validate_thresholds(configured)
    return DEFAULT_LEVEL_THRESHOLDS


def calculate_level(total_points: int, thresholds: Sequence[int] | None = None) -> int:
    """Return the 1-based level reached with ``total_points``."""

    bounds = validate_thresholds(thresholds) if thresholds is not None else level_thresholds()
    return max(1, bisect_right(bounds, max(0, int(total_points))))


def next_level_threshold(level: int, thresholds: Sequence[int] | None = None) -> int | None:
    """Points needed for ``level + 1``; ``None`` once the top level is reached."""

    bounds = validate_thresholds(thresholds) if thresholds is not None else level_thresholds()
    if level >= len(bounds):
        return None
    return bounds[level]


def max_level(thresholds: Sequence[int] | None = None) -> int:
    bounds = validate_thresholds(thresholds) if thresholds is not None else level_thresholds()
    return len(bounds)
