"""Collaborators the evaluators read from: contribution counts and activity days.

Host applications can swap either one by registering an object on
``app.extensions["gamification"]`` under ``"contribution_counter"`` or
``"activity_log"``. The defaults read the ``events`` table.

Callables listed under ``"level_up_listeners"`` are called as
``listener(user_id, award)`` after an award raises a user's level.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Iterable, Protocol

from flask import current_app, has_app_context
from sqlalchemy import func

from ..models import db
from ..models.event import Event
from .errors import InvalidArgument

CATEGORY_EVENT_TYPES = {
    "feedback": ("submit_feedback",),
    "voting": ("vote",),
    "research": ("questionnaire_response", "session_participation"),
    "engagement": ("submit_feedback", "vote", "questionnaire_response"),
}


class ContributionCounter(Protocol):
    def count(self, user_id: int, category: str) -> int: ...

    def count_action(self, user_id: int, action: str) -> int: ...


class ActivityLog(Protocol):
    def active_days(self, user_id: int, start: date, end: date) -> set[date]: ...


def _normalize_datetime(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class EventContributionCounter:
    """Counts logged events per contribution category."""

    def _count_types(self, user_id: int, event_types: Iterable[str]) -> int:
        count = (
            db.session.query(func.count(Event.id))
            .filter(Event.user_id == user_id, Event.event_type.in_(tuple(event_types)))
            .scalar()
        )
        return int(count or 0)

    def count(self, user_id: int, category: str) -> int:
        try:
            event_types = CATEGORY_EVENT_TYPES[category]
        except KeyError as exc:
            raise InvalidArgument(f"unknown contribution category: {category}") from exc
        return self._count_types(user_id, event_types)

    def count_action(self, user_id: int, action: str) -> int:
        return self._count_types(user_id, (action,))


class EventActivityLog:
    """A user is active on a UTC day when any event was logged that day."""

    def active_days(self, user_id: int, start: date, end: date) -> set[date]:
        start_dt = datetime.combine(start, time.min, tzinfo=timezone.utc)
        end_dt = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
        rows = (
            db.session.query(Event.timestamp)
            .filter(
                Event.user_id == user_id,
                Event.timestamp >= start_dt,
                Event.timestamp < end_dt,
            )
            .all()
        )
        return {_normalize_datetime(timestamp).date() for (timestamp,) in rows}


_default_counter = EventContributionCounter()
_default_activity_log = EventActivityLog()


def _registry() -> dict:
    if not has_app_context():
        return {}
    return current_app.extensions.get("gamification", {})


def get_contribution_counter() -> ContributionCounter:
    return _registry().get("contribution_counter") or _default_counter


def get_activity_log() -> ActivityLog:
    return _registry().get("activity_log") or _default_activity_log


def get_level_up_listeners() -> list[Callable[[int, Any], None]]:
    return list(_registry().get("level_up_listeners", ()))


def register_level_up_listener(app, listener: Callable[[int, Any], None]) -> None:
    app.extensions.setdefault("gamification", {}).setdefault("level_up_listeners", []).append(listener)
