"""Leaderboard snapshots: rank users per period and category, serve cached reads."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from flask import current_app, has_app_context
from sqlalchemy import delete, insert, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from ..models import db
from ..models.leaderboard import (
    LEADERBOARD_CATEGORIES,
    LEADERBOARD_PERIODS,
    LeaderboardEntry,
    LeaderboardSnapshot,
)
from ..models.points import CATEGORY_COLUMNS, PERIOD_COLUMNS, PointAccount
from ..models.user import User
from ..utils.logger import get_logger
from .errors import InvalidArgument, classify_storage_error

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_snapshots = LeaderboardSnapshot.__table__
_entries = LeaderboardEntry.__table__


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_datetime(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _config(name: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(name, default))
    return default


def _validate(period: str, category: str) -> None:
    if period not in LEADERBOARD_PERIODS:
        raise InvalidArgument(f"unknown leaderboard period: {period}", period=period)
    if category not in LEADERBOARD_CATEGORIES:
        raise InvalidArgument(f"unknown leaderboard category: {category}", category=category)


def period_bounds(period: str, now: datetime) -> tuple[datetime, datetime | None]:
    """UTC window a snapshot covers; the all-time window is open-ended."""

    now = _normalize_datetime(now)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "weekly":
        start = midnight - timedelta(days=midnight.weekday())
        return start, start + timedelta(days=7)
    if period == "monthly":
        start = midnight.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return start, end
    if period == "all_time":
        return EPOCH, None
    raise InvalidArgument(f"unknown leaderboard period: {period}", period=period)


def points_column(period: str, category: str):
    # Per-category totals are cumulative, so category boards ignore the period.
    if category == "overall":
        return getattr(PointAccount, PERIOD_COLUMNS[period])
    return getattr(PointAccount, CATEGORY_COLUMNS[category])


def competition_ranks(scores: Iterable[int]) -> list[int]:
    """Standard competition ranking for scores already sorted descending."""

    ranks: list[int] = []
    previous = None
    for index, score in enumerate(scores):
        if score != previous:
            current = index + 1
            previous = score
        ranks.append(current)
    return ranks


def _ranked_rows(period: str, category: str) -> list[tuple[User, int, int]]:
    column = points_column(period, category)
    return (
        db.session.query(User, column, PointAccount.level)
        .join(PointAccount, PointAccount.user_id == User.id)
        .filter(column > 0)
        .order_by(column.desc(), User.id.asc())
        .all()
    )


def generate_snapshot(period: str, category: str = "overall", *, now: datetime | None = None) -> LeaderboardSnapshot:
    """Rebuild one leaderboard and make it the current snapshot.

    The new snapshot and its entries are written and promoted in one
    transaction. The board it replaces is kept, demoted, until the next
    regeneration so a reader still holding it can load its entries; older
    boards are removed.
    """

    _validate(period, category)
    now = _normalize_datetime(now) if now else _now()
    period_start, period_end = period_bounds(period, now)

    try:
        rows = _ranked_rows(period, category)
        ranks = competition_ranks(points for _user, points, _level in rows)

        snapshot_id = db.session.execute(
            insert(_snapshots).values(
                period=period,
                category=category,
                generated_at=now,
                period_start=period_start,
                period_end=period_end,
                entry_count=len(rows),
                is_current=False,
            )
        ).inserted_primary_key[0]

        if rows:
            db.session.execute(
                insert(_entries),
                [
                    {
                        "snapshot_id": snapshot_id,
                        "position": position,
                        "user_id": user.id,
                        "rank": rank,
                        "points": int(points),
                        "level": int(level or 1),
                        "display_name": user.public_name,
                        "avatar_url": user.avatar_url,
                    }
                    for position, ((user, points, level), rank) in enumerate(zip(rows, ranks))
                ],
            )

        stale = (
            db.select(_snapshots.c.id)
            .where(
                _snapshots.c.period == period,
                _snapshots.c.category == category,
                _snapshots.c.id != snapshot_id,
                _snapshots.c.is_current.is_(False),
            )
        )
        stale_ids = [row[0] for row in db.session.execute(stale)]
        if stale_ids:
            db.session.execute(delete(_entries).where(_entries.c.snapshot_id.in_(stale_ids)))
            db.session.execute(delete(_snapshots).where(_snapshots.c.id.in_(stale_ids)))
        db.session.execute(
            update(_snapshots)
            .where(
                _snapshots.c.period == period,
                _snapshots.c.category == category,
                _snapshots.c.is_current.is_(True),
            )
            .values(is_current=False)
        )
        db.session.execute(update(_snapshots).where(_snapshots.c.id == snapshot_id).values(is_current=True))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("[LEADERBOARD] Snapshot failed for %s/%s", period, category)
        raise classify_storage_error(exc) from exc

    logger.info(
        "[LEADERBOARD] Generated %s/%s snapshot with %s entries",
        period,
        category,
        len(rows),
    )
    return db.session.get(LeaderboardSnapshot, snapshot_id)


def _current_snapshot(period: str, category: str) -> LeaderboardSnapshot | None:
    return (
        LeaderboardSnapshot.query.options(joinedload(LeaderboardSnapshot.entries))
        .filter_by(period=period, category=category, is_current=True)
        .order_by(LeaderboardSnapshot.generated_at.desc(), LeaderboardSnapshot.id.desc())
        .first()
    )


def get_snapshot(period: str, category: str = "overall", *, now: datetime | None = None) -> LeaderboardSnapshot:
    """Current snapshot, regenerated when missing or older than the freshness window."""

    _validate(period, category)
    now = _normalize_datetime(now) if now else _now()
    snapshot = _current_snapshot(period, category)
    freshness = timedelta(seconds=max(0, _config("LEADERBOARD_FRESHNESS_SECONDS", 3600)))
    if snapshot is not None and now - _normalize_datetime(snapshot.generated_at) <= freshness:
        return snapshot
    if snapshot is not None:
        logger.info("[LEADERBOARD] %s/%s snapshot is stale, regenerating", period, category)
    return generate_snapshot(period, category, now=now)


def get_leaderboard(
    period: str,
    category: str = "overall",
    limit: int = 50,
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidArgument("limit must be a positive integer", limit=repr(limit))
    snapshot = get_snapshot(period, category, now=now)
    return [entry.serialize() for entry in snapshot.entries[:limit]]


def get_user_position(
    user_id: int,
    period: str,
    category: str = "overall",
    range_: int | None = None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Where ``user_id`` sits on a board, with up to ``range_`` neighbours either side."""

    if range_ is None:
        range_ = _config("LEADERBOARD_NEARBY_RANGE", 5)
    if range_ < 0:
        raise InvalidArgument("range must not be negative", range=range_)

    snapshot = get_snapshot(period, category, now=now)
    entries = snapshot.entries
    index = next((i for i, entry in enumerate(entries) if entry.user_id == user_id), None)
    base = {
        "period": period,
        "category": category,
        "total_participants": snapshot.entry_count,
        "generated_at": snapshot.generated_at.isoformat() if snapshot.generated_at else None,
    }
    if index is None:
        return {**base, "ranked": False, "rank": None, "points": 0, "nearby": []}

    entry = entries[index]
    nearby = entries[max(0, index - range_): index + range_ + 1]
    return {
        **base,
        "ranked": True,
        "rank": entry.rank,
        "points": entry.points,
        "entry": entry.serialize(),
        "nearby": [item.serialize() for item in nearby],
    }


def generate_all_snapshots(
    periods: Iterable[str] | None = None,
    categories: Iterable[str] | None = None,
    *,
    now: datetime | None = None,
) -> dict[str, int]:
    """Regenerate every requested board; returns ``{"period/category": entry_count}``."""

    periods = tuple(periods or LEADERBOARD_PERIODS)
    categories = tuple(categories or LEADERBOARD_CATEGORIES)
    for period in periods:
        for category in categories:
            _validate(period, category)

    now = _normalize_datetime(now) if now else _now()
    generated: dict[str, int] = {}
    for period in periods:
        for category in categories:
            snapshot = generate_snapshot(period, category, now=now)
            generated[f"{period}/{category}"] = snapshot.entry_count
    logger.info("[LEADERBOARD] Regenerated %s snapshots", len(generated))
    return generated


__all__ = [
    "period_bounds",
    "points_column",
    "competition_ranks",
    "generate_snapshot",
    "get_snapshot",
    "get_leaderboard",
    "get_user_position",
    "generate_all_snapshots",
]
