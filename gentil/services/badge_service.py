"""Badge catalog seeding, tier evaluation and badge read helpers."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import case, func, update
from sqlalchemy.exc import SQLAlchemyError

from ..models import db
from ..models.badge import BADGE_CATEGORIES, BADGE_TIERS, BadgeDefinition, UserBadgeProgress
from ..models.user import User
from ..utils.logger import get_logger
from .errors import InvalidArgument, NotFound, classify_storage_error
from .points_service import award_points, insert_ignoring_conflicts
from .providers import ContributionCounter, get_contribution_counter

logger = get_logger(__name__)

_progress = UserBadgeProgress.__table__


@dataclass(frozen=True)
class BadgeSeed:
    key: str
    name: str
    description: str
    tier: str
    category: str
    requirement: int
    points: int


def _tier_set(category: str, names: tuple[str, str, str, str], noun: str, bonuses: tuple[int, int, int, int]):
    thresholds = (10, 50, 100, 500)
    return [
        BadgeSeed(
            key=f"{category}_{tier}",
            name=name,
            description=noun.format(count=threshold),
            tier=tier,
            category=category,
            requirement=threshold,
            points=bonus,
        )
        for tier, name, threshold, bonus in zip(BADGE_TIERS, names, thresholds, bonuses)
    ]


DEFAULT_BADGES: list[BadgeSeed] = [
    *_tier_set(
        "feedback",
        ("Feedback Contributor", "Feedback Champion", "Feedback Expert", "Feedback Legend"),
        "Submitted {count} feedback items",
        (50, 200, 500, 2000),
    ),
    *_tier_set(
        "voting",
        ("Active Voter", "Community Voice", "Voting Expert", "Voting Legend"),
        "Voted on {count} feedback items",
        (30, 150, 300, 1000),
    ),
    *_tier_set(
        "research",
        ("Research Participant", "Research Contributor", "Research Expert", "Research Legend"),
        "Participated in {count} research activities",
        (100, 400, 800, 3000),
    ),
    *_tier_set(
        "engagement",
        ("Community Member", "Active Community Member", "Community Leader", "Community Champion"),
        "Engaged with the platform {count} times",
        (25, 100, 250, 1500),
    ),
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _validate_category(category: str) -> str:
    if category not in BADGE_CATEGORIES:
        raise InvalidArgument(f"unknown badge category: {category}", category=category)
    return category


def seed_badges(seeds: list[BadgeSeed] | None = None) -> int:
    """Upsert the badge catalog by ``key``; returns the number of new badges."""

    created = 0
    for seed in seeds or DEFAULT_BADGES:
        values = asdict(seed)
        badge = BadgeDefinition.query.filter_by(key=seed.key).first()
        if badge is None:
            db.session.add(BadgeDefinition(**values))
            created += 1
            continue
        for name, value in values.items():
            setattr(badge, name, value)
    db.session.commit()
    logger.info("[BADGES] Catalog seeded (%s new)", created)
    return created


def _tier_order():
    return case(
        {tier: index for index, tier in enumerate(BADGE_TIERS)},
        value=BadgeDefinition.tier,
        else_=len(BADGE_TIERS),
    )


def _ensure_progress_row(user_id: int, badge_id: int, now: datetime) -> None:
    insert_ignoring_conflicts(
        _progress,
        {"user_id": user_id, "badge_id": badge_id, "progress": 0, "updated_at": now},
        ["user_id", "badge_id"],
    )


def _raise_progress(user_id: int, badge_id: int, count: int, now: datetime) -> None:
    # Unearned rows only, and never downwards.
    db.session.execute(
        update(_progress)
        .where(
            _progress.c.user_id == user_id,
            _progress.c.badge_id == badge_id,
            _progress.c.earned_at.is_(None),
            _progress.c.progress < count,
        )
        .values(progress=count, updated_at=now)
    )


def _mark_earned(user_id: int, badge_id: int, now: datetime) -> bool:
    result = db.session.execute(
        update(_progress)
        .where(
            _progress.c.user_id == user_id,
            _progress.c.badge_id == badge_id,
            _progress.c.earned_at.is_(None),
        )
        .values(earned_at=now, updated_at=now)
    )
    return bool(result.rowcount)


def evaluate_badges(
    user_id: int,
    category: str,
    *,
    counter: ContributionCounter | None = None,
    now: datetime | None = None,
) -> list[BadgeDefinition]:
    """Update badge progress for ``category`` and return badges earned by this call."""

    category = _validate_category(category)
    if db.session.get(User, user_id) is None:
        raise NotFound(f"user {user_id} does not exist", user_id=user_id)

    now = now or _now()
    counter = counter or get_contribution_counter()
    count = int(counter.count(user_id, category))

    badges = (
        BadgeDefinition.query.filter_by(category=category)
        .order_by(_tier_order(), BadgeDefinition.requirement.asc())
        .all()
    )
    earned_ids = {
        row.badge_id
        for row in UserBadgeProgress.query.filter(
            UserBadgeProgress.user_id == user_id,
            UserBadgeProgress.earned_at.isnot(None),
        )
    }

    newly_earned: list[BadgeDefinition] = []
    try:
        for badge in badges:
            if badge.id in earned_ids:
                continue
            _ensure_progress_row(user_id, badge.id, now)
            _raise_progress(user_id, badge.id, count, now)
            if count < badge.requirement:
                continue

            # The ledger deduplicates on the badge id, so a bonus paid before a
            # crash is not paid again when the badge is finally marked earned.
            if badge.points > 0:
                award_points(
                    user_id,
                    "badge_earned",
                    "bonus",
                    badge.points,
                    str(badge.id),
                    resource_type="badge",
                    metadata={"badge_key": badge.key},
                    now=now,
                )
            if _mark_earned(user_id, badge.id, now):
                newly_earned.append(badge)
                logger.info("[BADGES] User %s earned %s", user_id, badge.key)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("[BADGES] Evaluation failed for user %s category=%s", user_id, category)
        raise classify_storage_error(exc) from exc

    return newly_earned


def get_user_badges(user_id: int) -> list[UserBadgeProgress]:
    return (
        UserBadgeProgress.query.filter(
            UserBadgeProgress.user_id == user_id,
            UserBadgeProgress.earned_at.isnot(None),
        )
        .order_by(UserBadgeProgress.earned_at.desc(), UserBadgeProgress.id.desc())
        .all()
    )


def get_badge_progress(user_id: int, category: str | None = None) -> list[UserBadgeProgress]:
    """Earned badges first (newest first), then in-progress ones by requirement."""

    query = UserBadgeProgress.query.join(BadgeDefinition).filter(UserBadgeProgress.user_id == user_id)
    if category is not None:
        query = query.filter(BadgeDefinition.category == _validate_category(category))
    return query.order_by(
        UserBadgeProgress.earned_at.is_(None),
        UserBadgeProgress.earned_at.desc(),
        BadgeDefinition.requirement.asc(),
    ).all()


def get_all_badges(category: str | None = None) -> list[BadgeDefinition]:
    query = BadgeDefinition.query
    if category is not None:
        query = query.filter_by(category=_validate_category(category))
    return query.order_by(BadgeDefinition.category.asc(), BadgeDefinition.requirement.asc()).all()


def get_badge_stats(limit: int = 5) -> dict[str, Any]:
    earned_filter = UserBadgeProgress.earned_at.isnot(None)
    most_earned = (
        db.session.query(BadgeDefinition, func.count(UserBadgeProgress.id).label("earned"))
        .join(UserBadgeProgress, UserBadgeProgress.badge_id == BadgeDefinition.id)
        .filter(earned_filter)
        .group_by(BadgeDefinition.id)
        .order_by(func.count(UserBadgeProgress.id).desc(), BadgeDefinition.id.asc())
        .limit(limit)
        .all()
    )
    return {
        "total_badges": BadgeDefinition.query.count(),
        "earned_badges": UserBadgeProgress.query.filter(earned_filter).count(),
        "most_earned": [
            {"badge": badge.serialize(), "count": int(count)} for badge, count in most_earned
        ],
    }


__all__ = [
    "BadgeSeed",
    "DEFAULT_BADGES",
    "seed_badges",
    "evaluate_badges",
    "get_user_badges",
    "get_badge_progress",
    "get_all_badges",
    "get_badge_stats",
]
