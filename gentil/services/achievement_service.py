"""Achievements: streak, milestone and special goals with one-time bonuses."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from flask import current_app, has_app_context
from sqlalchemy import func, or_, update
from sqlalchemy.exc import SQLAlchemyError

from ..models import db
from ..models.achievement import (
    ACHIEVEMENT_CATEGORIES,
    AchievementDefinition,
    UserAchievementProgress,
)
from ..models.badge import BADGE_CATEGORIES, BadgeDefinition, UserBadgeProgress
from ..models.points import PointAccount
from ..models.user import User
from ..utils.logger import get_logger
from .errors import InvalidArgument, NotFound, classify_storage_error
from .points_service import POINT_CATEGORIES, award_points, insert_ignoring_conflicts
from .providers import (
    ActivityLog,
    ContributionCounter,
    get_activity_log,
    get_contribution_counter,
)
from .streaks import current_streak

logger = get_logger(__name__)

_progress = UserAchievementProgress.__table__

TRIGGER_CATEGORIES = tuple(dict.fromkeys(POINT_CATEGORIES + BADGE_CATEGORIES))

# criterion -> event type counted by the contribution counter
_COUNT_CRITERIA = {
    "feedback_count": "submit_feedback",
    "vote_count": "vote",
    "questionnaire_count": "questionnaire_response",
}
_CATEGORY_CRITERIA = {
    "streak": ("consecutive_days",),
    "milestone": ("level", "total_points"),
    "special": tuple(_COUNT_CRITERIA) + ("early_user", "all_badges"),
}


@dataclass(frozen=True)
class AchievementSeed:
    key: str
    name: str
    description: str
    category: str
    requirement: dict[str, Any]
    points: int
    hidden: bool = False


DEFAULT_ACHIEVEMENTS: list[AchievementSeed] = [
    AchievementSeed("streak_7day", "7-Day Streak", "Engaged with the platform for 7 consecutive days",
                    "streak", {"consecutive_days": 7}, 100),
    AchievementSeed("streak_30day", "30-Day Streak", "Engaged with the platform for 30 consecutive days",
                    "streak", {"consecutive_days": 30}, 500),
    AchievementSeed("streak_100day", "100-Day Streak", "Engaged with the platform for 100 consecutive days",
                    "streak", {"consecutive_days": 100}, 2000),
    AchievementSeed("milestone_level5", "Level 5 Reached", "Reached Level 5",
                    "milestone", {"level": 5}, 200),
    AchievementSeed("milestone_level10", "Level 10 Reached", "Reached Level 10",
                    "milestone", {"level": 10}, 500),
    AchievementSeed("milestone_1000points", "Point Master", "Earned 1,000 total points",
                    "milestone", {"total_points": 1000}, 250),
    AchievementSeed("milestone_10000points", "Point Legend", "Earned 10,000 total points",
                    "milestone", {"total_points": 10000}, 1000),
    AchievementSeed("special_first_feedback", "First Steps", "Submitted your first feedback",
                    "special", {"feedback_count": 1}, 25),
    AchievementSeed("special_first_vote", "Voice Heard", "Cast your first vote",
                    "special", {"vote_count": 1}, 10),
    AchievementSeed("special_first_questionnaire", "Research Pioneer", "Completed your first questionnaire",
                    "special", {"questionnaire_count": 1}, 50),
    AchievementSeed("special_early_adopter", "Early Adopter", "One of the first 100 users on the platform",
                    "special", {"early_user": True}, 100, hidden=True),
    AchievementSeed("special_all_badges", "Badge Collector", "Earned all available badges",
                    "special", {"all_badges": True}, 1000, hidden=True),
]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _config(name: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(name, default))
    return default


def seed_achievements(seeds: list[AchievementSeed] | None = None) -> int:
    """Upsert the achievement catalog by ``key``; returns the number created."""

    created = 0
    for seed in seeds or DEFAULT_ACHIEVEMENTS:
        values = asdict(seed)
        achievement = AchievementDefinition.query.filter_by(key=seed.key).first()
        if achievement is None:
            db.session.add(AchievementDefinition(**values))
            created += 1
            continue
        for name, value in values.items():
            setattr(achievement, name, value)
    db.session.commit()
    logger.info("[ACHIEVEMENTS] Catalog seeded (%s new)", created)
    return created


def _criterion(achievement: AchievementDefinition) -> tuple[str, Any]:
    requirement = achievement.requirement or {}
    allowed = _CATEGORY_CRITERIA.get(achievement.category, ())
    for name in allowed:
        if name in requirement:
            return name, requirement[name]
    raise InvalidArgument(
        f"achievement {achievement.key} has no {achievement.category} criterion",
        requirement=requirement,
    )


class _UserStats:
    """Lazily computed facts about one user, shared across a single evaluation."""

    def __init__(
        self,
        user: User,
        counter: ContributionCounter,
        activity_log: ActivityLog,
        now: datetime,
    ) -> None:
        self.user = user
        self.counter = counter
        self.activity_log = activity_log
        self.now = now
        self._cache: dict[str, Any] = {}

    def _memo(self, key: str, compute: Callable[[], Any]) -> Any:
        if key not in self._cache:
            self._cache[key] = compute()
        return self._cache[key]

    def forget_account(self) -> None:
        self._cache.pop("account", None)

    @property
    def account(self) -> PointAccount | None:
        return self._memo(
            "account", lambda: PointAccount.query.filter_by(user_id=self.user.id).first()
        )

    def streak(self) -> int:
        def compute() -> int:
            lookback = max(1, _config("GAMIFICATION_STREAK_LOOKBACK_DAYS", 365))
            today = self.now.astimezone(timezone.utc).date()
            days = self.activity_log.active_days(
                self.user.id, today - timedelta(days=lookback), today
            )
            return current_streak(days, today, lookback_days=lookback)

        return self._memo("streak", compute)

    def level(self) -> int:
        return self.account.level if self.account else 1

    def total_points(self) -> int:
        return self.account.total_points if self.account else 0

    def action_count(self, action: str) -> int:
        return self._memo(f"count:{action}", lambda: int(self.counter.count_action(self.user.id, action)))

    def is_early_user(self) -> bool:
        def compute() -> bool:
            limit = _config("GAMIFICATION_EARLY_USER_LIMIT", 100)
            earlier = User.query.filter(
                or_(
                    User.created_at < self.user.created_at,
                    (User.created_at == self.user.created_at) & (User.id < self.user.id),
                )
            ).count()
            return earlier < limit

        return self._memo("early_user", compute)

    def has_all_badges(self) -> bool:
        def compute() -> bool:
            total = BadgeDefinition.query.count()
            earned = UserBadgeProgress.query.filter(
                UserBadgeProgress.user_id == self.user.id,
                UserBadgeProgress.earned_at.isnot(None),
            ).count()
            return total > 0 and earned >= total

        return self._memo("all_badges", compute)


def _check(achievement: AchievementDefinition, stats: _UserStats) -> tuple[bool, dict[str, Any]]:
    """Return ``(satisfied, progress_payload)`` for one achievement."""

    name, target = _criterion(achievement)
    if achievement.category == "streak":
        value = stats.streak()
        return value >= int(target), {name: value}

    if achievement.category == "milestone":
        value = stats.level() if name == "level" else stats.total_points()
        return value >= int(target), {name: value}

    if name in _COUNT_CRITERIA:
        value = stats.action_count(_COUNT_CRITERIA[name])
        return value >= int(target), {name: value}
    flag = stats.is_early_user() if name == "early_user" else stats.has_all_badges()
    return flag is bool(target), {name: flag}


def _evaluate_one(
    user_id: int,
    achievement: AchievementDefinition,
    stats: _UserStats,
    now: datetime,
) -> bool:
    """Store progress for one achievement; True when this call earned it."""

    satisfied, payload = _check(achievement, stats)
    insert_ignoring_conflicts(
        _progress,
        {"user_id": user_id, "achievement_id": achievement.id, "progress": payload, "updated_at": now},
        ["user_id", "achievement_id"],
    )
    db.session.execute(
        update(_progress)
        .where(
            _progress.c.user_id == user_id,
            _progress.c.achievement_id == achievement.id,
            _progress.c.earned_at.is_(None),
        )
        .values(progress=payload, updated_at=now)
    )
    if not satisfied:
        return False

    if achievement.points > 0:
        award_points(
            user_id,
            "achievement_earned",
            "bonus",
            achievement.points,
            str(achievement.id),
            resource_type="achievement",
            metadata={"achievement_key": achievement.key},
            now=now,
        )
        stats.forget_account()
    result = db.session.execute(
        update(_progress)
        .where(
            _progress.c.user_id == user_id,
            _progress.c.achievement_id == achievement.id,
            _progress.c.earned_at.is_(None),
        )
        .values(earned_at=now, updated_at=now)
    )
    return bool(result.rowcount)


def evaluate_achievements(
    user_id: int,
    trigger_category: str | None = None,
    *,
    counter: ContributionCounter | None = None,
    activity_log: ActivityLog | None = None,
    now: datetime | None = None,
) -> list[AchievementDefinition]:
    """Refresh achievement progress and return the ones earned by this call.

    Hidden achievements are evaluated like any other; visibility only
    matters to the read helpers.
    """

    if trigger_category is not None and trigger_category not in TRIGGER_CATEGORIES:
        raise InvalidArgument(f"unknown trigger category: {trigger_category}", category=trigger_category)
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound(f"user {user_id} does not exist", user_id=user_id)

    now = now or _now()
    stats = _UserStats(
        user,
        counter or get_contribution_counter(),
        activity_log or get_activity_log(),
        now,
    )
    earned_ids = {
        row.achievement_id
        for row in UserAchievementProgress.query.filter(
            UserAchievementProgress.user_id == user_id,
            UserAchievementProgress.earned_at.isnot(None),
        )
    }
    pending = [
        achievement
        for achievement in AchievementDefinition.query.order_by(AchievementDefinition.id).all()
        if achievement.id not in earned_ids
    ]
    others = [achievement for achievement in pending if achievement.category != "milestone"]
    milestones = [achievement for achievement in pending if achievement.category == "milestone"]

    newly_earned: list[AchievementDefinition] = []
    try:
        for achievement in others:
            if _evaluate_one(user_id, achievement, stats, now):
                newly_earned.append(achievement)

        # Milestone bonuses raise the total, which can satisfy another milestone.
        while milestones:
            earned_now = [
                achievement
                for achievement in milestones
                if _evaluate_one(user_id, achievement, stats, now)
            ]
            if not earned_now:
                break
            newly_earned.extend(earned_now)
            milestones = [achievement for achievement in milestones if achievement not in earned_now]
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("[ACHIEVEMENTS] Evaluation failed for user %s", user_id)
        raise classify_storage_error(exc) from exc

    for achievement in newly_earned:
        logger.info(
            "[ACHIEVEMENTS] User %s unlocked %s (trigger=%s)",
            user_id,
            achievement.key,
            trigger_category,
        )
    return newly_earned


def get_user_achievements(user_id: int) -> list[UserAchievementProgress]:
    return (
        UserAchievementProgress.query.filter(
            UserAchievementProgress.user_id == user_id,
            UserAchievementProgress.earned_at.isnot(None),
        )
        .order_by(UserAchievementProgress.earned_at.desc(), UserAchievementProgress.id.desc())
        .all()
    )


def get_achievement_progress(user_id: int, category: str | None = None) -> list[UserAchievementProgress]:
    """Progress rows, hiding secret achievements the user has not earned yet."""

    query = (
        UserAchievementProgress.query.join(AchievementDefinition)
        .filter(UserAchievementProgress.user_id == user_id)
        .filter(
            or_(
                AchievementDefinition.hidden.is_(False),
                UserAchievementProgress.earned_at.isnot(None),
            )
        )
    )
    if category is not None:
        if category not in ACHIEVEMENT_CATEGORIES:
            raise InvalidArgument(f"unknown achievement category: {category}", category=category)
        query = query.filter(AchievementDefinition.category == category)
    return query.order_by(
        UserAchievementProgress.earned_at.is_(None),
        UserAchievementProgress.earned_at.desc(),
        AchievementDefinition.points.desc(),
    ).all()


def get_all_achievements(
    *, include_hidden: bool = False, user_id: int | None = None
) -> list[AchievementDefinition]:
    """Catalog listing; hidden entries appear only for admins or once earned."""

    query = AchievementDefinition.query
    if not include_hidden:
        visible = AchievementDefinition.hidden.is_(False)
        if user_id is not None:
            earned_ids = db.select(UserAchievementProgress.achievement_id).where(
                UserAchievementProgress.user_id == user_id,
                UserAchievementProgress.earned_at.isnot(None),
            )
            visible = or_(visible, AchievementDefinition.id.in_(earned_ids))
        query = query.filter(visible)
    return query.order_by(AchievementDefinition.category.asc(), AchievementDefinition.points.asc()).all()


def get_achievement_stats(limit: int = 5) -> dict[str, Any]:
    earned_filter = UserAchievementProgress.earned_at.isnot(None)
    rarest = (
        db.session.query(AchievementDefinition, func.count(UserAchievementProgress.id).label("earned"))
        .join(UserAchievementProgress, UserAchievementProgress.achievement_id == AchievementDefinition.id)
        .filter(earned_filter)
        .group_by(AchievementDefinition.id)
        .order_by(func.count(UserAchievementProgress.id).asc(), AchievementDefinition.id.asc())
        .limit(limit)
        .all()
    )
    return {
        "total_achievements": AchievementDefinition.query.count(),
        "earned_achievements": UserAchievementProgress.query.filter(earned_filter).count(),
        "rarest": [
            {"achievement": achievement.serialize(), "count": int(count)}
            for achievement, count in rarest
        ],
    }


__all__ = [
    "AchievementSeed",
    "DEFAULT_ACHIEVEMENTS",
    "TRIGGER_CATEGORIES",
    "seed_achievements",
    "evaluate_achievements",
    "get_user_achievements",
    "get_achievement_progress",
    "get_all_achievements",
    "get_achievement_stats",
]
