"""Single entry point action handlers call after a contribution is saved."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from ..models import db
from ..models.achievement import AchievementDefinition
from ..models.badge import BADGE_CATEGORIES, BadgeDefinition
from ..models.event import Event
from ..utils.logger import get_logger
from .achievement_service import evaluate_achievements
from .badge_service import evaluate_badges
from .errors import GamificationError
from .points_service import POINT_VALUES, AwardResult, award_action, insert_ignoring_conflicts
from .providers import ActivityLog, ContributionCounter

logger = get_logger(__name__)


@dataclass
class ContributionOutcome:
    award: AwardResult
    badges: list[BadgeDefinition] = field(default_factory=list)
    achievements: list[AchievementDefinition] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "award": self.award.to_dict(),
            "badges": [badge.serialize() for badge in self.badges],
            "achievements": [achievement.serialize() for achievement in self.achievements],
        }


class GamificationService:
    """High level API wiring the ledger and both evaluators together."""

    def __init__(
        self,
        counter: ContributionCounter | None = None,
        activity_log: ActivityLog | None = None,
    ) -> None:
        self.counter = counter
        self.activity_log = activity_log

    def log_event(self, user_id: int, action: str, resource_ref: str | None, now: datetime) -> bool:
        """Append to the activity log; ``False`` when the event was already there."""

        event_id = insert_ignoring_conflicts(
            Event.__table__,
            {
                "user_id": user_id,
                "event_type": action,
                "resource_ref": resource_ref,
                "timestamp": now,
            },
            ["user_id", "event_type", "resource_ref"],
        )
        return event_id is not None

    def _badge_categories(self, action: str) -> list[str]:
        _points, category = POINT_VALUES[action]
        categories = [category] if category in BADGE_CATEGORIES else []
        categories.append("engagement")
        return categories

    def process(
        self,
        user_id: int,
        action: str,
        resource_ref: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ContributionOutcome:
        """Run the full pipeline and let engine errors propagate."""

        now = now or datetime.now(timezone.utc)
        if resource_ref is not None:
            resource_ref = str(resource_ref)

        award = award_action(user_id, action, resource_ref, now=now)
        self.log_event(user_id, action, resource_ref, now)
        db.session.commit()

        outcome = ContributionOutcome(award=award)
        for category in self._badge_categories(action):
            outcome.badges.extend(evaluate_badges(user_id, category, counter=self.counter, now=now))
        outcome.achievements = evaluate_achievements(
            user_id,
            POINT_VALUES[action][1],
            counter=self.counter,
            activity_log=self.activity_log,
            now=now,
        )
        return outcome

    def record_contribution(
        self,
        user_id: int,
        action: str,
        resource_ref: str | None = None,
        *,
        now: datetime | None = None,
    ) -> ContributionOutcome | None:
        """Best effort wrapper around :meth:`process`.

        The user's own action has already been committed, so a gamification
        failure is logged and rolled back but never raised.
        """

        try:
            return self.process(user_id, action, resource_ref, now=now)
        except (GamificationError, SQLAlchemyError) as exc:
            db.session.rollback()
            logger.warning(
                "[GAMIFICATION] Skipped rewards for user %s action=%s ref=%s: %s",
                user_id,
                action,
                resource_ref,
                exc,
            )
            return None


def record_contribution(
    user_id: int,
    action: str,
    resource_ref: str | None = None,
    *,
    now: datetime | None = None,
) -> ContributionOutcome | None:
    return GamificationService().record_contribution(user_id, action, resource_ref, now=now)


__all__ = ["ContributionOutcome", "GamificationService", "record_contribution"]
