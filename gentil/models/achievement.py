"""Achievement catalog and per-user achievement progress."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from . import db

ACHIEVEMENT_CATEGORIES = ("streak", "milestone", "special")


class AchievementDefinition(db.Model):
    __tablename__ = "achievements"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")
    category = db.Column(db.String(20), nullable=False, index=True)
    requirement = db.Column(db.JSON, nullable=False)
    points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    hidden = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("false"))

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "requirement": self.requirement,
            "points": self.points,
            "hidden": bool(self.hidden),
        }

    def __repr__(self) -> str:  # pragma: no cover - helper
        return f"<AchievementDefinition {self.key}>"


class UserAchievementProgress(db.Model):
    """Progress payload shaped like the achievement requirement."""

    __tablename__ = "user_achievements"
    __table_args__ = (
        db.UniqueConstraint("user_id", "achievement_id", name="uq_user_achievements_user_achievement"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    achievement_id = db.Column(
        db.Integer, db.ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False
    )
    progress = db.Column(db.JSON, nullable=True)
    earned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    achievement = db.relationship("AchievementDefinition", lazy="joined")

    @property
    def is_earned(self) -> bool:
        return self.earned_at is not None

    def serialize(self) -> dict[str, Any]:
        return {
            "achievement": self.achievement.serialize() if self.achievement else None,
            "progress": self.progress or {},
            "earned": self.is_earned,
            "earned_at": self.earned_at.isoformat() if self.earned_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover - helper
        return f"<UserAchievementProgress user={self.user_id} achievement={self.achievement_id}>"


__all__ = ["AchievementDefinition", "UserAchievementProgress", "ACHIEVEMENT_CATEGORIES"]
