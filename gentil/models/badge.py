"""Badge catalog and per-user badge progress."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from . import db

BADGE_TIERS = ("bronze", "silver", "gold", "platinum")
BADGE_CATEGORIES = ("feedback", "voting", "research", "engagement")


class BadgeDefinition(db.Model):
    __tablename__ = "badges"
    __table_args__ = (
        db.CheckConstraint("requirement > 0", name="ck_badges_requirement_positive"),
        db.CheckConstraint("points >= 0", name="ck_badges_points_non_negative"),
    )

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")
    category = db.Column(db.String(20), nullable=False, index=True)
    tier = db.Column(db.String(20), nullable=False)
    requirement = db.Column(db.Integer, nullable=False)
    points = db.Column(db.Integer, nullable=False, default=0, server_default="0")

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "tier": self.tier,
            "requirement": self.requirement,
            "points": self.points,
        }

    def __repr__(self) -> str:  # pragma: no cover - helper
        return f"<BadgeDefinition {self.key}>"


class UserBadgeProgress(db.Model):
    """Progress toward a badge; frozen once ``earned_at`` is set."""

    __tablename__ = "user_badges"
    __table_args__ = (
        db.UniqueConstraint("user_id", "badge_id", name="uq_user_badges_user_badge"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    badge_id = db.Column(db.Integer, db.ForeignKey("badges.id", ondelete="CASCADE"), nullable=False)
    progress = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    earned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    badge = db.relationship("BadgeDefinition", lazy="joined")

    @property
    def is_earned(self) -> bool:
        return self.earned_at is not None

    def serialize(self) -> dict[str, Any]:
        requirement = self.badge.requirement if self.badge else 0
        return {
            "badge": self.badge.serialize() if self.badge else None,
            "progress": self.progress,
            "progress_percent": min(100.0, (self.progress / requirement) * 100) if requirement else 0.0,
            "earned": self.is_earned,
            "earned_at": self.earned_at.isoformat() if self.earned_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover - helper
        return f"<UserBadgeProgress user={self.user_id} badge={self.badge_id} progress={self.progress}>"


__all__ = ["BadgeDefinition", "UserBadgeProgress", "BADGE_TIERS", "BADGE_CATEGORIES"]
