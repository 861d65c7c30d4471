"""Point ledger tables: one running account per user plus the immutable journal."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from . import db

# Columns on ``PointAccount`` that hold per-category cumulative totals.
CATEGORY_COLUMNS = {
    "feedback": "feedback_points",
    "voting": "voting_points",
    "research": "research_points",
    "quality": "quality_points",
    "bonus": "bonus_points",
}

PERIOD_COLUMNS = {
    "weekly": "weekly_points",
    "monthly": "monthly_points",
    "all_time": "total_points",
}


class PointAccount(db.Model):
    """Aggregated point totals for a user.

    Only the points service writes to this table, always through atomic
    ``col = col + :amount`` updates.
    """

    __tablename__ = "point_accounts"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    feedback_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    voting_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    research_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    quality_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    bonus_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    weekly_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    monthly_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    total_points = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    level = db.Column(db.Integer, nullable=False, default=1, server_default="1")
    last_week_reset = db.Column(db.DateTime(timezone=True), nullable=True)
    last_month_reset = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    user = db.relationship(
        "User",
        backref=db.backref("point_account", uselist=False, cascade="all, delete-orphan"),
    )

    __table_args__ = (
        db.CheckConstraint("total_points >= 0", name="ck_point_accounts_total_non_negative"),
        db.CheckConstraint("weekly_points >= 0", name="ck_point_accounts_weekly_non_negative"),
        db.CheckConstraint("monthly_points >= 0", name="ck_point_accounts_monthly_non_negative"),
        db.CheckConstraint("level >= 1", name="ck_point_accounts_level_positive"),
    )

    def __repr__(self) -> str:  # pragma: no cover - helper
        return f"<PointAccount user={self.user_id} total={self.total_points} level={self.level}>"


class PointTransaction(db.Model):
    """Append-only journal entry; the audit trail totals are reconciled from."""

    __tablename__ = "point_transactions"
    __table_args__ = (
        # NULL resource_ref never collides, so only referenced awards are deduplicated.
        db.UniqueConstraint(
            "user_id", "resource_ref", "action", name="uq_point_transactions_user_ref_action"
        ),
        db.Index("ix_point_transactions_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category = db.Column(db.String(20), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    points = db.Column(db.Integer, nullable=False)
    resource_ref = db.Column(db.String(128), nullable=True)
    resource_type = db.Column(db.String(50), nullable=True)
    metadata_json = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "action": self.action,
            "points": self.points,
            "resource_ref": self.resource_ref,
            "resource_type": self.resource_type,
            "metadata": self.metadata_json or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:  # pragma: no cover - helper
        return f"<PointTransaction user={self.user_id} {self.action} {self.points:+d}>"


__all__ = ["PointAccount", "PointTransaction", "CATEGORY_COLUMNS", "PERIOD_COLUMNS"]
