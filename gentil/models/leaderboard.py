"""Materialized leaderboard snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from . import db

LEADERBOARD_PERIODS = ("weekly", "monthly", "all_time")
LEADERBOARD_CATEGORIES = ("overall", "feedback", "voting", "research", "quality")


class LeaderboardSnapshot(db.Model):
    __tablename__ = "leaderboard_snapshots"
    __table_args__ = (
        db.Index("ix_leaderboard_snapshots_lookup", "period", "category", "is_current"),
    )

    id = db.Column(db.Integer, primary_key=True)
    period = db.Column(db.String(20), nullable=False)
    category = db.Column(db.String(20), nullable=False)
    generated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    entry_count = db.Column(db.Integer, nullable=False, default=0, server_default="0")
    is_current = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("false"))

    entries = db.relationship(
        "LeaderboardEntry",
        backref="snapshot",
        order_by="LeaderboardEntry.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def serialize(self, *, limit: int | None = None) -> dict[str, Any]:
        entries = self.entries if limit is None else self.entries[:limit]
        return {
            "period": self.period,
            "category": self.category,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "entry_count": self.entry_count,
            "entries": [entry.serialize() for entry in entries],
        }

    def __repr__(self) -> str:  # pragma: no cover - helper
        return (
            f"<LeaderboardSnapshot id={self.id} {self.period}/{self.category} "
            f"current={self.is_current}>"
        )


class LeaderboardEntry(db.Model):
    __tablename__ = "leaderboard_entries"
    __table_args__ = (
        db.Index("ix_leaderboard_entries_snapshot_user", "snapshot_id", "user_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    snapshot_id = db.Column(
        db.Integer,
        db.ForeignKey("leaderboard_snapshots.id", ondelete="CASCADE"),
        nullable=False,
    )
    position = db.Column(db.Integer, nullable=False)
    user_id = db.Column(db.Integer, nullable=False)
    rank = db.Column(db.Integer, nullable=False)
    points = db.Column(db.Integer, nullable=False)
    level = db.Column(db.Integer, nullable=False, default=1)
    display_name = db.Column(db.String(120), nullable=True)
    avatar_url = db.Column(db.String(512), nullable=True)

    def serialize(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "display_name": self.display_name or "Anonymous",
            "avatar_url": self.avatar_url,
            "points": self.points,
            "level": self.level,
        }


__all__ = [
    "LeaderboardSnapshot",
    "LeaderboardEntry",
    "LEADERBOARD_PERIODS",
    "LEADERBOARD_CATEGORIES",
]
