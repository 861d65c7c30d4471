"""Database model for scheduled job run logs."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from . import db


class CronRun(db.Model):
    __tablename__ = "cron_runs"

    id = db.Column(db.Integer, primary_key=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )
    job_type = db.Column(db.String(32), nullable=False, index=True)
    ok = db.Column(db.Boolean, nullable=False, default=False, server_default=db.text("false"))
    reason = db.Column(db.String(255), nullable=True)
    duration_ms = db.Column(db.Float, nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    error_type = db.Column(db.String(120), nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    def serialize(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "job_type": self.job_type,
            "ok": bool(self.ok),
            "reason": self.reason,
            "duration_ms": self.duration_ms,
            "payload": self.payload,
            "error_type": self.error_type,
            "error_message": self.error_message,
        }

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return (
            f"<CronRun id={self.id} job_type={self.job_type!r} ok={self.ok} "
            f"created_at={self.created_at}>"
        )


__all__ = ["CronRun"]
