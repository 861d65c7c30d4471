"""Helpers for persisting scheduled job runs."""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

from flask import current_app, has_app_context

from ..models import db
from ..models.cron_run import CronRun


def sanitize_json_value(value: Any) -> Any:
    """Recursively convert ``value`` into something the JSON column accepts."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): sanitize_json_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_json_value(item) for item in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.hex()
    return value


def _resolve_retention_days() -> int:
    if has_app_context():
        return int(current_app.config.get("CRON_RUN_RETENTION_DAYS", 30))
    return 30


def _purge_old_runs() -> None:
    retention_days = _resolve_retention_days()
    if retention_days <= 0:
        return
    cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
    db.session.execute(CronRun.__table__.delete().where(CronRun.created_at < cutoff))


def log_cron_run(
    job_type: str,
    *,
    ok: bool,
    duration_ms: float | None = None,
    payload: Any = None,
    reason: str | None = None,
    error: BaseException | None = None,
) -> CronRun:
    """Persist one job run and prune runs past the retention window."""
    run = CronRun(
        job_type=job_type,
        ok=ok,
        reason=reason,
        duration_ms=duration_ms,
        payload=sanitize_json_value(payload) if payload is not None else None,
        error_type=type(error).__name__ if error is not None else None,
        error_message=str(error)[:2000] if error is not None else None,
    )
    try:
        db.session.add(run)
        db.session.commit()
        _purge_old_runs()
        db.session.commit()
        return run
    except Exception:
        db.session.rollback()
        raise


__all__ = ["log_cron_run", "sanitize_json_value"]
