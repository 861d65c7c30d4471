"""Internal-only endpoints for scheduled jobs."""

from __future__ import annotations

import hmac
from time import perf_counter

from flask import Blueprint, current_app, jsonify, request

from ..models.leaderboard import LEADERBOARD_CATEGORIES, LEADERBOARD_PERIODS
from ..services.errors import GamificationError
from ..services.leaderboard_service import generate_all_snapshots
from ..services.points_service import reset_periodic_points
from ..services.runlog_service import log_cron_run

internal_bp = Blueprint("internal", __name__, url_prefix="/internal")


def _cron_authorized() -> bool:
    expected = current_app.config.get("CRON_SECRET") or ""
    provided = request.headers.get("X-Cron-Key") or request.args.get("key") or ""
    if not expected:
        current_app.logger.warning("[CRON] CRON_SECRET not configured; rejecting request")
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def _run_job(job_type: str, job, **payload):
    """Run ``job`` and record the outcome as a ``CronRun``."""

    started = perf_counter()
    try:
        result = job()
    except GamificationError as exc:
        duration_ms = (perf_counter() - started) * 1000
        current_app.logger.error("[CRON] %s failed: %s", job_type, exc.message)
        log_cron_run(job_type, ok=False, duration_ms=duration_ms, payload=payload, reason=exc.code, error=exc)
        return jsonify(exc.to_dict()), exc.status_code

    duration_ms = (perf_counter() - started) * 1000
    payload["result"] = result
    run = log_cron_run(job_type, ok=True, duration_ms=duration_ms, payload=payload, reason="completed")
    current_app.logger.info("[CRON] %s completed in %.1f ms", job_type, duration_ms)
    return jsonify({"ok": True, "job_type": job_type, "result": result, "run_id": run.id})


@internal_bp.post("/cron/reset-points/<period>")
def cron_reset_points(period: str):
    if not _cron_authorized():
        return jsonify({"ok": False, "error": "forbidden"}), 403
    return _run_job(
        "reset_points",
        lambda: {"accounts_reset": reset_periodic_points(period)},
        period=period,
    )


@internal_bp.post("/cron/leaderboards")
def cron_leaderboards():
    if not _cron_authorized():
        return jsonify({"ok": False, "error": "forbidden"}), 403

    period = request.args.get("period")
    category = request.args.get("category")
    periods = (period,) if period else LEADERBOARD_PERIODS
    categories = (category,) if category else LEADERBOARD_CATEGORIES
    return _run_job(
        "leaderboards",
        lambda: generate_all_snapshots(periods, categories),
        period=period,
        category=category,
    )
