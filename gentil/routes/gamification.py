"""Read-only JSON API over points, badges, achievements and leaderboards."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from ..extensions import cache
from ..services.achievement_service import get_achievement_progress, get_all_achievements
from ..services.badge_service import get_all_badges, get_badge_progress
from ..services.errors import InvalidArgument
from ..services.leaderboard_service import get_leaderboard, get_user_position
from ..services.points_service import get_point_history, get_user_points
from ..utils.auth import get_current_user

bp = Blueprint("gamification", __name__, url_prefix="/api/gamification")

STATUS_CHOICES = ("earned", "in_progress", "all")


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidArgument(f"{name} must be an integer", **{name: raw}) from exc


def _status_arg() -> str:
    status = (request.args.get("status") or "all").strip().lower()
    if status not in STATUS_CHOICES:
        raise InvalidArgument(f"unknown status: {status}", status=status)
    return status


def _filter_status(rows, status: str):
    if status == "earned":
        return [row for row in rows if row.is_earned]
    if status == "in_progress":
        return [row for row in rows if not row.is_earned]
    return rows


def _auth_required():
    return jsonify({"ok": False, "error": "auth_required"}), 401


@bp.get("/points")
def points():
    user = get_current_user()
    if not user:
        return _auth_required()

    payload = {"ok": True, "points": get_user_points(user.id).to_dict()}
    if request.args.get("history") in {"1", "true", "yes"}:
        page = get_point_history(
            user.id,
            page=_int_arg("page", 1),
            per_page=_int_arg("per_page", 20),
        )
        payload["history"] = {
            "items": [transaction.serialize() for transaction in page.items],
            "page": page.page,
            "per_page": page.per_page,
            "total": page.total,
            "has_next": page.has_next,
        }
    return jsonify(payload)


@bp.get("/badges")
def badges():
    user = get_current_user()
    if not user:
        return _auth_required()

    status = _status_arg()
    rows = get_badge_progress(user.id, request.args.get("category") or None)
    return jsonify({"ok": True, "badges": [row.serialize() for row in _filter_status(rows, status)]})


@bp.get("/badges/catalog")
@cache.cached(timeout=300, query_string=True)
def badge_catalog():
    catalog = get_all_badges(request.args.get("category") or None)
    return jsonify({"ok": True, "badges": [badge.serialize() for badge in catalog]})


@bp.get("/achievements")
def achievements():
    user = get_current_user()
    if not user:
        return _auth_required()

    status = _status_arg()
    rows = get_achievement_progress(user.id, request.args.get("category") or None)
    return jsonify(
        {"ok": True, "achievements": [row.serialize() for row in _filter_status(rows, status)]}
    )


@bp.get("/achievements/catalog")
def achievement_catalog():
    user = get_current_user()
    catalog = get_all_achievements(user_id=user.id if user else None)
    return jsonify({"ok": True, "achievements": [achievement.serialize() for achievement in catalog]})


@bp.get("/leaderboard")
def leaderboard():
    period = request.args.get("period", "weekly")
    category = request.args.get("category", "overall")

    if request.args.get("view") == "nearby":
        user = get_current_user()
        if not user:
            return _auth_required()
        position = get_user_position(
            user.id,
            period,
            category,
            _int_arg("range", current_app.config.get("LEADERBOARD_NEARBY_RANGE", 5)),
        )
        return jsonify({"ok": True, **position})

    limit = _int_arg("limit", current_app.config.get("LEADERBOARD_DEFAULT_LIMIT", 50))
    entries = get_leaderboard(period, category, min(limit, 100))
    return jsonify({"ok": True, "period": period, "category": category, "entries": entries})


@bp.get("/leaderboard/me")
def leaderboard_me():
    user = get_current_user()
    if not user:
        return _auth_required()

    position = get_user_position(
        user.id,
        request.args.get("period", "weekly"),
        request.args.get("category", "overall"),
    )
    return jsonify({"ok": True, **position})
