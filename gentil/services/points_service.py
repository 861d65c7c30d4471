"""Points ledger: append-only transactions plus atomically maintained totals."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from flask import current_app, has_app_context
from sqlalchemy import func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from ..models import db
from ..models.points import CATEGORY_COLUMNS, PointAccount, PointTransaction
from ..models.user import User
from ..utils.logger import get_logger
from .errors import (
    ConflictRetryable,
    InvalidArgument,
    NotFound,
    classify_storage_error,
    is_retryable_storage_error,
)
from .levels import calculate_level, next_level_threshold
from .providers import get_level_up_listeners

logger = get_logger(__name__)

POINT_CATEGORIES = tuple(CATEGORY_COLUMNS)
PERIODIC_RESETS = {
    "weekly": ("weekly_points", "last_week_reset"),
    "monthly": ("monthly_points", "last_month_reset"),
}

# action -> (points, category); bonus actions carry their amount explicitly.
POINT_VALUES = {
    "submit_feedback": (10, "feedback"),
    "vote": (2, "voting"),
    "questionnaire_response": (15, "research"),
    "session_participation": (30, "research"),
    "quality_bonus": (5, "quality"),
}

_transactions = PointTransaction.__table__
_accounts = PointAccount.__table__


@dataclass(frozen=True)
class AwardResult:
    transaction: PointTransaction | None
    created: bool
    points_awarded: int
    total_points: int
    level: int
    leveled_up: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "points_awarded": self.points_awarded,
            "total_points": self.total_points,
            "level": self.level,
            "leveled_up": self.leveled_up,
            "transaction": self.transaction.serialize() if self.transaction else None,
        }


@dataclass(frozen=True)
class PointsSummary:
    user_id: int
    total_points: int = 0
    feedback_points: int = 0
    voting_points: int = 0
    research_points: int = 0
    quality_points: int = 0
    bonus_points: int = 0
    weekly_points: int = 0
    monthly_points: int = 0
    level: int = 1
    next_level_threshold: int | None = None
    points_to_next_level: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReconcileResult:
    user_id: int
    repaired: bool
    drift: dict[str, int] = field(default_factory=dict)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _config(name: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(name, default))
    return default


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidArgument("amount must be an integer", amount=repr(amount))
    if amount <= 0:
        raise InvalidArgument("amount must be positive", amount=amount)
    return amount


def _validate_category(category: str) -> str:
    if category not in CATEGORY_COLUMNS:
        raise InvalidArgument(f"unknown point category: {category}", category=category)
    return category


def _require_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFound(f"user {user_id} does not exist", user_id=user_id)
    return user


def _dialect_name() -> str:
    return db.engine.dialect.name


def _row_exists(table, values: dict[str, Any], conflict_columns: list[str]) -> bool:
    criteria = [table.c[column] == values[column] for column in conflict_columns]
    return db.session.execute(select(table.c[conflict_columns[0]]).where(*criteria).limit(1)).first() is not None


def insert_ignoring_conflicts(table, values: dict[str, Any], conflict_columns: list[str]) -> int | None:
    """Insert one row unless it collides on ``conflict_columns``.

    Returns the new primary key, or ``None`` when the row already existed.
    The duplicate check is done by the database so concurrent callers cannot
    both win.
    """

    dialect = _dialect_name()
    if dialect == "postgresql":
        stmt = pg_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
    elif dialect == "sqlite":
        stmt = sqlite_insert(table).values(**values).on_conflict_do_nothing(
            index_elements=conflict_columns
        )
    else:
        try:
            with db.session.begin_nested():
                result = db.session.execute(insert(table).values(**values))
        except IntegrityError:
            if all(values.get(column) is not None for column in conflict_columns) and _row_exists(
                table, values, conflict_columns
            ):
                return None
            raise
        return result.inserted_primary_key[0]
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    return result.inserted_primary_key[0]


def _existing_transaction(user_id: int, action: str, resource_ref: str) -> PointTransaction | None:
    return (
        PointTransaction.query.filter_by(
            user_id=user_id, action=action, resource_ref=resource_ref
        )
        .order_by(PointTransaction.id.asc())
        .first()
    )


def _duplicate_result(user_id: int, action: str, resource_ref: str) -> AwardResult:
    existing = _existing_transaction(user_id, action, resource_ref)
    account = PointAccount.query.filter_by(user_id=user_id).first()
    logger.info(
        "[POINTS] Duplicate award ignored user=%s action=%s ref=%s",
        user_id,
        action,
        resource_ref,
    )
    return AwardResult(
        transaction=existing,
        created=False,
        points_awarded=0,
        total_points=account.total_points if account else 0,
        level=account.level if account else 1,
    )


def _apply_award(
    user_id: int,
    action: str,
    category: str,
    amount: int,
    resource_ref: str | None,
    resource_type: str | None,
    metadata: dict[str, Any] | None,
    now: datetime,
) -> AwardResult | None:
    """One attempt inside a single transaction; ``None`` means duplicate."""

    transaction_id = insert_ignoring_conflicts(
        _transactions,
        {
            "user_id": user_id,
            "category": category,
            "action": action,
            "points": amount,
            "resource_ref": resource_ref,
            "resource_type": resource_type,
            "metadata_json": metadata or {},
            "created_at": now,
        },
        ["user_id", "resource_ref", "action"],
    )
    if transaction_id is None:
        db.session.commit()
        return None

    insert_ignoring_conflicts(
        _accounts,
        {"user_id": user_id, "updated_at": now},
        ["user_id"],
    )

    category_column = CATEGORY_COLUMNS[category]
    db.session.execute(
        update(_accounts)
        .where(_accounts.c.user_id == user_id)
        .values(
            {
                category_column: _accounts.c[category_column] + amount,
                "weekly_points": _accounts.c.weekly_points + amount,
                "monthly_points": _accounts.c.monthly_points + amount,
                "total_points": _accounts.c.total_points + amount,
                "updated_at": now,
            }
        )
    )

    total_points, previous_level = db.session.execute(
        select(_accounts.c.total_points, _accounts.c.level).where(_accounts.c.user_id == user_id)
    ).one()
    new_level = calculate_level(total_points)
    if new_level > previous_level:
        db.session.execute(
            update(_accounts)
            .where(_accounts.c.user_id == user_id, _accounts.c.level < new_level)
            .values(level=new_level)
        )

    db.session.commit()

    transaction = db.session.get(PointTransaction, transaction_id)
    leveled_up = new_level > previous_level
    if leveled_up:
        logger.info("[POINTS] User %s reached level %s", user_id, new_level)
    return AwardResult(
        transaction=transaction,
        created=True,
        points_awarded=amount,
        total_points=int(total_points),
        level=max(new_level, previous_level),
        leveled_up=leveled_up,
    )


def _notify_level_up(user_id: int, result: AwardResult) -> None:
    for listener in get_level_up_listeners():
        try:
            listener(user_id, result)
        except Exception:
            db.session.rollback()
            logger.exception("[POINTS] Level-up listener %r failed for user %s", listener, user_id)


def award_points(
    user_id: int,
    action: str,
    category: str,
    amount: int,
    resource_ref: str | None = None,
    *,
    resource_type: str | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AwardResult:
    """Record a point award and bump the user's totals.

    Calls repeated with the same ``(user_id, action, resource_ref)`` are a
    no-op success (``created=False``). Retryable write conflicts are retried
    up to ``GAMIFICATION_AWARD_MAX_RETRIES`` times before ``ConflictRetryable``
    is raised.
    """

    amount = _validate_amount(amount)
    category = _validate_category(category)
    if not action:
        raise InvalidArgument("action is required")
    if resource_ref is not None:
        resource_ref = str(resource_ref)
    _require_user(user_id)

    now = now or _now()
    max_retries = max(0, _config("GAMIFICATION_AWARD_MAX_RETRIES", 3))
    backoff_ms = max(0, _config("GAMIFICATION_RETRY_BACKOFF_MS", 50))

    attempt = 0
    while True:
        try:
            result = _apply_award(
                user_id, action, category, amount, resource_ref, resource_type, metadata, now
            )
        except IntegrityError as exc:
            db.session.rollback()
            if resource_ref is not None and _existing_transaction(user_id, action, resource_ref):
                return _duplicate_result(user_id, action, resource_ref)
            if db.session.get(User, user_id) is None:
                raise NotFound(f"user {user_id} does not exist", user_id=user_id) from exc
            raise classify_storage_error(exc) from exc
        except OperationalError as exc:
            db.session.rollback()
            if is_retryable_storage_error(exc) and attempt < max_retries:
                attempt += 1
                logger.warning(
                    "[POINTS] Write conflict for user %s (attempt %s/%s), retrying",
                    user_id,
                    attempt,
                    max_retries,
                )
                time.sleep(backoff_ms * attempt / 1000.0)
                continue
            error = classify_storage_error(exc)
            if isinstance(error, ConflictRetryable):
                logger.error("[POINTS] Giving up on award for user %s after %s retries", user_id, attempt)
            raise error from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise classify_storage_error(exc) from exc

        if result is None:
            return _duplicate_result(user_id, action, resource_ref)

        logger.info(
            "[POINTS] Awarded %s points to user %s action=%s category=%s ref=%s",
            amount,
            user_id,
            action,
            category,
            resource_ref,
        )
        if result.leveled_up:
            _notify_level_up(user_id, result)
        return result


def award_action(
    user_id: int,
    action: str,
    resource_ref: str | None = None,
    *,
    multiplier: int = 1,
    resource_type: str | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> AwardResult:
    """Award the standard amount for a known contribution ``action``."""

    try:
        points, category = POINT_VALUES[action]
    except KeyError as exc:
        raise InvalidArgument(f"unknown point action: {action}", action=action) from exc
    return award_points(
        user_id,
        action,
        category,
        points * max(1, int(multiplier)),
        resource_ref,
        resource_type=resource_type,
        metadata=metadata,
        now=now,
    )


def get_user_points(user_id: int) -> PointsSummary:
    _require_user(user_id)
    account = PointAccount.query.filter_by(user_id=user_id).first()
    if account is None:
        threshold = next_level_threshold(1)
        return PointsSummary(
            user_id=user_id,
            next_level_threshold=threshold,
            points_to_next_level=threshold,
        )

    threshold = next_level_threshold(account.level)
    return PointsSummary(
        user_id=user_id,
        total_points=account.total_points,
        feedback_points=account.feedback_points,
        voting_points=account.voting_points,
        research_points=account.research_points,
        quality_points=account.quality_points,
        bonus_points=account.bonus_points,
        weekly_points=account.weekly_points,
        monthly_points=account.monthly_points,
        level=account.level,
        next_level_threshold=threshold,
        points_to_next_level=max(0, threshold - account.total_points) if threshold is not None else None,
    )


def get_point_history(user_id: int, *, page: int = 1, per_page: int = 50):
    """Newest-first page of the user's transactions (a Flask-SQLAlchemy ``Pagination``)."""

    if page < 1 or per_page < 1:
        raise InvalidArgument("page and per_page must be positive")
    _require_user(user_id)
    query = (
        db.select(PointTransaction)
        .filter_by(user_id=user_id)
        .order_by(PointTransaction.created_at.desc(), PointTransaction.id.desc())
    )
    return db.paginate(query, page=page, per_page=per_page, max_per_page=100, error_out=False)


def reset_periodic_points(period: str, *, now: datetime | None = None) -> int:
    """Zero the rolling weekly or monthly column on every account."""

    try:
        column, stamp_column = PERIODIC_RESETS[period]
    except KeyError as exc:
        raise InvalidArgument(f"unknown reset period: {period}", period=period) from exc

    now = now or _now()
    try:
        result = db.session.execute(update(_accounts).values({column: 0, stamp_column: now}))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("[POINTS] %s reset failed", period)
        raise classify_storage_error(exc) from exc

    logger.info("[POINTS] %s reset applied to %s accounts", period, result.rowcount)
    return int(result.rowcount or 0)


def reconcile_account(user_id: int) -> ReconcileResult:
    """Rebuild category and all-time totals from the transaction ledger.

    Rolling weekly/monthly totals are left alone; they are windows, not
    ledger sums.
    """

    _require_user(user_id)
    rows = (
        db.session.query(PointTransaction.category, func.coalesce(func.sum(PointTransaction.points), 0))
        .filter(PointTransaction.user_id == user_id)
        .group_by(PointTransaction.category)
        .all()
    )
    expected = {column: 0 for column in CATEGORY_COLUMNS.values()}
    for category, total in rows:
        column = CATEGORY_COLUMNS.get(category)
        if column:
            expected[column] += int(total)
    expected["total_points"] = sum(int(total) for _category, total in rows)

    account = PointAccount.query.filter_by(user_id=user_id).first()
    if account is None:
        if expected["total_points"] == 0:
            return ReconcileResult(user_id=user_id, repaired=False)
        account = PointAccount(user_id=user_id)
        db.session.add(account)
        db.session.flush()

    drift = {
        column: value - int(getattr(account, column) or 0)
        for column, value in expected.items()
        if value != int(getattr(account, column) or 0)
    }
    expected_level = calculate_level(expected["total_points"])
    if not drift and account.level == expected_level:
        db.session.rollback()
        return ReconcileResult(user_id=user_id, repaired=False)

    for column, value in expected.items():
        setattr(account, column, value)
    account.level = expected_level
    account.updated_at = _now()
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise classify_storage_error(exc) from exc

    logger.warning("[POINTS] Reconciled account for user %s drift=%s", user_id, drift)
    return ReconcileResult(user_id=user_id, repaired=True, drift=drift)


def get_points_stats() -> dict[str, Any]:
    def _top(column) -> dict[str, Any] | None:
        row = (
            db.session.query(User, column)
            .join(PointAccount, PointAccount.user_id == User.id)
            .filter(column > 0)
            .order_by(column.desc(), User.id.asc())
            .first()
        )
        if row is None:
            return None
        user, points = row
        return {"user_id": user.id, "display_name": user.public_name, "points": int(points)}

    return {
        "total_participants": PointAccount.query.count(),
        "top_weekly": _top(PointAccount.weekly_points),
        "top_monthly": _top(PointAccount.monthly_points),
        "top_all_time": _top(PointAccount.total_points),
    }


__all__ = [
    "AwardResult",
    "PointsSummary",
    "ReconcileResult",
    "POINT_CATEGORIES",
    "POINT_VALUES",
    "award_points",
    "award_action",
    "get_user_points",
    "get_point_history",
    "reset_periodic_points",
    "reconcile_account",
    "get_points_stats",
    "insert_ignoring_conflicts",
]
