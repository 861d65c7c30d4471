import os
from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from gentil import create_app
from gentil.models import db
from gentil.models.badge import BadgeDefinition, UserBadgeProgress
from gentil.models.event import Event
from gentil.models.points import PointAccount, PointTransaction
from gentil.models.user import User
from gentil.services.badge_service import (
    DEFAULT_BADGES,
    evaluate_badges,
    get_all_badges,
    get_badge_progress,
    get_badge_stats,
    get_user_badges,
    seed_badges,
)
from gentil.services.errors import InvalidArgument, NotFound
from gentil.services.points_service import award_points


class FixedCounter:
    def __init__(self, value):
        self.value = value

    def count(self, user_id, category):
        return self.value

    def count_action(self, user_id, action):
        return self.value


@pytest.fixture
def app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_ENGINE_OPTIONS": {
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            },
        }
    )

    with app.app_context():
        db.create_all()
        seed_badges()
        yield app
        db.session.remove()
        db.drop_all()


def _make_user(email="member@example.com"):
    user = User(email=email)
    db.session.add(user)
    db.session.commit()
    return user.id


def _log_feedback(user_id, count):
    for index in range(count):
        db.session.add(
            Event(
                user_id=user_id,
                event_type="submit_feedback",
                resource_ref=f"fb_{index}",
                timestamp=datetime(2026, 3, 1, 12, index, tzinfo=timezone.utc),
            )
        )
    db.session.commit()


def _badge(key):
    return BadgeDefinition.query.filter_by(key=key).one()


def test_seed_is_idempotent(app):
    assert BadgeDefinition.query.count() == len(DEFAULT_BADGES) == 16
    assert seed_badges() == 0
    assert BadgeDefinition.query.count() == 16

    bronze = _badge("feedback_bronze")
    assert bronze.requirement == 10
    assert bronze.points == 50
    assert _badge("research_platinum").requirement == 500


def test_bronze_badge_is_awarded_exactly_once(app):
    user_id = _make_user()
    _log_feedback(user_id, 10)

    earned = evaluate_badges(user_id, "feedback")
    assert [badge.key for badge in earned] == ["feedback_bronze"]

    assert evaluate_badges(user_id, "feedback") == []

    account = PointAccount.query.filter_by(user_id=user_id).one()
    assert account.bonus_points == 50
    assert account.total_points == 50
    assert PointTransaction.query.filter_by(user_id=user_id, action="badge_earned").count() == 1


def test_progress_tracks_count_and_lower_tiers_come_first(app):
    user_id = _make_user()

    earned = evaluate_badges(user_id, "voting", counter=FixedCounter(60))

    assert [badge.key for badge in earned] == ["voting_bronze", "voting_silver"]
    progress = {row.badge.key: row for row in get_badge_progress(user_id, "voting")}
    assert progress["voting_gold"].progress == 60
    assert progress["voting_gold"].is_earned is False
    assert progress["voting_platinum"].serialize()["progress_percent"] == pytest.approx(12.0)


def test_progress_never_moves_backwards(app):
    user_id = _make_user()
    evaluate_badges(user_id, "research", counter=FixedCounter(40))

    evaluate_badges(user_id, "research", counter=FixedCounter(5))

    silver = (
        UserBadgeProgress.query.join(BadgeDefinition)
        .filter(UserBadgeProgress.user_id == user_id, BadgeDefinition.key == "research_silver")
        .one()
    )
    assert silver.progress == 40


def test_earned_badge_keeps_its_earned_timestamp(app):
    user_id = _make_user()
    first_time = datetime(2026, 3, 1, tzinfo=timezone.utc)
    evaluate_badges(user_id, "feedback", counter=FixedCounter(10), now=first_time)

    evaluate_badges(
        user_id, "feedback", counter=FixedCounter(20), now=datetime(2026, 4, 1, tzinfo=timezone.utc)
    )

    [earned] = get_user_badges(user_id)
    assert earned.badge.key == "feedback_bronze"
    assert earned.earned_at.replace(tzinfo=None) == first_time.replace(tzinfo=None)
    assert earned.progress == 10


def test_bonus_paid_before_a_crash_is_not_paid_twice(app):
    user_id = _make_user()
    bronze = _badge("engagement_bronze")
    award_points(user_id, "badge_earned", "bonus", bronze.points, str(bronze.id), resource_type="badge")

    earned = evaluate_badges(user_id, "engagement", counter=FixedCounter(10))

    assert [badge.key for badge in earned] == ["engagement_bronze"]
    assert PointAccount.query.filter_by(user_id=user_id).one().total_points == bronze.points


def test_invalid_category_and_unknown_user(app):
    user_id = _make_user()

    with pytest.raises(InvalidArgument):
        evaluate_badges(user_id, "quality")
    with pytest.raises(NotFound):
        evaluate_badges(12345, "feedback")


def test_catalog_and_stats(app):
    alice = _make_user("alice@example.com")
    bob = _make_user("bob@example.com")
    evaluate_badges(alice, "feedback", counter=FixedCounter(10))
    evaluate_badges(bob, "feedback", counter=FixedCounter(10))
    evaluate_badges(bob, "voting", counter=FixedCounter(10))

    assert [badge.tier for badge in get_all_badges("feedback")] == ["bronze", "silver", "gold", "platinum"]

    stats = get_badge_stats()
    assert stats["total_badges"] == 16
    assert stats["earned_badges"] == 3
    assert stats["most_earned"][0]["badge"]["key"] == "feedback_bronze"
    assert stats["most_earned"][0]["count"] == 2


def test_reevaluation_works_without_upsert_support(app, monkeypatch):
    monkeypatch.setattr("gentil.services.points_service._dialect_name", lambda: "mysql")
    user_id = _make_user()

    assert [b.key for b in evaluate_badges(user_id, "voting", counter=FixedCounter(3))] == []
    earned = evaluate_badges(user_id, "voting", counter=FixedCounter(10))
    assert [b.key for b in earned] == ["voting_bronze"]
    assert evaluate_badges(user_id, "voting", counter=FixedCounter(12)) == []

    progress = UserBadgeProgress.query.filter_by(user_id=user_id, badge_id=_badge("voting_silver").id).one()
    assert progress.progress == 12
    assert UserBadgeProgress.query.filter_by(user_id=user_id).count() == 4
