import os
from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from gentil import create_app
from gentil.models import db
from gentil.models.event import Event
from gentil.models.points import PointAccount
from gentil.models.user import User
from gentil.services import GamificationService, record_contribution
from gentil.services.achievement_service import seed_achievements
from gentil.services.badge_service import seed_badges
from gentil.services.errors import InvalidArgument

NOW = datetime(2026, 3, 11, 10, 0, tzinfo=timezone.utc)


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
            "GAMIFICATION_EARLY_USER_LIMIT": 0,
        }
    )

    with app.app_context():
        db.create_all()
        seed_badges()
        seed_achievements()
        yield app
        db.session.remove()
        db.drop_all()


def _make_user():
    user = User(email="member@example.com")
    db.session.add(user)
    db.session.commit()
    return user.id


def test_first_feedback_awards_points_and_first_steps(app):
    user_id = _make_user()

    outcome = record_contribution(user_id, "submit_feedback", "fb_1", now=NOW)

    assert outcome.award.created is True
    assert outcome.award.points_awarded == 10
    assert outcome.badges == []
    assert [a.key for a in outcome.achievements] == ["special_first_feedback"]
    assert Event.query.filter_by(user_id=user_id).count() == 1
    assert PointAccount.query.filter_by(user_id=user_id).one().total_points == 10 + 25


def test_repeated_contribution_is_a_no_op(app):
    user_id = _make_user()
    record_contribution(user_id, "submit_feedback", "fb_1", now=NOW)

    outcome = record_contribution(user_id, "submit_feedback", "fb_1", now=NOW)

    assert outcome.award.created is False
    assert outcome.achievements == []
    assert Event.query.filter_by(user_id=user_id).count() == 1
    assert PointAccount.query.filter_by(user_id=user_id).one().total_points == 35


def test_tenth_feedback_earns_category_and_engagement_badges(app):
    user_id = _make_user()
    for index in range(9):
        record_contribution(user_id, "submit_feedback", f"fb_{index}", now=NOW)

    outcome = record_contribution(user_id, "submit_feedback", "fb_9", now=NOW)

    assert [badge.key for badge in outcome.badges] == ["feedback_bronze", "engagement_bronze"]
    account = PointAccount.query.filter_by(user_id=user_id).one()
    assert account.feedback_points == 100
    assert account.bonus_points == 25 + 50 + 25


def test_quality_bonus_only_touches_engagement_badges(app):
    user_id = _make_user()

    outcome = GamificationService().process(user_id, "quality_bonus", "fb_1", now=NOW)

    assert outcome.award.transaction.category == "quality"
    assert outcome.badges == []


def test_failures_are_swallowed_and_rolled_back(app):
    assert record_contribution(404, "submit_feedback", "fb_1") is None
    user_id = _make_user()
    assert record_contribution(user_id, "teleport", "x") is None
    assert Event.query.count() == 0

    with pytest.raises(InvalidArgument):
        GamificationService().process(user_id, "teleport", "x")


def test_custom_counter_is_used_for_badges(app):
    class GenerousCounter:
        def count(self, user_id, category):
            return 100

        def count_action(self, user_id, action):
            return 0

    user_id = _make_user()
    service = GamificationService(counter=GenerousCounter())

    outcome = service.record_contribution(user_id, "vote", "v_1", now=NOW)

    assert [badge.key for badge in outcome.badges] == [
        "voting_bronze",
        "voting_silver",
        "voting_gold",
        "engagement_bronze",
        "engagement_silver",
        "engagement_gold",
    ]


def test_registered_providers_are_picked_up(app):
    class NoActivity:
        def active_days(self, user_id, start, end):
            return set()

    class ZeroCounter:
        def count(self, user_id, category):
            return 0

        def count_action(self, user_id, action):
            return 0

    app.extensions["gamification"]["contribution_counter"] = ZeroCounter()
    app.extensions["gamification"]["activity_log"] = NoActivity()
    user_id = _make_user()

    outcome = record_contribution(user_id, "submit_feedback", "fb_1", now=NOW)

    assert outcome.achievements == []
