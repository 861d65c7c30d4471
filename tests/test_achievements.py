import os
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from gentil import create_app
from gentil.models import db
from gentil.models.achievement import AchievementDefinition, UserAchievementProgress
from gentil.models.event import Event
from gentil.models.points import PointAccount, PointTransaction
from gentil.models.user import User
from gentil.services.achievement_service import (
    DEFAULT_ACHIEVEMENTS,
    AchievementSeed,
    evaluate_achievements,
    get_achievement_progress,
    get_achievement_stats,
    get_all_achievements,
    get_user_achievements,
    seed_achievements,
)
from gentil.services.badge_service import BadgeSeed, evaluate_badges, seed_badges
from gentil.services.errors import InvalidArgument, NotFound
from gentil.services.points_service import award_points

NOW = datetime(2026, 3, 11, 15, 30, tzinfo=timezone.utc)


class DaysLog:
    def __init__(self, days):
        self.days = set(days)

    def active_days(self, user_id, start, end):
        return {day for day in self.days if start <= day <= end}


class FixedCounter:
    def __init__(self, value):
        self.value = value

    def count(self, user_id, category):
        return self.value

    def count_action(self, user_id, action):
        return self.value


def _create_app(**overrides):
    config = {
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "SQLALCHEMY_ENGINE_OPTIONS": {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        },
    }
    config.update(overrides)
    return create_app(config)


@pytest.fixture
def app():
    app = _create_app(GAMIFICATION_EARLY_USER_LIMIT=0)

    with app.app_context():
        db.create_all()
        seed_achievements()
        yield app
        db.session.remove()
        db.drop_all()


def _make_user(email="member@example.com"):
    user = User(email=email)
    db.session.add(user)
    db.session.commit()
    return user.id


def _keys(achievements):
    return [achievement.key for achievement in achievements]


def test_seed_contains_the_full_catalog(app):
    assert AchievementDefinition.query.count() == len(DEFAULT_ACHIEVEMENTS) == 12
    assert seed_achievements() == 0
    hidden = {a.key for a in AchievementDefinition.query.filter_by(hidden=True)}
    assert hidden == {"special_early_adopter", "special_all_badges"}


def test_total_points_milestone_pays_bonus_once():
    app = _create_app()
    with app.app_context():
        db.create_all()
        seed_achievements(
            [
                AchievementSeed(
                    "milestone_2000points",
                    "Rising Star",
                    "Earned 2,000 total points",
                    "milestone",
                    {"total_points": 2000},
                    150,
                )
            ]
        )
        user_id = _make_user()
        award_points(user_id, "seed", "bonus", 1990, "a")

        assert evaluate_achievements(user_id, "feedback") == []

        award_points(user_id, "submit_feedback", "feedback", 10, "fb_1")
        assert _keys(evaluate_achievements(user_id, "feedback")) == ["milestone_2000points"]
        assert evaluate_achievements(user_id, "feedback") == []

        achievement = AchievementDefinition.query.filter_by(key="milestone_2000points").one()
        bonus = PointTransaction.query.filter_by(
            user_id=user_id, action="achievement_earned", resource_ref=str(achievement.id)
        ).one()
        assert bonus.points == 150
        assert PointAccount.query.filter_by(user_id=user_id).one().total_points == 2150
        db.session.remove()


def test_level_milestones_use_the_account_level(app):
    user_id = _make_user()
    award_points(user_id, "seed", "bonus", 1000, "a")

    earned = _keys(evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW))

    assert earned == ["milestone_level5", "milestone_1000points"]
    account = PointAccount.query.filter_by(user_id=user_id).one()
    assert account.total_points == 1000 + 200 + 250


def test_milestone_bonuses_chain_within_one_evaluation(app):
    user_id = _make_user()
    award_points(user_id, "seed", "bonus", 10000, "a")

    earned = _keys(evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW))

    assert earned == [
        "milestone_level5",
        "milestone_1000points",
        "milestone_10000points",
        "milestone_level10",
    ]
    account = PointAccount.query.filter_by(user_id=user_id).one()
    assert account.total_points == 10000 + 200 + 250 + 1000 + 500
    assert account.level == 10
    assert evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW) == []


def test_streak_counts_consecutive_utc_days(app):
    user_id = _make_user()
    today = NOW.date()
    log = DaysLog([today - timedelta(days=offset) for offset in range(7)])

    earned = evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=log, now=NOW)

    assert _keys(earned) == ["streak_7day"]
    [row] = [
        row for row in get_achievement_progress(user_id, "streak") if row.achievement.key == "streak_30day"
    ]
    assert row.progress == {"consecutive_days": 7}


def test_streak_breaks_on_a_missing_day(app):
    user_id = _make_user()
    today = NOW.date()
    days = [today, today - timedelta(days=1)] + [today - timedelta(days=d) for d in range(3, 12)]

    earned = evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=DaysLog(days), now=NOW)

    assert "streak_7day" not in _keys(earned)
    row = next(r for r in get_achievement_progress(user_id) if r.achievement.key == "streak_7day")
    assert row.progress == {"consecutive_days": 2}


def test_streak_is_read_from_logged_events(app):
    user_id = _make_user()
    for offset in range(1, 8):
        db.session.add(
            Event(
                user_id=user_id,
                event_type="vote",
                resource_ref=f"v_{offset}",
                timestamp=NOW - timedelta(days=offset),
            )
        )
    db.session.commit()

    earned = evaluate_achievements(user_id, "voting", now=NOW)

    assert "streak_7day" in _keys(earned)
    assert "special_first_vote" in _keys(earned)


def test_first_contribution_specials(app):
    user_id = _make_user()
    db.session.add(Event(user_id=user_id, event_type="submit_feedback", resource_ref="fb_1", timestamp=NOW))
    db.session.commit()

    earned = _keys(evaluate_achievements(user_id, "feedback", now=NOW))

    assert "special_first_feedback" in earned
    assert "special_first_vote" not in earned
    assert "special_first_questionnaire" not in earned


def test_hidden_achievements_stay_hidden_until_earned(app):
    user_id = _make_user()
    evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW)

    listed = {row.achievement.key for row in get_achievement_progress(user_id)}
    assert "special_early_adopter" not in listed
    assert "special_all_badges" not in listed
    assert len(get_all_achievements()) == 10
    assert len(get_all_achievements(include_hidden=True)) == 12


def test_early_adopter_is_revealed_once_earned():
    app = _create_app(GAMIFICATION_EARLY_USER_LIMIT=1)
    with app.app_context():
        db.create_all()
        seed_achievements()
        first = _make_user("first@example.com")
        second = _make_user("second@example.com")

        assert "special_early_adopter" in _keys(
            evaluate_achievements(first, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW)
        )
        assert "special_early_adopter" not in _keys(
            evaluate_achievements(second, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW)
        )

        keys = {a.key for a in get_all_achievements(user_id=first)}
        assert "special_early_adopter" in keys
        assert "special_all_badges" not in keys
        assert "special_early_adopter" not in {a.key for a in get_all_achievements(user_id=second)}
        assert [row.achievement.key for row in get_user_achievements(first)] == ["special_early_adopter"]
        db.session.remove()


def test_badge_collector_requires_every_badge(app):
    seed_badges([BadgeSeed("feedback_bronze", "Feedback Contributor", "", "bronze", "feedback", 10, 50)])
    user_id = _make_user()

    assert "special_all_badges" not in _keys(
        evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW)
    )

    evaluate_badges(user_id, "feedback", counter=FixedCounter(10), now=NOW)
    earned = _keys(evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW))
    assert "special_all_badges" in earned


def test_invalid_trigger_category_and_unknown_user(app):
    user_id = _make_user()

    with pytest.raises(InvalidArgument):
        evaluate_achievements(user_id, "gossip")
    with pytest.raises(NotFound):
        evaluate_achievements(4242)


def test_achievement_stats_lists_rarest(app):
    alice = _make_user("alice@example.com")
    bob = _make_user("bob@example.com")
    award_points(alice, "seed", "bonus", 1000, "a")
    award_points(bob, "seed", "bonus", 1000, "b")
    award_points(bob, "seed", "bonus", 9000, "c")
    for user_id in (alice, bob):
        evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=DaysLog([]), now=NOW)

    stats = get_achievement_stats()

    assert stats["total_achievements"] == 12
    rarest = stats["rarest"][0]
    assert rarest["count"] == 1
    assert rarest["achievement"]["key"] in {"milestone_level10", "milestone_10000points"}


def test_streak_lookback_is_bounded():
    app = _create_app(GAMIFICATION_STREAK_LOOKBACK_DAYS=3)
    with app.app_context():
        db.create_all()
        seed_achievements()
        user_id = _make_user()
        today: date = NOW.date()
        log = DaysLog([today - timedelta(days=offset) for offset in range(10)])

        evaluate_achievements(user_id, counter=FixedCounter(0), activity_log=log, now=NOW)

        row = next(r for r in get_achievement_progress(user_id) if r.achievement.key == "streak_7day")
        assert row.progress["consecutive_days"] <= 3
        db.session.remove()
