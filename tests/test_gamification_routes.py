import os
from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from gentil import create_app
from gentil.models import db
from gentil.models.achievement import AchievementDefinition, UserAchievementProgress
from gentil.models.user import User
from gentil.services.achievement_service import evaluate_achievements, seed_achievements
from gentil.services.badge_service import evaluate_badges, seed_badges
from gentil.services.points_service import award_points


class FixedCounter:
    def __init__(self, value):
        self.value = value

    def count(self, user_id, category):
        return self.value

    def count_action(self, user_id, action):
        return 0


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


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, email="member@example.com", display_name="Member"):
    user = User(email=email, display_name=display_name)
    db.session.add(user)
    db.session.commit()
    with client.session_transaction() as sess:
        sess["user_id"] = user.id
    return user.id


@pytest.mark.parametrize(
    "path",
    [
        "/api/gamification/points",
        "/api/gamification/badges",
        "/api/gamification/achievements",
        "/api/gamification/leaderboard/me",
        "/api/gamification/leaderboard?view=nearby",
    ],
)
def test_signed_out_requests_are_rejected(client, path):
    response = client.get(path)

    assert response.status_code == 401
    assert response.get_json() == {"ok": False, "error": "auth_required"}


def test_points_summary_and_history(client):
    user_id = _login(client)
    award_points(user_id, "submit_feedback", "feedback", 10, "fb_1")
    award_points(user_id, "vote", "voting", 2, "v_1")

    payload = client.get("/api/gamification/points").get_json()
    assert payload["ok"] is True
    assert payload["points"]["total_points"] == 12
    assert "history" not in payload

    payload = client.get("/api/gamification/points?history=1&per_page=1").get_json()
    assert payload["history"]["total"] == 2
    assert payload["history"]["has_next"] is True
    assert payload["history"]["items"][0]["resource_ref"] == "v_1"


def test_bad_integer_argument_returns_400(client):
    _login(client)

    response = client.get("/api/gamification/points?history=1&page=abc")

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_argument"


def test_badges_filtered_by_status(client):
    user_id = _login(client)
    evaluate_badges(user_id, "feedback", counter=FixedCounter(10))

    earned = client.get("/api/gamification/badges?status=earned").get_json()["badges"]
    in_progress = client.get("/api/gamification/badges?status=in_progress").get_json()["badges"]
    everything = client.get("/api/gamification/badges?category=feedback").get_json()["badges"]

    assert [row["badge"]["key"] for row in earned] == ["feedback_bronze"]
    assert {row["badge"]["key"] for row in in_progress} == {
        "feedback_silver",
        "feedback_gold",
        "feedback_platinum",
    }
    assert len(everything) == 4
    assert client.get("/api/gamification/badges?status=bogus").status_code == 400
    assert client.get("/api/gamification/badges?category=bogus").status_code == 400


def test_badge_catalog_is_public(client):
    payload = client.get("/api/gamification/badges/catalog?category=voting").get_json()

    assert payload["ok"] is True
    assert [badge["tier"] for badge in payload["badges"]] == ["bronze", "silver", "gold", "platinum"]


def test_achievements_hide_secret_entries(client):
    user_id = _login(client)
    award_points(user_id, "seed", "bonus", 1000, "a")
    evaluate_achievements(user_id, counter=FixedCounter(0))

    payload = client.get("/api/gamification/achievements?status=earned").get_json()
    keys = {row["achievement"]["key"] for row in payload["achievements"]}
    assert keys == {"milestone_level5", "milestone_1000points"}

    everything = client.get("/api/gamification/achievements").get_json()["achievements"]
    assert all(not row["achievement"]["hidden"] for row in everything)


def test_achievement_catalog_reveals_hidden_entries_once_earned(client):
    signed_out = client.get("/api/gamification/achievements/catalog").get_json()
    assert signed_out["ok"] is True
    assert len(signed_out["achievements"]) == 10
    assert all(not row["hidden"] for row in signed_out["achievements"])

    user_id = _login(client)
    early = AchievementDefinition.query.filter_by(key="special_early_adopter").one()
    db.session.add(
        UserAchievementProgress(
            user_id=user_id,
            achievement_id=early.id,
            earned_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        )
    )
    db.session.commit()

    keys = {row["key"] for row in client.get("/api/gamification/achievements/catalog").get_json()["achievements"]}
    assert len(keys) == 11
    assert "special_early_adopter" in keys
    assert "special_all_badges" not in keys


def test_leaderboard_and_position(client):
    user_id = _login(client)
    other = User(email="other@example.com", display_name="Other")
    db.session.add(other)
    db.session.commit()
    award_points(user_id, "submit_feedback", "feedback", 30, "fb_1")
    award_points(other.id, "submit_feedback", "feedback", 40, "fb_2")

    payload = client.get("/api/gamification/leaderboard?period=all_time&limit=10").get_json()
    assert [entry["display_name"] for entry in payload["entries"]] == ["Other", "Member"]

    me = client.get("/api/gamification/leaderboard/me?period=all_time").get_json()
    assert me["ranked"] is True
    assert me["rank"] == 2

    nearby = client.get("/api/gamification/leaderboard?period=all_time&view=nearby&range=0").get_json()
    assert [entry["display_name"] for entry in nearby["nearby"]] == ["Member"]


def test_leaderboard_validation_errors(client):
    response = client.get("/api/gamification/leaderboard?period=daily")
    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_argument"

    assert client.get("/api/gamification/leaderboard?limit=0").status_code == 400


def test_unranked_user_position(client):
    _login(client)

    payload = client.get("/api/gamification/leaderboard/me").get_json()

    assert payload["ok"] is True
    assert payload["ranked"] is False
