from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


from .user import User
from .event import Event
from .points import PointAccount, PointTransaction
from .badge import BadgeDefinition, UserBadgeProgress
from .achievement import AchievementDefinition, UserAchievementProgress
from .leaderboard import LeaderboardEntry, LeaderboardSnapshot
from .cron_run import CronRun

__all__ = [
    "db",
    "User",
    "Event",
    "PointAccount",
    "PointTransaction",
    "BadgeDefinition",
    "UserBadgeProgress",
    "AchievementDefinition",
    "UserAchievementProgress",
    "LeaderboardSnapshot",
    "LeaderboardEntry",
    "CronRun",
]
