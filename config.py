import os
from typing import Optional, Tuple

from dotenv import load_dotenv

load_dotenv()


DATABASE_ENV_PRIORITY = (
    "INTERNAL_DATABASE_URL",
    "DATABASE_URL",
    "EXTERNAL_DATABASE_URL",
)

DEFAULT_LEVEL_THRESHOLDS = (0, 100, 250, 500, 1000, 2000, 3500, 5500, 8000, 11000)


def normalize_database_uri(uri: Optional[str]) -> Optional[str]:
    if not uri:
        return uri

    if uri.startswith("postgres://"):
        return "postgresql+psycopg2://" + uri[len("postgres://"):]

    if uri.startswith("postgresql://") and not uri.startswith("postgresql+psycopg2://"):
        return "postgresql+psycopg2://" + uri[len("postgresql://"):]

    return uri


def get_database_uri_from_env(default: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    for key in DATABASE_ENV_PRIORITY:
        value = os.getenv(key)
        if value:
            return normalize_database_uri(value), key

    if default is not None:
        return normalize_database_uri(default), "default"

    return None, None


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except (TypeError, ValueError):
        return default


def parse_level_thresholds(raw: Optional[str]) -> Tuple[int, ...]:
    """Parse ``"0,100,250"`` into a tuple, falling back to the defaults."""

    if not raw or not raw.strip():
        return DEFAULT_LEVEL_THRESHOLDS
    return tuple(int(part) for part in raw.split(",") if part.strip())


DEFAULT_SQLITE_URI = "sqlite:///gentil_feedback.db"
RESOLVED_DATABASE_URI, RESOLVED_DATABASE_SOURCE = get_database_uri_from_env(DEFAULT_SQLITE_URI)


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev")
    SQLALCHEMY_DATABASE_URI = RESOLVED_DATABASE_URI or DEFAULT_SQLITE_URI
    SQLALCHEMY_DATABASE_URI_SOURCE = RESOLVED_DATABASE_SOURCE
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Stale pooled connections are replaced instead of surfacing as
    # ``OperationalError`` in the middle of an award.
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": _env_int("SQLALCHEMY_POOL_RECYCLE", 280),
        "pool_size": _env_int("SQLALCHEMY_POOL_SIZE", 5),
        "max_overflow": _env_int("SQLALCHEMY_MAX_OVERFLOW", 5),
    }

    LOG_DIR = os.getenv("LOG_DIR", "logs")
    REDIS_URL = os.getenv("REDIS_URL", "")
    CRON_SECRET = os.getenv("CRON_SECRET", "")

    GAMIFICATION_LEVEL_THRESHOLDS = parse_level_thresholds(
        os.getenv("GAMIFICATION_LEVEL_THRESHOLDS")
    )
    GAMIFICATION_AWARD_MAX_RETRIES = _env_int("GAMIFICATION_AWARD_MAX_RETRIES", 3)
    GAMIFICATION_RETRY_BACKOFF_MS = _env_int("GAMIFICATION_RETRY_BACKOFF_MS", 50)
    GAMIFICATION_EARLY_USER_LIMIT = _env_int("GAMIFICATION_EARLY_USER_LIMIT", 100)
    GAMIFICATION_STREAK_LOOKBACK_DAYS = _env_int("GAMIFICATION_STREAK_LOOKBACK_DAYS", 365)

    LEADERBOARD_FRESHNESS_SECONDS = _env_int("LEADERBOARD_FRESHNESS_SECONDS", 3600)
    LEADERBOARD_NEARBY_RANGE = _env_int("LEADERBOARD_NEARBY_RANGE", 5)
    LEADERBOARD_DEFAULT_LIMIT = _env_int("LEADERBOARD_DEFAULT_LIMIT", 50)

    CRON_RUN_RETENTION_DAYS = _env_int("CRON_RUN_RETENTION_DAYS", 30)
    CACHE_DEFAULT_TIMEOUT = _env_int("CACHE_DEFAULT_TIMEOUT", 300)
