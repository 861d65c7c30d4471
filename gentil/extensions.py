"""Application-wide extension instances."""

from flask_caching import Cache
from flask_login import LoginManager
from flask_migrate import Migrate

# SimpleCache by default; RedisCache when REDIS_URL is configured.
cache = Cache()

login_manager = LoginManager()
migrate = Migrate()

__all__ = ["cache", "login_manager", "migrate"]
