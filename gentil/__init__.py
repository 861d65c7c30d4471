import os
from pathlib import Path
from urllib.parse import urlparse, urlunparse

from flask import Flask, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool, StaticPool

from config import DEFAULT_LEVEL_THRESHOLDS, Config
from .cli import register_cli_commands
from .extensions import cache, login_manager, migrate
from .models import db
from .routes.gamification import bp as gamification_bp
from .routes.internal import internal_bp
from .services.errors import GamificationError
from .services.levels import validate_thresholds
from .utils.logger import configure_logging


def _mask_database_uri(uri: str) -> str:
    try:
        parsed = urlparse(uri)
        if parsed.password:
            netloc = parsed.netloc.replace(parsed.password, "***")
            parsed = parsed._replace(netloc=netloc)
        return urlunparse(parsed)
    except ValueError:
        return "<unavailable>"


def _engine_options(app: Flask) -> dict:
    engine_defaults = {
        "pool_size": 5,
        "max_overflow": 5,
        "pool_pre_ping": True,
        "pool_recycle": 280,
    }
    engine_defaults.update(dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS", {})))

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "") or ""
    if database_uri.startswith("sqlite"):
        # SQLite (especially :memory:) does not accept pool sizing parameters.
        for key in ("pool_size", "max_overflow", "pool_recycle"):
            engine_defaults.pop(key, None)

    poolclass = engine_defaults.get("poolclass")
    if poolclass:
        try:
            is_static_pool = issubclass(poolclass, StaticPool)
            is_queue_pool = issubclass(poolclass, QueuePool)
        except TypeError:
            is_static_pool = False
            is_queue_pool = False

        if is_static_pool:
            for key in ("pool_size", "max_overflow", "pool_recycle"):
                engine_defaults.pop(key, None)
        elif not is_queue_pool:
            engine_defaults.pop("pool_size", None)
            engine_defaults.pop("max_overflow", None)
    return engine_defaults


def _init_cache(app: Flask) -> None:
    redis_url = app.config.get("REDIS_URL")
    cache_config = {"CACHE_DEFAULT_TIMEOUT": app.config.get("CACHE_DEFAULT_TIMEOUT", 300)}
    if redis_url:
        cache_config.update({"CACHE_TYPE": "RedisCache", "CACHE_REDIS_URL": redis_url})
    else:
        cache_config["CACHE_TYPE"] = "SimpleCache"
    cache.init_app(app, config=cache_config)
    app.logger.info("[BOOT] Cache backend: %s", cache_config["CACHE_TYPE"])


def _init_login(app: Flask) -> None:
    login_manager.init_app(app)

    from .models.user import User  # imported lazily to avoid circular imports

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None
        except SQLAlchemyError as exc:
            current_app.logger.error("[LOGIN] user_loader failed: %s", exc, exc_info=True)
            db.session.rollback()
            return None


def create_app(config_overrides: dict | None = None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    configure_logging(app.config.get("LOG_DIR"))
    app.logger.info(
        "[BOOT] Logging configured. Writing to %s",
        Path(app.config.get("LOG_DIR", "logs")) / "gentil.log",
    )

    secret_from_env = os.getenv("SECRET_KEY")
    if secret_from_env and not (config_overrides and "SECRET_KEY" in config_overrides):
        app.config["SECRET_KEY"] = secret_from_env
    if app.config.get("TESTING") and app.config.get("SECRET_KEY") in {None, "", "dev"}:
        app.config["SECRET_KEY"] = "test-secret-key"
    elif app.config.get("SECRET_KEY") in {None, "", "dev"}:
        app.logger.warning(
            "[BOOT] SECRET_KEY not provided; using development fallback. Do not use in production."
        )

    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = _engine_options(app)
    app.logger.info(
        "[BOOT] SQLALCHEMY_DATABASE_URI: %s",
        _mask_database_uri(app.config.get("SQLALCHEMY_DATABASE_URI") or ""),
    )

    # Fail at boot rather than on the first award.
    app.config["GAMIFICATION_LEVEL_THRESHOLDS"] = validate_thresholds(
        app.config.get("GAMIFICATION_LEVEL_THRESHOLDS") or DEFAULT_LEVEL_THRESHOLDS
    )

    db.init_app(app)
    migrate.init_app(app, db)
    _init_login(app)
    _init_cache(app)
    app.extensions.setdefault("gamification", {})

    app.register_blueprint(gamification_bp)
    app.register_blueprint(internal_bp)
    register_cli_commands(app)

    @app.errorhandler(GamificationError)
    def handle_gamification_error(error: GamificationError):
        if error.status_code >= 500:
            app.logger.error("[API] %s: %s", error.code, error.message)
        return jsonify(error.to_dict()), error.status_code

    return app


__all__ = ["create_app", "db"]
