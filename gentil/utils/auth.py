"""Session helpers: resolve the signed-in user for the JSON API."""

from flask import current_app, session
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from ..models import db
from ..models.user import User


def get_current_user():
    """Return the current session user, recovering gracefully from DB failures."""

    try:
        if current_user.is_authenticated:
            return current_user
    except SQLAlchemyError as exc:
        current_app.logger.warning(
            "[AUTH] current_user authentication check failed: %s", exc
        )
        db.session.rollback()
        return None

    user_id = session.get("user_id")
    if user_id is None:
        return None

    try:
        user = db.session.get(User, user_id)
    except SQLAlchemyError as exc:
        current_app.logger.warning("[AUTH] User lookup failed, clearing session: %s", exc)
        db.session.rollback()
        session.pop("user_id", None)
        return None

    if user is None:
        session.pop("user_id", None)

    return user
