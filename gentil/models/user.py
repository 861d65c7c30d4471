from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy.orm import validates

from . import db


class User(UserMixin, db.Model):
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("email = lower(email)", name="ck_users_email_lowercase"),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False)
    display_name = db.Column(db.String(120), nullable=True)
    avatar_url = db.Column(db.String(512), nullable=True)
    role = db.Column(
        db.String(20),
        nullable=False,
        default="member",
        server_default="member",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=db.func.now(),
    )

    @validates("email")
    def _normalize_email(self, _key, value):
        return (value or "").strip().lower()

    @property
    def public_name(self) -> str:
        return self.display_name or "Anonymous"

    def __repr__(self):
        return f"<User {self.email}>"
