from datetime import datetime, timezone

from . import db


class Event(db.Model):
    """Activity log row written once per user action (feedback, vote, ...)."""

    __tablename__ = "events"
    __table_args__ = (
        db.Index("ix_events_user_id_timestamp", "user_id", "timestamp"),
        db.UniqueConstraint(
            "user_id", "event_type", "resource_ref", name="uq_events_user_type_ref"
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    timestamp = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    event_type = db.Column(db.String(50), nullable=False)  # 'submit_feedback', 'vote', 'login', ...
    resource_ref = db.Column(db.String(128), nullable=True)

    user = db.relationship("User", backref=db.backref("events", lazy="dynamic", cascade="all, delete-orphan"))

    def __repr__(self):
        return f"<Event {self.event_type} for {self.user_id} at {self.timestamp}>"
