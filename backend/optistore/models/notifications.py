from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Notification(db.Model):
    """
    In-app notice for one user.

    dedupe_entity_type/dedupe_entity_id carry the typed dedup key of the
    event that produced the row (e.g. product 42 for a low-stock alert).
    At most one unread row exists per (user, type, entity) when a dedup key
    is supplied.
    """
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "read_at"),
        db.Index(
            "ix_notifications_dedupe",
            "user_id", "type", "dedupe_entity_type", "dedupe_entity_id",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    type = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(255), nullable=True)
    data = db.Column(db.JSON, nullable=True)

    dedupe_entity_type = db.Column(db.String(50), nullable=True)
    dedupe_entity_id = db.Column(db.Integer, nullable=True)

    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "data": self.data,
            "read_at": to_utc_z(self.read_at),
            "created_at": to_utc_z(self.created_at),
        }
