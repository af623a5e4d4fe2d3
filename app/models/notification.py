"""
Agency Compliance Portal
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "FORM_SUBMITTED",
    "FORM_RESUBMITTED",
    "APPROVAL_REQUEST",
    "APPROVAL_DECISION",
    "DOCUMENT_REQUESTED",
    "SYSTEM_ALERT",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. Delivery beyond the in-app inbox
    is handled elsewhere.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("idx_notification_recipient_read", "recipient_id", "is_read"),
    )

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(30), nullable=False, default="SYSTEM_ALERT")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    link = db.Column(db.String(500), nullable=True)

    # Link to source entity
    related_id = db.Column(db.String(64), nullable=True)
    related_type = db.Column(db.String(60), nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "link": self.link,
            "related_id": self.related_id,
            "related_type": self.related_type,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
