"""
Agency Compliance Portal
Notification Service.

Central service for creating, fanning out and querying in-app
notifications. Form, approval and CM-session flows call it after their own
transaction commits.
"""

import logging
from datetime import datetime, timezone

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.auth import User
from app.models.notification import NOTIFICATION_TYPES, Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient_id, title, message="", type="SYSTEM_ALERT",
               link=None, related_id=None, related_type=None, commit=True):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (committed unless ``commit=False``).
        """
        if type not in NOTIFICATION_TYPES:
            raise ValueError(f"Unknown notification type {type!r}")
        notif = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title,
            message=message,
            link=link,
            related_id=str(related_id) if related_id is not None else None,
            related_type=related_type,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return notif

    @staticmethod
    def notify_many(*, recipient_ids, title, message="", type="SYSTEM_ALERT",
                    link=None, related_id=None, related_type=None, commit=True):
        """
        Send the same notification to several users.

        Duplicate recipient ids are collapsed.

        Returns:
            List of created Notification instances.
        """
        notifications = []
        for rid in dict.fromkeys(recipient_ids):
            notifications.append(NotificationService.create(
                recipient_id=rid,
                title=title,
                message=message,
                type=type,
                link=link,
                related_id=related_id,
                related_type=related_type,
                commit=False,
            ))
        if commit:
            db.session.commit()
        return notifications

    @staticmethod
    def notify_roles(*, roles, title, message="", type="SYSTEM_ALERT",
                     link=None, related_id=None, related_type=None, commit=True):
        """Notify every active user holding one of *roles*."""
        ids = [
            uid for (uid,) in db.session.query(User.id)
            .filter(User.role.in_(list(roles)), User.status == "active")
            .order_by(User.id)
            .all()
        ]
        if not ids:
            logger.warning("No active recipients for roles %s", sorted(roles))
        return NotificationService.notify_many(
            recipient_ids=ids,
            title=title,
            message=message,
            type=type,
            link=link,
            related_id=related_id,
            related_type=related_type,
            commit=commit,
        )

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        """Return count of unread notifications."""
        return Notification.query.filter_by(recipient_id=recipient_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark a single notification as read. Only the recipient may do so."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient_id != recipient_id:
            raise NotFoundError("Notification", notification_id)
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id):
        """Mark all notifications for a recipient as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count
