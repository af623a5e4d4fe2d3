"""
Agency Compliance Portal
Activity domain model.

Models:
    - ActivityLog: immutable, append-only trail of lifecycle events.
"""

import json
import logging
from datetime import UTC, datetime

from app.models import db
from app.utils.request_meta import client_ip, user_agent

logger = logging.getLogger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ACTIONS = {
    # Form lifecycle
    "FORM_CREATED",
    "FORM_UPDATED",
    "FORM_SUBMITTED",
    "FORM_RESUBMITTED",
    "FORM_DELETED",
    # Approval requests and CM approvals
    "APPROVAL_REQUESTED",
    "APPROVAL_GRANTED",
    "APPROVAL_REJECTED",
    "DOCUMENT_REQUESTED",
    "DOCUMENT_UPLOADED",
    # CM delegated sessions
    "USER_LOGIN",
    "USER_LOGOUT",
}


class ActivityLog(db.Model):
    """
    Immutable activity trail.

    One row per action.  ``metadata_json`` carries ``oldValues`` /
    ``newValues`` snapshots for form transitions and the full approval
    payload for CM sign-offs.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_actor", "actor_user_id"),
        db.Index("idx_activity_action", "action"),
        db.Index("idx_activity_ts", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="NULL for system entries",
    )

    # What happened
    action = db.Column(db.String(40), nullable=False)
    entity_type = db.Column(
        db.String(60), nullable=False,
        comment="form type key | approval_request | cm_session | cm_approval",
    )
    entity_id = db.Column(db.String(64), nullable=True)
    description = db.Column(db.Text, nullable=False, default="")

    # Change payload
    metadata_json = db.Column(db.Text, default="{}")

    # Request context
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def details(self) -> dict:
        """Deserialise *metadata_json* to a Python dict."""
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "metadata": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def _render(value):
    if isinstance(value, list):
        return f"{len(value)} item(s)"
    return json.dumps(value, default=str)


def describe_changes(description: str, metadata: dict | None) -> str:
    """Append a ``| Changes: key: old → new`` suffix when snapshots differ."""
    if not metadata:
        return description
    old_values = metadata.get("oldValues")
    new_values = metadata.get("newValues")
    if not old_values or not new_values:
        return description

    changes = []
    for key, new in new_values.items():
        old = old_values.get(key)
        if old != new:
            changes.append(f"{key}: {_render(old)} → {_render(new)}")
    if changes:
        return f"{description} | Changes: {', '.join(changes)}"
    return description


def write_activity(
    *,
    action: str,
    entity_type: str,
    entity_id: str | None,
    description: str,
    actor_user_id: int | None = None,
    metadata: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.

    IP address and user agent are taken from the current request when
    there is one.

    Returns the (flushed) ActivityLog instance.
    """
    if action not in ACTIVITY_ACTIONS:
        raise ValueError(f"Unknown activity action {action!r}")

    log = ActivityLog(
        actor_user_id=actor_user_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else None,
        description=describe_changes(description, metadata),
        metadata_json=json.dumps(metadata or {}, default=str),
        ip_address=client_ip(),
        user_agent=user_agent(),
    )
    db.session.add(log)
    db.session.flush()
    return log


def record_activity(**kwargs) -> ActivityLog | None:
    """Write and commit one activity row after the business transaction.

    The business change is already committed, so a failure here is logged
    and swallowed rather than reported to the caller.
    """
    try:
        log = write_activity(**kwargs)
        db.session.commit()
        return log
    except Exception:
        db.session.rollback()
        logger.exception(
            "Failed to record activity %s for %s/%s",
            kwargs.get("action"), kwargs.get("entity_type"), kwargs.get("entity_id"),
        )
        return None
