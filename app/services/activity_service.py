"""Read side of the activity trail."""

from app.auth import has_capability
from app.core.exceptions import UnauthorizedError, ValidationError
from app.models.audit import ACTIVITY_ACTIONS, ActivityLog
from app.services.helpers.action import service_action

MAX_LIMIT = 200


@service_action("Failed to load activity.")
def list_activity(identity, *, action=None, entity_type=None, entity_id=None,
                  actor_user_id=None, limit=50, offset=0) -> dict:
    """Newest-first activity entries.

    Callers without ``activity.view_all`` only ever see their own entries;
    the ``actor_user_id`` filter is ignored for them.
    """
    if identity is None:
        raise UnauthorizedError()
    if action and action not in ACTIVITY_ACTIONS:
        raise ValidationError(f"Unknown action '{action}'")

    q = ActivityLog.query
    if has_capability(identity, "activity.view_all"):
        if actor_user_id is not None:
            q = q.filter(ActivityLog.actor_user_id == actor_user_id)
    else:
        q = q.filter(ActivityLog.actor_user_id == identity.user_id)

    if action:
        q = q.filter(ActivityLog.action == action)
    if entity_type:
        q = q.filter(ActivityLog.entity_type == entity_type)
    if entity_id:
        q = q.filter(ActivityLog.entity_id == str(entity_id))

    limit = max(1, min(int(limit or 50), MAX_LIMIT))
    offset = max(int(offset or 0), 0)
    total = q.count()
    items = (
        q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset(offset).limit(limit).all()
    )
    return {"items": [log.to_dict() for log in items], "total": total, "limit": limit, "offset": offset}
