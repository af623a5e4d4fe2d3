"""
Activity trail blueprint.

Endpoints:
    GET /api/v1/activity - own entries, or everyone's with ``activity.view_all``
"""

from flask import Blueprint, request

from app.auth import current_identity
from app.blueprints import page_args
from app.services.activity_service import list_activity
from app.utils.errors import result_response

activity_bp = Blueprint("activity", __name__, url_prefix="/api/v1")


@activity_bp.route("/activity", methods=["GET"])
def list_activity_logs():
    """
    Query params:
        action        - e.g. FORM_SUBMITTED
        entity_type   - form type key | approval_request | cm_session | cm_approval
        entity_id     - entity PK
        actor_user_id - admins / auditors only
        limit, offset - pagination (limit max 200)
    """
    limit, offset = page_args()
    return result_response(list_activity(
        current_identity(),
        action=request.args.get("action"),
        entity_type=request.args.get("entity_type"),
        entity_id=request.args.get("entity_id"),
        actor_user_id=request.args.get("actor_user_id", type=int),
        limit=limit,
        offset=offset,
    ))
