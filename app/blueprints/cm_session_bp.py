"""
Collection Manager session blueprint.

Endpoints:
    POST   /api/v1/cm-sessions/login          - CM logs in inside the agency session
    GET    /api/v1/cm-sessions                - agency's live CM sessions
    GET    /api/v1/cm-sessions/stats          - store counters (super admin)
    GET    /api/v1/cm-sessions/<sid>          - status / remaining minutes
    POST   /api/v1/cm-sessions/<sid>/approve  - sign off one row
    DELETE /api/v1/cm-sessions/<sid>          - CM logout
"""

from flask import Blueprint, current_app, request

from app import limiter
from app.auth import current_identity
from app.services import cm_session_service as svc
from app.utils.errors import result_response

cm_session_bp = Blueprint("cm_session", __name__, url_prefix="/api/v1")


def _login_limit():
    return current_app.config.get("CM_LOGIN_RATE_LIMIT", "10/minute")


@cm_session_bp.route("/cm-sessions/login", methods=["POST"])
@limiter.limit(_login_limit)
def login():
    data = request.get_json(silent=True) or {}
    return result_response(
        svc.cm_login(current_identity(), data.get("email"), data.get("password"), data.get("product_tag")),
        success_status=201,
    )


@cm_session_bp.route("/cm-sessions", methods=["GET"])
def list_sessions():
    return result_response(svc.cm_list_active_sessions(current_identity()))


@cm_session_bp.route("/cm-sessions/stats", methods=["GET"])
def stats():
    return result_response(svc.cm_session_stats(current_identity()))


@cm_session_bp.route("/cm-sessions/<session_id>", methods=["GET"])
def status(session_id):
    return result_response(svc.cm_check_status(current_identity(), session_id))


@cm_session_bp.route("/cm-sessions/<session_id>/approve", methods=["POST"])
def approve(session_id):
    """Body: ``{form_type, form_id, row_id, field_to_update?, remarks?}``."""
    data = request.get_json(silent=True) or {}
    return result_response(svc.cm_approve_row(
        current_identity(),
        session_id,
        data.get("form_type"),
        data.get("form_id"),
        data.get("row_id"),
        field_to_update=data.get("field_to_update"),
        remarks=data.get("remarks"),
    ))


@cm_session_bp.route("/cm-sessions/<session_id>", methods=["DELETE"])
def logout(session_id):
    return result_response(svc.cm_logout(current_identity(), session_id))

