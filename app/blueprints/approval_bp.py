"""
Approval request blueprint - agencies ask to reopen submitted forms,
admins decide.

Endpoints:
    POST /api/v1/approval-requests                        - file a request (agency)
    GET  /api/v1/approval-requests                        - admin queue
    GET  /api/v1/approval-requests/mine                   - caller's requests
    GET  /api/v1/approval-requests/statistics             - admin counters
    POST /api/v1/approval-requests/<id>/decide            - approve / reject
    POST /api/v1/approval-requests/<id>/request-document  - ask for a document
    POST /api/v1/approval-requests/<id>/document          - upload a document path
"""

from flask import Blueprint, request

from app.auth import current_identity
from app.services import approval_request_service as svc
from app.utils.errors import result_response

approval_bp = Blueprint("approval", __name__, url_prefix="/api/v1")


@approval_bp.route("/approval-requests", methods=["POST"])
def submit_request():
    data = request.get_json(silent=True) or {}
    return result_response(
        svc.submit_approval_request(
            current_identity(),
            data.get("form_type"),
            data.get("form_id"),
            data.get("request_type", "UPDATE_SUBMITTED_FORM"),
            data.get("reason"),
            data.get("document_path"),
        ),
        success_status=201,
    )


@approval_bp.route("/approval-requests", methods=["GET"])
def list_requests():
    """
    Query params:
        status       - PENDING (default) | APPROVED | REJECTED
        requester_id - filter by agency
        form_type    - filter by form type
        q            - search reason, requester name or email
    """
    return result_response(svc.list_approval_requests(
        current_identity(),
        status=request.args.get("status"),
        requester_id=request.args.get("requester_id", type=int),
        form_type=request.args.get("form_type"),
        search=request.args.get("q"),
    ))


@approval_bp.route("/approval-requests/mine", methods=["GET"])
def my_requests():
    return result_response(svc.list_my_approval_requests(current_identity()))


@approval_bp.route("/approval-requests/statistics", methods=["GET"])
def statistics():
    return result_response(svc.approval_statistics(current_identity()))


@approval_bp.route("/approval-requests/<request_id>/decide", methods=["POST"])
def decide(request_id):
    data = request.get_json(silent=True) or {}
    return result_response(svc.decide_approval_request(
        current_identity(), request_id, data.get("decision"), data.get("admin_response"),
    ))


@approval_bp.route("/approval-requests/<request_id>/request-document", methods=["POST"])
def request_document(request_id):
    data = request.get_json(silent=True) or {}
    return result_response(svc.request_document(current_identity(), request_id, data.get("message")))


@approval_bp.route("/approval-requests/<request_id>/document", methods=["POST"])
def upload_document(request_id):
    data = request.get_json(silent=True) or {}
    return result_response(
        svc.upload_supporting_document(current_identity(), request_id, data.get("document_path"))
    )
