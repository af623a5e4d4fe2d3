"""
Compliance forms blueprint.

Endpoints:
    GET    /api/v1/forms                                  - caller's forms (dashboard)
    GET    /api/v1/forms/types                            - registered form types
    GET    /api/v1/forms/<form_type>                      - admin / auditor listing
    POST   /api/v1/forms/<form_type>                      - save (draft / submit / resubmit)
    GET    /api/v1/forms/<form_type>/<form_id>            - form with rows and approvals
    DELETE /api/v1/forms/<form_type>/<form_id>            - delete a draft
    GET    /api/v1/forms/<form_type>/<form_id>/approval-status
"""

from flask import Blueprint, jsonify, request

from app.auth import current_identity
from app.services import approval_request_service, form_lifecycle
from app.services.form_registry import list_form_definitions
from app.utils.errors import E, api_error, result_response

forms_bp = Blueprint("forms", __name__, url_prefix="/api/v1")


@forms_bp.route("/forms", methods=["GET"])
def my_forms():
    return result_response(form_lifecycle.list_my_forms(current_identity()))


@forms_bp.route("/forms/types", methods=["GET"])
def form_types():
    return jsonify({"items": list_form_definitions()}), 200


@forms_bp.route("/forms/<form_type>", methods=["GET"])
def list_forms(form_type):
    """
    Query params:
        owner_id - filter by agency
        status   - DRAFT | SUBMITTED
    """
    return result_response(form_lifecycle.list_forms(
        current_identity(),
        form_type,
        owner_id=request.args.get("owner_id", type=int),
        status=request.args.get("status"),
    ))


@forms_bp.route("/forms/<form_type>", methods=["POST"])
def save_form(form_type):
    """Body: ``{rows, status, form_id?, month?, year?}``."""
    data = request.get_json(silent=True) or {}
    rows = data.get("rows")
    if not isinstance(rows, list):
        return api_error(E.VALIDATION_REQUIRED, "rows must be a list")

    result = form_lifecycle.save_form(
        current_identity(),
        form_type,
        rows,
        data.get("status", "DRAFT"),
        form_id=data.get("form_id"),
        month=data.get("month"),
        year=data.get("year"),
    )
    return result_response(result, success_status=201 if result.get("created") else 200)


@forms_bp.route("/forms/<form_type>/<form_id>", methods=["GET"])
def get_form(form_type, form_id):
    return result_response(form_lifecycle.get_form(current_identity(), form_type, form_id))


@forms_bp.route("/forms/<form_type>/<form_id>", methods=["DELETE"])
def delete_form(form_type, form_id):
    return result_response(form_lifecycle.delete_form(current_identity(), form_type, form_id))


@forms_bp.route("/forms/<form_type>/<form_id>/approval-status", methods=["GET"])
def approval_status(form_type, form_id):
    return result_response(
        approval_request_service.check_form_approval_status(current_identity(), form_type, form_id)
    )
