"""
Approval Request Workflow - reopening submitted forms for editing.

Flow:
    agency submits request (PENDING) ──▶ admin decides
        APPROVED → form.editability = EDITABLE_PENDING_RESUBMISSION
        REJECTED → form stays LOCKED
    agency resubmits form ──▶ handle_form_resubmission() marks the
        approved request consumed (closed) inside the form's transaction.

Design decisions:
    - At most one open request per (form_type, form_id). Open means PENDING,
      or APPROVED and not yet consumed by a resubmission.
    - The approval decision flips the form's stored editability in the same
      transaction as the request status, so readers never need to re-derive
      editability from request history.
    - handle_form_resubmission() is idempotent: a second call finds nothing
      left to close.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_

from app.auth import authorize, has_capability
from app.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StateError,
    UnauthorizedError,
    ValidationError,
)
from app.models import db
from app.models.approval import (
    DECISIONS,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    REQUEST_TYPES,
    ApprovalRequest,
)
from app.models.audit import record_activity
from app.models.auth import ROLE_ADMIN, ROLE_SUPER_ADMIN, User
from app.models.forms import (
    EDITABILITY_PENDING_RESUBMISSION,
    STATUS_SUBMITTED,
    FormSubmission,
)
from app.services import cache_service
from app.services.form_registry import get_form_definition
from app.services.helpers.action import atomic, service_action
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)

ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)
LIST_LIMIT = 100


# ── Private helpers ────────────────────────────────────────────────────────────


def _open_filter():
    return or_(
        ApprovalRequest.status == REQUEST_PENDING,
        (ApprovalRequest.status == REQUEST_APPROVED) & ApprovalRequest.consumed_at.is_(None),
    )


def latest_open_request(form_type: str, form_id: str) -> ApprovalRequest | None:
    """Most recent PENDING or approved-and-unconsumed request for a form."""
    return (
        ApprovalRequest.query
        .filter_by(form_type=form_type, form_id=form_id)
        .filter(_open_filter())
        .order_by(ApprovalRequest.created_at.desc())
        .first()
    )


def _get_request(request_id) -> ApprovalRequest:
    req = db.session.get(ApprovalRequest, request_id)
    if req is None:
        raise NotFoundError("Approval request", request_id, message="Request not found")
    return req


def _form_link(form_type, form_id):
    return f"/forms/{form_type}/{form_id}"


# ── Agency actions ─────────────────────────────────────────────────────────────


@service_action("Failed to create approval request")
def submit_approval_request(identity, form_type, form_id, request_type, reason, document_path) -> dict:
    """File a request to edit a submitted form.

    Business rules:
    - Caller must own the form and the form must be SUBMITTED.
    - ``reason`` and ``document_path`` are mandatory.
    - No other open request may exist for the same form.
    """
    authorize(identity, "forms.edit")
    definition = get_form_definition(form_type)

    reason = (reason or "").strip()
    document_path = (document_path or "").strip()
    if request_type not in REQUEST_TYPES:
        raise ValidationError(
            f"Invalid request type '{request_type}'. "
            f"Must be one of: {', '.join(sorted(REQUEST_TYPES))}",
        )
    if not reason:
        raise ValidationError("A reason is required.", details={"reason": "required"})
    if not document_path:
        raise ValidationError(
            "A supporting document is required.", details={"document_path": "required"},
        )

    with atomic():
        # Row lock on the form serialises concurrent requests for it
        form = (
            FormSubmission.query
            .filter_by(id=form_id, form_type=definition.key, owner_id=identity.user_id)
            .with_for_update()
            .first()
        )
        if form is None:
            raise NotFoundError("Form", form_id)
        if form.status != STATUS_SUBMITTED:
            raise StateError("Only submitted forms need an approval request. Drafts can be edited directly.")

        existing = latest_open_request(definition.key, form.id)
        if existing is not None:
            if existing.status == REQUEST_PENDING:
                raise ConflictError(
                    "Approval request", "form_id", form.id,
                    message="You already have a pending request for this form.",
                )
            raise ConflictError(
                "Approval request", "form_id", form.id,
                message="An approved edit request is already open for this form. Resubmit the form first.",
            )

        req = ApprovalRequest(
            form_type=definition.key,
            form_id=form.id,
            requester_id=identity.user_id,
            request_type=request_type,
            reason=reason,
            document_path=document_path,
            status=REQUEST_PENDING,
        )
        db.session.add(req)

    logger.info(
        "Approval request %s filed for %s/%s", req.id, definition.key, form.id,
        extra={"form_type": definition.key, "form_id": form.id, "user_id": identity.user_id},
    )
    record_activity(
        action="APPROVAL_REQUESTED",
        entity_type="approval_request",
        entity_id=req.id,
        description=f"Edit access requested for {definition.title}",
        actor_user_id=identity.user_id,
        metadata={
            "formType": definition.key,
            "formId": form.id,
            "requestType": request_type,
            "reason": reason,
            "documentPath": document_path,
        },
    )
    try:
        NotificationService.notify_roles(
            roles=ADMIN_ROLES,
            type="APPROVAL_REQUEST",
            title=f"New approval request: {definition.title}",
            message=f"{identity.name or 'An agency'} requested edit access: {reason}",
            link="/admin/approvals",
            related_id=req.id,
            related_type="approval_request",
        )
    except Exception:
        db.session.rollback()
        logger.exception("Failed to notify admins of approval request %s", req.id)

    return {"success": True, "request": req.to_dict()}


@service_action("Failed to upload document")
def upload_supporting_document(identity, request_id, document_path) -> dict:
    """Attach a new document to the caller's own PENDING request."""
    authorize(identity, "forms.edit")
    document_path = (document_path or "").strip()
    if not document_path:
        raise ValidationError("document_path is required")

    req = _get_request(request_id)
    if req.requester_id != identity.user_id:
        raise ForbiddenError("You can only upload documents for your own requests")
    if req.status != REQUEST_PENDING:
        raise StateError("Cannot upload document for a closed request")

    with atomic():
        req.document_path = document_path
        # The admin's "please upload a document" note is answered now
        if req.admin_response and "document" in req.admin_response.lower():
            req.admin_response = None

    record_activity(
        action="DOCUMENT_UPLOADED",
        entity_type="approval_request",
        entity_id=req.id,
        description="Supporting document uploaded",
        actor_user_id=identity.user_id,
        metadata={"documentPath": document_path},
    )
    return {"success": True, "request": req.to_dict()}


@service_action("Failed to fetch your approval requests")
def list_my_approval_requests(identity) -> dict:
    authorize(identity, "forms.edit")
    items = (
        ApprovalRequest.query.filter_by(requester_id=identity.user_id)
        .order_by(ApprovalRequest.created_at.desc())
        .all()
    )
    return {"success": True, "requests": [r.to_dict() for r in items]}


@service_action("Failed to check approval status")
def check_form_approval_status(identity, form_type, form_id) -> dict:
    """Latest open request for a form plus its current editability."""
    if identity is None:
        raise UnauthorizedError()
    definition = get_form_definition(form_type)
    form = db.session.get(FormSubmission, form_id)
    if form is None or form.form_type != definition.key:
        raise NotFoundError("Form", form_id)
    if form.owner_id != identity.user_id and not has_capability(identity, "forms.view_all"):
        raise NotFoundError("Form", form_id)

    req = latest_open_request(definition.key, form.id)
    return {
        "success": True,
        "has_request": req is not None,
        "status": req.status if req else None,
        "request_id": req.id if req else None,
        "admin_response": req.admin_response if req else None,
        "document_path": req.document_path if req else None,
        "can_edit": form.can_edit,
        "editability": form.editability,
    }


# ── Admin actions ──────────────────────────────────────────────────────────────


@service_action("Failed to process approval request")
def decide_approval_request(identity, request_id, decision, admin_response=None) -> dict:
    """Approve or reject a PENDING request and notify the requester.

    On APPROVED the form becomes editable for exactly one resubmission;
    its status label stays SUBMITTED.
    """
    authorize(identity, "approval_requests.decide")
    if decision not in DECISIONS:
        raise ValidationError(f"Invalid decision '{decision}'. Must be APPROVED or REJECTED.")

    req = _get_request(request_id)
    if req.status != REQUEST_PENDING:
        raise StateError(f"This request has already been {req.status.lower()}.")

    approved = decision == REQUEST_APPROVED
    form = db.session.get(FormSubmission, req.form_id)
    if approved and (form is None or form.status != STATUS_SUBMITTED):
        raise StateError("The form for this request is no longer submitted.")

    with atomic():
        req.status = decision
        req.admin_response = (admin_response or "").strip() or ("Approved" if approved else "Rejected")
        req.reviewed_by = identity.user_id
        req.reviewed_at = datetime.now(timezone.utc)
        if approved:
            form.editability = EDITABILITY_PENDING_RESUBMISSION

    definition = get_form_definition(req.form_type)
    logger.info(
        "Approval request %s %s", req.id, decision.lower(),
        extra={"form_type": req.form_type, "form_id": req.form_id, "user_id": identity.user_id},
    )
    record_activity(
        action="APPROVAL_GRANTED" if approved else "APPROVAL_REJECTED",
        entity_type="approval_request",
        entity_id=req.id,
        description=f"Edit request for {definition.title} {decision.lower()}",
        actor_user_id=identity.user_id,
        metadata={
            "formType": req.form_type,
            "formId": req.form_id,
            "requesterId": req.requester_id,
            "adminResponse": req.admin_response,
        },
    )
    try:
        NotificationService.create(
            recipient_id=req.requester_id,
            type="APPROVAL_DECISION",
            title=f"Edit request {decision.lower()}: {definition.title}",
            message=(
                "You can now edit and resubmit the form."
                if approved else f"Your request was rejected: {req.admin_response}"
            ),
            link=_form_link(req.form_type, req.form_id),
            related_id=req.id,
            related_type="approval_request",
        )
    except Exception:
        db.session.rollback()
        logger.exception("Failed to notify requester of decision on %s", req.id)

    cache_service.invalidate_my_forms(req.requester_id)
    return {"success": True, "request": req.to_dict()}


@service_action("Failed to request document")
def request_document(identity, request_id, message) -> dict:
    """Ask the requester for an additional supporting document."""
    authorize(identity, "approval_requests.decide")
    message = (message or "").strip()
    if not message:
        raise ValidationError("message is required")

    req = _get_request(request_id)
    if req.status != REQUEST_PENDING:
        raise StateError("Cannot request a document for a closed request")

    with atomic():
        req.admin_response = message

    record_activity(
        action="DOCUMENT_REQUESTED",
        entity_type="approval_request",
        entity_id=req.id,
        description="Additional document requested",
        actor_user_id=identity.user_id,
        metadata={"message": message},
    )
    try:
        NotificationService.create(
            recipient_id=req.requester_id,
            type="DOCUMENT_REQUESTED",
            title="Additional document requested",
            message=message,
            link="/approval-request",
            related_id=req.id,
            related_type="approval_request",
        )
    except Exception:
        db.session.rollback()
        logger.exception("Failed to notify requester of document request on %s", req.id)
    return {"success": True, "request": req.to_dict()}


@service_action("Failed to fetch approval requests")
def list_approval_requests(identity, status=None, requester_id=None, form_type=None, search=None) -> dict:
    """Admin queue. Defaults to PENDING; newest first, capped at 100."""
    authorize(identity, "approval_requests.decide")
    status = status or REQUEST_PENDING
    if status not in (REQUEST_PENDING, REQUEST_APPROVED, REQUEST_REJECTED):
        raise ValidationError(f"Invalid status '{status}'")

    q = ApprovalRequest.query.filter_by(status=status)
    if requester_id is not None:
        q = q.filter_by(requester_id=requester_id)
    if form_type:
        q = q.filter_by(form_type=form_type)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.join(User, User.id == ApprovalRequest.requester_id).filter(or_(
            ApprovalRequest.reason.ilike(pattern),
            User.name.ilike(pattern),
            User.email.ilike(pattern),
        ))

    items = q.order_by(ApprovalRequest.created_at.desc()).limit(LIST_LIMIT).all()
    total_pending = ApprovalRequest.query.filter_by(status=REQUEST_PENDING).count()
    return {
        "success": True,
        "requests": [r.to_dict() for r in items],
        "total_pending": total_pending,
    }


@service_action("Failed to fetch statistics")
def approval_statistics(identity) -> dict:
    authorize(identity, "approval_requests.decide")
    counts = dict(
        db.session.query(ApprovalRequest.status, db.func.count(ApprovalRequest.id))
        .group_by(ApprovalRequest.status)
        .all()
    )
    needing_document = ApprovalRequest.query.filter(
        ApprovalRequest.status == REQUEST_PENDING,
        ApprovalRequest.admin_response.isnot(None),
    ).count()
    return {
        "success": True,
        "statistics": {
            "pending": counts.get(REQUEST_PENDING, 0),
            "approved": counts.get(REQUEST_APPROVED, 0),
            "rejected": counts.get(REQUEST_REJECTED, 0),
            "needing_document": needing_document,
        },
    }


# ── Called by the form lifecycle engine ────────────────────────────────────────


def handle_form_resubmission(form_id: str, form_type: str) -> list[ApprovalRequest]:
    """Close every approved, unconsumed request for the form.

    Runs inside the engine's resubmission transaction (flush only).
    Idempotent: a second call closes nothing.
    """
    now = datetime.now(timezone.utc)
    closed = (
        ApprovalRequest.query
        .filter_by(form_type=form_type, form_id=form_id, status=REQUEST_APPROVED)
        .filter(ApprovalRequest.consumed_at.is_(None))
        .all()
    )
    for req in closed:
        req.consumed_at = now
    db.session.flush()
    if closed:
        logger.info(
            "Closed %d approval request(s) on resubmission", len(closed),
            extra={"form_type": form_type, "form_id": form_id},
        )
    return closed


def notify_form_resubmitted(form, definition, closed_requests) -> None:
    """Resubmission notifications: requesters and admins, no plain submit notice."""
    link = _form_link(definition.key, form.id)
    recipients = [req.requester_id for req in closed_requests] or [form.owner_id]
    NotificationService.notify_many(
        recipient_ids=recipients,
        type="FORM_RESUBMITTED",
        title=f"{definition.title} resubmitted",
        message="Your edits were resubmitted and the form is locked again.",
        link=link,
        related_id=form.id,
        related_type=definition.key,
        commit=False,
    )
    NotificationService.notify_roles(
        roles=ADMIN_ROLES,
        type="FORM_RESUBMITTED",
        title=f"{definition.title} resubmitted after approved edit",
        message=f"Form {form.id} was resubmitted.",
        link=link,
        related_id=form.id,
        related_type=definition.key,
        commit=False,
    )
    db.session.commit()
