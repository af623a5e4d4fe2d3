"""
Form Lifecycle Engine - one state machine for every compliance form type.

Lifecycle:
    NEW ──save(DRAFT)──▶ DRAFT ──save(SUBMITTED)──▶ SUBMITTED/LOCKED
                                                        │
                     admin approves an edit request     ▼
    SUBMITTED/LOCKED ◀──save(SUBMITTED)── SUBMITTED/EDITABLE_PENDING_RESUBMISSION

Design decisions:
    - Resubmission is recognised ONLY by the stored ``editability`` flag.
      The approval workflow sets it; the resubmission transaction clears it
      with a conditional UPDATE, so two concurrent resubmissions cannot both
      consume the same approval.
    - A submitted form is never reverted to DRAFT. Agencies must go through
      the approval workflow and resubmit.
    - Forms whose rows need Collection Manager sign-off keep row ids stable
      (upsert) so ``CMApproval.row_id`` stays valid; other forms replace
      their rows wholesale.
    - Row writes and the status change share one transaction. Activity log,
      notifications and cache invalidation run after commit and never change
      the outcome returned to the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from app.auth import authorize, has_capability
from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    StateError,
    UnauthorizedError,
    ValidationError,
)
from app.models import db
from app.models.approval import CMApproval
from app.models.audit import record_activity
from app.models.forms import (
    EDITABILITY_LOCKED,
    EDITABILITY_PENDING_RESUBMISSION,
    FORM_STATUSES,
    STATUS_DRAFT,
    STATUS_SUBMITTED,
    FormRow,
    FormSubmission,
)
from app.services import approval_request_service, cache_service
from app.services.form_registry import FormDefinition, get_form_definition
from app.services.helpers.action import atomic, service_action
from app.services.notification import NotificationService

logger = logging.getLogger(__name__)


# ── Transition classification ─────────────────────────────────────────────────

CREATE = "CREATE"
CREATE_AND_SUBMIT = "CREATE_AND_SUBMIT"
UPDATE = "UPDATE"
SUBMIT = "SUBMIT"
RESUBMISSION = "RESUBMISSION"

TRANSITION_ACTIONS = {
    CREATE: "FORM_CREATED",
    CREATE_AND_SUBMIT: "FORM_SUBMITTED",
    UPDATE: "FORM_UPDATED",
    SUBMIT: "FORM_SUBMITTED",
    RESUBMISSION: "FORM_RESUBMITTED",
}

TRANSITION_MESSAGES = {
    CREATE: "Draft saved successfully.",
    CREATE_AND_SUBMIT: "Form submitted successfully.",
    UPDATE: "Draft saved successfully.",
    SUBMIT: "Form submitted successfully.",
    RESUBMISSION: "Form resubmitted successfully. It is now locked.",
}

REVERT_MESSAGE = "Cannot revert a submitted form to draft directly. Request edit access first."
LOCKED_MESSAGE = "This form has been submitted and cannot be modified without approval."


def classify_transition(form: FormSubmission | None, requested_status: str) -> str:
    """Apply the save decision table.

    Raises:
        StateError: for transitions the table rejects.
    """
    if form is None:
        return CREATE if requested_status == STATUS_DRAFT else CREATE_AND_SUBMIT

    if form.status == STATUS_SUBMITTED and requested_status == STATUS_DRAFT:
        raise StateError(REVERT_MESSAGE)

    if requested_status == STATUS_SUBMITTED:
        if form.editability == EDITABILITY_PENDING_RESUBMISSION:
            return RESUBMISSION
        if form.status == STATUS_SUBMITTED:
            raise StateError(LOCKED_MESSAGE)
        return SUBMIT

    return UPDATE


# ── Private helpers ──────────────────────────────────────────────────────────


def _resolve_period(definition: FormDefinition, month, year) -> tuple[int | None, int | None]:
    """Monthly forms default to the current month; others carry no period."""
    if not definition.monthly:
        return None, None
    now = datetime.now(timezone.utc)
    try:
        month = int(month) if month is not None else now.month
        year = int(year) if year is not None else now.year
    except (TypeError, ValueError):
        raise ValidationError("month and year must be integers") from None
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12", details={"month": month})
    if not 2000 <= year <= 2100:
        raise ValidationError("year is out of range", details={"year": year})
    return month, year


def _load_for_owner(definition, owner_id, form_id, month, year) -> FormSubmission | None:
    if form_id:
        form = FormSubmission.query.filter_by(
            id=form_id, form_type=definition.key, owner_id=owner_id,
        ).first()
        if form is None:
            raise NotFoundError(
                "Form", form_id,
                message="Form not found or you do not have permission to edit it.",
            )
        return form
    if definition.monthly:
        return FormSubmission.query.filter_by(
            form_type=definition.key, owner_id=owner_id, month=month, year=year,
        ).first()
    return None


def _normalise_rows(definition: FormDefinition, rows) -> list[tuple[str | None, dict]]:
    if not isinstance(rows, list) or not rows:
        raise ValidationError("At least one row is required.")
    normalised = []
    seen_ids = set()
    for row in rows:
        if not isinstance(row, dict):
            raise ValidationError("Each row must be an object.")
        row_id = str(row["id"]) if row.get("id") else None
        if row_id is not None:
            if row_id in seen_ids:
                raise ValidationError(
                    "Each row may appear only once.", details={"duplicate_row_id": row_id},
                )
            seen_ids.add(row_id)
        normalised.append((row_id, definition.clean_row(row)))
    return normalised


def _check_required(definition: FormDefinition, rows) -> None:
    missing = {}
    for position, (_, data) in enumerate(rows, start=1):
        fields = definition.missing_fields(data)
        if fields:
            missing[str(position)] = fields
    if missing:
        raise ValidationError(
            "Please fill in all required fields for each row.",
            details={"rows": missing},
        )


def _check_unique(definition: FormDefinition, rows) -> None:
    for field in definition.unique_fields:
        seen = set()
        for _, data in rows:
            value = data.get(field)
            if value in (None, ""):
                continue
            if value in seen:
                raise ConflictError(
                    definition.title, field, value,
                    message=f"Duplicate {field} '{value}' in {definition.title}. Each row must be unique.",
                )
            seen.add(value)


def approved_row_ids(form_type: str, form_id: str) -> set[str]:
    return {
        row_id for (row_id,) in db.session.query(CMApproval.row_id)
        .filter_by(form_type=form_type, form_id=form_id)
        .all()
    }


def _check_cm_approvals(definition, form, rows) -> None:
    if form is None:
        raise StateError("You must save the form as a draft before submitting.")
    approved = approved_row_ids(definition.key, form.id)
    unapproved = sum(1 for row_id, _ in rows if not row_id or row_id not in approved)
    if unapproved:
        raise StateError(
            f"You have {unapproved} item(s) that must be approved by a "
            f"Collection Manager before submitting.",
            details={"unapproved_count": unapproved},
        )


def _consume_resubmission(form: FormSubmission) -> None:
    """Atomically flip EDITABLE_PENDING_RESUBMISSION → LOCKED.

    Zero matched rows means another request already resubmitted the form.
    """
    matched = (
        FormSubmission.query
        .filter_by(id=form.id, editability=EDITABILITY_PENDING_RESUBMISSION)
        .update({"editability": EDITABILITY_LOCKED}, synchronize_session=False)
    )
    if matched != 1:
        raise StateError(LOCKED_MESSAGE)


def _write_rows(definition: FormDefinition, form: FormSubmission, rows) -> None:
    if definition.requires_cm_approval:
        existing = {r.id: r for r in form.rows}
        updated = []
        for position, (row_id, data) in enumerate(rows):
            row = existing.get(row_id) if row_id else None
            if row is None:
                row = FormRow(data=data, position=position)
            else:
                row.data = data
                row.position = position
            updated.append(row)
        form.rows = updated
    else:
        form.rows = [FormRow(data=data, position=i) for i, (_, data) in enumerate(rows)]


def _describe(definition: FormDefinition, transition: str) -> str:
    verbs = {
        CREATE: "created as draft",
        CREATE_AND_SUBMIT: "created and submitted",
        UPDATE: "draft updated",
        SUBMIT: "submitted",
        RESUBMISSION: "resubmitted after approved edit",
    }
    return f"{definition.title} {verbs[transition]}"


def _after_commit(identity, definition, form, transition, old_values, new_values, closed_requests):
    """Activity log, notifications and cache invalidation.

    Runs after the form transaction committed; failures are logged only.
    """
    was_resubmission = transition == RESUBMISSION
    metadata = {
        "formType": definition.key,
        "oldValues": old_values,
        "newValues": new_values,
        "wasResubmission": was_resubmission,
        "month": form.month,
        "year": form.year,
    }
    if transition == CREATE_AND_SUBMIT:
        metadata["created"] = True

    record_activity(
        action=TRANSITION_ACTIONS[transition],
        entity_type=definition.key,
        entity_id=form.id,
        description=_describe(definition, transition),
        actor_user_id=identity.user_id,
        metadata=metadata,
    )

    try:
        if was_resubmission:
            approval_request_service.notify_form_resubmitted(form, definition, closed_requests)
        elif form.status == STATUS_SUBMITTED:
            NotificationService.create(
                recipient_id=form.owner_id,
                type="FORM_SUBMITTED",
                title=f"{definition.title} submitted",
                message=f"Your {definition.title} has been submitted and is now locked.",
                link=f"/forms/{definition.key}/{form.id}",
                related_id=form.id,
                related_type=definition.key,
            )
    except Exception:
        db.session.rollback()
        logger.exception("Failed to send notification for form %s", form.id)

    cache_service.invalidate_my_forms(form.owner_id)


# ── Public API ─────────────────────────────────────────────────────────────────


@service_action("Failed to save form. Please try again.")
def save_form(identity, form_type, rows, status, form_id=None, month=None, year=None) -> dict:
    """Save a form as DRAFT or SUBMITTED.

    Args:
        identity:  Calling agency (must hold ``forms.edit``).
        form_type: Registry key, e.g. ``"noDuesDeclaration"``.
        rows:      List of row dicts; ``id`` is honoured for CM-approval forms.
        status:    ``"DRAFT"`` or ``"SUBMITTED"``.
        form_id:   Existing form to update, if any.
        month/year: Period for monthly forms (defaults to the current month).
                    Sent with ``form_id``, it moves the existing form.

    Returns:
        ``{"success": True, "form_id", "status", "created", "action", "message"}``
        or ``{"error", "code"}``.
    """
    authorize(identity, "forms.edit")
    definition = get_form_definition(form_type)
    if status not in FORM_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Must be DRAFT or SUBMITTED.")

    cleaned = _normalise_rows(definition, rows)
    sent_month, sent_year = month, year
    month, year = _resolve_period(definition, month, year)
    form = _load_for_owner(definition, identity.user_id, form_id, month, year)
    if form is not None and definition.monthly:
        # Parts of the period not sent keep their stored value
        month = month if sent_month is not None else form.month
        year = year if sent_year is not None else form.year

    transition = classify_transition(form, status)

    if status == STATUS_SUBMITTED:
        _check_required(definition, cleaned)
    _check_unique(definition, cleaned)
    if status == STATUS_SUBMITTED and definition.requires_cm_approval:
        _check_cm_approvals(definition, form, cleaned)

    old_values = form.snapshot() if form is not None else None
    closed_requests = []
    try:
        with atomic():
            if form is None:
                form = FormSubmission(
                    form_type=definition.key,
                    owner_id=identity.user_id,
                    month=month,
                    year=year,
                )
                db.session.add(form)

            if transition == RESUBMISSION:
                _consume_resubmission(form)
                closed_requests = approval_request_service.handle_form_resubmission(
                    form.id, definition.key,
                )

            form.status = status
            if definition.monthly:
                form.month, form.year = month, year
            if status == STATUS_SUBMITTED:
                form.editability = EDITABILITY_LOCKED
                form.submitted_at = datetime.now(timezone.utc)

            _write_rows(definition, form, cleaned)
            db.session.flush()
    except IntegrityError:
        logger.warning(
            "Unique constraint violated saving %s", definition.key,
            extra={"form_type": definition.key, "user_id": identity.user_id},
        )
        raise ConflictError(
            definition.title, "period", f"{month}/{year}",
            message=f"A {definition.title} already exists for this period.",
        ) from None

    new_values = form.snapshot()
    logger.info(
        "Form %s: %s", transition.lower(), form.id,
        extra={
            "form_type": definition.key,
            "form_id": form.id,
            "user_id": identity.user_id,
            "event_type": TRANSITION_ACTIONS[transition],
        },
    )
    _after_commit(identity, definition, form, transition, old_values, new_values, closed_requests)

    return {
        "success": True,
        "form_id": form.id,
        "status": form.status,
        "created": old_values is None,
        "action": TRANSITION_ACTIONS[transition],
        "message": TRANSITION_MESSAGES[transition],
    }


@service_action("Failed to delete form.")
def delete_form(identity, form_type, form_id) -> dict:
    """Delete a DRAFT form together with its rows and CM approvals."""
    authorize(identity, "forms.edit")
    definition = get_form_definition(form_type)
    form = FormSubmission.query.filter_by(
        id=form_id, form_type=definition.key, owner_id=identity.user_id,
    ).first()
    if form is None:
        raise NotFoundError(
            "Form", form_id,
            message="Form not found or you don't have permission to delete it.",
        )
    if form.status == STATUS_SUBMITTED:
        raise StateError("Cannot delete a submitted form.")

    snapshot = form.snapshot()
    with atomic():
        CMApproval.query.filter_by(form_type=definition.key, form_id=form.id).delete(
            synchronize_session=False,
        )
        db.session.delete(form)

    record_activity(
        action="FORM_DELETED",
        entity_type=definition.key,
        entity_id=form_id,
        description=f"{definition.title} draft deleted",
        actor_user_id=identity.user_id,
        metadata={"formType": definition.key, "oldValues": snapshot},
    )
    cache_service.invalidate_my_forms(identity.user_id)
    return {"success": True, "message": "Form deleted successfully."}


def _load_visible(identity, definition, form_id) -> FormSubmission:
    """Owner, or a role allowed to view every agency's forms."""
    if identity is None:
        raise UnauthorizedError()
    form = FormSubmission.query.filter_by(id=form_id, form_type=definition.key).first()
    if form is None:
        raise NotFoundError("Form", form_id)
    if form.owner_id != identity.user_id and not has_capability(identity, "forms.view_all"):
        raise NotFoundError("Form", form_id)
    return form


@service_action("Failed to load form.")
def get_form(identity, form_type, form_id) -> dict:
    """Form with rows, latest CM approval per row and the open edit request."""
    definition = get_form_definition(form_type)
    form = _load_visible(identity, definition, form_id)

    approvals = {}
    for approval in (
        CMApproval.query.filter_by(form_type=definition.key, form_id=form.id)
        .order_by(CMApproval.created_at)
        .all()
    ):
        approvals[approval.row_id] = approval.to_dict()  # latest wins

    open_request = approval_request_service.latest_open_request(definition.key, form.id)
    return {
        "form": form.to_dict(include_rows=True),
        "title": definition.title,
        "requires_cm_approval": definition.requires_cm_approval,
        "cm_approvals": approvals,
        "open_request": open_request.to_dict() if open_request else None,
    }


@service_action("Failed to load forms.")
def list_my_forms(identity) -> dict:
    """Dashboard listing of the caller's forms, newest first (cached)."""
    authorize(identity, "forms.edit")

    def _load():
        forms = (
            FormSubmission.query.filter_by(owner_id=identity.user_id)
            .order_by(FormSubmission.updated_at.desc())
            .all()
        )
        return [f.to_dict() for f in forms]

    items = cache_service.get_my_forms(identity.user_id, _load)
    return {"items": items, "total": len(items)}


@service_action("Failed to load forms.")
def list_forms(identity, form_type, owner_id=None, status=None) -> dict:
    """Admin / auditor listing of one form type across agencies."""
    authorize(identity, "forms.view_all")
    definition = get_form_definition(form_type)
    q = FormSubmission.query.filter_by(form_type=definition.key)
    if owner_id is not None:
        q = q.filter_by(owner_id=owner_id)
    if status:
        if status not in FORM_STATUSES:
            raise ValidationError(f"Invalid status '{status}'")
        q = q.filter_by(status=status)
    forms = q.order_by(FormSubmission.updated_at.desc()).all()
    return {"items": [f.to_dict() for f in forms], "total": len(forms)}
