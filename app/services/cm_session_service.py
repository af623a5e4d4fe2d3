"""
Delegated Collection Manager sessions.

A CM logs in *inside* an agency's active session to sign off individual
form rows without the agency logging out.  Only agency users (role USER)
may host a CM session; every operation re-validates ownership and expiry
against the node-local ``CMSessionStore``.

Failure messages stay distinct so the client can tell
"log in again" apart from "not your session":
    - bad credentials       → one generic message, no user-existence leakage
    - unknown session id    → "session not found"
    - other agency's session → "session mismatch", nothing is mutated
    - past the sliding window → "session expired", the record is removed
"""

from __future__ import annotations

import logging

from flask import current_app

from app.auth import authorize
from app.core.exceptions import (
    ForbiddenError,
    NotFoundError,
    StateError,
    UnauthorizedError,
    ValidationError,
)
from app.models import db
from app.models.approval import CMApproval
from app.models.audit import record_activity
from app.models.auth import ROLE_COLLECTION_MANAGER, CollectionManagerProfile
from app.models.forms import FormRow, FormSubmission
from app.services.form_registry import get_form_definition
from app.services.helpers.action import atomic, service_action
from app.services.notification import NotificationService
from app.services.user_service import get_user_by_email
from app.utils.crypto import verify_password
from app.utils.request_meta import client_ip, user_agent

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid Collection Manager credentials"
SESSION_NOT_FOUND = "Collection Manager session not found. Please login again."
SESSION_MISMATCH = "Session mismatch. Invalid approval attempt."
SESSION_EXPIRED = "Collection Manager session expired. Please login again."


def get_store():
    return current_app.extensions["cm_sessions"]


def _validated_session(store, identity, session_id):
    """Run the not-found → ownership → expiry checks in that order."""
    record = store.get(session_id) if session_id else None
    if record is None:
        raise NotFoundError("CM session", session_id, message=SESSION_NOT_FOUND)
    if record.agency_user_id != identity.user_id:
        logger.warning(
            "CM session used by another agency",
            extra={
                "cm_session_id": session_id,
                "user_id": identity.user_id,
                "event_type": "cm_session_mismatch",
            },
        )
        raise ForbiddenError(SESSION_MISMATCH)
    if store.is_expired(record):
        store.delete(session_id)
        raise UnauthorizedError(SESSION_EXPIRED)
    return record


def _notify_both(record, *, title, cm_message, agency_message):
    try:
        NotificationService.create(
            recipient_id=record.cm_user_id, type="SYSTEM_ALERT",
            title=title, message=cm_message, commit=False,
        )
        NotificationService.create(
            recipient_id=record.agency_user_id, type="SYSTEM_ALERT",
            title=title, message=agency_message, commit=False,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to send CM session notifications")


# ── Login / logout ────────────────────────────────────────────────────────────


@service_action("Failed to login as Collection Manager")
def cm_login(identity, email, password, product_tag) -> dict:
    authorize(identity, "cm_sessions.host")
    email = (email or "").strip()
    product_tag = (product_tag or "").strip()
    if not email or not password or not product_tag:
        raise ValidationError("Email, password and product are required.")

    cm_user = get_user_by_email(email)
    if (
        cm_user is None
        or cm_user.role != ROLE_COLLECTION_MANAGER
        or not cm_user.is_active
        or not verify_password(password, cm_user.password_hash)
    ):
        logger.info(
            "CM login rejected for %s", email,
            extra={"user_id": identity.user_id, "event_type": "cm_login_failed"},
        )
        raise UnauthorizedError(INVALID_CREDENTIALS)

    designation = cm_user.cm_profile.designation if cm_user.cm_profile else "Collection Manager"
    store = get_store()
    record = store.create(
        cm_user_id=cm_user.id,
        cm_name=cm_user.name,
        cm_email=cm_user.email,
        cm_designation=designation,
        product_tag=product_tag,
        agency_user_id=identity.user_id,
        agency_name=identity.name,
        ip_address=client_ip(),
    )

    record_activity(
        action="USER_LOGIN",
        entity_type="cm_session",
        entity_id=record.session_id,
        description=f"Collection Manager {cm_user.name} logged in for {product_tag}",
        actor_user_id=cm_user.id,
        metadata={
            "sessionId": record.session_id,
            "agencyUserId": identity.user_id,
            "productTag": product_tag,
            "ipAddress": record.ip_address,
        },
    )
    _notify_both(
        record,
        title="Collection Manager session started",
        cm_message=f"You logged in to {identity.name or 'an agency'} session for {product_tag}.",
        agency_message=f"{cm_user.name} logged in to approve {product_tag} items.",
    )

    timeout_minutes = int(store.timeout.total_seconds() // 60)
    return {
        "success": True,
        "session_id": record.session_id,
        "cm_name": record.cm_name,
        "cm_email": record.cm_email,
        "product_tag": record.product_tag,
        "expires_in": timeout_minutes,
    }


@service_action("Failed to logout Collection Manager")
def cm_logout(identity, session_id) -> dict:
    authorize(identity, "cm_sessions.host")
    store = get_store()
    record = store.get(session_id) if session_id else None
    if record is None:
        return {"success": True, "message": "Session already expired"}
    if record.agency_user_id != identity.user_id:
        raise ForbiddenError(SESSION_MISMATCH)

    store.delete(session_id)
    duration = store.now() - record.login_time
    duration_minutes = int(duration.total_seconds() // 60)

    record_activity(
        action="USER_LOGOUT",
        entity_type="cm_session",
        entity_id=session_id,
        description=f"Collection Manager {record.cm_name} logged out",
        actor_user_id=record.cm_user_id,
        metadata={"sessionId": session_id, "sessionDurationMinutes": duration_minutes},
    )
    _notify_both(
        record,
        title="Collection Manager session ended",
        cm_message="Your Collection Manager session has ended.",
        agency_message=f"{record.cm_name} logged out.",
    )
    return {
        "success": True,
        "message": "Logged out successfully",
        "session_duration": duration_minutes,
    }


# ── Approval ──────────────────────────────────────────────────────────────────


@service_action("Failed to approve item")
def cm_approve_row(identity, session_id, form_type, form_id, row_id, field_to_update=None, remarks=None) -> dict:
    """Sign off one row as the session's CM and slide the session window."""
    authorize(identity, "cm_sessions.host")
    store = get_store()
    record = _validated_session(store, identity, session_id)

    definition = get_form_definition(form_type)
    if not definition.requires_cm_approval:
        raise ValidationError(f"{definition.title} does not take Collection Manager approvals.")

    form = FormSubmission.query.filter_by(
        id=form_id, form_type=definition.key, owner_id=identity.user_id,
    ).first()
    if form is None:
        raise NotFoundError("Form", form_id)
    if not form.can_edit:
        raise StateError("This form has been submitted and cannot be modified without approval.")
    row = db.session.get(FormRow, row_id)
    if row is None or row.form_id != form.id:
        raise NotFoundError("Row", row_id, message="Item not found on this form.")

    profile = CollectionManagerProfile.query.filter_by(user_id=record.cm_user_id).first()
    if profile is None:
        raise NotFoundError("Collection Manager profile", record.cm_user_id,
                            message="Collection Manager profile not found")

    now = store.now()
    signature = (
        f"Approved by {record.cm_name} ({record.cm_email}) - {profile.designation} "
        f"- {record.product_tag} - {now.isoformat()}"
    )
    with atomic():
        approval = CMApproval(
            cm_profile_id=profile.id,
            agency_id=identity.user_id,
            form_type=definition.key,
            form_id=form.id,
            row_id=row.id,
            field_updated=field_to_update,
            approval_signature=signature,
            product_tag=record.product_tag,
            remarks=remarks,
            ip_address=client_ip(),
            user_agent=user_agent(),
        )
        db.session.add(approval)

    store.touch(session_id)
    logger.info(
        "CM approval recorded for row %s", row.id,
        extra={
            "cm_session_id": session_id,
            "form_type": definition.key,
            "form_id": form.id,
            "user_id": identity.user_id,
        },
    )
    record_activity(
        action="APPROVAL_GRANTED",
        entity_type="cm_approval",
        entity_id=approval.id,
        description=f"{record.cm_name} approved an item on {definition.title}",
        actor_user_id=record.cm_user_id,
        metadata={
            "sessionId": session_id,
            "formType": definition.key,
            "formId": form.id,
            "rowId": row.id,
            "fieldUpdated": field_to_update,
            "approvalSignature": signature,
            "productTag": record.product_tag,
            "remarks": remarks,
            "cmProfileId": profile.id,
            "agencyId": identity.user_id,
        },
    )
    return {
        "success": True,
        "approval_id": approval.id,
        "approval_signature": signature,
        "timestamp": now.isoformat(),
        "collection_manager": {
            "name": record.cm_name,
            "email": record.cm_email,
            "designation": profile.designation,
            "product_tag": record.product_tag,
        },
    }


# ── Status ────────────────────────────────────────────────────────────────────


@service_action("Failed to check session status")
def cm_check_status(identity, session_id) -> dict:
    authorize(identity, "cm_sessions.host")
    store = get_store()
    try:
        record = _validated_session(store, identity, session_id)
    except (NotFoundError, UnauthorizedError) as exc:
        return {"success": True, "active": False, "error": str(exc)}
    return {
        "success": True,
        "active": True,
        "cm_name": record.cm_name,
        "cm_email": record.cm_email,
        "product_tag": record.product_tag,
        "remaining_minutes": store.remaining_minutes(record),
    }


@service_action("Failed to list sessions")
def cm_list_active_sessions(identity) -> dict:
    authorize(identity, "cm_sessions.host")
    store = get_store()
    sessions = []
    for record in store.for_agency(identity.user_id):
        sessions.append({
            "session_id": record.session_id,
            "cm_name": record.cm_name,
            "cm_email": record.cm_email,
            "product_tag": record.product_tag,
            "login_time": record.login_time.isoformat(),
            "remaining_minutes": store.remaining_minutes(record),
        })
    return {"success": True, "sessions": sessions}


@service_action("Failed to fetch session statistics")
def cm_session_stats(identity) -> dict:
    authorize(identity, "cm_sessions.monitor")
    return {"success": True, "statistics": get_store().stats()}
