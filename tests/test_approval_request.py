"""
Approval request workflow tests.

Tests cover:
  - Filing a request: validation, ownership, drafts, one open request per form (form row locked)
  - Admin decision: approve reopens the form, reject keeps it locked, no double decision
  - Document requests and uploads
  - Status check, "my requests" listing, admin queue search and statistics
  - Resubmission closes the approved request (idempotent)
"""

import pytest
from sqlalchemy import event
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from app.models import db
from app.models.approval import ApprovalRequest
from app.models.audit import ActivityLog
from app.models.forms import (
    EDITABILITY_LOCKED,
    EDITABILITY_PENDING_RESUBMISSION,
    STATUS_DRAFT,
    STATUS_SUBMITTED,
    FormSubmission,
)
from app.models.notification import Notification
from app.services import approval_request_service as svc
from app.services import form_lifecycle
from app.utils.errors import E

DOC = "/uploads/supporting/visit-log-march.pdf"


@pytest.fixture()
def submitted_form(agency, identity_for, visit_rows):
    result = form_lifecycle.save_form(identity_for(agency), "agencyVisits", visit_rows(2), STATUS_SUBMITTED)
    assert result["success"] is True
    return result["form_id"]


@pytest.fixture()
def pending(agency, identity_for, submitted_form):
    result = svc.submit_approval_request(
        identity_for(agency), "agencyVisits", submitted_form,
        "UPDATE_SUBMITTED_FORM", "Employee id typed wrong", DOC,
    )
    assert result["success"] is True
    return result["request"]["id"]


# ═════════════════════════════════════════════════════════════════════════
# FILING
# ═════════════════════════════════════════════════════════════════════════


class TestSubmitRequest:
    def test_creates_pending_request_and_notifies_admins(self, agency, admin, super_admin, identity_for,
                                                         submitted_form):
        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", submitted_form,
            "UPDATE_SUBMITTED_FORM", "  Employee id typed wrong  ", DOC,
        )

        assert result["success"] is True
        req = result["request"]
        assert req["status"] == "PENDING"
        assert req["reason"] == "Employee id typed wrong"
        assert req["is_open"] is True
        assert ActivityLog.query.filter_by(action="APPROVAL_REQUESTED").count() == 1
        for user in (admin, super_admin):
            assert Notification.query.filter_by(recipient_id=user.id, type="APPROVAL_REQUEST").count() == 1

    def test_reason_required(self, agency, identity_for, submitted_form):
        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "   ", DOC,
        )
        assert result["error"] == "A reason is required."
        assert result["code"] == E.VALIDATION_INVALID

    def test_document_required(self, agency, identity_for, submitted_form):
        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "Typo", "",
        )
        assert result["error"] == "A supporting document is required."

    def test_invalid_request_type(self, agency, identity_for, submitted_form):
        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", submitted_form, "REOPEN", "Typo", DOC,
        )
        assert result["code"] == E.VALIDATION_INVALID
        assert "REOPEN" in result["error"]

    def test_draft_does_not_need_request(self, agency, identity_for, visit_rows):
        draft = form_lifecycle.save_form(identity_for(agency), "agencyVisits", visit_rows(1), STATUS_DRAFT)
        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", draft["form_id"], "UPDATE_SUBMITTED_FORM", "Typo", DOC,
        )
        assert result["code"] == E.CONFLICT_STATE

    def test_other_agency_form_not_found(self, other_agency, identity_for, submitted_form):
        result = svc.submit_approval_request(
            identity_for(other_agency), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "x", DOC,
        )
        assert result["code"] == E.NOT_FOUND

    def test_admin_cannot_file(self, admin, identity_for, submitted_form):
        result = svc.submit_approval_request(
            identity_for(admin), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "x", DOC,
        )
        assert result["code"] == E.FORBIDDEN

    def test_second_request_while_pending_rejected(self, agency, identity_for, submitted_form, pending):
        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "Again", DOC,
        )
        assert result["code"] == E.CONFLICT_DUPLICATE
        assert result["error"] == "You already have a pending request for this form."
        assert ApprovalRequest.query.count() == 1

    def test_form_row_locked_while_checking_open_requests(self, agency, identity_for, submitted_form):
        selects = []

        def capture(state):
            if state.is_select:
                selects.append(str(state.statement.compile(dialect=postgresql.dialect())))

        event.listen(Session, "do_orm_execute", capture)
        try:
            result = svc.submit_approval_request(
                identity_for(agency), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "Typo", DOC,
            )
        finally:
            event.remove(Session, "do_orm_execute", capture)

        assert result["success"] is True
        assert any(
            "FROM form_submissions" in sql and sql.rstrip().endswith("FOR UPDATE") for sql in selects
        )

    def test_second_request_while_approved_unconsumed_rejected(self, agency, admin, identity_for,
                                                              submitted_form, pending):
        svc.decide_approval_request(identity_for(admin), pending, "APPROVED")
        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "Again", DOC,
        )
        assert result["code"] == E.CONFLICT_DUPLICATE
        assert "Resubmit the form first" in result["error"]

    def test_new_request_allowed_after_rejection(self, agency, admin, identity_for, submitted_form, pending):
        svc.decide_approval_request(identity_for(admin), pending, "REJECTED", "Not enough detail")
        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "More detail", DOC,
        )
        assert result["success"] is True


# ═════════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════════


class TestDecide:
    def test_approve_reopens_form(self, agency, admin, identity_for, submitted_form, pending):
        result = svc.decide_approval_request(identity_for(admin), pending, "APPROVED")

        assert result["success"] is True
        assert result["request"]["status"] == "APPROVED"
        assert result["request"]["admin_response"] == "Approved"
        assert result["request"]["reviewed_by"] == admin.id
        form = db.session.get(FormSubmission, submitted_form)
        assert form.status == STATUS_SUBMITTED
        assert form.editability == EDITABILITY_PENDING_RESUBMISSION
        assert form.can_edit is True
        note = Notification.query.filter_by(recipient_id=agency.id, type="APPROVAL_DECISION").one()
        assert "approved" in note.title
        assert ActivityLog.query.filter_by(action="APPROVAL_GRANTED").count() == 1

    def test_reject_keeps_form_locked(self, agency, admin, identity_for, submitted_form, pending):
        result = svc.decide_approval_request(identity_for(admin), pending, "REJECTED", "Missing signature")

        assert result["request"]["status"] == "REJECTED"
        assert result["request"]["admin_response"] == "Missing signature"
        form = db.session.get(FormSubmission, submitted_form)
        assert form.editability == EDITABILITY_LOCKED
        assert form.can_edit is False
        assert ActivityLog.query.filter_by(action="APPROVAL_REJECTED").count() == 1

    def test_cannot_decide_twice(self, admin, identity_for, pending):
        svc.decide_approval_request(identity_for(admin), pending, "REJECTED")
        result = svc.decide_approval_request(identity_for(admin), pending, "APPROVED")
        assert result["code"] == E.CONFLICT_STATE
        assert result["error"] == "This request has already been rejected."

    def test_invalid_decision(self, admin, identity_for, pending):
        result = svc.decide_approval_request(identity_for(admin), pending, "MAYBE")
        assert result["code"] == E.VALIDATION_INVALID

    def test_unknown_request(self, admin, identity_for):
        result = svc.decide_approval_request(identity_for(admin), "missing-id", "APPROVED")
        assert result == {"error": "Request not found", "code": E.NOT_FOUND}

    def test_agency_cannot_decide(self, agency, identity_for, pending):
        result = svc.decide_approval_request(identity_for(agency), pending, "APPROVED")
        assert result["code"] == E.FORBIDDEN
        assert db.session.get(ApprovalRequest, pending).status == "PENDING"

    def test_auditor_cannot_decide(self, auditor, identity_for, pending):
        result = svc.decide_approval_request(identity_for(auditor), pending, "APPROVED")
        assert result["code"] == E.FORBIDDEN

    def test_super_admin_can_decide(self, super_admin, identity_for, pending):
        result = svc.decide_approval_request(identity_for(super_admin), pending, "APPROVED")
        assert result["success"] is True


# ═════════════════════════════════════════════════════════════════════════
# DOCUMENTS
# ═════════════════════════════════════════════════════════════════════════


class TestDocuments:
    def test_request_document_notifies_requester(self, agency, admin, identity_for, pending):
        result = svc.request_document(identity_for(admin), pending, "Please upload the signed document")

        assert result["request"]["admin_response"] == "Please upload the signed document"
        assert Notification.query.filter_by(recipient_id=agency.id, type="DOCUMENT_REQUESTED").count() == 1
        assert ActivityLog.query.filter_by(action="DOCUMENT_REQUESTED").count() == 1

    def test_upload_clears_document_note(self, agency, admin, identity_for, pending):
        svc.request_document(identity_for(admin), pending, "Please upload the signed document")
        result = svc.upload_supporting_document(identity_for(agency), pending, "/uploads/signed.pdf")

        assert result["success"] is True
        assert result["request"]["document_path"] == "/uploads/signed.pdf"
        assert result["request"]["admin_response"] is None
        assert ActivityLog.query.filter_by(action="DOCUMENT_UPLOADED").count() == 1

    def test_upload_keeps_unrelated_note(self, agency, admin, identity_for, pending):
        svc.request_document(identity_for(admin), pending, "Explain row 2")
        result = svc.upload_supporting_document(identity_for(agency), pending, "/uploads/x.pdf")
        assert result["request"]["admin_response"] == "Explain row 2"

    def test_upload_to_someone_elses_request(self, other_agency, identity_for, pending):
        result = svc.upload_supporting_document(identity_for(other_agency), pending, "/uploads/x.pdf")
        assert result["code"] == E.FORBIDDEN
        assert result["error"] == "Forbidden: You can only upload documents for your own requests"

    def test_upload_to_closed_request(self, agency, admin, identity_for, pending):
        svc.decide_approval_request(identity_for(admin), pending, "REJECTED")
        result = svc.upload_supporting_document(identity_for(agency), pending, "/uploads/x.pdf")
        assert result["code"] == E.CONFLICT_STATE

    def test_request_document_on_closed_request(self, admin, identity_for, pending):
        svc.decide_approval_request(identity_for(admin), pending, "APPROVED")
        result = svc.request_document(identity_for(admin), pending, "More please")
        assert result["code"] == E.CONFLICT_STATE


# ═════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════


class TestQueries:
    def test_status_without_request(self, agency, identity_for, submitted_form):
        result = svc.check_form_approval_status(identity_for(agency), "agencyVisits", submitted_form)
        assert result["has_request"] is False
        assert result["can_edit"] is False
        assert result["editability"] == EDITABILITY_LOCKED

    def test_status_after_approval(self, agency, admin, identity_for, submitted_form, pending):
        svc.decide_approval_request(identity_for(admin), pending, "APPROVED")
        result = svc.check_form_approval_status(identity_for(agency), "agencyVisits", submitted_form)
        assert result["has_request"] is True
        assert result["status"] == "APPROVED"
        assert result["request_id"] == pending
        assert result["can_edit"] is True

    def test_status_hidden_from_other_agency(self, other_agency, identity_for, submitted_form):
        result = svc.check_form_approval_status(identity_for(other_agency), "agencyVisits", submitted_form)
        assert result["code"] == E.NOT_FOUND

    def test_my_requests(self, agency, other_agency, identity_for, pending):
        mine = svc.list_my_approval_requests(identity_for(agency))
        assert [r["id"] for r in mine["requests"]] == [pending]
        theirs = svc.list_my_approval_requests(identity_for(other_agency))
        assert theirs["requests"] == []

    def test_admin_queue_defaults_to_pending(self, admin, identity_for, pending):
        result = svc.list_approval_requests(identity_for(admin))
        assert result["total_pending"] == 1
        assert result["requests"][0]["id"] == pending
        assert result["requests"][0]["requester_name"] == "Alpha Collections"

    def test_admin_queue_search(self, admin, identity_for, pending):
        by_reason = svc.list_approval_requests(identity_for(admin), search="typed wrong")
        by_name = svc.list_approval_requests(identity_for(admin), search="alpha")
        by_email = svc.list_approval_requests(identity_for(admin), search="alphacollections.com")
        miss = svc.list_approval_requests(identity_for(admin), search="beta")
        assert len(by_reason["requests"]) == 1
        assert len(by_name["requests"]) == 1
        assert len(by_email["requests"]) == 1
        assert miss["requests"] == []

    def test_admin_queue_invalid_status(self, admin, identity_for):
        result = svc.list_approval_requests(identity_for(admin), status="CONSUMED")
        assert result["code"] == E.VALIDATION_INVALID

    def test_statistics(self, agency, admin, identity_for, visit_rows, pending):
        svc.request_document(identity_for(admin), pending, "Need the signed copy")
        other = form_lifecycle.save_form(
            identity_for(agency), "agencyVisits", visit_rows(1), STATUS_SUBMITTED, month=1, year=2025,
        )
        second = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", other["form_id"], "UPDATE_PREVIOUS_MONTH", "Late fix", DOC,
        )
        svc.decide_approval_request(identity_for(admin), second["request"]["id"], "REJECTED")

        stats = svc.approval_statistics(identity_for(admin))["statistics"]
        assert stats == {"pending": 1, "approved": 0, "rejected": 1, "needing_document": 1}


# ═════════════════════════════════════════════════════════════════════════
# RESUBMISSION
# ═════════════════════════════════════════════════════════════════════════


class TestResubmissionClosesRequest:
    def test_handle_form_resubmission_is_idempotent(self, admin, identity_for, submitted_form, pending):
        svc.decide_approval_request(identity_for(admin), pending, "APPROVED")

        first = svc.handle_form_resubmission(submitted_form, "agencyVisits")
        db.session.commit()
        second = svc.handle_form_resubmission(submitted_form, "agencyVisits")

        assert [r.id for r in first] == [pending]
        assert second == []
        assert svc.latest_open_request("agencyVisits", submitted_form) is None

    def test_resubmit_makes_room_for_new_request(self, agency, admin, identity_for, visit_rows,
                                                 submitted_form, pending):
        svc.decide_approval_request(identity_for(admin), pending, "APPROVED")
        form_lifecycle.save_form(
            identity_for(agency), "agencyVisits", visit_rows(2), STATUS_SUBMITTED, form_id=submitted_form,
        )

        result = svc.submit_approval_request(
            identity_for(agency), "agencyVisits", submitted_form, "UPDATE_SUBMITTED_FORM", "One more fix", DOC,
        )
        assert result["success"] is True
        closed = db.session.get(ApprovalRequest, pending)
        assert closed.consumed_at is not None
        assert closed.is_open is False
