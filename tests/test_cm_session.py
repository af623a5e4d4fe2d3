"""
Delegated Collection Manager session tests.

Tests cover:
  - Login: success, generic failure for bad password / unknown user / wrong role / inactive
  - Row approval: signature format, activity payload, sliding window
  - Expiry: approval after the window fails and removes the session
  - Cross-agency misuse: mismatch error, nothing written, session untouched
  - Status, listing, logout, monitor statistics (super admin only)
"""

import pytest

from app.models.approval import CMApproval
from app.models.audit import ActivityLog
from app.models.forms import STATUS_DRAFT, STATUS_SUBMITTED
from app.models.notification import Notification
from app.services import cm_session_service as svc
from app.services import form_lifecycle
from app.services.user_service import deactivate_user
from app.utils.errors import E

CM_PASSWORD = "Cm-Secret-123"


@pytest.fixture()
def cm_form(agency, identity_for, compliance_rows):
    """Draft monthlyCompliance form; returns (form_id, [row ids])."""
    ident = identity_for(agency)
    created = form_lifecycle.save_form(ident, "monthlyCompliance", compliance_rows(3), STATUS_DRAFT)
    rows = form_lifecycle.get_form(ident, "monthlyCompliance", created["form_id"])["form"]["rows"]
    return created["form_id"], [r["id"] for r in rows]


@pytest.fixture()
def session_id(agency, cm_user, identity_for):
    result = svc.cm_login(identity_for(agency), cm_user.email, CM_PASSWORD, "Personal Loan")
    assert result["success"] is True
    return result["session_id"]


# ═════════════════════════════════════════════════════════════════════════
# LOGIN
# ═════════════════════════════════════════════════════════════════════════


class TestLogin:
    def test_login_success(self, agency, cm_user, identity_for, cm_store):
        result = svc.cm_login(identity_for(agency), "Chitra.Menon@axisbank-collections.com", CM_PASSWORD,
                              "Personal Loan")

        assert result["success"] is True
        assert result["session_id"].startswith("cm_")
        assert result["cm_name"] == "Chitra Menon"
        assert result["product_tag"] == "Personal Loan"
        assert result["expires_in"] == 15
        assert len(cm_store) == 1

        log = ActivityLog.query.filter_by(action="USER_LOGIN").one()
        assert log.actor_user_id == cm_user.id
        assert log.details["agencyUserId"] == agency.id
        assert Notification.query.filter_by(recipient_id=cm_user.id, type="SYSTEM_ALERT").count() == 1
        assert Notification.query.filter_by(recipient_id=agency.id, type="SYSTEM_ALERT").count() == 1

    @pytest.mark.parametrize("email,password", [
        ("chitra.menon@axisbank-collections.com", "wrong-password"),
        ("nobody@axisbank-collections.com", CM_PASSWORD),
    ])
    def test_bad_credentials_are_generic(self, agency, cm_user, identity_for, cm_store, email, password):
        result = svc.cm_login(identity_for(agency), email, password, "Personal Loan")
        assert result == {"error": svc.INVALID_CREDENTIALS, "code": E.UNAUTHORIZED}
        assert len(cm_store) == 0

    def test_non_cm_user_rejected(self, agency, other_agency, identity_for):
        result = svc.cm_login(identity_for(agency), other_agency.email, "anything", "Personal Loan")
        assert result["error"] == svc.INVALID_CREDENTIALS

    def test_inactive_cm_rejected(self, agency, cm_user, identity_for):
        deactivate_user(cm_user.id)
        result = svc.cm_login(identity_for(agency), cm_user.email, CM_PASSWORD, "Personal Loan")
        assert result["error"] == svc.INVALID_CREDENTIALS

    def test_missing_fields(self, agency, cm_user, identity_for):
        result = svc.cm_login(identity_for(agency), cm_user.email, CM_PASSWORD, "  ")
        assert result["code"] == E.VALIDATION_INVALID

    def test_admin_cannot_host(self, admin, cm_user, identity_for):
        result = svc.cm_login(identity_for(admin), cm_user.email, CM_PASSWORD, "Personal Loan")
        assert result["code"] == E.FORBIDDEN


# ═════════════════════════════════════════════════════════════════════════
# APPROVALS
# ═════════════════════════════════════════════════════════════════════════


class TestApproveRow:
    def test_approve_row(self, agency, cm_user, identity_for, clock, session_id, cm_form):
        form_id, row_ids = cm_form
        result = svc.cm_approve_row(
            identity_for(agency), session_id, "monthlyCompliance", form_id, row_ids[0],
            field_to_update="complied", remarks="Verified on site",
        )

        assert result["success"] is True
        expected = (
            "Approved by Chitra Menon (chitra.menon@axisbank-collections.com) - "
            f"Senior Collection Manager - Personal Loan - {clock.now.isoformat()}"
        )
        assert result["approval_signature"] == expected
        assert result["collection_manager"]["designation"] == "Senior Collection Manager"

        approval = CMApproval.query.one()
        assert approval.row_id == row_ids[0]
        assert approval.agency_id == agency.id
        assert approval.cm_profile_id == cm_user.cm_profile.id

        log = ActivityLog.query.filter_by(action="APPROVAL_GRANTED", entity_type="cm_approval").one()
        assert log.entity_id == approval.id
        assert log.details["rowId"] == row_ids[0]
        assert log.details["approvalSignature"] == expected
        assert log.details["remarks"] == "Verified on site"

    def test_approval_slides_window(self, agency, identity_for, clock, cm_store, session_id, cm_form):
        form_id, row_ids = cm_form
        ident = identity_for(agency)
        clock.advance(minutes=10)
        assert svc.cm_approve_row(ident, session_id, "monthlyCompliance", form_id, row_ids[0])["success"]
        clock.advance(minutes=10)
        assert svc.cm_approve_row(ident, session_id, "monthlyCompliance", form_id, row_ids[1])["success"]

        assert cm_store.get(session_id).login_time == clock.now
        assert CMApproval.query.count() == 2

    def test_expired_session(self, agency, identity_for, clock, cm_store, session_id, cm_form):
        form_id, row_ids = cm_form
        clock.advance(minutes=20)

        result = svc.cm_approve_row(identity_for(agency), session_id, "monthlyCompliance", form_id, row_ids[0])

        assert result == {"error": svc.SESSION_EXPIRED, "code": E.UNAUTHORIZED}
        assert cm_store.get(session_id) is None
        assert CMApproval.query.count() == 0

    def test_unknown_session(self, agency, identity_for, cm_form):
        form_id, row_ids = cm_form
        result = svc.cm_approve_row(identity_for(agency), "cm_nope", "monthlyCompliance", form_id, row_ids[0])
        assert result["code"] == E.NOT_FOUND
        assert result["error"] == svc.SESSION_NOT_FOUND

    def test_other_agency_cannot_use_session(self, other_agency, identity_for, clock, cm_store, session_id,
                                             cm_form):
        form_id, row_ids = cm_form
        before = cm_store.get(session_id)
        clock.advance(minutes=5)

        result = svc.cm_approve_row(
            identity_for(other_agency), session_id, "monthlyCompliance", form_id, row_ids[0],
        )

        assert result["code"] == E.FORBIDDEN
        assert result["error"] == f"Forbidden: {svc.SESSION_MISMATCH}"
        assert CMApproval.query.count() == 0
        assert cm_store.get(session_id) == before

    def test_form_without_cm_approval(self, agency, identity_for, visit_rows, session_id):
        draft = form_lifecycle.save_form(identity_for(agency), "agencyVisits", visit_rows(1), STATUS_DRAFT)
        result = svc.cm_approve_row(
            identity_for(agency), session_id, "agencyVisits", draft["form_id"], "row",
        )
        assert result["code"] == E.VALIDATION_INVALID

    def test_row_from_another_form(self, agency, identity_for, compliance_rows, session_id, cm_form):
        form_id, _ = cm_form
        other = form_lifecycle.save_form(
            identity_for(agency), "monthlyCompliance", compliance_rows(1), STATUS_DRAFT, month=1, year=2025,
        )
        foreign_row = form_lifecycle.get_form(
            identity_for(agency), "monthlyCompliance", other["form_id"],
        )["form"]["rows"][0]["id"]

        result = svc.cm_approve_row(identity_for(agency), session_id, "monthlyCompliance", form_id, foreign_row)
        assert result["error"] == "Item not found on this form."

    def test_locked_form_cannot_be_approved(self, agency, identity_for, session_id, cm_form):
        form_id, row_ids = cm_form
        ident = identity_for(agency)
        for row_id in row_ids:
            svc.cm_approve_row(ident, session_id, "monthlyCompliance", form_id, row_id)
        rows = form_lifecycle.get_form(ident, "monthlyCompliance", form_id)["form"]["rows"]
        submitted = form_lifecycle.save_form(ident, "monthlyCompliance", rows, STATUS_SUBMITTED, form_id=form_id)
        assert submitted["success"] is True

        result = svc.cm_approve_row(ident, session_id, "monthlyCompliance", form_id, row_ids[0])
        assert result["code"] == E.CONFLICT_STATE


# ═════════════════════════════════════════════════════════════════════════
# STATUS, LISTING, LOGOUT
# ═════════════════════════════════════════════════════════════════════════


class TestSessionQueries:
    def test_status_active(self, agency, identity_for, clock, session_id):
        clock.advance(minutes=4)
        result = svc.cm_check_status(identity_for(agency), session_id)
        assert result["active"] is True
        assert result["remaining_minutes"] == 11
        assert result["cm_email"] == "chitra.menon@axisbank-collections.com"

    def test_status_expired(self, agency, identity_for, clock, cm_store, session_id):
        clock.advance(minutes=15)
        result = svc.cm_check_status(identity_for(agency), session_id)
        assert result == {"success": True, "active": False, "error": svc.SESSION_EXPIRED}
        assert cm_store.get(session_id) is None

    def test_status_unknown(self, agency, identity_for):
        result = svc.cm_check_status(identity_for(agency), "cm_missing")
        assert result["active"] is False
        assert result["error"] == svc.SESSION_NOT_FOUND

    def test_status_mismatch(self, other_agency, identity_for, session_id):
        result = svc.cm_check_status(identity_for(other_agency), session_id)
        assert result["code"] == E.FORBIDDEN

    def test_list_only_own_live_sessions(self, agency, other_agency, cm_user, identity_for, clock, session_id):
        clock.advance(minutes=16)
        fresh = svc.cm_login(identity_for(agency), cm_user.email, CM_PASSWORD, "Credit Card")
        svc.cm_login(identity_for(other_agency), cm_user.email, CM_PASSWORD, "Auto Loan")

        result = svc.cm_list_active_sessions(identity_for(agency))

        assert [s["session_id"] for s in result["sessions"]] == [fresh["session_id"]]
        assert result["sessions"][0]["remaining_minutes"] == 15

    def test_logout(self, agency, cm_user, identity_for, clock, cm_store, session_id):
        clock.advance(minutes=7)
        result = svc.cm_logout(identity_for(agency), session_id)

        assert result == {"success": True, "message": "Logged out successfully", "session_duration": 7}
        assert cm_store.get(session_id) is None
        log = ActivityLog.query.filter_by(action="USER_LOGOUT").one()
        assert log.details["sessionDurationMinutes"] == 7
        assert log.actor_user_id == cm_user.id

    def test_logout_twice(self, agency, identity_for, session_id):
        svc.cm_logout(identity_for(agency), session_id)
        result = svc.cm_logout(identity_for(agency), session_id)
        assert result == {"success": True, "message": "Session already expired"}

    def test_logout_other_agency(self, other_agency, identity_for, cm_store, session_id):
        result = svc.cm_logout(identity_for(other_agency), session_id)
        assert result["code"] == E.FORBIDDEN
        assert cm_store.get(session_id) is not None

    def test_stats_super_admin_only(self, admin, super_admin, identity_for, session_id):
        assert svc.cm_session_stats(identity_for(admin))["code"] == E.FORBIDDEN
        result = svc.cm_session_stats(identity_for(super_admin))
        assert result["statistics"]["total"] == 1
        assert result["statistics"]["active"] == 1
