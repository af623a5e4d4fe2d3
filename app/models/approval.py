"""
Agency Compliance Portal
Approval domain models.

Models:
    - ApprovalRequest: agency request to reopen a submitted form, decided by an admin.
    - CMApproval: append-only record of a Collection Manager approving one form row.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REQUEST_TYPES = frozenset({
    "UPDATE_SUBMITTED_FORM",
    "UPDATE_PREVIOUS_MONTH",
    "DELETE_RECORD",
})

REQUEST_PENDING = "PENDING"
REQUEST_APPROVED = "APPROVED"
REQUEST_REJECTED = "REJECTED"
REQUEST_STATUSES = frozenset({REQUEST_PENDING, REQUEST_APPROVED, REQUEST_REJECTED})
DECISIONS = frozenset({REQUEST_APPROVED, REQUEST_REJECTED})


def _uuid():
    return str(uuid.uuid4())


class ApprovalRequest(db.Model):
    """
    Edit-access request for one ``(form_type, form_id)``.

    A request is *open* while PENDING, or while APPROVED with
    ``consumed_at`` still NULL. Resubmitting the form sets ``consumed_at``.
    """

    __tablename__ = "approval_requests"
    __table_args__ = (
        db.Index("idx_approval_req_form", "form_type", "form_id"),
        db.Index("idx_approval_req_status", "status"),
        db.Index("idx_approval_req_requester", "requester_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    form_type = db.Column(db.String(60), nullable=False)
    form_id = db.Column(db.String(36), nullable=False)
    requester_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    request_type = db.Column(db.String(40), nullable=False, default="UPDATE_SUBMITTED_FORM")
    reason = db.Column(db.Text, nullable=False)
    document_path = db.Column(db.String(500), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=REQUEST_PENDING)
    admin_response = db.Column(db.Text, nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    requester = db.relationship("User", foreign_keys=[requester_id])
    reviewer = db.relationship("User", foreign_keys=[reviewed_by])

    @property
    def is_open(self) -> bool:
        if self.status == REQUEST_PENDING:
            return True
        return self.status == REQUEST_APPROVED and self.consumed_at is None

    def to_dict(self):
        return {
            "id": self.id,
            "form_type": self.form_type,
            "form_id": self.form_id,
            "requester_id": self.requester_id,
            "requester_name": self.requester.name if self.requester else None,
            "request_type": self.request_type,
            "reason": self.reason,
            "document_path": self.document_path,
            "status": self.status,
            "admin_response": self.admin_response,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "consumed_at": self.consumed_at.isoformat() if self.consumed_at else None,
            "is_open": self.is_open,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApprovalRequest {self.id}: {self.form_type}/{self.form_id} [{self.status}]>"


class CMApproval(db.Model):
    """
    Collection Manager sign-off on a single form row.

    Never updated. Re-approving a row adds another record and the latest
    wins; records are removed only together with their draft form.
    """

    __tablename__ = "cm_approvals"
    __table_args__ = (
        db.Index("idx_cm_approval_form", "form_type", "form_id"),
        db.Index("idx_cm_approval_row", "row_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    cm_profile_id = db.Column(
        db.Integer,
        db.ForeignKey("collection_manager_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    agency_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    form_type = db.Column(db.String(60), nullable=False)
    form_id = db.Column(db.String(36), nullable=False)
    row_id = db.Column(db.String(36), nullable=False)
    field_updated = db.Column(db.String(100), nullable=True)
    approval_signature = db.Column(db.Text, nullable=False)
    product_tag = db.Column(db.String(100), nullable=False)
    remarks = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    cm_profile = db.relationship("CollectionManagerProfile")

    def to_dict(self):
        return {
            "id": self.id,
            "cm_profile_id": self.cm_profile_id,
            "agency_id": self.agency_id,
            "form_type": self.form_type,
            "form_id": self.form_id,
            "row_id": self.row_id,
            "field_updated": self.field_updated,
            "approval_signature": self.approval_signature,
            "product_tag": self.product_tag,
            "remarks": self.remarks,
            "ip_address": self.ip_address,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<CMApproval {self.id}: row={self.row_id}>"
