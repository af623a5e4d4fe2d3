"""
Agency Compliance Portal
Form submission domain model.

Models:
    - FormSubmission: one compliance form instance owned by an agency user.
    - FormRow: an ordered detail row; the type-specific fields live in ``data``.

Every form type shares these two tables; the per-type field lists live in
``app.services.form_registry``.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

STATUS_DRAFT = "DRAFT"
STATUS_SUBMITTED = "SUBMITTED"
FORM_STATUSES = frozenset({STATUS_DRAFT, STATUS_SUBMITTED})

# Editability is stored, never re-derived from approval requests.
# NULL  → draft, editable by the owner
# LOCKED → submitted, needs an approved edit request
# EDITABLE_PENDING_RESUBMISSION → edit request approved, next submit re-locks
EDITABILITY_LOCKED = "LOCKED"
EDITABILITY_PENDING_RESUBMISSION = "EDITABLE_PENDING_RESUBMISSION"
EDITABILITY_STATES = frozenset({EDITABILITY_LOCKED, EDITABILITY_PENDING_RESUBMISSION})


def _uuid():
    return str(uuid.uuid4())


class FormSubmission(db.Model):
    """A single form instance (draft or submitted) for one agency."""

    __tablename__ = "form_submissions"
    __table_args__ = (
        db.UniqueConstraint(
            "form_type", "owner_id", "month", "year", name="uq_form_owner_period",
        ),
        db.Index("idx_form_owner_type", "owner_id", "form_type"),
        db.Index("idx_form_status", "status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    form_type = db.Column(db.String(60), nullable=False)
    owner_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default=STATUS_DRAFT)
    editability = db.Column(db.String(40), nullable=True)

    # Monthly forms only
    month = db.Column(db.Integer, nullable=True)
    year = db.Column(db.Integer, nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    rows = db.relationship(
        "FormRow", back_populates="form", cascade="all, delete-orphan",
        order_by="FormRow.position",
    )
    owner = db.relationship("User")

    @property
    def can_edit(self) -> bool:
        """True while the owner may change the rows."""
        if self.status == STATUS_DRAFT:
            return True
        return self.editability == EDITABILITY_PENDING_RESUBMISSION

    def snapshot(self) -> dict:
        """Old/new value snapshot stored on activity entries."""
        return {
            "status": self.status,
            "editability": self.editability,
            "month": self.month,
            "year": self.year,
            "rows": [r.to_dict() for r in self.rows],
        }

    def to_dict(self, include_rows=False):
        d = {
            "id": self.id,
            "form_type": self.form_type,
            "owner_id": self.owner_id,
            "status": self.status,
            "editability": self.editability,
            "can_edit": self.can_edit,
            "month": self.month,
            "year": self.year,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_rows:
            d["rows"] = [r.to_dict() for r in self.rows]
        return d

    def __repr__(self):
        return f"<FormSubmission {self.id}: {self.form_type} [{self.status}]>"


class FormRow(db.Model):
    """One detail row. ``id`` is stable across saves for CM-approved forms."""

    __tablename__ = "form_rows"
    __table_args__ = (
        db.Index("idx_form_rows_form", "form_id", "position"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    form_id = db.Column(
        db.String(36), db.ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False,
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    data = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    form = db.relationship("FormSubmission", back_populates="rows")

    def to_dict(self):
        return {"id": self.id, "position": self.position, **(self.data or {})}

    def __repr__(self):
        return f"<FormRow {self.id}: form={self.form_id} pos={self.position}>"
