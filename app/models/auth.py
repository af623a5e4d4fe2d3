"""
Auth Models - portal users and Collection Manager profiles.

Primary authentication happens in the external identity provider; these
rows exist so that tokens can be resolved to a role and so that Collection
Managers can re-verify their password inside an agency session.
"""

from datetime import datetime, timezone

from app.models import db


ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"
ROLE_AUDITOR = "AUDITOR"
ROLE_COLLECTION_MANAGER = "COLLECTION_MANAGER"

ROLES = frozenset({
    ROLE_USER,
    ROLE_ADMIN,
    ROLE_SUPER_ADMIN,
    ROLE_AUDITOR,
    ROLE_COLLECTION_MANAGER,
})

USER_STATUSES = frozenset({"active", "inactive"})


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(200), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(30), nullable=False, default=ROLE_USER)
    password_hash = db.Column(db.String(256))
    status = db.Column(db.String(20), default="active")  # active, inactive
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_users_role", "role"),
    )

    cm_profile = db.relationship(
        "CollectionManagerProfile", back_populates="user", uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def is_active(self):
        return self.status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"


# ═══════════════════════════════════════════════════════════════
# 2. COLLECTION MANAGER PROFILES
# ═══════════════════════════════════════════════════════════════
class CollectionManagerProfile(db.Model):
    """Bank-side profile for a user holding the COLLECTION_MANAGER role."""

    __tablename__ = "collection_manager_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    employee_id = db.Column(db.String(50))
    designation = db.Column(db.String(100), nullable=False, default="Collection Manager")
    products_assigned = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    user = db.relationship("User", back_populates="cm_profile")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "employee_id": self.employee_id,
            "designation": self.designation,
            "products_assigned": self.products_assigned or [],
        }

    def __repr__(self):
        return f"<CollectionManagerProfile {self.id}: user={self.user_id}>"
