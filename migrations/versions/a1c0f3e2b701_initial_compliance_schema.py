"""initial_compliance_schema

Users, Collection Manager profiles, compliance forms and rows, approval
requests, CM approvals, activity trail and notifications.

Revision ID: a1c0f3e2b701
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1c0f3e2b701"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name, nullable=True):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("email", sa.String(length=200), nullable=False, unique=True),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="USER"),
            sa.Column("password_hash", sa.String(length=256), nullable=True),
            sa.Column("status", sa.String(length=20), server_default="active"),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_users_role", "users", ["role"])

    if "collection_manager_profiles" not in existing_tables:
        op.create_table(
            "collection_manager_profiles",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True,
            ),
            sa.Column("employee_id", sa.String(length=50), nullable=True),
            sa.Column(
                "designation", sa.String(length=100), nullable=False,
                server_default="Collection Manager",
            ),
            sa.Column("products_assigned", sa.JSON(), nullable=True),
            _ts("created_at"),
        )

    if "form_submissions" not in existing_tables:
        op.create_table(
            "form_submissions",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("form_type", sa.String(length=60), nullable=False),
            sa.Column(
                "owner_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
            sa.Column("editability", sa.String(length=40), nullable=True),
            sa.Column("month", sa.Integer(), nullable=True),
            sa.Column("year", sa.Integer(), nullable=True),
            _ts("submitted_at"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("form_type", "owner_id", "month", "year", name="uq_form_owner_period"),
        )
        op.create_index("ix_form_submissions_owner_id", "form_submissions", ["owner_id"])
        op.create_index("idx_form_owner_type", "form_submissions", ["owner_id", "form_type"])
        op.create_index("idx_form_status", "form_submissions", ["status"])

    if "form_rows" not in existing_tables:
        op.create_table(
            "form_rows",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column(
                "form_id", sa.String(length=36),
                sa.ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("data", sa.JSON(), nullable=False),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("idx_form_rows_form", "form_rows", ["form_id", "position"])

    if "approval_requests" not in existing_tables:
        op.create_table(
            "approval_requests",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column("form_type", sa.String(length=60), nullable=False),
            sa.Column("form_id", sa.String(length=36), nullable=False),
            sa.Column(
                "requester_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column(
                "request_type", sa.String(length=40), nullable=False,
                server_default="UPDATE_SUBMITTED_FORM",
            ),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("document_path", sa.String(length=500), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("admin_response", sa.Text(), nullable=True),
            sa.Column(
                "reviewed_by", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
            ),
            _ts("reviewed_at"),
            _ts("consumed_at"),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("idx_approval_req_form", "approval_requests", ["form_type", "form_id"])
        op.create_index("idx_approval_req_status", "approval_requests", ["status"])
        op.create_index("idx_approval_req_requester", "approval_requests", ["requester_id"])

    if "cm_approvals" not in existing_tables:
        op.create_table(
            "cm_approvals",
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column(
                "cm_profile_id", sa.Integer(),
                sa.ForeignKey("collection_manager_profiles.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "agency_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("form_type", sa.String(length=60), nullable=False),
            sa.Column("form_id", sa.String(length=36), nullable=False),
            sa.Column("row_id", sa.String(length=36), nullable=False),
            sa.Column("field_updated", sa.String(length=100), nullable=True),
            sa.Column("approval_signature", sa.Text(), nullable=False),
            sa.Column("product_tag", sa.String(length=100), nullable=False),
            sa.Column("remarks", sa.Text(), nullable=True),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_cm_approvals_cm_profile_id", "cm_approvals", ["cm_profile_id"])
        op.create_index("ix_cm_approvals_agency_id", "cm_approvals", ["agency_id"])
        op.create_index("idx_cm_approval_form", "cm_approvals", ["form_type", "form_id"])
        op.create_index("idx_cm_approval_row", "cm_approvals", ["row_id"])

    if "activity_logs" not in existing_tables:
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "actor_user_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
                comment="NULL for system entries",
            ),
            sa.Column("action", sa.String(length=40), nullable=False),
            sa.Column("entity_type", sa.String(length=60), nullable=False),
            sa.Column("entity_id", sa.String(length=64), nullable=True),
            sa.Column("description", sa.Text(), nullable=False, server_default=""),
            sa.Column("metadata_json", sa.Text(), server_default="{}"),
            sa.Column("ip_address", sa.String(length=45), nullable=True),
            sa.Column("user_agent", sa.String(length=500), nullable=True),
            _ts("created_at", nullable=False),
        )
        op.create_index("idx_activity_entity", "activity_logs", ["entity_type", "entity_id"])
        op.create_index("idx_activity_actor", "activity_logs", ["actor_user_id"])
        op.create_index("idx_activity_action", "activity_logs", ["action"])
        op.create_index("idx_activity_ts", "activity_logs", ["created_at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "recipient_id", sa.Integer(),
                sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
            ),
            sa.Column("type", sa.String(length=30), nullable=False, server_default="SYSTEM_ALERT"),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), server_default=""),
            sa.Column("link", sa.String(length=500), nullable=True),
            sa.Column("related_id", sa.String(length=64), nullable=True),
            sa.Column("related_type", sa.String(length=60), nullable=True),
            sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
            _ts("read_at"),
            _ts("created_at"),
        )
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
        op.create_index("idx_notification_recipient_read", "notifications", ["recipient_id", "is_read"])


def downgrade():
    for table in (
        "notifications",
        "activity_logs",
        "cm_approvals",
        "approval_requests",
        "form_rows",
        "form_submissions",
        "collection_manager_profiles",
        "users",
    ):
        op.drop_table(table)
