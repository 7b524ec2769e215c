"""tcrs core tables: requests, invoices, gl coding, dictionaries, workflow

Revision ID: 3a91d2e7c4b0
Revises:
Create Date: 2025-11-04 09:12:40.118302
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3a91d2e7c4b0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(bind, name: str) -> bool:
    insp = sa.inspect(bind)
    return name in insp.get_table_names()


def _index_exists(bind, table: str, name: str) -> bool:
    insp = sa.inspect(bind)
    for ix in insp.get_indexes(table_name=table):
        if ix.get("name") in {name, op.f(name)}:
            return True
    return False


def _audit_columns():
    return [
        sa.Column("created_date", sa.DateTime(), nullable=False),
        sa.Column("modified_date", sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    """Create required tables/indexes if they don't already exist."""
    bind = op.get_bind()

    # ---- REQUESTS ----
    if not _table_exists(bind, "approval_requests"):
        op.create_table(
            "approval_requests",
            sa.Column("request_id", sa.String(length=255), nullable=False),
            sa.Column("requester", sa.String(length=255), nullable=True),
            sa.Column("assigned_approver", sa.String(length=255), nullable=True),
            sa.Column("approver_status", sa.String(length=50), nullable=False, server_default="pending"),
            sa.Column("approved_date", sa.DateTime(), nullable=True),
            sa.Column("comments", sa.String(length=1000), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("request_id", name=op.f("approval_requests_pkey")),
        )
    for col in ("requester", "assigned_approver", "approver_status"):
        ix = f"ix_approval_requests_{col}"
        if not _index_exists(bind, "approval_requests", ix):
            op.create_index(op.f(ix), "approval_requests", [col], unique=False)

    if not _table_exists(bind, "request_serials"):
        op.create_table(
            "request_serials",
            sa.Column("year", sa.Integer(), autoincrement=False, nullable=False),
            sa.Column("last_serial", sa.Integer(), nullable=False, server_default="0"),
            sa.PrimaryKeyConstraint("year", name=op.f("request_serials_pkey")),
        )

    if not _table_exists(bind, "invoice_data"):
        op.create_table(
            "invoice_data",
            sa.Column("invoice_id", sa.String(length=255), nullable=False),
            sa.Column("request_id", sa.String(length=255), nullable=False),
            sa.Column("company", sa.String(length=255), nullable=True),
            sa.Column("branch", sa.String(length=255), nullable=True),
            sa.Column("vendor", sa.String(length=255), nullable=True),
            sa.Column("po", sa.String(length=255), nullable=True),
            sa.Column("amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("currency", sa.String(length=10), nullable=True),
            sa.Column("approver", sa.String(length=255), nullable=True),
            sa.Column("blob_url", sa.String(length=500), nullable=True),
            *_audit_columns(),
            sa.ForeignKeyConstraint(["request_id"], ["approval_requests.request_id"],
                                    name=op.f("invoice_data_request_id_fkey")),
            sa.PrimaryKeyConstraint("invoice_id", name=op.f("invoice_data_pkey")),
            sa.UniqueConstraint("request_id", name=op.f("invoice_data_request_id_key")),
        )

    # ---- GL CODING ----
    if not _table_exists(bind, "gl_coding_uploaded_data"):
        op.create_table(
            "gl_coding_uploaded_data",
            sa.Column("upload_id", sa.String(length=255), nullable=False),
            sa.Column("request_id", sa.String(length=255), nullable=False),
            sa.Column("uploader", sa.String(length=255), nullable=True),
            sa.Column("uploaded_file", sa.Boolean(), nullable=True),
            sa.Column("status", sa.String(length=50), nullable=True),
            sa.Column("blob_url", sa.String(length=500), nullable=True),
            *_audit_columns(),
            sa.ForeignKeyConstraint(["request_id"], ["approval_requests.request_id"],
                                    name=op.f("gl_coding_uploaded_data_request_id_fkey")),
            sa.PrimaryKeyConstraint("upload_id", name=op.f("gl_coding_uploaded_data_pkey")),
        )
    if not _index_exists(bind, "gl_coding_uploaded_data", "ix_gl_coding_uploaded_data_request_id"):
        op.create_index(op.f("ix_gl_coding_uploaded_data_request_id"), "gl_coding_uploaded_data",
                        ["request_id"], unique=False)

    if not _table_exists(bind, "gl_coding_data"):
        op.create_table(
            "gl_coding_data",
            sa.Column("upload_id", sa.String(length=255), nullable=False),
            sa.Column("line", sa.Integer(), autoincrement=False, nullable=False),
            sa.Column("account_code", sa.String(length=255), nullable=False),
            sa.Column("facility_code", sa.String(length=255), nullable=False),
            sa.Column("tax_code", sa.String(length=255), nullable=True),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("equipment", sa.String(length=255), nullable=True),
            sa.Column("comments", sa.Text(), nullable=True),
            *_audit_columns(),
            sa.ForeignKeyConstraint(["upload_id"], ["gl_coding_uploaded_data.upload_id"],
                                    name=op.f("gl_coding_data_upload_id_fkey")),
            sa.PrimaryKeyConstraint("upload_id", "line", name=op.f("gl_coding_data_pkey")),
        )

    # ---- DICTIONARIES ----
    if not _table_exists(bind, "account_master"):
        op.create_table(
            "account_master",
            sa.Column("account_code", sa.String(length=255), nullable=False),
            sa.Column("account_description", sa.String(length=255), nullable=True),
            sa.Column("account_combined", sa.String(length=255), nullable=True),
            sa.Column("created_by", sa.String(length=255), nullable=True),
            sa.Column("updated_by", sa.String(length=255), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("account_code", name=op.f("account_master_pkey")),
        )
    if not _table_exists(bind, "facility"):
        op.create_table(
            "facility",
            sa.Column("facility_code", sa.String(length=255), nullable=False),
            sa.Column("facility_description", sa.String(length=255), nullable=True),
            sa.Column("facility_combined", sa.String(length=255), nullable=True),
            sa.Column("created_by", sa.String(length=255), nullable=True),
            sa.Column("updated_by", sa.String(length=255), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("facility_code", name=op.f("facility_pkey")),
        )
    if not _table_exists(bind, "approver_list"):
        op.create_table(
            "approver_list",
            sa.Column("approver_id", sa.String(length=255), nullable=False),
            sa.Column("erp", sa.String(length=255), nullable=True),
            sa.Column("branch", sa.String(length=255), nullable=True),
            sa.Column("authorized_amount", sa.Numeric(12, 2), nullable=True),
            sa.Column("authorized_approver", sa.String(length=255), nullable=True),
            sa.Column("email_address", sa.String(length=255), nullable=True),
            sa.Column("back_up_approver", sa.String(length=255), nullable=True),
            sa.Column("back_up_email_address", sa.String(length=255), nullable=True),
            sa.Column("created_by", sa.String(length=255), nullable=True),
            sa.Column("updated_by", sa.String(length=255), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("approver_id", name=op.f("approver_list_pkey")),
            sa.UniqueConstraint("authorized_approver", name=op.f("approver_list_authorized_approver_key")),
        )
    for col in ("branch", "email_address", "back_up_email_address"):
        ix = f"ix_approver_list_{col}"
        if not _index_exists(bind, "approver_list", ix):
            op.create_index(op.f(ix), "approver_list", [col], unique=False)

    # ---- WORKFLOW ----
    if not _table_exists(bind, "workflow_steps"):
        op.create_table(
            "workflow_steps",
            sa.Column("step_id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("step_code", sa.String(length=255), nullable=False),
            sa.Column("step_name", sa.String(length=255), nullable=False),
            sa.Column("step_description", sa.Text(), nullable=True),
            sa.Column("step_category", sa.String(length=100), nullable=False),
            sa.Column("step_order", sa.Integer(), nullable=True),
            sa.Column("is_user_action", sa.Boolean(), nullable=True),
            sa.Column("is_robot_action", sa.Boolean(), nullable=True),
            sa.Column("is_system_action", sa.Boolean(), nullable=True),
            sa.Column("expected_duration_ms", sa.Integer(), nullable=True),
            sa.Column("is_critical", sa.Boolean(), nullable=True),
            sa.Column("requires_approval", sa.Boolean(), nullable=True),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("step_id", name=op.f("workflow_steps_pkey")),
            sa.UniqueConstraint("step_code", name=op.f("workflow_steps_step_code_key")),
        )
    if not _index_exists(bind, "workflow_steps", "idx_workflow_steps_category_order"):
        op.create_index("idx_workflow_steps_category_order", "workflow_steps",
                        ["step_category", "step_order"], unique=False)

    if not _table_exists(bind, "workflow_history"):
        op.create_table(
            "workflow_history",
            sa.Column("history_id", sa.String(length=255), nullable=False),
            sa.Column("request_id", sa.String(length=255), nullable=False),
            sa.Column("step_id", sa.Integer(), nullable=False),
            sa.Column("executed_by", sa.String(length=255), nullable=True),
            sa.Column("executed_date", sa.DateTime(), nullable=False),
            sa.Column("duration", sa.Integer(), nullable=True),
            sa.Column("success", sa.Boolean(), nullable=True),
            sa.Column("error_code", sa.String(length=100), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("related_entity_id", sa.String(length=255), nullable=True),
            sa.Column("related_entity_type", sa.String(length=100), nullable=True),
            sa.Column("previous_value", sa.Text(), nullable=True),
            sa.Column("new_value", sa.Text(), nullable=True),
            sa.Column("created_date", sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(["step_id"], ["workflow_steps.step_id"],
                                    name=op.f("workflow_history_step_id_fkey")),
            sa.PrimaryKeyConstraint("history_id", name=op.f("workflow_history_pkey")),
        )
    history_indexes = {
        "idx_workflow_timeline": ["request_id", "executed_date"],
        "idx_workflow_step_monitoring": ["step_id", "executed_date"],
        "idx_workflow_errors": ["success", "error_code", "executed_date"],
        "idx_workflow_audit": ["executed_date"],
    }
    for name, cols in history_indexes.items():
        if not _index_exists(bind, "workflow_history", name):
            op.create_index(name, "workflow_history", cols, unique=False)


def downgrade() -> None:
    """Drop the same objects (guarded) to roll back this revision."""
    # Drop in reverse dependency order
    for table in (
        "workflow_history", "workflow_steps",
        "approver_list", "facility", "account_master",
        "gl_coding_data", "gl_coding_uploaded_data",
        "invoice_data", "request_serials", "approval_requests",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
