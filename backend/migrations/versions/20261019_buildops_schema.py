"""Create construction operations schema

Revision ID: 20261019_buildops_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_buildops_schema"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(14, 2)
PERCENT = sa.Numeric(5, 2)


def _now():
    return sa.text("(CURRENT_TIMESTAMP)")


def upgrade():
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("client_name", sa.String(200), nullable=True),
        sa.Column("current_phase", sa.String(100), nullable=True),
        sa.Column("at_risk", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("budget", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("spent", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(32), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_projects_status", "projects", ["status"])

    op.create_table(
        "contractors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("trade", sa.String(100), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("insurance_status", sa.String(16), nullable=False, server_default="valid"),
        sa.Column("license_status", sa.String(16), nullable=False, server_default="valid"),
        sa.Column("performance_score", sa.Numeric(3, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.CheckConstraint(
            "performance_score IS NULL OR (performance_score >= 0 AND performance_score <= 5)",
            name="ck_contractors_performance_score",
        ),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "project_contractors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("contractor_id", sa.Integer(), nullable=False),
        sa.Column("contract_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("original_contract_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("paid_to_date", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("contract_status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("change_orders_pending", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["contractor_id"], ["contractors.id"]),
        sa.CheckConstraint("contract_amount >= 0", name="ck_project_contractors_amount_nonneg"),
        sa.UniqueConstraint("project_id", "contractor_id", name="uq_project_contractors_pair"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_project_contractors_project_id", "project_contractors", ["project_id"])
    op.create_index("ix_project_contractors_contractor_id", "project_contractors", ["contractor_id"])

    op.create_table(
        "project_line_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("contractor_id", sa.Integer(), nullable=False),
        sa.Column("item_no", sa.String(32), nullable=True),
        sa.Column("description_of_work", sa.String(500), nullable=False),
        sa.Column("scheduled_value", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("from_previous_application", PERCENT, nullable=False, server_default=sa.text("0")),
        sa.Column("percent_completed", PERCENT, nullable=False, server_default=sa.text("0")),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["contractor_id"], ["contractors.id"]),
        sa.CheckConstraint("scheduled_value >= 0", name="ck_line_items_scheduled_nonneg"),
        sa.CheckConstraint(
            "from_previous_application >= 0 AND from_previous_application <= 100",
            name="ck_line_items_previous_pct",
        ),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_line_items_project_contractor", "project_line_items", ["project_id", "contractor_id"])

    op.create_table(
        "change_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("contractor_id", sa.Integer(), nullable=False),
        sa.Column("co_number", sa.String(32), nullable=False),
        sa.Column("description", sa.String(1000), nullable=False),
        sa.Column("cost_impact", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("schedule_impact_days", sa.Integer(), nullable=True),
        sa.Column("reason_category", sa.String(32), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.Integer(), nullable=True),
        sa.Column("rejection_reason", sa.String(1000), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["contractor_id"], ["contractors.id"]),
        sa.UniqueConstraint("project_id", "co_number", name="uq_change_orders_project_number"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_change_orders_project_id", "change_orders", ["project_id"])
    op.create_index("ix_change_orders_contractor_id", "change_orders", ["contractor_id"])
    op.create_index("ix_change_orders_status_created", "change_orders", ["status", "created_at"])

    op.create_table(
        "payment_applications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("contractor_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="submitted"),
        sa.Column("current_payment", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("current_period_value", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("previous_payments", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("total_contract_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("payment_period_end", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.Integer(), nullable=True),
        sa.Column("rejection_notes", sa.Text(), nullable=True),
        sa.Column("check_ready_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pm_notes", sa.Text(), nullable=True),
        sa.Column("pm_verification_completed", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("photos_uploaded_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("lien_waiver_required", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["contractor_id"], ["contractors.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payment_apps_status_period", "payment_applications", ["status", "payment_period_end"])
    op.create_index("ix_payment_apps_project_contractor", "payment_applications", ["project_id", "contractor_id"])

    op.create_table(
        "payment_line_item_progress",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_app_id", sa.Integer(), nullable=False),
        sa.Column("line_item_id", sa.Integer(), nullable=False),
        sa.Column("previous_percent", PERCENT, nullable=False, server_default=sa.text("0")),
        sa.Column("submitted_percent", PERCENT, nullable=False, server_default=sa.text("0")),
        sa.Column("pm_verified_percent", PERCENT, nullable=True),
        sa.Column("this_period_percent", PERCENT, nullable=False, server_default=sa.text("0")),
        sa.Column("calculated_amount", MONEY, nullable=False, server_default=sa.text("0")),
        sa.Column("verification_photos_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pm_adjustment_reason", sa.String(500), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["payment_app_id"], ["payment_applications.id"]),
        sa.ForeignKeyConstraint(["line_item_id"], ["project_line_items.id"]),
        sa.UniqueConstraint("payment_app_id", "line_item_id", name="uq_progress_app_line_item"),
        sa.CheckConstraint("previous_percent >= 0 AND previous_percent <= 100", name="ck_progress_previous_pct"),
        sa.CheckConstraint("submitted_percent >= 0 AND submitted_percent <= 100", name="ck_progress_submitted_pct"),
        sa.CheckConstraint(
            "pm_verified_percent IS NULL OR (pm_verified_percent >= 0 AND pm_verified_percent <= 100)",
            name="ck_progress_verified_pct",
        ),
        sa.CheckConstraint("this_period_percent >= 0 AND this_period_percent <= 100", name="ck_progress_period_pct"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payment_line_item_progress_payment_app_id", "payment_line_item_progress", ["payment_app_id"])

    op.create_table(
        "payment_documents",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_app_id", sa.Integer(), nullable=False),
        sa.Column("document_url", sa.String(1000), nullable=True),
        sa.Column("envelope_id", sa.String(128), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="generated"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["payment_app_id"], ["payment_applications.id"]),
        sa.UniqueConstraint("payment_app_id", name="uq_payment_documents_app"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payment_documents_envelope", "payment_documents", ["envelope_id"])

    op.create_table(
        "payment_sms_conversations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_app_id", sa.Integer(), nullable=False),
        sa.Column("contractor_phone", sa.String(32), nullable=False),
        sa.Column("conversation_state", sa.String(32), nullable=False, server_default="awaiting_start"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["payment_app_id"], ["payment_applications.id"]),
        sa.UniqueConstraint("payment_app_id"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "payment_approval_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_app_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("from_status", sa.String(16), nullable=True),
        sa.Column("to_status", sa.String(16), nullable=False),
        sa.Column("performed_by", sa.Integer(), nullable=True),
        sa.Column("performed_role", sa.String(16), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["payment_app_id"], ["payment_applications.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_payment_approval_logs_payment_app_id", "payment_approval_logs", ["payment_app_id"])

    op.create_table(
        "daily_log_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("project_id", sa.Integer(), nullable=False),
        sa.Column("pm_phone_number", sa.String(32), nullable=False),
        sa.Column("request_date", sa.Date(), nullable=False),
        sa.Column("request_time", sa.Time(), nullable=False),
        sa.Column("request_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("last_request_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.String(500), nullable=True),
        sa.Column("received_notes", sa.Text(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_daily_log_requests_project_id", "daily_log_requests", ["project_id"])
    op.create_index(
        "ix_daily_log_requests_due", "daily_log_requests", ["request_status", "request_date", "request_time"]
    )

    op.create_table(
        "sms_messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("destination", sa.String(32), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("provider_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="queued"),
        sa.Column("error", sa.String(500), nullable=True),
        sa.Column("related_type", sa.String(32), nullable=True),
        sa.Column("related_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sms_messages_provider_id", "sms_messages", ["provider_id"])
    op.create_index("ix_sms_messages_related", "sms_messages", ["related_type", "related_id"])


def downgrade():
    op.drop_table("sms_messages")
    op.drop_table("daily_log_requests")
    op.drop_table("payment_approval_logs")
    op.drop_table("payment_sms_conversations")
    op.drop_table("payment_documents")
    op.drop_table("payment_line_item_progress")
    op.drop_table("payment_applications")
    op.drop_table("change_orders")
    op.drop_table("project_line_items")
    op.drop_table("project_contractors")
    op.drop_table("contractors")
    op.drop_table("projects")
