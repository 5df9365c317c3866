"""Initial schema: shops, users, customers, vehicles, inspections, history, audit, notifications

Revision ID: 0001
Revises: None
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


WORKFLOW_STATES = (
    "draft", "in_progress", "pending_review", "approved",
    "rejected", "sent_to_customer", "completed",
)
ITEM_CONDITIONS = ("good", "fair", "poor", "needs_immediate")


def _in_clause(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


def upgrade() -> None:
    """Create all tables."""

    # --- shops (no FK deps) ---
    op.create_table(
        "shops",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_shops"),
    )

    # --- users (FK -> shops) ---
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", sa.String(32), nullable=False, server_default="technician"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], name="fk_users_shop_id_shops"),
    )
    op.create_index("ix_users_shop_id", "users", ["shop_id"])
    op.create_index("ix_users_role", "users", ["role"])

    # --- customers (FK -> shops) ---
    op.create_table(
        "customers",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.Uuid(), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_customers"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], name="fk_customers_shop_id_shops"),
    )
    op.create_index("ix_customers_shop_id", "customers", ["shop_id"])

    # --- vehicles (FK -> shops, customers) ---
    op.create_table(
        "vehicles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=True),
        sa.Column("vin", sa.String(17), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("make", sa.String(100), nullable=True),
        sa.Column("model", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_vehicles"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], name="fk_vehicles_shop_id_shops"),
        sa.ForeignKeyConstraint(
            ["customer_id"],
            ["customers.id"],
            name="fk_vehicles_customer_id_customers",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_vehicles_customer_id", "vehicles", ["customer_id"])
    op.create_index("ix_vehicles_vin", "vehicles", ["vin"])

    # --- inspections (FK -> shops, vehicles, users) ---
    op.create_table(
        "inspections",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.Uuid(), nullable=False),
        sa.Column("vehicle_id", sa.Uuid(), nullable=True),
        sa.Column("technician_id", sa.Uuid(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("workflow_state", sa.String(50), nullable=False, server_default="draft"),
        sa.Column("previous_state", sa.String(50), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("state_changed_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("state_changed_by", sa.Uuid(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("inspection_duration", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("customer_report_ready_at", sa.DateTime(), nullable=True),
        sa.Column("customer_link_token", sa.String(64), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_inspections"),
        sa.UniqueConstraint("customer_link_token", name="uq_inspections_customer_link_token"),
        sa.CheckConstraint(_in_clause("workflow_state", WORKFLOW_STATES), name="valid_workflow_state"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], name="fk_inspections_shop_id_shops"),
        sa.ForeignKeyConstraint(
            ["vehicle_id"], ["vehicles.id"],
            name="fk_inspections_vehicle_id_vehicles", ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["technician_id"], ["users.id"],
            name="fk_inspections_technician_id_users", ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["created_by"], ["users.id"],
            name="fk_inspections_created_by_users", ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["state_changed_by"], ["users.id"],
            name="fk_inspections_state_changed_by_users", ondelete="SET NULL",
        ),
    )
    op.create_index("ix_inspections_shop_id", "inspections", ["shop_id"])
    op.create_index("ix_inspections_shop_state", "inspections", ["shop_id", "workflow_state"])
    op.create_index("ix_inspections_vehicle_id", "inspections", ["vehicle_id"])
    op.create_index("ix_inspections_technician_id", "inspections", ["technician_id"])
    op.create_index("ix_inspections_created_at", "inspections", ["created_at"])

    # --- inspection_items (FK -> inspections) ---
    op.create_table(
        "inspection_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("inspection_id", sa.Uuid(), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("component", sa.String(255), nullable=False),
        sa.Column("condition", sa.String(20), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("estimated_cost", sa.Numeric(8, 2), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_inspection_items"),
        sa.CheckConstraint(
            "condition IS NULL OR " + _in_clause("condition", ITEM_CONDITIONS),
            name="valid_item_condition",
        ),
        sa.ForeignKeyConstraint(
            ["inspection_id"], ["inspections.id"],
            name="fk_inspection_items_inspection_id_inspections", ondelete="CASCADE",
        ),
    )
    op.create_index("ix_inspection_items_inspection_id", "inspection_items", ["inspection_id"])

    # --- inspection_state_history (FK -> inspections, users) ---
    op.create_table(
        "inspection_state_history",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("inspection_id", sa.Uuid(), nullable=False),
        sa.Column("from_state", sa.String(50), nullable=True),
        sa.Column("to_state", sa.String(50), nullable=False),
        sa.Column("changed_by", sa.Uuid(), nullable=True),
        sa.Column("change_reason", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("validation_passed", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("validation_errors", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=True),
        sa.Column("changed_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_inspection_state_history"),
        sa.ForeignKeyConstraint(
            ["inspection_id"], ["inspections.id"],
            name="fk_inspection_state_history_inspection_id_inspections", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["changed_by"], ["users.id"],
            name="fk_inspection_state_history_changed_by_users", ondelete="SET NULL",
        ),
    )
    op.create_index(
        "ix_inspection_state_history_inspection_id", "inspection_state_history", ["inspection_id"]
    )
    op.create_index("ix_inspection_state_history_changed_by", "inspection_state_history", ["changed_by"])
    op.create_index("ix_inspection_state_history_changed_at", "inspection_state_history", ["changed_at"])

    # --- audit_logs (FK -> shops, users) ---
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("user_role", sa.String(32), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(100), nullable=False),
        sa.Column("resource_id", sa.Uuid(), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_audit_logs"),
        sa.ForeignKeyConstraint(["shop_id"], ["shops.id"], name="fk_audit_logs_shop_id_shops"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_audit_logs_user_id_users", ondelete="SET NULL",
        ),
    )
    op.create_index("ix_audit_logs_shop_id", "audit_logs", ["shop_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    # --- notification_logs (FK -> shops, inspections, users) ---
    op.create_table(
        "notification_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("shop_id", sa.Uuid(), nullable=False),
        sa.Column("inspection_id", sa.Uuid(), nullable=True),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("recipient", sa.String(255), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default="0"),
        sa.Column("external_id", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_notification_logs"),
        sa.ForeignKeyConstraint(
            ["shop_id"], ["shops.id"],
            name="fk_notification_logs_shop_id_shops", ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["inspection_id"], ["inspections.id"],
            name="fk_notification_logs_inspection_id_inspections", ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"],
            name="fk_notification_logs_user_id_users", ondelete="SET NULL",
        ),
    )
    op.create_index("ix_notification_logs_shop_id", "notification_logs", ["shop_id"])
    op.create_index("ix_notification_logs_event_type", "notification_logs", ["event_type"])
    op.create_index("ix_notification_logs_status", "notification_logs", ["status"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("notification_logs")
    op.drop_table("audit_logs")
    op.drop_table("inspection_state_history")
    op.drop_table("inspection_items")
    op.drop_table("inspections")
    op.drop_table("vehicles")
    op.drop_table("customers")
    op.drop_table("users")
    op.drop_table("shops")
