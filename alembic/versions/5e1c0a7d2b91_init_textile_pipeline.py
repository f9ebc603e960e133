"""init textile pipeline

Revision ID: 5e1c0a7d2b91
Revises:
Create Date: 2026-10-19 09:12:31.402117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5e1c0a7d2b91"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema."""

    # ===== Reference (no FKs out) =====
    op.create_table(
        "parties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("contact_name", sa.String(100), nullable=True),
        sa.Column("contact_phone", sa.String(20), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        *_timestamps(),
    )
    op.create_index("uq_parties_name_ci", "parties", [sa.text("lower(name)")], unique=True)

    op.create_table(
        "mills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("contact_person", sa.String(100), nullable=True),
        sa.Column("contact_phone", sa.String(20), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_mills_active_name", "mills", ["is_active", "name"])

    op.create_table(
        "qualities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.String(500), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "processes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("priority BETWEEN 1 AND 100", name="ck_processes_priority"),
    )
    op.create_index("uq_processes_name_ci", "processes", [sa.text("lower(name)")], unique=True)

    op.create_table(
        "doc_counters",
        sa.Column("doc_type", sa.String(), primary_key=True),
        sa.Column("year", sa.Integer(), primary_key=True),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.UniqueConstraint("doc_type", "year", name="uq_doc_counters_type_year"),
    )

    # ===== Orders =====
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_no", sa.String(20), nullable=False),
        sa.Column("order_type", sa.String(20), nullable=False),
        sa.Column("arrival_date", sa.Date(), nullable=False),
        sa.Column("delivery_date", sa.Date(), nullable=True),
        sa.Column("po_date", sa.Date(), nullable=True),
        sa.Column("po_number", sa.String(50), nullable=True),
        sa.Column("style_no", sa.String(50), nullable=True),
        sa.Column("contact_name", sa.String(50), nullable=True),
        sa.Column("contact_phone", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("party_id", sa.Integer(), sa.ForeignKey("parties.id", ondelete="RESTRICT"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("party_id", "po_number", "style_no", name="uq_orders_party_po_style"),
        sa.CheckConstraint("order_type IN ('Dying','Printing')", name="ck_orders_type"),
        sa.CheckConstraint("status IN ('pending','delivered')", name="ck_orders_status"),
    )
    op.create_index("ix_orders_order_no", "orders", ["order_no"], unique=True)
    op.create_index("ix_orders_party_id", "orders", ["party_id"])
    op.create_index("ix_orders_status_created", "orders", ["status", "created_at"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("quality_id", sa.Integer(), sa.ForeignKey("qualities.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("quantity", sa.Numeric(18, 3), nullable=False),
        sa.Column("description", sa.String(200), nullable=True),
        sa.Column("image_urls", sa.JSON(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_qty_pos"),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])
    op.create_index("ix_order_items_quality_id", "order_items", ["quality_id"])

    # ===== Ledgers =====
    op.create_table(
        "mill_inputs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order_no", sa.String(20), nullable=False),
        sa.Column("mill_id", sa.Integer(), sa.ForeignKey("mills.id", ondelete="CASCADE"), nullable=False),
        sa.Column("mill_date", sa.Date(), nullable=False),
        sa.Column("chalan_no", sa.String(50), nullable=False),
        sa.Column("greigh_mtr", sa.Numeric(18, 3), nullable=False),
        sa.Column("pcs", sa.Integer(), nullable=False),
        sa.Column("quality_id", sa.Integer(), sa.ForeignKey("qualities.id", ondelete="SET NULL"), nullable=True),
        sa.Column("process_name", sa.String(100), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("order_id", "chalan_no", name="uq_mill_inputs_order_chalan"),
        sa.CheckConstraint("greigh_mtr > 0", name="ck_mill_inputs_greigh_pos"),
        sa.CheckConstraint("pcs > 0", name="ck_mill_inputs_pcs_pos"),
    )
    op.create_index("ix_mill_inputs_order_id", "mill_inputs", ["order_id"])
    op.create_index("ix_mill_inputs_order_no", "mill_inputs", ["order_no"])
    op.create_index("ix_mill_inputs_mill_id", "mill_inputs", ["mill_id"])
    op.create_index("ix_mill_inputs_mill_date", "mill_inputs", ["mill_id", "mill_date"])

    op.create_table(
        "mill_input_additionals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("mill_input_id", sa.Integer(), sa.ForeignKey("mill_inputs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("greigh_mtr", sa.Numeric(18, 3), nullable=False),
        sa.Column("pcs", sa.Integer(), nullable=False),
        sa.Column("quality_id", sa.Integer(), sa.ForeignKey("qualities.id", ondelete="SET NULL"), nullable=True),
        sa.Column("process_name", sa.String(100), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.CheckConstraint("greigh_mtr > 0", name="ck_mia_greigh_pos"),
        sa.CheckConstraint("pcs > 0", name="ck_mia_pcs_pos"),
    )
    op.create_index("ix_mill_input_additionals_mill_input_id", "mill_input_additionals", ["mill_input_id"])

    op.create_table(
        "mill_outputs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order_no", sa.String(20), nullable=False),
        sa.Column("recd_date", sa.Date(), nullable=False),
        sa.Column("mill_bill_no", sa.String(50), nullable=False),
        sa.Column("finished_mtr", sa.Numeric(18, 3), nullable=False),
        sa.Column("mill_rate", sa.Numeric(18, 3), nullable=True),
        sa.Column("quality_id", sa.Integer(), sa.ForeignKey("qualities.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("finished_mtr > 0", name="ck_mill_outputs_mtr_pos"),
        sa.CheckConstraint("mill_rate IS NULL OR mill_rate >= 0", name="ck_mill_outputs_rate"),
    )
    op.create_index("ix_mill_outputs_order_id", "mill_outputs", ["order_id"])
    op.create_index("ix_mill_outputs_order_no", "mill_outputs", ["order_no"])
    op.create_index("ix_mill_outputs_recd", "mill_outputs", ["recd_date"])

    op.create_table(
        "dispatches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order_no", sa.String(20), nullable=False),
        sa.Column("dispatch_date", sa.Date(), nullable=False),
        sa.Column("bill_no", sa.String(50), nullable=False),
        sa.Column("finish_mtr", sa.Numeric(18, 3), nullable=False),
        sa.Column("sale_rate", sa.Numeric(18, 3), nullable=False),
        sa.Column("total_value", sa.Numeric(20, 6), nullable=False),
        sa.Column("quality_id", sa.Integer(), sa.ForeignKey("qualities.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("finish_mtr > 0", name="ck_dispatches_mtr_pos"),
        sa.CheckConstraint("sale_rate >= 0", name="ck_dispatches_rate"),
    )
    op.create_index("ix_dispatches_order_id", "dispatches", ["order_id"])
    op.create_index("ix_dispatches_order_no", "dispatches", ["order_no"])
    op.create_index("ix_dispatches_date", "dispatches", ["dispatch_date"])

    # ===== Lab =====
    op.create_table(
        "labs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("order_item_id", sa.Integer(), nullable=False),
        sa.Column("lab_send_date", sa.Date(), nullable=False),
        sa.Column("lab_send_number", sa.String(100), nullable=False),
        sa.Column("lab_send_data", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="sent"),
        sa.Column("received_date", sa.Date(), nullable=True),
        sa.Column("remarks", sa.String(500), nullable=True),
        sa.Column("soft_deleted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.CheckConstraint("status IN ('sent','received','cancelled')", name="ck_labs_status"),
    )
    op.create_index("ix_labs_order_id", "labs", ["order_id"])
    op.create_index(
        "uq_labs_active_order_item",
        "labs",
        ["order_id", "order_item_id"],
        unique=True,
        sqlite_where=sa.text("soft_deleted = 0"),
        postgresql_where=sa.text("soft_deleted = false"),
    )

    # ===== Audit log =====
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("user_role", sa.String(30), nullable=False),
        sa.Column("action", sa.String(40), nullable=False),
        sa.Column("resource", sa.String(40), nullable=False),
        sa.Column("resource_id", sa.String(64), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
    )
    op.create_index("ix_audit_logs_timestamp", "audit_logs", ["timestamp"])
    op.create_index("ix_audit_logs_user_ts", "audit_logs", ["user_id", "timestamp"])
    op.create_index("ix_audit_logs_action_ts", "audit_logs", ["action", "timestamp"])
    op.create_index("ix_audit_logs_resource_ts", "audit_logs", ["resource", "resource_id", "timestamp"])
    op.create_index("ix_audit_logs_severity_ts", "audit_logs", ["severity", "timestamp"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("audit_logs")
    op.drop_table("labs")
    op.drop_table("dispatches")
    op.drop_table("mill_outputs")
    op.drop_table("mill_input_additionals")
    op.drop_table("mill_inputs")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("doc_counters")
    op.drop_table("processes")
    op.drop_table("qualities")
    op.drop_table("mills")
    op.drop_table("parties")
