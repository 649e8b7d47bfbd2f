"""costing core tables

Revision ID: 0001_costing_core
Revises:
Create Date: 2026-10-19T00:00:00Z
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_costing_core"
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str, **kw):
    return sa.Column(name, sa.Numeric(19, 4), nullable=False, **kw)


def upgrade():
    op.create_table(
        "org_organization",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("slug", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("home_country", sa.String(length=2), nullable=False, server_default="US"),
        sa.Column("base_currency", sa.String(length=3), nullable=False, server_default="USD"),
    )
    op.create_index("ix_org_organization_slug", "org_organization", ["slug"], unique=True)

    op.create_table(
        "cost_product",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("org_organization.id"), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("category_id", sa.String(length=64), nullable=True),
        sa.Column("costing_method", sa.String(length=32), nullable=False, server_default="STANDARD"),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_cost_product_tenant_sku"),
    )
    op.create_index("ix_cost_product_tenant_id", "cost_product", ["tenant_id"])
    op.create_index("ix_cost_product_category_id", "cost_product", ["category_id"])

    op.create_table(
        "cost_standard_cost",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("org_organization.id"), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("cost_product.id"), nullable=False),
        sa.Column("costing_method", sa.String(length=32), nullable=False, server_default="STANDARD"),
        _money("material_cost", server_default="0"),
        _money("labor_cost", server_default="0"),
        _money("overhead_cost", server_default="0"),
        _money("total_standard_cost", server_default="0"),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("effective_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_cost_standard_cost_tenant_id", "cost_standard_cost", ["tenant_id"])
    op.create_index("ix_cost_standard_cost_product_id", "cost_standard_cost", ["product_id"])
    op.create_index("ix_cost_standard_cost_tenant_product", "cost_standard_cost", ["tenant_id", "product_id"])
    op.create_index("ix_cost_standard_cost_effective", "cost_standard_cost", ["effective_from", "effective_to"])
    op.create_index(
        "uq_cost_standard_cost_active",
        "cost_standard_cost",
        ["tenant_id", "product_id"],
        unique=True,
        postgresql_where=sa.text("is_active = true"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "cost_revaluation",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("org_organization.id"), nullable=False),
        sa.Column("revaluation_number", sa.String(length=32), nullable=False),
        sa.Column("product_id", sa.String(length=36), sa.ForeignKey("cost_product.id"), nullable=False),
        _money("material_cost"),
        _money("labor_cost"),
        _money("overhead_cost"),
        _money("old_material_cost"),
        _money("old_labor_cost"),
        _money("old_overhead_cost"),
        _money("value_difference"),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("reason_code", sa.String(length=64), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=128), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "revaluation_number", name="uq_cost_revaluation_tenant_number"),
    )
    op.create_index("ix_cost_revaluation_tenant_id", "cost_revaluation", ["tenant_id"])
    op.create_index("ix_cost_revaluation_product_id", "cost_revaluation", ["product_id"])
    op.create_index("ix_cost_revaluation_tenant_status", "cost_revaluation", ["tenant_id", "status"])

    op.create_table(
        "sys_audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("payload", sa.JSON(), nullable=False),
    )
    for col in ("tenant_id", "actor", "action", "entity_type", "entity_id", "request_id"):
        op.create_index(f"ix_sys_audit_log_{col}", "sys_audit_log", [col])
    op.create_index("ix_audit_tenant_time", "sys_audit_log", ["tenant_id", "created_at"])

    op.create_table(
        "outbox_event",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("topic", sa.String(length=128), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_outbox_event_tenant_id", "outbox_event", ["tenant_id"])
    op.create_index("ix_outbox_event_topic", "outbox_event", ["topic"])
    op.create_index("ix_outbox_topic_created", "outbox_event", ["topic", "created_at"])
    op.create_index("ix_outbox_delivery", "outbox_event", ["delivered", "available_at"])


def downgrade():
    op.drop_table("outbox_event")
    op.drop_table("sys_audit_log")
    op.drop_table("cost_revaluation")
    op.drop_table("cost_standard_cost")
    op.drop_table("cost_product")
    op.drop_table("org_organization")
