"""
Standard costing tables: tenants, products, standard costs and revaluations.

Amounts are DECIMAL(19,4) in the tenant's base currency.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, DateTime, Integer, Numeric, ForeignKey, Boolean, Index, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.db.models.common import HasId, HasCreatedAt, utcnow

__all__ = [
    "COSTING_METHODS",
    "REVALUATION_STATUSES",
    "Organization",
    "Product",
    "StandardCost",
    "CostRevaluation",
]

COSTING_METHODS = ("STANDARD", "FIFO", "LIFO", "WEIGHTED_AVERAGE", "SPECIFIC_IDENTIFICATION")
REVALUATION_STATUSES = ("PENDING", "APPROVED", "REJECTED")


# ============= TENANTS =============
class Organization(Base, HasId, HasCreatedAt):
    __tablename__ = "org_organization"

    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    home_country: Mapped[str] = mapped_column(String(2), default="US", nullable=False)  # ISO-3166 alpha-2
    base_currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)  # ISO-4217


# ============= PRODUCTS =============
class Product(Base, HasId, HasCreatedAt):
    __tablename__ = "cost_product"

    tenant_id: Mapped[str] = mapped_column(ForeignKey("org_organization.id"), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    category_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    costing_method: Mapped[str] = mapped_column(String(32), default="STANDARD", nullable=False)
    # STANDARD|FIFO|LIFO|WEIGHTED_AVERAGE|SPECIFIC_IDENTIFICATION

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_cost_product_tenant_sku"),
    )


class StandardCost(Base, HasId, HasCreatedAt):
    __tablename__ = "cost_standard_cost"

    tenant_id: Mapped[str] = mapped_column(ForeignKey("org_organization.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("cost_product.id"), nullable=False, index=True)
    costing_method: Mapped[str] = mapped_column(String(32), default="STANDARD", nullable=False)

    material_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), default=0, nullable=False)
    labor_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), default=0, nullable=False)
    overhead_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), default=0, nullable=False)
    total_standard_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), default=0, nullable=False)

    effective_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    effective_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Optimistic concurrency token, bumped by every cost write
    row_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    product: Mapped[Product] = relationship()

Index("ix_cost_standard_cost_tenant_product", StandardCost.tenant_id, StandardCost.product_id)
Index("ix_cost_standard_cost_effective", StandardCost.effective_from, StandardCost.effective_to)
# At most one active standard cost per product
Index(
    "uq_cost_standard_cost_active",
    StandardCost.tenant_id,
    StandardCost.product_id,
    unique=True,
    postgresql_where=text("is_active = true"),
    sqlite_where=text("is_active = 1"),
)


# ============= REVALUATIONS =============
class CostRevaluation(Base, HasId, HasCreatedAt):
    """Proposed change to a product's standard cost.

    Rows are append/update-only audit records: status moves PENDING -> APPROVED|REJECTED
    and never back out of a terminal state.
    """
    __tablename__ = "cost_revaluation"

    tenant_id: Mapped[str] = mapped_column(ForeignKey("org_organization.id"), nullable=False, index=True)
    revaluation_number: Mapped[str] = mapped_column(String(32), nullable=False)  # REV-2026-0001
    product_id: Mapped[str] = mapped_column(ForeignKey("cost_product.id"), nullable=False, index=True)

    # Proposed targets
    material_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    labor_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    overhead_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)

    # Standard cost at the time the revaluation was raised
    old_material_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    old_labor_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    old_overhead_cost: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)
    value_difference: Mapped[Decimal] = mapped_column(Numeric(19, 4), nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    reason_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(16), default="PENDING", nullable=False)  # PENDING|APPROVED|REJECTED
    created_by: Mapped[str] = mapped_column(String(128), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    product: Mapped[Product] = relationship()

    __table_args__ = (
        UniqueConstraint("tenant_id", "revaluation_number", name="uq_cost_revaluation_tenant_number"),
    )

Index("ix_cost_revaluation_tenant_status", CostRevaluation.tenant_id, CostRevaluation.status)
