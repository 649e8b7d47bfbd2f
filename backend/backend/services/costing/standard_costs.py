"""
Standard cost records.

A product has at most one active standard cost. Creating a new one closes
the current active row (``is_active`` off, ``effective_to`` set to the new
row's start unless it already ends earlier) in the same transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import InvalidState, NotFound, ValidationError
from app.core.security import Capability, Principal, authorize_tenant
from app.core.tenant import TenantContext
from app.db.models.common import utcnow
from app.db.models.costing import COSTING_METHODS, Product, StandardCost
from app.events.bus import publish
from services.costing.product_store import CostComponents, quantize_amount
from services.costing.schemas import StandardCostIn, as_utc

logger = logging.getLogger(__name__)


def standard_cost_to_dict(sc: StandardCost) -> dict:
    components = CostComponents(sc.material_cost, sc.labor_cost, sc.overhead_cost)
    return {
        "id": sc.id,
        "product_id": sc.product_id,
        "sku": sc.product.sku if sc.product else None,
        "product_name": sc.product.name if sc.product else None,
        "costing_method": sc.costing_method,
        **components.as_dict(),
        "effective_from": sc.effective_from.isoformat() if sc.effective_from else None,
        "effective_to": sc.effective_to.isoformat() if sc.effective_to else None,
        "is_active": sc.is_active,
        "notes": sc.notes,
        "row_version": sc.row_version,
    }


def list_standard_costs(
    db: Session,
    *,
    tenant: TenantContext,
    principal: Principal | None,
    product_id: str | None = None,
    costing_method: str | None = None,
    effective_date: datetime | None = None,
    active: bool | None = None,
    limit: int = 200,
) -> list[StandardCost]:
    """Standard costs of the tenant, newest ``effective_from`` first.

    ``effective_date`` keeps rows in force on that instant: started on or
    before it and not ended before it.
    """
    authorize_tenant(principal, tenant, Capability.VIEW_STANDARD_COSTS)
    if costing_method and costing_method not in COSTING_METHODS:
        raise ValidationError(f"costing_method must be one of {', '.join(COSTING_METHODS)}")

    q = db.query(StandardCost).filter(StandardCost.tenant_id == tenant.id)
    if product_id:
        q = q.filter(StandardCost.product_id == product_id)
    if costing_method:
        q = q.filter(StandardCost.costing_method == costing_method)
    if effective_date is not None:
        effective_date = as_utc(effective_date)
        q = q.filter(
            StandardCost.effective_from <= effective_date,
            or_(StandardCost.effective_to.is_(None), StandardCost.effective_to >= effective_date),
        )
    if active is not None:
        q = q.filter(StandardCost.is_active == active)
    return q.order_by(StandardCost.effective_from.desc(), StandardCost.id.asc()).limit(limit).all()


def create_standard_cost(
    db: Session,
    *,
    tenant: TenantContext,
    principal: Principal | None,
    payload: StandardCostIn,
) -> StandardCost:
    principal = authorize_tenant(principal, tenant, Capability.MANAGE_STANDARD_COSTS)
    components = CostComponents(
        quantize_amount(payload.material_cost),
        quantize_amount(payload.labor_cost),
        quantize_amount(payload.overhead_cost),
    )
    for name, value in (
        ("material_cost", components.material),
        ("labor_cost", components.labor),
        ("overhead_cost", components.overhead),
    ):
        if value < 0:
            raise ValidationError(f"{name} cannot be negative")
    if payload.effective_to is not None and payload.effective_to < payload.effective_from:
        raise ValidationError("effective_to must not be before effective_from")

    product = (
        db.query(Product)
        .filter(Product.tenant_id == tenant.id, Product.id == payload.product_id)
        .first()
    )
    if not product:
        raise NotFound("Product not found")

    previous = (
        db.query(StandardCost)
        .filter(
            StandardCost.tenant_id == tenant.id,
            StandardCost.product_id == product.id,
            StandardCost.is_active == True,  # noqa: E712
        )
        .first()
    )
    if previous is not None:
        closes_at = payload.effective_from
        if previous.effective_to is not None and as_utc(previous.effective_to) < closes_at:
            closes_at = previous.effective_to
        db.execute(
            update(StandardCost)
            .where(StandardCost.id == previous.id, StandardCost.row_version == previous.row_version)
            .values(
                is_active=False,
                effective_to=closes_at,
                row_version=previous.row_version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

    sc = StandardCost(
        tenant_id=tenant.id,
        product_id=product.id,
        costing_method=payload.costing_method,
        material_cost=components.material,
        labor_cost=components.labor,
        overhead_cost=components.overhead,
        total_standard_cost=components.total,
        effective_from=payload.effective_from,
        effective_to=payload.effective_to,
        is_active=True,
        notes=payload.notes,
    )
    db.add(sc)
    try:
        db.flush()
    except IntegrityError as e:
        # Another writer activated a standard cost for this product first
        db.rollback()
        raise InvalidState("Standard cost was modified concurrently, retry") from e

    audit(
        db,
        actor=principal.username,
        action="costing.standard_cost.create",
        entity_type="cost_standard_cost",
        entity_id=sc.id,
        payload={
            "product_id": product.id,
            "costing_method": sc.costing_method,
            "replaced": previous.id if previous is not None else None,
            **components.as_dict(),
        },
        tenant_id=tenant.id,
    )
    publish(
        db,
        "costing.standard_cost.created",
        {
            "standard_cost_id": sc.id,
            "product_id": product.id,
            "costing_method": sc.costing_method,
            "components": components.as_dict(),
            "effective_from": payload.effective_from.isoformat(),
            "currency": tenant.base_currency,
        },
        tenant_id=tenant.id,
    )
    db.commit()
    logger.info("Standard cost created", extra={"standard_cost_id": sc.id, "product_id": product.id})
    db.refresh(sc)
    return sc
