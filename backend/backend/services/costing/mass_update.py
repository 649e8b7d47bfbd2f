"""
Bulk adjustment of standard costs.

The population is every active standard cost of the tenant that matches all
supplied filters. Each record is written in its own transaction: one UPDATE
sets the three components, the total and the next row_version, guarded by
the row_version read when the population was selected. A record whose new
cost would be negative or out of range, or whose write fails, is reported in
``errors`` and the batch moves on.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import ValidationError
from app.core.security import Capability, Principal, authorize_tenant
from app.core.tenant import TenantContext
from app.db.models.common import utcnow
from app.db.models.costing import Product, StandardCost
from app.events.bus import publish
from services.costing.localization import LocalizationManager
from services.costing.product_store import MAX_AMOUNT, CostComponents, quantize_amount
from services.costing.schemas import MassUpdateAdjustment, MassUpdateIn

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
OUT_OF_RANGE = "Adjusted cost is out of range"


@dataclass(frozen=True)
class MassUpdateError:
    product_id: str
    detail: str


@dataclass
class MassUpdateResult:
    updated_count: int = 0
    matched_count: int = 0
    truncated: bool = False
    errors: list[MassUpdateError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "updated_count": self.updated_count,
            "matched_count": self.matched_count,
            "truncated": self.truncated,
            "errors": [{"product_id": e.product_id, "detail": e.detail} for e in self.errors],
        }


@dataclass(frozen=True)
class _Target:
    standard_cost_id: str
    product_id: str
    row_version: int
    components: CostComponents


def validate_mass_update(request: MassUpdateIn, loc: LocalizationManager) -> None:
    adj = request.adjustment
    if adj.material_adjustment is None and adj.labor_adjustment is None and adj.overhead_adjustment is None:
        raise ValidationError("At least one of material, labor or overhead adjustment is required")
    if not (adj.reason or "").strip():
        raise ValidationError("reason is required")
    if adj.reason_code and not loc.validate_reason_code(adj.reason_code):
        raise ValidationError(f"Unknown variance reason code {adj.reason_code}")
    rng = request.filter.effective_date_range
    if rng is not None and rng.from_ > rng.to:
        raise ValidationError("effective_date_range.from must not be after effective_date_range.to")


def _adjust(current: Decimal, delta: Decimal | None, kind: str) -> Decimal:
    if delta is None:
        return current
    if kind == "PERCENTAGE":
        return quantize_amount(current * (1 + delta / HUNDRED))
    return quantize_amount(current + delta)


def compute_adjusted(current: CostComponents, adj: MassUpdateAdjustment) -> CostComponents:
    return CostComponents(
        material=_adjust(current.material, adj.material_adjustment, adj.type),
        labor=_adjust(current.labor, adj.labor_adjustment, adj.type),
        overhead=_adjust(current.overhead, adj.overhead_adjustment, adj.type),
    )


def _rejection(new: CostComponents) -> str | None:
    """Why ``new`` cannot be stored, or None."""
    parts = (("material", new.material), ("labor", new.labor), ("overhead", new.overhead))
    negative = [n for n, v in parts if v < 0]
    if negative:
        return f"Adjustment would make {', '.join(negative)} cost negative"
    if new.total > MAX_AMOUNT:
        return OUT_OF_RANGE
    return None


def _select_population(db: Session, tenant_id: str, request: MassUpdateIn) -> list[_Target]:
    f = request.filter
    q = (
        db.query(StandardCost)
        .join(Product, Product.id == StandardCost.product_id)
        .filter(
            StandardCost.tenant_id == tenant_id,
            Product.tenant_id == tenant_id,
            StandardCost.is_active == True,  # noqa: E712
        )
    )
    if f.category_id is not None:
        q = q.filter(Product.category_id == f.category_id)
    if f.costing_method is not None:
        q = q.filter(StandardCost.costing_method == f.costing_method)
    if f.effective_date_range is not None:
        q = q.filter(
            StandardCost.effective_from >= f.effective_date_range.from_,
            StandardCost.effective_from <= f.effective_date_range.to,
        )
    if f.product_ids is not None:
        q = q.filter(StandardCost.product_id.in_(f.product_ids))

    rows = q.order_by(StandardCost.product_id.asc(), StandardCost.id.asc()).all()
    return [
        _Target(
            standard_cost_id=sc.id,
            product_id=sc.product_id,
            row_version=sc.row_version,
            components=CostComponents(sc.material_cost, sc.labor_cost, sc.overhead_cost),
        )
        for sc in rows
    ]


def apply_mass_update(
    db: Session,
    *,
    tenant: TenantContext,
    principal: Principal | None,
    request: MassUpdateIn,
    deadline: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> MassUpdateResult:
    """Adjust every matching standard cost.

    ``deadline`` is an absolute ``clock()`` reading. Once it has passed no
    further records are written and the partial result comes back with
    ``truncated=True``.
    """
    principal = authorize_tenant(principal, tenant, Capability.MANAGE_STANDARD_COSTS)
    validate_mass_update(request, LocalizationManager.for_tenant(tenant))
    adj = request.adjustment
    reason = adj.reason.strip()

    targets = _select_population(db, tenant.id, request)
    db.rollback()  # release the read before per-record writes
    result = MassUpdateResult(matched_count=len(targets))

    for target in targets:
        if deadline is not None and clock() >= deadline:
            result.truncated = True
            logger.warning(
                "Mass update stopped at deadline",
                extra={"updated_count": result.updated_count, "matched_count": result.matched_count},
            )
            break

        try:
            new = compute_adjusted(target.components, adj)
            detail = _rejection(new)
        except ArithmeticError:
            new, detail = None, OUT_OF_RANGE
        if detail:
            result.errors.append(MassUpdateError(target.product_id, detail))
            logger.warning("Mass update skipped record", extra={"product_id": target.product_id, "detail": detail})
            continue

        try:
            res = db.execute(
                update(StandardCost)
                .where(
                    StandardCost.id == target.standard_cost_id,
                    StandardCost.tenant_id == tenant.id,
                    StandardCost.row_version == target.row_version,
                )
                .values(
                    material_cost=new.material,
                    labor_cost=new.labor,
                    overhead_cost=new.overhead,
                    total_standard_cost=new.total,
                    row_version=target.row_version + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                db.rollback()
                result.errors.append(MassUpdateError(target.product_id, "Standard cost was modified concurrently"))
                logger.warning("Mass update lost a concurrent write", extra={"product_id": target.product_id})
                continue
            audit(
                db,
                actor=principal.username,
                action="costing.standard_cost.mass_update",
                entity_type="cost_standard_cost",
                entity_id=target.standard_cost_id,
                payload={
                    "product_id": target.product_id,
                    "reason": reason,
                    "reason_code": adj.reason_code,
                    "adjustment_type": adj.type,
                    "old": target.components.as_dict(),
                    "new": new.as_dict(),
                },
                tenant_id=tenant.id,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Mass update write failed", extra={"product_id": target.product_id})
            result.errors.append(MassUpdateError(target.product_id, "Standard cost could not be updated"))
            continue
        result.updated_count += 1

    if result.updated_count:
        publish(
            db,
            "costing.standard_cost.mass_updated",
            {
                "updated_count": result.updated_count,
                "error_count": len(result.errors),
                "adjustment_type": adj.type,
                "reason": reason,
                "reason_code": adj.reason_code,
                "truncated": result.truncated,
            },
            tenant_id=tenant.id,
        )
        db.commit()

    logger.info(
        "Mass update finished",
        extra={
            "updated_count": result.updated_count,
            "matched_count": result.matched_count,
            "error_count": len(result.errors),
        },
    )
    return result
