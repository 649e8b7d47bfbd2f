"""
Cost revaluation workflow.

A revaluation proposes new material/labor/overhead values for one product.
It is created PENDING and then either approved or rejected exactly once:

    (none) --create--> PENDING --approve--> APPROVED
                          |
                          +------reject---> REJECTED

Both transitions are a single conditional UPDATE on ``status = 'PENDING'``,
so of two racing requests only one can match the row. The approval commits
together with its audit row and the ``costing.revaluation.approved`` outbox
event, then pushes the approved values to the product cost store. If that
write fails the approval is reverted to PENDING, the undelivered event is
withdrawn and the caller gets a DependencyFailure.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.audit import audit
from app.core.errors import CostingError, DependencyFailure, InvalidState, NotFound, ValidationError
from app.core.security import Capability, Principal, authorize_tenant
from app.core.tenant import TenantContext
from app.db.models.common import utcnow
from app.db.models.costing import REVALUATION_STATUSES, CostRevaluation
from app.events.bus import publish
from app.events.outbox import OutboxEvent
from services.costing.localization import LocalizationManager
from services.costing.product_store import ZERO, CostComponents, ProductCostStore, quantize_amount
from services.costing.schemas import as_utc

logger = logging.getLogger(__name__)

NUMBER_ATTEMPTS = 3


def _components(material, labor, overhead) -> CostComponents:
    try:
        values = [quantize_amount(Decimal(str(v))) for v in (material, labor, overhead)]
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError("Cost components must be decimal amounts") from e
    for name, value in zip(("material_cost", "labor_cost", "overhead_cost"), values):
        if value < 0:
            raise ValidationError(f"{name} cannot be negative")
    return CostComponents(*values)


def _check_reason_code(loc: LocalizationManager, reason_code: str | None) -> str | None:
    if not reason_code:
        return None
    if not loc.validate_reason_code(reason_code):
        raise ValidationError(f"Unknown variance reason code {reason_code}")
    return reason_code


def _next_revaluation_number(db: Session, tenant_id: str, now: datetime) -> str:
    prefix = f"REV-{now.year:04d}-"
    last = (
        db.query(CostRevaluation.revaluation_number)
        .filter(
            CostRevaluation.tenant_id == tenant_id,
            CostRevaluation.revaluation_number.like(f"{prefix}%"),
        )
        .order_by(CostRevaluation.revaluation_number.desc())
        .first()
    )
    seq = int(last[0][len(prefix):]) + 1 if last else 1
    return f"{prefix}{seq:04d}"


def _load(db: Session, tenant_id: str, revaluation_id: str) -> CostRevaluation:
    rev = (
        db.query(CostRevaluation)
        .filter(CostRevaluation.tenant_id == tenant_id, CostRevaluation.id == revaluation_id)
        .first()
    )
    if not rev:
        raise NotFound("Revaluation not found")
    return rev


def _raise_transition_failure(db: Session, tenant_id: str, revaluation_id: str) -> None:
    """The conditional update matched nothing: tell missing from already decided."""
    row = (
        db.query(CostRevaluation.status)
        .filter(CostRevaluation.tenant_id == tenant_id, CostRevaluation.id == revaluation_id)
        .first()
    )
    if row is None:
        raise NotFound("Revaluation not found")
    raise InvalidState(f"Revaluation is {row[0]}, only PENDING revaluations can change status")


def revaluation_to_dict(rev: CostRevaluation) -> dict:
    proposed = CostComponents(rev.material_cost, rev.labor_cost, rev.overhead_cost)
    current = CostComponents(rev.old_material_cost, rev.old_labor_cost, rev.old_overhead_cost)
    return {
        "id": rev.id,
        "revaluation_number": rev.revaluation_number,
        "product_id": rev.product_id,
        "status": rev.status,
        "proposed": proposed.as_dict(),
        "current": current.as_dict(),
        "value_difference": str(rev.value_difference),
        "reason": rev.reason,
        "reason_code": rev.reason_code,
        "notes": rev.notes,
        "created_by": rev.created_by,
        "created_at": rev.created_at.isoformat() if rev.created_at else None,
        "approved_by": rev.approved_by,
        "approved_at": rev.approved_at.isoformat() if rev.approved_at else None,
        "rejected_by": rev.rejected_by,
        "rejected_at": rev.rejected_at.isoformat() if rev.rejected_at else None,
        "rejection_reason": rev.rejection_reason,
    }


def create_revaluation(
    db: Session,
    *,
    tenant: TenantContext,
    principal: Principal | None,
    store: ProductCostStore,
    product_id: str,
    material_cost,
    labor_cost,
    overhead_cost,
    reason: str,
    reason_code: str | None = None,
    notes: str | None = None,
) -> CostRevaluation:
    principal = authorize_tenant(principal, tenant, Capability.MANAGE_COST_REVALUATIONS)
    proposed = _components(material_cost, labor_cost, overhead_cost)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")
    reason_code = _check_reason_code(LocalizationManager.for_tenant(tenant), reason_code)

    product = store.read_product(tenant.id, product_id)
    current = product.components

    for attempt in range(1, NUMBER_ATTEMPTS + 1):
        now = utcnow()
        rev = CostRevaluation(
            tenant_id=tenant.id,
            revaluation_number=_next_revaluation_number(db, tenant.id, now),
            product_id=product.product_id,
            material_cost=proposed.material,
            labor_cost=proposed.labor,
            overhead_cost=proposed.overhead,
            old_material_cost=current.material,
            old_labor_cost=current.labor,
            old_overhead_cost=current.overhead,
            value_difference=proposed.total - current.total,
            reason=reason,
            reason_code=reason_code,
            notes=notes,
            status="PENDING",
            created_by=principal.username,
            created_at=now,
            updated_at=now,
        )
        db.add(rev)
        try:
            db.flush()
        except IntegrityError:
            # Another request took the same number
            db.rollback()
            if attempt == NUMBER_ATTEMPTS:
                raise InvalidState("Could not allocate a revaluation number, retry")
            continue

        audit(
            db,
            actor=principal.username,
            action="costing.revaluation.create",
            entity_type="cost_revaluation",
            entity_id=rev.id,
            payload={"revaluation_number": rev.revaluation_number, "product_id": rev.product_id, "reason": reason},
            tenant_id=tenant.id,
        )
        publish(
            db,
            "costing.revaluation.created",
            {
                "revaluation_id": rev.id,
                "revaluation_number": rev.revaluation_number,
                "product_id": rev.product_id,
                "value_difference": str(rev.value_difference),
            },
            tenant_id=tenant.id,
        )
        db.commit()
        break

    logger.info(
        "Revaluation created",
        extra={"revaluation_id": rev.id, "revaluation_number": rev.revaluation_number},
    )
    return rev


def get_revaluation(
    db: Session, *, tenant: TenantContext, principal: Principal | None, revaluation_id: str
) -> CostRevaluation:
    authorize_tenant(principal, tenant, Capability.VIEW_COST_REVALUATIONS)
    return _load(db, tenant.id, revaluation_id)


def list_revaluations(
    db: Session,
    *,
    tenant: TenantContext,
    principal: Principal | None,
    status: str | None = None,
    product_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 200,
) -> list[CostRevaluation]:
    authorize_tenant(principal, tenant, Capability.VIEW_COST_REVALUATIONS)
    if status and status not in REVALUATION_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(REVALUATION_STATUSES)}")
    start_date, end_date = as_utc(start_date), as_utc(end_date)
    if start_date and end_date and start_date > end_date:
        raise ValidationError("start_date must not be after end_date")

    q = db.query(CostRevaluation).filter(CostRevaluation.tenant_id == tenant.id)
    if status:
        q = q.filter(CostRevaluation.status == status)
    if product_id:
        q = q.filter(CostRevaluation.product_id == product_id)
    if start_date:
        q = q.filter(CostRevaluation.created_at >= start_date)
    if end_date:
        q = q.filter(CostRevaluation.created_at <= end_date)
    return q.order_by(CostRevaluation.created_at.desc()).limit(limit).all()


def preview_revaluation(
    *,
    tenant: TenantContext,
    principal: Principal | None,
    store: ProductCostStore,
    product_id: str,
    material_cost,
    labor_cost,
    overhead_cost,
) -> dict:
    """Show what a revaluation would change without writing anything."""
    authorize_tenant(principal, tenant, Capability.VIEW_COST_REVALUATIONS)
    proposed = _components(material_cost, labor_cost, overhead_cost)
    product = store.read_product(tenant.id, product_id)
    current = product.components

    difference = proposed.total - current.total
    percentage = None
    if current.total != ZERO:
        percentage = (difference / current.total * 100).quantize(Decimal("0.01"))

    loc = LocalizationManager.for_tenant(tenant)
    policy = loc.get_revaluation_policy()
    return {
        "product_id": product.product_id,
        "sku": product.sku,
        "current": current.as_dict(),
        "proposed": proposed.as_dict(),
        "value_difference": str(difference),
        "percentage_change": str(percentage) if percentage is not None else None,
        "requires_additional_approval": abs(difference) > policy.auto_approval_threshold,
        "warnings": loc.revaluation_warnings(percentage, proposed.total),
    }


def approve_revaluation(
    db: Session,
    *,
    tenant: TenantContext,
    principal: Principal | None,
    store: ProductCostStore,
    revaluation_id: str,
) -> CostRevaluation:
    principal = authorize_tenant(principal, tenant, Capability.APPROVE_COST_REVALUATIONS)
    rev = _load(db, tenant.id, revaluation_id)
    components = CostComponents(rev.material_cost, rev.labor_cost, rev.overhead_cost)
    now = utcnow()
    result = db.execute(
        update(CostRevaluation)
        .where(
            CostRevaluation.id == revaluation_id,
            CostRevaluation.tenant_id == tenant.id,
            CostRevaluation.status == "PENDING",
        )
        .values(status="APPROVED", approved_by=principal.username, approved_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        _raise_transition_failure(db, tenant.id, revaluation_id)

    audit(
        db,
        actor=principal.username,
        action="costing.revaluation.approve",
        entity_type="cost_revaluation",
        entity_id=revaluation_id,
        tenant_id=tenant.id,
    )
    loc = LocalizationManager.for_tenant(tenant)
    event = publish(
        db,
        "costing.revaluation.approved",
        {
            "revaluation_id": rev.id,
            "revaluation_number": rev.revaluation_number,
            "product_id": rev.product_id,
            "components": components.as_dict(),
            "value_difference": str(rev.value_difference),
            "reason_code": rev.reason_code,
            "gl_account": loc.gl_account_for(rev.reason_code),
            "currency": tenant.base_currency,
        },
        tenant_id=tenant.id,
    )
    db.commit()
    event_id = event.id

    try:
        store.apply_cost_update(tenant.id, rev.product_id, components)
    except CostingError as e:
        logger.error(
            "Standard cost update failed, reverting approval",
            extra={"revaluation_id": revaluation_id, "error": e.kind},
        )
        _revert_approval(
            db, tenant=tenant, principal=principal, revaluation_id=revaluation_id, event_id=event_id, cause=e
        )
        raise DependencyFailure("Standard cost could not be updated; the revaluation is still PENDING") from e

    logger.info("Revaluation approved", extra={"revaluation_id": revaluation_id, "approved_by": principal.username})
    return _load(db, tenant.id, revaluation_id)


def _revert_approval(
    db: Session,
    *,
    tenant: TenantContext,
    principal: Principal,
    revaluation_id: str,
    event_id: str,
    cause: CostingError,
) -> None:
    db.execute(
        update(CostRevaluation)
        .where(
            CostRevaluation.id == revaluation_id,
            CostRevaluation.tenant_id == tenant.id,
            CostRevaluation.status == "APPROVED",
            CostRevaluation.approved_by == principal.username,
        )
        .values(status="PENDING", approved_by=None, approved_at=None, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    withdrawn = db.execute(
        delete(OutboxEvent)
        .where(OutboxEvent.id == event_id, OutboxEvent.delivered == False)  # noqa: E712
        .execution_options(synchronize_session=False)
    )
    if withdrawn.rowcount != 1:
        # Already handed to a consumer, so void it with a follow-up
        publish(
            db,
            "costing.revaluation.approval_reverted",
            {"revaluation_id": revaluation_id, "approved_event_id": event_id},
            tenant_id=tenant.id,
        )
    audit(
        db,
        actor=principal.username,
        action="costing.revaluation.approve",
        entity_type="cost_revaluation",
        entity_id=revaluation_id,
        payload={"reverted": True, "error": cause.kind, "detail": cause.detail},
        success=False,
        tenant_id=tenant.id,
    )
    db.commit()


def reject_revaluation(
    db: Session,
    *,
    tenant: TenantContext,
    principal: Principal | None,
    revaluation_id: str,
    reason: str,
) -> CostRevaluation:
    principal = authorize_tenant(principal, tenant, Capability.APPROVE_COST_REVALUATIONS)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required")

    now = utcnow()
    result = db.execute(
        update(CostRevaluation)
        .where(
            CostRevaluation.id == revaluation_id,
            CostRevaluation.tenant_id == tenant.id,
            CostRevaluation.status == "PENDING",
        )
        .values(
            status="REJECTED",
            rejected_by=principal.username,
            rejected_at=now,
            rejection_reason=reason,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        _raise_transition_failure(db, tenant.id, revaluation_id)

    audit(
        db,
        actor=principal.username,
        action="costing.revaluation.reject",
        entity_type="cost_revaluation",
        entity_id=revaluation_id,
        payload={"reason": reason},
        tenant_id=tenant.id,
    )
    publish(
        db,
        "costing.revaluation.rejected",
        {"revaluation_id": revaluation_id, "reason": reason},
        tenant_id=tenant.id,
    )
    db.commit()
    logger.info("Revaluation rejected", extra={"revaluation_id": revaluation_id, "rejected_by": principal.username})
    return _load(db, tenant.id, revaluation_id)
