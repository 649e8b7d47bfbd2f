from __future__ import annotations

import time
from datetime import datetime

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from app.core.errors import Unauthenticated, ValidationError
from app.core.security import Capability, Principal, authorize_tenant, get_principal
from app.core.tenant import TenantContext, resolve_tenant
from app.db.session import SessionLocal, get_db
from services.costing.localization import LocalizationManager
from services.costing.mass_update import apply_mass_update
from services.costing.product_store import ProductCostStore, SqlProductCostStore
from services.costing.revaluation import (
    approve_revaluation,
    create_revaluation,
    get_revaluation,
    list_revaluations,
    preview_revaluation,
    reject_revaluation,
    revaluation_to_dict,
)
from services.costing.schemas import MassUpdateIn, RejectIn, RevaluationIn, RevaluationPreviewIn, StandardCostIn
from services.costing.standard_costs import create_standard_cost, list_standard_costs, standard_cost_to_dict

router = APIRouter(prefix="/{org_slug}/costing", tags=["costing"])


def get_tenant(
    org_slug: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> TenantContext:
    # Identity first so unknown callers never learn which slugs exist
    if not principal.is_authenticated:
        raise Unauthenticated("Not authenticated")
    return resolve_tenant(db, org_slug)


def get_product_store() -> ProductCostStore:
    return SqlProductCostStore(SessionLocal)


def request_deadline(x_request_timeout: float | None = Header(default=None)) -> float | None:
    """X-Request-Timeout (seconds) -> absolute time.monotonic() deadline."""
    if x_request_timeout is None:
        return None
    if x_request_timeout <= 0:
        raise ValidationError("X-Request-Timeout must be a positive number of seconds")
    return time.monotonic() + x_request_timeout


# ---- Revaluations ----
@router.post("/revaluations", status_code=201)
def create(
    payload: RevaluationIn,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
    store: ProductCostStore = Depends(get_product_store),
):
    rev = create_revaluation(
        db,
        tenant=tenant,
        principal=principal,
        store=store,
        product_id=payload.product_id,
        material_cost=payload.material_cost,
        labor_cost=payload.labor_cost,
        overhead_cost=payload.overhead_cost,
        reason=payload.reason,
        reason_code=payload.reason_code,
        notes=payload.notes,
    )
    return revaluation_to_dict(rev)


@router.get("/revaluations")
def list_(
    status: str | None = None,
    product_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
):
    rows = list_revaluations(
        db,
        tenant=tenant,
        principal=principal,
        status=status,
        product_id=product_id,
        start_date=start_date,
        end_date=end_date,
        limit=min(max(limit, 1), 1000),
    )
    return [revaluation_to_dict(r) for r in rows]


@router.post("/revaluations/preview")
def preview(
    payload: RevaluationPreviewIn,
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
    store: ProductCostStore = Depends(get_product_store),
):
    return preview_revaluation(
        tenant=tenant,
        principal=principal,
        store=store,
        product_id=payload.product_id,
        material_cost=payload.material_cost,
        labor_cost=payload.labor_cost,
        overhead_cost=payload.overhead_cost,
    )


@router.get("/revaluations/{revaluation_id}")
def get(
    revaluation_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
):
    rev = get_revaluation(db, tenant=tenant, principal=principal, revaluation_id=revaluation_id)
    return revaluation_to_dict(rev)


@router.patch("/revaluations/{revaluation_id}/approve")
def approve(
    revaluation_id: str,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
    store: ProductCostStore = Depends(get_product_store),
):
    rev = approve_revaluation(db, tenant=tenant, principal=principal, store=store, revaluation_id=revaluation_id)
    return revaluation_to_dict(rev)


@router.patch("/revaluations/{revaluation_id}/reject")
def reject(
    revaluation_id: str,
    payload: RejectIn,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
):
    rev = reject_revaluation(
        db, tenant=tenant, principal=principal, revaluation_id=revaluation_id, reason=payload.reason
    )
    return revaluation_to_dict(rev)


# ---- Standard costs ----
@router.get("/standard-costs")
def list_standard_costs_(
    product_id: str | None = None,
    costing_method: str | None = None,
    effective_date: datetime | None = None,
    active: bool | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
):
    rows = list_standard_costs(
        db,
        tenant=tenant,
        principal=principal,
        product_id=product_id,
        costing_method=costing_method,
        effective_date=effective_date,
        active=active,
        limit=min(max(limit, 1), 1000),
    )
    return [standard_cost_to_dict(sc) for sc in rows]


@router.post("/standard-costs", status_code=201)
def create_standard_cost_(
    payload: StandardCostIn,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
):
    sc = create_standard_cost(db, tenant=tenant, principal=principal, payload=payload)
    return standard_cost_to_dict(sc)


@router.post("/standard-costs/mass-update")
def mass_update(
    payload: MassUpdateIn,
    db: Session = Depends(get_db),
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
    deadline: float | None = Depends(request_deadline),
):
    result = apply_mass_update(db, tenant=tenant, principal=principal, request=payload, deadline=deadline)
    return result.to_dict()


# ---- Localization ----
@router.get("/variances/reason-codes")
def reason_codes(
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
):
    authorize_tenant(principal, tenant, Capability.VIEW_COST_VARIANCES)
    loc = LocalizationManager.for_tenant(tenant)
    return {
        "country": loc.home_country,
        "currency": loc.base_currency,
        "codes": [
            {"code": rc.code, "description": rc.description, "gl_account": rc.gl_account}
            for rc in loc.get_variance_reason_codes()
        ],
        "gl_mapping": loc.get_variance_gl_account_mapping(),
    }


@router.get("/localization/config")
def localization_config(
    tenant: TenantContext = Depends(get_tenant),
    principal: Principal = Depends(get_principal),
):
    authorize_tenant(principal, tenant, Capability.VIEW_COST_VARIANCES)
    return LocalizationManager.for_tenant(tenant).describe()
