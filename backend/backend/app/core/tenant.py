from __future__ import annotations
import contextvars
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.db.models.costing import Organization

_tenant: contextvars.ContextVar[str] = contextvars.ContextVar("tenant_id", default="default")


@dataclass(frozen=True)
class TenantContext:
    id: str
    slug: str
    home_country: str
    base_currency: str


def set_tenant_id(tenant_id: str) -> None:
    _tenant.set(tenant_id or "default")

def get_tenant_id() -> str:
    return _tenant.get()


def resolve_tenant(db: Session, slug: str) -> TenantContext:
    """Resolve an organization slug to the tenant identity used by every query."""
    org = db.query(Organization).filter(Organization.slug == slug).first()
    if not org:
        raise NotFound("Organization not found")
    set_tenant_id(org.id)
    return TenantContext(
        id=org.id,
        slug=org.slug,
        home_country=(org.home_country or "US").upper(),
        base_currency=(org.base_currency or "USD").upper(),
    )
