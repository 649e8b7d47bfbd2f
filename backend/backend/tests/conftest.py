from __future__ import annotations

import os

# Must be set before app.db.session builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_FORMAT", "text")

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from app.core.security import Grant, Principal
from app.core.tenant import TenantContext
from app.db import models  # noqa: F401
from app.db.base import Base
from app.db.models.costing import Organization, Product, StandardCost
from app.db.session import build_engine


@pytest.fixture
def engine(tmp_path):
    # File-backed so threads get their own connections to the same data
    eng = build_engine(f"sqlite:///{tmp_path / 'costing.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_tenant(db):
    def _make(slug: str, country: str = "US", currency: str = "USD") -> TenantContext:
        org = Organization(slug=slug, name=slug.title(), home_country=country, base_currency=currency)
        db.add(org)
        db.commit()
        return TenantContext(id=org.id, slug=slug, home_country=country, base_currency=currency)

    return _make


@pytest.fixture
def acme(make_tenant) -> TenantContext:
    return make_tenant("acme")


@pytest.fixture
def globex(make_tenant) -> TenantContext:
    return make_tenant("globex", "UG", "UGX")


@pytest.fixture
def make_product(db):
    counter = {"n": 0}

    def _make(
        tenant: TenantContext,
        *,
        material: str = "100.00",
        labor: str = "50.00",
        overhead: str = "25.00",
        category_id: str | None = None,
        costing_method: str = "STANDARD",
        effective_from: datetime | None = None,
    ) -> str:
        counter["n"] += 1
        product = Product(
            tenant_id=tenant.id,
            sku=f"SKU-{counter['n']:03d}",
            name=f"Widget {counter['n']}",
            category_id=category_id,
            costing_method=costing_method,
        )
        db.add(product)
        db.flush()
        m, l, o = Decimal(material), Decimal(labor), Decimal(overhead)
        db.add(StandardCost(
            tenant_id=tenant.id,
            product_id=product.id,
            costing_method=costing_method,
            material_cost=m,
            labor_cost=l,
            overhead_cost=o,
            total_standard_cost=m + l + o,
            effective_from=effective_from or datetime(2026, 1, 1, tzinfo=timezone.utc),
        ))
        db.commit()
        return product.id

    return _make


def as_role(tenant: TenantContext, role: str, username: str | None = None) -> Principal:
    username = username or f"{role.lower()}@{tenant.slug}.example"
    return Principal(user_id=f"user-{username}", username=username, tenant_id=tenant.id, grants=[Grant(role=role)])


@pytest.fixture
def principal():
    return as_role
