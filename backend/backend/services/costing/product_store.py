"""
Product cost store.

The product master and its current standard cost belong to the costing
subsystem's store, not to the revaluation workflow. Workflows read products
and push approved cost values through the ProductCostStore contract; the SQL
implementation below runs each call in its own session and transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Protocol

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import DependencyFailure, NotFound
from app.db.models.common import utcnow
from app.db.models.costing import Product, StandardCost

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
AMOUNT_QUANTUM = Decimal("0.0001")  # DECIMAL(19,4)
MAX_AMOUNT = Decimal("999999999999999.9999")


def quantize_amount(value: Decimal) -> Decimal:
    return Decimal(value).quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CostComponents:
    material: Decimal
    labor: Decimal
    overhead: Decimal

    @property
    def total(self) -> Decimal:
        return self.material + self.labor + self.overhead

    def as_dict(self) -> dict:
        return {
            "material_cost": str(self.material),
            "labor_cost": str(self.labor),
            "overhead_cost": str(self.overhead),
            "total_cost": str(self.total),
        }


@dataclass(frozen=True)
class ProductCost:
    product_id: str
    tenant_id: str
    sku: str
    name: str
    category_id: str | None
    costing_method: str
    standard_cost_id: str | None
    components: CostComponents


class ProductCostStore(Protocol):
    def read_product(self, tenant_id: str, product_id: str) -> ProductCost:
        ...

    def apply_cost_update(self, tenant_id: str, product_id: str, components: CostComponents) -> None:
        ...


def _active_standard_cost(db: Session, tenant_id: str, product_id: str) -> StandardCost | None:
    return (
        db.query(StandardCost)
        .filter(
            StandardCost.tenant_id == tenant_id,
            StandardCost.product_id == product_id,
            StandardCost.is_active == True,  # noqa: E712
        )
        .order_by(StandardCost.effective_from.desc())
        .first()
    )


class SqlProductCostStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def read_product(self, tenant_id: str, product_id: str) -> ProductCost:
        try:
            with self._session_factory() as db:
                product = (
                    db.query(Product)
                    .filter(Product.tenant_id == tenant_id, Product.id == product_id)
                    .first()
                )
                if not product:
                    raise NotFound("Product not found")
                sc = _active_standard_cost(db, tenant_id, product_id)
                components = (
                    CostComponents(sc.material_cost, sc.labor_cost, sc.overhead_cost)
                    if sc
                    else CostComponents(ZERO, ZERO, ZERO)
                )
                return ProductCost(
                    product_id=product.id,
                    tenant_id=product.tenant_id,
                    sku=product.sku,
                    name=product.name,
                    category_id=product.category_id,
                    costing_method=product.costing_method,
                    standard_cost_id=sc.id if sc else None,
                    components=components,
                )
        except SQLAlchemyError as e:
            logger.error("Product cost store read failed", extra={"product_id": product_id})
            raise DependencyFailure("Product cost store is unavailable") from e

    def apply_cost_update(self, tenant_id: str, product_id: str, components: CostComponents) -> None:
        """Make ``components`` the product's standard cost."""
        try:
            with self._session_factory() as db:
                product = (
                    db.query(Product)
                    .filter(Product.tenant_id == tenant_id, Product.id == product_id)
                    .first()
                )
                if not product:
                    raise NotFound("Product not found")
                sc = _active_standard_cost(db, tenant_id, product_id)
                if sc is None:
                    db.add(StandardCost(
                        tenant_id=tenant_id,
                        product_id=product_id,
                        costing_method=product.costing_method,
                        material_cost=components.material,
                        labor_cost=components.labor,
                        overhead_cost=components.overhead,
                        total_standard_cost=components.total,
                    ))
                else:
                    db.execute(
                        update(StandardCost)
                        .where(StandardCost.id == sc.id, StandardCost.tenant_id == tenant_id)
                        .values(
                            material_cost=components.material,
                            labor_cost=components.labor,
                            overhead_cost=components.overhead,
                            total_standard_cost=components.total,
                            row_version=StandardCost.row_version + 1,
                            updated_at=utcnow(),
                        )
                    )
                db.commit()
        except SQLAlchemyError as e:
            logger.error("Product cost store write failed", extra={"product_id": product_id})
            raise DependencyFailure("Product cost store is unavailable") from e
