from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CostingMethod = Literal["STANDARD", "FIFO", "LIFO", "WEIGHTED_AVERAGE", "SPECIFIC_IDENTIFICATION"]
AdjustmentType = Literal["PERCENTAGE", "AMOUNT"]

# Fits DECIMAL(19,4)
Amount = Annotated[Decimal, Field(max_digits=19, decimal_places=4)]


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---- Revaluations ----
class ProposedCostIn(BaseModel):
    material_cost: Amount
    labor_cost: Amount
    overhead_cost: Amount


class RevaluationIn(ProposedCostIn):
    product_id: str = Field(..., max_length=36)
    reason: str = Field(..., max_length=2000)
    reason_code: str | None = Field(default=None, max_length=64)
    notes: str | None = None


class RevaluationPreviewIn(ProposedCostIn):
    product_id: str = Field(..., max_length=36)


class RejectIn(BaseModel):
    reason: str = Field(..., max_length=2000)


# ---- Standard costs ----
class StandardCostIn(ProposedCostIn):
    product_id: str = Field(..., max_length=36)
    costing_method: CostingMethod
    effective_from: datetime
    effective_to: datetime | None = None
    notes: str | None = None

    @field_validator("effective_from", "effective_to")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


# ---- Mass update ----
class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: datetime = Field(..., alias="from")
    to: datetime

    @field_validator("from_", "to")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class MassUpdateFilter(BaseModel):
    category_id: str | None = None
    costing_method: CostingMethod | None = None
    effective_date_range: DateRange | None = None
    product_ids: list[str] | None = None


class MassUpdateAdjustment(BaseModel):
    type: AdjustmentType
    material_adjustment: Amount | None = None
    labor_adjustment: Amount | None = None
    overhead_adjustment: Amount | None = None
    reason: str = ""
    reason_code: str | None = Field(default=None, max_length=64)


class MassUpdateIn(BaseModel):
    filter: MassUpdateFilter = Field(default_factory=MassUpdateFilter)
    adjustment: MassUpdateAdjustment
