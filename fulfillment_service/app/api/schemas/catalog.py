from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime
from common.types.money import UsdAmount

from ...models.plan import Plan
from ...services.catalog_service import PlanAvailability


class CreatePlanRequest(BaseModel):
    ship_id: str
    name: str = Field(min_length=1)
    data_limit_gb: int = Field(ge=0)
    price_usd: Decimal = Field(ge=0)
    validity_days: int | None = Field(default=None, ge=1)
    is_active: bool = True
    sort_order: int = 0


class PlanResponse(BaseModel):
    id: str | None
    ship_id: str
    name: str
    data_limit_gb: int
    price_usd: UsdAmount
    validity_days: int | None
    is_active: bool
    sort_order: int
    created_at: UtcDateTime

    @classmethod
    def from_domain(cls, plan: Plan) -> "PlanResponse":
        return cls(
            id=plan.id,
            ship_id=plan.ship_id,
            name=plan.name,
            data_limit_gb=plan.data_limit_gb,
            price_usd=plan.price_usd,
            validity_days=plan.validity_days,
            is_active=plan.is_active,
            sort_order=plan.sort_order,
            created_at=plan.created_at,
        )


class ShipPlanResponse(BaseModel):
    plan_id: str | None
    name: str
    data_limit_gb: int
    price_usd: UsdAmount
    validity_days: int | None
    available_count: int
    in_stock: bool

    @classmethod
    def from_domain(cls, availability: PlanAvailability) -> "ShipPlanResponse":
        plan = availability.plan
        return cls(
            plan_id=plan.id,
            name=plan.name,
            data_limit_gb=plan.data_limit_gb,
            price_usd=plan.price_usd,
            validity_days=plan.validity_days,
            available_count=availability.stats.available,
            in_stock=availability.in_stock,
        )
