from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status

from ..schemas.catalog import CreatePlanRequest, PlanResponse
from ..schemas.coupons import CouponResponse, CreateCouponRequest
from ...models.coupon import Coupon
from ...models.plan import Plan
from ...services.catalog_service import CatalogService, get_catalog_service

router = APIRouter()


@router.post(
    "/plans",
    response_model=PlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="플랜 등록",
)
def create_plan(
    body: CreatePlanRequest,
    service: CatalogService = Depends(get_catalog_service),
) -> PlanResponse:
    now = datetime.now(timezone.utc)
    plan = service.create_plan(Plan(**body.model_dump(), created_at=now, updated_at=now))
    return PlanResponse.from_domain(plan)


@router.post(
    "/coupons",
    response_model=CouponResponse,
    status_code=status.HTTP_201_CREATED,
    summary="쿠폰 등록",
)
def create_coupon(
    body: CreateCouponRequest,
    service: CatalogService = Depends(get_catalog_service),
) -> CouponResponse:
    now = datetime.now(timezone.utc)
    coupon = service.create_coupon(
        Coupon(**body.model_dump(), created_at=now, updated_at=now)
    )
    return CouponResponse.from_domain(coupon)
