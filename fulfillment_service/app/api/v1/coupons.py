from __future__ import annotations

from fastapi import APIRouter, Depends

from ..schemas.coupons import ValidateCouponRequest, ValidateCouponResponse
from ...services.coupon_policy_service import (
    CouponPolicyService,
    get_coupon_policy_service,
)

router = APIRouter()


@router.post(
    "/validate", response_model=ValidateCouponResponse, summary="쿠폰 검증 (부작용 없음)"
)
def validate_coupon(
    body: ValidateCouponRequest,
    service: CouponPolicyService = Depends(get_coupon_policy_service),
) -> ValidateCouponResponse:
    validation = service.validate(
        body.code,
        body.ship_id,
        body.subtotal,
        body.plan_ids,
        body.user_id,
    )
    return ValidateCouponResponse.from_domain(validation)
