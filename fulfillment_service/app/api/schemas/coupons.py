from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from common.types.datetime import OptionalUtcDateTime, UtcDateTime
from common.types.money import UsdAmount

from ...models.coupon import (
    Coupon,
    CouponReason,
    CouponScope,
    CouponValidation,
    DiscountType,
)


class ValidateCouponRequest(BaseModel):
    code: str
    ship_id: str
    subtotal: Decimal = Field(ge=0)
    plan_ids: list[str] = Field(default_factory=list)
    user_id: str


class CouponResponse(BaseModel):
    id: str | None
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    min_order_amount: UsdAmount | None
    max_uses: int | None
    used_count: int
    valid_from: OptionalUtcDateTime
    valid_until: OptionalUtcDateTime
    scope: CouponScope
    applicable_ships: list[str]
    applicable_plans: list[str]
    single_use_only: bool
    is_active: bool
    description: str | None
    created_at: UtcDateTime

    @classmethod
    def from_domain(cls, coupon: Coupon) -> "CouponResponse":
        return cls(
            id=coupon.id,
            code=coupon.code,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            min_order_amount=coupon.min_order_amount,
            max_uses=coupon.max_uses,
            used_count=coupon.used_count,
            valid_from=coupon.valid_from,
            valid_until=coupon.valid_until,
            scope=coupon.scope,
            applicable_ships=coupon.applicable_ships,
            applicable_plans=coupon.applicable_plans,
            single_use_only=coupon.single_use_only,
            is_active=coupon.is_active,
            description=coupon.description,
            created_at=coupon.created_at,
        )


class CouponSummary(BaseModel):
    """검증 응답에 싣는 쿠폰 요약. 사용량 같은 운영 정보는 빼고 내보낸다."""

    id: str | None
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    scope: CouponScope
    description: str | None


class ValidateCouponResponse(BaseModel):
    valid: bool
    coupon: CouponSummary | None = None
    discount_amount: UsdAmount | None = None
    reason_code: CouponReason | None = None

    @classmethod
    def from_domain(cls, validation: CouponValidation) -> "ValidateCouponResponse":
        coupon = validation.coupon
        summary = None
        if coupon is not None and validation.valid:
            summary = CouponSummary(
                id=coupon.id,
                code=coupon.code,
                discount_type=coupon.discount_type,
                discount_value=coupon.discount_value,
                scope=coupon.scope,
                description=coupon.description,
            )
        return cls(
            valid=validation.valid,
            coupon=summary,
            discount_amount=validation.discount_amount,
            reason_code=validation.reason_code,
        )


class CreateCouponRequest(BaseModel):
    code: str = Field(min_length=1)
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    min_order_amount: Decimal | None = Field(default=None, ge=0)
    max_uses: int | None = Field(default=None, ge=1)
    valid_from: OptionalUtcDateTime = None
    valid_until: OptionalUtcDateTime = None
    scope: CouponScope = CouponScope.GENERAL
    applicable_ships: list[str] = Field(default_factory=list)
    applicable_plans: list[str] = Field(default_factory=list)
    single_use_only: bool = False
    is_active: bool = True
    description: str | None = None
