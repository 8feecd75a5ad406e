"""쿠폰 도메인 모델."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field


class DiscountType(StrEnum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class CouponScope(StrEnum):
    GENERAL = "general"
    SHIP = "ship"
    PACKAGE = "package"


class CouponReason(StrEnum):
    """쿠폰 거절 사유 코드. 검증 순서와 동일하게 나열한다."""

    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_STARTED = "not_started"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    SINGLE_USE_ALREADY_USED = "single_use_already_used"
    MINIMUM_ORDER_NOT_MET = "minimum_order_not_met"
    SCOPE_SHIP_MISMATCH = "scope_ship_mismatch"
    SCOPE_PACKAGE_MISMATCH = "scope_package_mismatch"


def normalize_coupon_code(code: str) -> str:
    """대소문자 무시 비교용 키."""
    return code.strip().upper()


class Coupon(BaseModel):
    id: str | None = None
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    min_order_amount: Decimal | None = None
    max_uses: int | None = None
    used_count: int = 0
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    scope: CouponScope = CouponScope.GENERAL
    applicable_ships: list[str] = Field(default_factory=list)
    applicable_plans: list[str] = Field(default_factory=list)
    single_use_only: bool = False
    is_active: bool = True
    description: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def code_key(self) -> str:
        return normalize_coupon_code(self.code)

    def is_usage_exhausted(self) -> bool:
        return self.max_uses is not None and self.used_count >= self.max_uses


class CouponValidation(BaseModel):
    """쿠폰 검증 결과. 거절은 예외가 아니라 reason_code 로 표현한다."""

    valid: bool
    coupon: Coupon | None = None
    discount_amount: Decimal | None = None
    reason_code: CouponReason | None = None

    @classmethod
    def accepted(cls, coupon: Coupon, discount_amount: Decimal) -> "CouponValidation":
        return cls(valid=True, coupon=coupon, discount_amount=discount_amount)

    @classmethod
    def rejected(
        cls, reason: CouponReason, coupon: Coupon | None = None
    ) -> "CouponValidation":
        return cls(valid=False, coupon=coupon, reason_code=reason)


class UsageClaim(BaseModel):
    """쿠폰 사용 슬롯 확보 결과.

    over_limit=True 이면 한도가 이미 찼다는 뜻이며 used_count 는 증가하지 않았다.
    """

    coupon_id: str
    used_count: int
    max_uses: int | None
    over_limit: bool


class CouponUsage(BaseModel):
    """쿠폰 사용 원장. 결제 확정(pending -> paid) 시 주문당 한 건 기록한다."""

    id: str | None = None
    coupon_id: str
    user_id: str
    order_id: str
    discount_amount: Decimal
    over_limit: bool = False
    created_at: datetime
    updated_at: datetime
