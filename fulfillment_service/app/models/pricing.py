"""가격 계산 결과 모델."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from .coupon import CouponValidation
from .order import OrderItem


class ComposedTotal(BaseModel):
    """쿠폰 할인과 로열티 할인을 합산한 결과.

    loyalty_amount, total_discount 는 반올림하지 않은 값이고 total 만 센트 단위로 반올림한다.
    """

    total: Decimal
    loyalty_amount: Decimal
    total_discount: Decimal


class Quote(BaseModel):
    """체크아웃 견적."""

    user_id: str
    ship_id: str
    items: list[OrderItem]
    subtotal: Decimal
    coupon: CouponValidation | None = None
    coupon_discount: Decimal
    loyalty_percent: Decimal
    loyalty_amount: Decimal
    total_discount: Decimal
    total: Decimal


class CartItem(BaseModel):
    """체크아웃 입력 한 줄."""

    plan_id: str
    quantity: int = Field(default=1, ge=1)
