"""로열티 등급 모델.

LoyaltyStatus 는 저장하지 않는 파생 값이며, 이번 달 구매 데이터량(GB)으로 계산한다.
"""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel


class LoyaltyTier(BaseModel):
    min_gb: int
    discount_percent: Decimal


# 높은 등급부터 나열한다.
LOYALTY_TIERS: tuple[LoyaltyTier, ...] = (
    LoyaltyTier(min_gb=100, discount_percent=Decimal("15")),
    LoyaltyTier(min_gb=50, discount_percent=Decimal("10")),
    LoyaltyTier(min_gb=25, discount_percent=Decimal("5")),
    LoyaltyTier(min_gb=0, discount_percent=Decimal("0")),
)


class NextTier(BaseModel):
    needed_gb: int
    next_discount: Decimal


class LoyaltyStatus(BaseModel):
    user_id: str
    current_gb: int
    current_discount: Decimal
    next_tier: NextTier | None
    days_remaining: int
    tiers: list[LoyaltyTier]
