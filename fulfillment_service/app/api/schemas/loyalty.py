from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel

from ...models.loyalty import LoyaltyStatus


class LoyaltyTierResponse(BaseModel):
    min_gb: int
    discount_percent: Decimal


class NextTierResponse(BaseModel):
    needed_gb: int
    next_discount: Decimal


class LoyaltyStatusResponse(BaseModel):
    user_id: str
    current_gb: int
    current_discount: Decimal
    next_tier: NextTierResponse | None
    days_remaining: int
    tiers: list[LoyaltyTierResponse]

    @classmethod
    def from_domain(cls, status: LoyaltyStatus) -> "LoyaltyStatusResponse":
        return cls(
            user_id=status.user_id,
            current_gb=status.current_gb,
            current_discount=status.current_discount,
            next_tier=(
                NextTierResponse(
                    needed_gb=status.next_tier.needed_gb,
                    next_discount=status.next_tier.next_discount,
                )
                if status.next_tier is not None
                else None
            ),
            days_remaining=status.days_remaining,
            tiers=[
                LoyaltyTierResponse(min_gb=t.min_gb, discount_percent=t.discount_percent)
                for t in status.tiers
            ],
        )
