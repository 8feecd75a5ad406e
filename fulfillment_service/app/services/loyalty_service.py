"""로열티 등급 계산.

이번 달(설정 타임존 기준) 결제된 주문의 구매 데이터량 합으로 등급을 정한다.
달이 바뀌면 집계 대상이 바뀌므로 별도 초기화 작업이 없다.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from fastapi import Depends

from ..config import AppConfig, get_app_config
from ..models.loyalty import LOYALTY_TIERS, LoyaltyStatus, LoyaltyTier, NextTier
from ..repositories.interfaces import OrderRepositoryInterface
from ..utils.dates import days_remaining_in_month, start_of_month
from .coupon_policy_service import get_order_repository


def tier_for(purchased_gb: int) -> LoyaltyTier:
    for tier in LOYALTY_TIERS:
        if purchased_gb >= tier.min_gb:
            return tier
    return LOYALTY_TIERS[-1]


def next_tier_for(purchased_gb: int) -> NextTier | None:
    """바로 위 등급. 최고 등급이면 None."""
    upper = [tier for tier in LOYALTY_TIERS if tier.min_gb > purchased_gb]
    if not upper:
        return None
    target = min(upper, key=lambda tier: tier.min_gb)
    return NextTier(
        needed_gb=target.min_gb - purchased_gb,
        next_discount=target.discount_percent,
    )


class LoyaltyService:
    def __init__(
        self,
        order_repo: OrderRepositoryInterface,
        timezone_name: str,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._order_repo = order_repo
        self._timezone_name = timezone_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def monthly_purchased_gb(self, user_id: str) -> int:
        since = start_of_month(self._clock(), self._timezone_name)
        orders = self._order_repo.list_purchased_since(user_id, since)
        return sum(order.purchased_gb for order in orders)

    def discount_percent(self, user_id: str) -> Decimal:
        return tier_for(self.monthly_purchased_gb(user_id)).discount_percent

    def status(self, user_id: str) -> LoyaltyStatus:
        current_gb = self.monthly_purchased_gb(user_id)
        return LoyaltyStatus(
            user_id=user_id,
            current_gb=current_gb,
            current_discount=tier_for(current_gb).discount_percent,
            next_tier=next_tier_for(current_gb),
            days_remaining=days_remaining_in_month(self._clock(), self._timezone_name),
            tiers=list(LOYALTY_TIERS),
        )


def get_loyalty_service(
    order_repo: OrderRepositoryInterface = Depends(get_order_repository),
    config: AppConfig = Depends(get_app_config),
) -> LoyaltyService:
    """FastAPI DI용 LoyaltyService 팩토리."""

    return LoyaltyService(
        order_repo=order_repo, timezone_name=config.order_policy.expiry_timezone
    )
