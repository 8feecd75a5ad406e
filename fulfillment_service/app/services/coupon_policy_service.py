"""쿠폰 정책 엔진.

검증은 정해진 순서로 진행하고 첫 실패에서 멈춘다. 거절은 예외가 아니라 reason_code 값이다.
검증 자체는 부작용이 없다. used_count 는 결제 확정 시점에만 증가한다.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable

from fastapi import Depends
from pymongo.database import Database

from common.mongo.client import get_database

from ..config import AppConfig, get_app_config
from ..models.coupon import (
    Coupon,
    CouponReason,
    CouponScope,
    CouponValidation,
    DiscountType,
    normalize_coupon_code,
)
from ..models.order import NON_CONSUMING_STATUSES
from ..repositories.coupon_repository import CouponRepository
from ..repositories.interfaces import (
    CouponRepositoryInterface,
    OrderRepositoryInterface,
)
from ..repositories.order_repository import OrderRepository
from .discount_composer import HUNDRED, ZERO


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def compute_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """쿠폰 할인액. 어떤 경우에도 소계를 넘지 않는다."""

    if subtotal <= ZERO:
        return ZERO
    if coupon.discount_type == DiscountType.PERCENTAGE:
        amount = subtotal * coupon.discount_value / HUNDRED
    else:
        amount = coupon.discount_value
    return max(ZERO, min(amount, subtotal))


class CouponPolicyService:
    def __init__(
        self,
        coupon_repo: CouponRepositoryInterface,
        order_repo: OrderRepositoryInterface,
        clock: Clock = utc_now,
    ) -> None:
        self._coupon_repo = coupon_repo
        self._order_repo = order_repo
        self._clock = clock

    def validate(
        self,
        code: str,
        ship_id: str,
        subtotal: Decimal,
        plan_ids: list[str],
        user_id: str,
        *,
        exclude_order_id: str | None = None,
    ) -> CouponValidation:
        """쿠폰을 주문 맥락에 대해 검증한다.

        exclude_order_id 는 결제 확정 중인 주문 자신을 "이전 사용" 에서 빼기 위한 값이다.
        """
        if not normalize_coupon_code(code or ""):
            return CouponValidation.rejected(CouponReason.NOT_FOUND)

        coupon = self._coupon_repo.find_by_code(code)
        if coupon is None:
            return CouponValidation.rejected(CouponReason.NOT_FOUND)

        reason = self._first_violation(
            coupon, ship_id, subtotal, plan_ids, user_id, exclude_order_id
        )
        if reason is not None:
            return CouponValidation.rejected(reason, coupon=coupon)

        return CouponValidation.accepted(coupon, compute_discount(coupon, subtotal))

    def _first_violation(
        self,
        coupon: Coupon,
        ship_id: str,
        subtotal: Decimal,
        plan_ids: list[str],
        user_id: str,
        exclude_order_id: str | None,
    ) -> CouponReason | None:
        now = self._clock()

        if not coupon.is_active:
            return CouponReason.INACTIVE
        if coupon.valid_from is not None and now < coupon.valid_from:
            return CouponReason.NOT_STARTED
        if coupon.valid_until is not None and now > coupon.valid_until:
            return CouponReason.EXPIRED
        if coupon.is_usage_exhausted():
            return CouponReason.USAGE_LIMIT_REACHED
        if coupon.single_use_only and coupon.id is not None:
            prior = self._order_repo.count_coupon_orders(
                user_id,
                coupon.id,
                exclude_statuses=list(NON_CONSUMING_STATUSES),
                exclude_order_id=exclude_order_id,
            )
            if prior > 0:
                return CouponReason.SINGLE_USE_ALREADY_USED
        if coupon.min_order_amount is not None and subtotal < coupon.min_order_amount:
            return CouponReason.MINIMUM_ORDER_NOT_MET
        if coupon.scope == CouponScope.SHIP and ship_id not in coupon.applicable_ships:
            return CouponReason.SCOPE_SHIP_MISMATCH
        if coupon.scope == CouponScope.PACKAGE and not (
            set(plan_ids) & set(coupon.applicable_plans)
        ):
            return CouponReason.SCOPE_PACKAGE_MISMATCH
        return None


def get_coupon_repository(
    db: Database = Depends(get_database),
    config: AppConfig = Depends(get_app_config),
) -> CouponRepositoryInterface:
    """FastAPI DI용 CouponRepository 팩토리."""

    return CouponRepository(db, usage_max_retries=config.retry.coupon_usage_max_retries)


def get_order_repository(
    db: Database = Depends(get_database),
) -> OrderRepositoryInterface:
    """FastAPI DI용 OrderRepository 팩토리."""

    return OrderRepository(db)


def get_coupon_policy_service(
    coupon_repo: CouponRepositoryInterface = Depends(get_coupon_repository),
    order_repo: OrderRepositoryInterface = Depends(get_order_repository),
) -> CouponPolicyService:
    """FastAPI DI용 CouponPolicyService 팩토리."""

    return CouponPolicyService(coupon_repo=coupon_repo, order_repo=order_repo)
