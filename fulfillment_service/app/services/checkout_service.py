"""체크아웃: 견적 계산과 pending 주문 생성.

가격은 항상 카탈로그에서 다시 읽는다. 클라이언트가 보낸 금액은 쓰지 않는다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from fastapi import Depends

from ..exceptions import CouponRejectedError, InvalidOrderError, PlanNotFoundError
from ..models.order import Order, OrderItem, OrderStatus
from ..models.pricing import CartItem, Quote
from ..repositories.interfaces import OrderRepositoryInterface, PlanRepositoryInterface
from .coupon_policy_service import (
    CouponPolicyService,
    get_coupon_policy_service,
    get_order_repository,
)
from .credential_pool_service import get_plan_repository
from .discount_composer import ZERO, compose_total
from .loyalty_service import LoyaltyService, get_loyalty_service


logger = logging.getLogger(__name__)


class CheckoutService:
    def __init__(
        self,
        plan_repo: PlanRepositoryInterface,
        order_repo: OrderRepositoryInterface,
        coupon_policy: CouponPolicyService,
        loyalty: LoyaltyService,
    ) -> None:
        self._plan_repo = plan_repo
        self._order_repo = order_repo
        self._coupon_policy = coupon_policy
        self._loyalty = loyalty

    def quote(
        self,
        user_id: str,
        ship_id: str,
        items: list[CartItem],
        coupon_code: str | None = None,
    ) -> Quote:
        order_items = self._price_items(ship_id, items)
        subtotal = sum((item.line_total_usd for item in order_items), Decimal("0"))

        validation = None
        coupon_discount = ZERO
        if coupon_code and coupon_code.strip():
            validation = self._coupon_policy.validate(
                coupon_code,
                ship_id,
                subtotal,
                [item.plan_id for item in order_items],
                user_id,
            )
            if validation.valid and validation.discount_amount is not None:
                coupon_discount = validation.discount_amount

        loyalty_percent = self._loyalty.discount_percent(user_id)
        composed = compose_total(subtotal, coupon_discount, loyalty_percent)

        return Quote(
            user_id=user_id,
            ship_id=ship_id,
            items=order_items,
            subtotal=subtotal,
            coupon=validation,
            coupon_discount=coupon_discount,
            loyalty_percent=loyalty_percent,
            loyalty_amount=composed.loyalty_amount,
            total_discount=composed.total_discount,
            total=composed.total,
        )

    def create_order(
        self,
        user_id: str,
        ship_id: str,
        items: list[CartItem],
        coupon_code: str | None = None,
    ) -> Order:
        """견적을 pending 주문으로 저장한다. 쿠폰이 거절되면 주문을 만들지 않는다."""
        quote = self.quote(user_id, ship_id, items, coupon_code)
        if quote.coupon is not None and not quote.coupon.valid:
            assert quote.coupon.reason_code is not None
            raise CouponRejectedError(quote.coupon.reason_code)

        coupon = quote.coupon.coupon if quote.coupon is not None else None
        now = datetime.now(timezone.utc)
        order = Order(
            user_id=user_id,
            ship_id=ship_id,
            status=OrderStatus.PENDING,
            subtotal_usd=quote.subtotal,
            coupon_discount_usd=quote.coupon_discount,
            loyalty_percent=quote.loyalty_percent,
            loyalty_discount_usd=quote.loyalty_amount,
            discount_usd=quote.subtotal - quote.total,
            total_usd=quote.total,
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
            items=quote.items,
            created_at=now,
            updated_at=now,
        )
        created = self._order_repo.insert(order)
        logger.info(
            "order created (total=%s)",
            created.total_usd,
            extra={"order_id": created.id, "user_id": user_id},
        )
        return created

    def _price_items(self, ship_id: str, items: list[CartItem]) -> list[OrderItem]:
        if not items:
            raise InvalidOrderError("order must contain at least one item")

        plans = self._plan_repo.find_by_ids([item.plan_id for item in items])
        order_items: list[OrderItem] = []
        for item in items:
            plan = plans.get(item.plan_id)
            if plan is None:
                raise PlanNotFoundError(item.plan_id)
            if plan.ship_id != ship_id:
                raise InvalidOrderError(
                    f"plan {item.plan_id} is not sold on ship {ship_id}"
                )
            if not plan.is_active:
                raise InvalidOrderError(f"plan {item.plan_id} is not active")
            order_items.append(
                OrderItem(
                    plan_id=item.plan_id,
                    quantity=item.quantity,
                    unit_price_usd=plan.price_usd,
                    data_limit_gb=plan.data_limit_gb,
                )
            )
        return order_items


def get_checkout_service(
    plan_repo: PlanRepositoryInterface = Depends(get_plan_repository),
    order_repo: OrderRepositoryInterface = Depends(get_order_repository),
    coupon_policy: CouponPolicyService = Depends(get_coupon_policy_service),
    loyalty: LoyaltyService = Depends(get_loyalty_service),
) -> CheckoutService:
    """FastAPI DI용 CheckoutService 팩토리."""

    return CheckoutService(
        plan_repo=plan_repo,
        order_repo=order_repo,
        coupon_policy=coupon_policy,
        loyalty=loyalty,
    )
