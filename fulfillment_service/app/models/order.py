"""주문 도메인 모델과 상태 전이 규칙."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field

from .credential import Credential


class OrderStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FULFILLED = "fulfilled"
    # 결제는 됐지만 재고 부족으로 할당이 롤백된 상태. 결제 실패(FAILED)와 구분한다.
    FULFILLMENT_FAILED = "fulfillment_failed"
    FAILED = "failed"
    REFUNDED = "refunded"
    EXPIRED = "expired"


# 상태 전이는 단방향이다. pending 으로 되돌아가는 전이는 없다.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset(
        {OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.EXPIRED}
    ),
    OrderStatus.PAID: frozenset(
        {
            OrderStatus.FULFILLED,
            OrderStatus.FULFILLMENT_FAILED,
            OrderStatus.REFUNDED,
            OrderStatus.EXPIRED,
        }
    ),
    OrderStatus.FULFILLMENT_FAILED: frozenset(
        {OrderStatus.FULFILLED, OrderStatus.REFUNDED}
    ),
    # 구매 월이 지나 패키지가 만료되면 expired 로 닫는다.
    OrderStatus.FULFILLED: frozenset({OrderStatus.REFUNDED, OrderStatus.EXPIRED}),
    OrderStatus.FAILED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
    OrderStatus.EXPIRED: frozenset(),
}

# 결제 전에 닫힌 주문이면 유저의 "이전 쿠폰 사용"으로 치지 않는다.
# 결제 후 패키지 만료로 expired 가 된 주문은 쿠폰을 쓴 것으로 본다.
NON_CONSUMING_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.FAILED, OrderStatus.EXPIRED}
)

# 로열티 집계 대상이 되는 구매 상태
PURCHASED_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.PAID, OrderStatus.FULFILLED}
)


def can_transition(source: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(source, frozenset())


class OrderItem(BaseModel):
    """주문 항목. quantity 만큼 자격증명을 하나씩 할당한다."""

    plan_id: str
    quantity: int = Field(ge=1)
    unit_price_usd: Decimal
    data_limit_gb: int = 0  # 로열티 집계용 스냅샷

    @property
    def line_total_usd(self) -> Decimal:
        return self.unit_price_usd * self.quantity


class Order(BaseModel):
    id: str | None = None
    user_id: str
    ship_id: str
    status: OrderStatus = OrderStatus.PENDING
    failure_reason: str | None = None
    subtotal_usd: Decimal
    coupon_discount_usd: Decimal = Decimal("0")
    loyalty_percent: Decimal = Decimal("0")
    loyalty_discount_usd: Decimal = Decimal("0")
    discount_usd: Decimal = Decimal("0")
    total_usd: Decimal
    coupon_id: str | None = None
    coupon_code: str | None = None
    payment_reference: str | None = None
    items: list[OrderItem]
    credential_ids: list[str] = Field(default_factory=list)
    needs_reconciliation: bool = False
    reconciliation_note: str | None = None
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None = None
    fulfilled_at: datetime | None = None
    expires_at: datetime | None = None
    # 할당 선점 토큰. 할당이 커밋되거나 롤백되면 비워진다.
    fulfillment_token: str | None = None
    fulfillment_started_at: datetime | None = None

    @property
    def plan_ids(self) -> list[str]:
        return [item.plan_id for item in self.items]

    @property
    def total_units(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def purchased_gb(self) -> int:
        return sum(item.data_limit_gb * item.quantity for item in self.items)


class FulfillmentResult(BaseModel):
    """할당 시도 결과.

    재고 부족이면 order.status 가 FULFILLMENT_FAILED 이고 missing_plan_id 에 모자란 플랜이 담긴다.
    """

    order: Order
    credentials: list[Credential] = Field(default_factory=list)
    missing_plan_id: str | None = None

    @property
    def fulfilled(self) -> bool:
        return self.order.status == OrderStatus.FULFILLED
