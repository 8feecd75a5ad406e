"""주문/쿠폰 관련 도메인 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Self


class OrderEventType:
    """주문 이벤트 타입 상수."""

    ORDER_PAID = "order.paid"
    ORDER_FULFILLED = "order.fulfilled"
    ORDER_FULFILLMENT_FAILED = "order.fulfillment_failed"
    ORDER_FAILED = "order.failed"
    ORDER_REFUNDED = "order.refunded"
    ORDER_EXPIRED = "order.expired"
    COUPON_RECONCILIATION_REQUIRED = "coupon.reconciliation_required"


@dataclass(slots=True)
class OrderStatusChangedEvent:
    """주문 상태 전이 이벤트.

    전이가 커밋된 뒤 발행되며, 알림/리포팅 등 외부 협력자가 구독한다.
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    order_id: str
    user_id: str
    ship_id: str
    from_status: str
    to_status: str
    total_usd: str
    credential_ids: list[str] = field(default_factory=list)
    reason: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            order_id=str(data["order_id"]),
            user_id=str(data["user_id"]),
            ship_id=str(data["ship_id"]),
            from_status=str(data["from_status"]),
            to_status=str(data["to_status"]),
            total_usd=str(data["total_usd"]),
            credential_ids=[str(v) for v in data.get("credential_ids") or []],
            reason=data.get("reason"),
        )


@dataclass(slots=True)
class CouponReconciliationRequiredEvent:
    """결제는 캡처됐지만 쿠폰 사용 한도를 넘긴 경우 발행된다.

    운영자가 수동으로 정산해야 한다.
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    order_id: str
    coupon_id: str
    user_id: str
    used_count: int
    max_uses: int | None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        max_uses = data.get("max_uses")
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            order_id=str(data["order_id"]),
            coupon_id=str(data["coupon_id"]),
            user_id=str(data["user_id"]),
            used_count=int(data["used_count"]),
            max_uses=int(max_uses) if max_uses is not None else None,
        )
