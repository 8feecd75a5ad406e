"""주문 도메인 이벤트 발행.

상태가 커밋된 뒤에 발행하며 best-effort 다. 발행 실패가 주문 처리 결과를 바꾸지 않는다.
KAFKA_BOOTSTRAP_SERVERS 가 없으면 NoopOrderEventPublisher 를 쓴다.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from functools import lru_cache
from typing import Protocol

from common.eventbus.config import get_optional_brokers
from common.eventbus.helpers import new_json_event
from common.eventbus.kafka import get_kafka_event_bus
from common.eventbus.topics import TOPIC_ORDER
from common.events.order import (
    CouponReconciliationRequiredEvent,
    OrderEventType,
    OrderStatusChangedEvent,
)

from ..models.coupon import UsageClaim
from ..models.order import Order, OrderStatus


logger = logging.getLogger(__name__)

EVENT_SOURCE = "fulfillment-service"
EVENT_VERSION = "1.0"

_STATUS_EVENT_TYPES: dict[OrderStatus, str] = {
    OrderStatus.PAID: OrderEventType.ORDER_PAID,
    OrderStatus.FULFILLED: OrderEventType.ORDER_FULFILLED,
    OrderStatus.FULFILLMENT_FAILED: OrderEventType.ORDER_FULFILLMENT_FAILED,
    OrderStatus.FAILED: OrderEventType.ORDER_FAILED,
    OrderStatus.REFUNDED: OrderEventType.ORDER_REFUNDED,
    OrderStatus.EXPIRED: OrderEventType.ORDER_EXPIRED,
}


class OrderEventPublisher(Protocol):
    def status_changed(
        self, order: Order, from_status: OrderStatus
    ) -> None:  # pragma: no cover - Protocol
        ...

    def reconciliation_required(
        self, order: Order, claim: UsageClaim
    ) -> None:  # pragma: no cover - Protocol
        ...


class NoopOrderEventPublisher:
    def status_changed(self, order: Order, from_status: OrderStatus) -> None:
        return None

    def reconciliation_required(self, order: Order, claim: UsageClaim) -> None:
        return None


class KafkaOrderEventPublisher:
    """maritime.order 토픽으로 주문 이벤트를 발행한다."""

    def status_changed(self, order: Order, from_status: OrderStatus) -> None:
        event_type = _STATUS_EVENT_TYPES.get(order.status)
        if event_type is None or order.id is None:
            return

        event_id = str(uuid.uuid4())
        event = OrderStatusChangedEvent(
            id=event_id,
            type=event_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=EVENT_SOURCE,
            version=EVENT_VERSION,
            order_id=order.id,
            user_id=order.user_id,
            ship_id=order.ship_id,
            from_status=from_status.value,
            to_status=order.status.value,
            total_usd=str(order.total_usd),
            credential_ids=list(order.credential_ids),
            reason=order.failure_reason,
        )
        self._publish(asdict(event), event_id, order.id)

    def reconciliation_required(self, order: Order, claim: UsageClaim) -> None:
        if order.id is None:
            return

        event_id = str(uuid.uuid4())
        event = CouponReconciliationRequiredEvent(
            id=event_id,
            type=OrderEventType.COUPON_RECONCILIATION_REQUIRED,
            timestamp=datetime.now(timezone.utc).isoformat(),
            source=EVENT_SOURCE,
            version=EVENT_VERSION,
            order_id=order.id,
            coupon_id=claim.coupon_id,
            user_id=order.user_id,
            used_count=claim.used_count,
            max_uses=claim.max_uses,
        )
        self._publish(asdict(event), event_id, order.id)

    def _publish(self, payload: dict, event_id: str, order_id: str) -> None:
        try:
            wrapped = new_json_event(payload=payload, key=order_id, event_id=event_id)
            bus = get_kafka_event_bus()
            bus.publish(TOPIC_ORDER.base, wrapped)
        except Exception:  # noqa: BLE001
            logger.exception(
                "failed to publish order event %s", payload.get("type"),
                extra={"order_id": order_id},
            )


@lru_cache(maxsize=1)
def get_order_event_publisher() -> OrderEventPublisher:
    """FastAPI DI용 이벤트 퍼블리셔. 브로커 설정이 없으면 no-op."""

    if get_optional_brokers() is None:
        logger.info("KAFKA_BOOTSTRAP_SERVERS not set; order events are disabled")
        return NoopOrderEventPublisher()
    return KafkaOrderEventPublisher()
