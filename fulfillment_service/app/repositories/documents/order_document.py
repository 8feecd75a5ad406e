"""주문 MongoDB 도큐먼트."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel

from common.mongo.types import (
    BaseDocument,
    MongoDecimal,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
    to_decimal128,
)

from ...models.order import Order, OrderItem, OrderStatus


class OrderItemDocument(BaseModel):
    plan_id: str
    quantity: int
    unit_price_usd: MongoDecimal
    data_limit_gb: int = 0

    def to_domain(self) -> OrderItem:
        return OrderItem(
            plan_id=self.plan_id,
            quantity=self.quantity,
            unit_price_usd=self.unit_price_usd,
            data_limit_gb=self.data_limit_gb,
        )


class OrderDocument(BaseDocument):
    """MongoDB orders 컬렉션 도큐먼트 모델."""

    user_id: str
    ship_id: str
    status: OrderStatus
    failure_reason: str | None = None
    subtotal_usd: MongoDecimal
    coupon_discount_usd: MongoDecimal
    loyalty_percent: MongoDecimal
    loyalty_discount_usd: MongoDecimal
    discount_usd: MongoDecimal
    total_usd: MongoDecimal
    coupon_id: str | None = None
    coupon_code: str | None = None
    payment_reference: str | None = None
    items: list[OrderItemDocument]
    credential_ids: list[str] = []
    needs_reconciliation: bool = False
    reconciliation_note: str | None = None
    paid_at: OptionalMongoDateTime = None
    fulfilled_at: OptionalMongoDateTime = None
    expires_at: OptionalMongoDateTime = None
    fulfillment_token: str | None = None
    fulfillment_started_at: OptionalMongoDateTime = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderDocument":
        data = build_document_data_from_domain(order)
        return cls.model_validate(data)

    def to_mongo_record(self) -> dict[str, Any]:
        record = super().to_mongo_record()
        record["status"] = str(self.status)
        return record

    def to_domain(self) -> Order:
        return Order(
            id=from_object_id(self.id),
            user_id=self.user_id,
            ship_id=self.ship_id,
            status=self.status,
            failure_reason=self.failure_reason,
            subtotal_usd=self.subtotal_usd,
            coupon_discount_usd=self.coupon_discount_usd,
            loyalty_percent=self.loyalty_percent,
            loyalty_discount_usd=self.loyalty_discount_usd,
            discount_usd=self.discount_usd,
            total_usd=self.total_usd,
            coupon_id=self.coupon_id,
            coupon_code=self.coupon_code,
            payment_reference=self.payment_reference,
            items=[item.to_domain() for item in self.items],
            credential_ids=list(self.credential_ids),
            needs_reconciliation=self.needs_reconciliation,
            reconciliation_note=self.reconciliation_note,
            created_at=self.created_at,
            updated_at=self.updated_at,
            paid_at=self.paid_at,
            fulfilled_at=self.fulfilled_at,
            expires_at=self.expires_at,
            fulfillment_token=self.fulfillment_token,
            fulfillment_started_at=self.fulfillment_started_at,
        )


def to_mongo_update_value(value: Any) -> Any:
    """$set 에 넣을 도메인 값을 BSON 호환 값으로 바꾼다."""

    if isinstance(value, Decimal):
        return to_decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list):
        return [to_mongo_update_value(v) for v in value]
    return value
