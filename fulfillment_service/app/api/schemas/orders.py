from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from common.types.datetime import OptionalUtcDateTime, UtcDateTime
from common.types.money import UsdAmount

from .coupons import ValidateCouponResponse
from ...models.credential import Credential
from ...models.order import Order, OrderItem, OrderStatus
from ...models.pricing import CartItem, Quote


class CheckoutRequest(BaseModel):
    user_id: str
    ship_id: str
    items: list[CartItem] = Field(min_length=1)
    coupon_code: str | None = None


class OrderItemResponse(BaseModel):
    plan_id: str
    quantity: int
    unit_price_usd: UsdAmount
    data_limit_gb: int

    @classmethod
    def from_domain(cls, item: OrderItem) -> "OrderItemResponse":
        return cls(
            plan_id=item.plan_id,
            quantity=item.quantity,
            unit_price_usd=item.unit_price_usd,
            data_limit_gb=item.data_limit_gb,
        )


class QuoteResponse(BaseModel):
    user_id: str
    ship_id: str
    items: list[OrderItemResponse]
    subtotal: UsdAmount
    coupon: ValidateCouponResponse | None
    coupon_discount: UsdAmount
    loyalty_percent: Decimal
    loyalty_amount: UsdAmount
    total_discount: UsdAmount
    total: UsdAmount

    @classmethod
    def from_domain(cls, quote: Quote) -> "QuoteResponse":
        return cls(
            user_id=quote.user_id,
            ship_id=quote.ship_id,
            items=[OrderItemResponse.from_domain(i) for i in quote.items],
            subtotal=quote.subtotal,
            coupon=(
                ValidateCouponResponse.from_domain(quote.coupon)
                if quote.coupon is not None
                else None
            ),
            coupon_discount=quote.coupon_discount,
            loyalty_percent=quote.loyalty_percent,
            loyalty_amount=quote.loyalty_amount,
            total_discount=quote.total_discount,
            total=quote.total,
        )


class CredentialResponse(BaseModel):
    """고객에게 전달하는 캡티브 포털 로그인 정보."""

    id: str | None
    plan_id: str
    username: str
    password: str

    @classmethod
    def from_domain(cls, credential: Credential) -> "CredentialResponse":
        return cls(
            id=credential.id,
            plan_id=credential.plan_id,
            username=credential.username,
            password=credential.password,
        )


class OrderResponse(BaseModel):
    id: str | None
    user_id: str
    ship_id: str
    status: OrderStatus
    failure_reason: str | None
    items: list[OrderItemResponse]
    subtotal_usd: UsdAmount
    coupon_code: str | None
    coupon_discount_usd: UsdAmount
    loyalty_percent: Decimal
    loyalty_discount_usd: UsdAmount
    discount_usd: UsdAmount
    total_usd: UsdAmount
    payment_reference: str | None
    needs_reconciliation: bool
    credentials: list[CredentialResponse] = Field(default_factory=list)
    created_at: UtcDateTime
    paid_at: OptionalUtcDateTime
    fulfilled_at: OptionalUtcDateTime
    expires_at: OptionalUtcDateTime

    @classmethod
    def from_domain(
        cls, order: Order, credentials: list[Credential] | None = None
    ) -> "OrderResponse":
        return cls(
            id=order.id,
            user_id=order.user_id,
            ship_id=order.ship_id,
            status=order.status,
            failure_reason=order.failure_reason,
            items=[OrderItemResponse.from_domain(i) for i in order.items],
            subtotal_usd=order.subtotal_usd,
            coupon_code=order.coupon_code,
            coupon_discount_usd=order.coupon_discount_usd,
            loyalty_percent=order.loyalty_percent,
            loyalty_discount_usd=order.loyalty_discount_usd,
            discount_usd=order.discount_usd,
            total_usd=order.total_usd,
            payment_reference=order.payment_reference,
            needs_reconciliation=order.needs_reconciliation,
            credentials=[CredentialResponse.from_domain(c) for c in credentials or []],
            created_at=order.created_at,
            paid_at=order.paid_at,
            fulfilled_at=order.fulfilled_at,
            expires_at=order.expires_at,
        )


class CompleteOrderRequest(BaseModel):
    payment_reference: str = Field(min_length=1)
    coupon_code: str | None = None


class CompleteOrderResponse(BaseModel):
    order_id: str
    status: OrderStatus
    credentials: list[CredentialResponse]
    expires_at: OptionalUtcDateTime = None


class FailOrderRequest(BaseModel):
    reason: str | None = None


class ExpireLapsedResponse(BaseModel):
    expired_order_ids: list[str]
