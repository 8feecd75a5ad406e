from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ..schemas.orders import (
    CheckoutRequest,
    CompleteOrderRequest,
    CompleteOrderResponse,
    CredentialResponse,
    FailOrderRequest,
    OrderResponse,
    QuoteResponse,
)
from ...models.order import FulfillmentResult
from ...services.checkout_service import CheckoutService, get_checkout_service
from ...services.order_service import OrderService, get_order_service

router = APIRouter()


def to_complete_response(result: FulfillmentResult) -> CompleteOrderResponse:
    """재고 부족으로 롤백된 경우 409 out_of_stock 으로 응답한다."""
    order = result.order
    if not result.fulfilled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "out_of_stock",
                "order_id": order.id,
                "status": order.status.value,
                "plan_id": result.missing_plan_id,
            },
        )
    assert order.id is not None
    return CompleteOrderResponse(
        order_id=order.id,
        status=order.status,
        credentials=[CredentialResponse.from_domain(c) for c in result.credentials],
        expires_at=order.expires_at,
    )


@router.post("/quote", response_model=QuoteResponse, summary="주문 견적")
def quote_order(
    body: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
) -> QuoteResponse:
    quote = service.quote(body.user_id, body.ship_id, body.items, body.coupon_code)
    return QuoteResponse.from_domain(quote)


@router.post(
    "",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
    summary="pending 주문 생성",
)
def create_order(
    body: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
) -> OrderResponse:
    order = service.create_order(
        body.user_id, body.ship_id, body.items, body.coupon_code
    )
    return OrderResponse.from_domain(order)


@router.get("/{order_id}", response_model=OrderResponse, summary="주문 조회")
def get_order(
    order_id: str,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order, credentials = service.get_with_credentials(order_id)
    return OrderResponse.from_domain(order, credentials)


@router.post(
    "/{order_id}/complete",
    response_model=CompleteOrderResponse,
    summary="결제 확정 및 자격증명 할당",
)
def complete_order(
    order_id: str,
    body: CompleteOrderRequest,
    service: OrderService = Depends(get_order_service),
) -> CompleteOrderResponse:
    result = service.complete(order_id, body.payment_reference, body.coupon_code)
    return to_complete_response(result)


@router.post("/{order_id}/fail", response_model=OrderResponse, summary="결제 실패 처리")
def fail_order(
    order_id: str,
    body: FailOrderRequest | None = None,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = service.mark_failed(order_id, body.reason if body else None)
    return OrderResponse.from_domain(order)


@router.post("/{order_id}/refund", response_model=OrderResponse, summary="환불")
def refund_order(
    order_id: str,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    order = service.refund(order_id)
    return OrderResponse.from_domain(order)
