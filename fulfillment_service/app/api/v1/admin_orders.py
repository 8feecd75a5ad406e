from __future__ import annotations

from fastapi import APIRouter, Depends

from ..schemas.orders import CompleteOrderResponse, ExpireLapsedResponse
from .orders import to_complete_response
from ...services.order_service import OrderService, get_order_service

router = APIRouter()


@router.post(
    "/{order_id}/retry-fulfillment",
    response_model=CompleteOrderResponse,
    summary="fulfillment_failed 주문 재할당",
)
def retry_fulfillment(
    order_id: str,
    service: OrderService = Depends(get_order_service),
) -> CompleteOrderResponse:
    result = service.retry_fulfillment(order_id)
    return to_complete_response(result)


@router.post(
    "/expire-lapsed",
    response_model=ExpireLapsedResponse,
    summary="구매 월이 지난 패키지 만료 처리",
)
def expire_lapsed_packages(
    service: OrderService = Depends(get_order_service),
) -> ExpireLapsedResponse:
    # 스케줄러와 같은 처리를 즉시 한 번 돌린다.
    return ExpireLapsedResponse(expired_order_ids=service.expire_lapsed_packages())
