from __future__ import annotations

from fastapi import APIRouter, Depends

from ..schemas.loyalty import LoyaltyStatusResponse
from ...services.loyalty_service import LoyaltyService, get_loyalty_service

router = APIRouter()


@router.get(
    "/{user_id}/loyalty",
    response_model=LoyaltyStatusResponse,
    summary="이번 달 로열티 등급",
)
def get_loyalty_status(
    user_id: str,
    service: LoyaltyService = Depends(get_loyalty_service),
) -> LoyaltyStatusResponse:
    return LoyaltyStatusResponse.from_domain(service.status(user_id))
