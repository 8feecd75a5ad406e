from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ..schemas.catalog import ShipPlanResponse
from ...services.catalog_service import CatalogService, get_catalog_service

router = APIRouter()


@router.get(
    "/ship-plans",
    response_model=list[ShipPlanResponse],
    summary="선박별 판매 플랜과 재고",
)
def list_ship_plans(
    ship_id: str = Query(...),
    service: CatalogService = Depends(get_catalog_service),
) -> list[ShipPlanResponse]:
    return [ShipPlanResponse.from_domain(a) for a in service.list_ship_plans(ship_id)]
