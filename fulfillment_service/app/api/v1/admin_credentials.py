from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from common.schemas.pagination import PaginatedResponse

from ..schemas.credentials import (
    AdminCredentialResponse,
    CredentialStatsResponse,
    ImportCredentialsRequest,
    ImportCredentialsResponse,
    UnassignResponse,
)
from ...services.credential_pool_service import (
    CredentialPoolService,
    get_credential_pool_service,
)
from ...services.order_service import OrderService, get_order_service

router = APIRouter()


@router.post(
    "/import", response_model=ImportCredentialsResponse, summary="자격증명 일괄 등록"
)
def import_credentials(
    body: ImportCredentialsRequest,
    service: CredentialPoolService = Depends(get_credential_pool_service),
) -> ImportCredentialsResponse:
    result = service.bulk_import(body.plan_id, body.text.splitlines())
    return ImportCredentialsResponse(success=result.success_count, errors=result.errors)


@router.post(
    "/{credential_id}/unassign",
    response_model=UnassignResponse,
    summary="자격증명 할당 해제",
)
def unassign_credential(
    credential_id: str,
    service: OrderService = Depends(get_order_service),
) -> UnassignResponse:
    service.unassign_credential(credential_id)
    return UnassignResponse(ok=True)


@router.get("/stats", response_model=CredentialStatsResponse, summary="플랜 재고 집계")
def credential_stats(
    plan_id: str = Query(...),
    service: CredentialPoolService = Depends(get_credential_pool_service),
) -> CredentialStatsResponse:
    return CredentialStatsResponse.from_domain(service.stats(plan_id))


@router.get(
    "/stats/all",
    response_model=list[CredentialStatsResponse],
    summary="전체 플랜 재고 집계",
)
def all_credential_stats(
    service: CredentialPoolService = Depends(get_credential_pool_service),
) -> list[CredentialStatsResponse]:
    return [CredentialStatsResponse.from_domain(s) for s in service.stats_all()]


@router.get("", summary="플랜별 자격증명 목록")
def list_credentials(
    plan_id: str = Query(...),
    page: int = 1,
    page_size: int = 20,
    service: CredentialPoolService = Depends(get_credential_pool_service),
) -> PaginatedResponse[AdminCredentialResponse]:
    items, total = service.list_by_plan(plan_id, page, page_size)
    return PaginatedResponse(
        items=[AdminCredentialResponse.from_domain(c) for c in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.delete(
    "/{credential_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="미할당 자격증명 삭제",
)
def delete_credential(
    credential_id: str,
    service: CredentialPoolService = Depends(get_credential_pool_service),
) -> None:
    service.delete(credential_id)
