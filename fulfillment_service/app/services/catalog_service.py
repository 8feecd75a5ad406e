"""플랜/쿠폰 시딩과 선박별 재고 조회."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends

from ..models.coupon import Coupon
from ..models.credential import CredentialStats
from ..models.plan import Plan
from ..repositories.interfaces import (
    CouponRepositoryInterface,
    CredentialRepositoryInterface,
    PlanRepositoryInterface,
)
from .coupon_policy_service import get_coupon_repository
from .credential_pool_service import get_credential_repository, get_plan_repository


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlanAvailability:
    plan: Plan
    stats: CredentialStats

    @property
    def in_stock(self) -> bool:
        return self.stats.available > 0


class CatalogService:
    def __init__(
        self,
        plan_repo: PlanRepositoryInterface,
        coupon_repo: CouponRepositoryInterface,
        credential_repo: CredentialRepositoryInterface,
    ) -> None:
        self._plan_repo = plan_repo
        self._coupon_repo = coupon_repo
        self._credential_repo = credential_repo

    def create_plan(self, plan: Plan) -> Plan:
        created = self._plan_repo.insert(plan)
        logger.info("plan created", extra={"plan_id": created.id})
        return created

    def create_coupon(self, coupon: Coupon) -> Coupon:
        """code 가 대소문자 무시로 겹치면 DuplicateCouponCodeError."""
        now = datetime.now(timezone.utc)
        created = self._coupon_repo.insert(
            coupon.model_copy(update={"used_count": 0, "created_at": now, "updated_at": now})
        )
        logger.info("coupon created", extra={"coupon_id": created.id})
        return created

    def list_ship_plans(self, ship_id: str) -> list[PlanAvailability]:
        """선박의 활성 플랜과 각 플랜의 재고."""
        result: list[PlanAvailability] = []
        for plan in self._plan_repo.list_active_by_ship(ship_id):
            assert plan.id is not None
            result.append(
                PlanAvailability(plan=plan, stats=self._credential_repo.stats(plan.id))
            )
        return result


def get_catalog_service(
    plan_repo: PlanRepositoryInterface = Depends(get_plan_repository),
    coupon_repo: CouponRepositoryInterface = Depends(get_coupon_repository),
    credential_repo: CredentialRepositoryInterface = Depends(get_credential_repository),
) -> CatalogService:
    """FastAPI DI용 CatalogService 팩토리."""

    return CatalogService(
        plan_repo=plan_repo, coupon_repo=coupon_repo, credential_repo=credential_repo
    )
