"""요금제(데이터 패키지) 도메인 모델."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class Plan(BaseModel):
    """선박별로 판매되는 데이터 패키지.

    카탈로그가 소유하며 엔진은 읽기만 한다. 재고는 credential_pools 의 미할당 자격증명 수다.
    """

    id: str | None = None
    ship_id: str
    name: str
    data_limit_gb: int
    price_usd: Decimal
    validity_days: int | None = None  # 참고용. 실제 만료는 구매 월말 기준
    is_active: bool = True
    sort_order: int = 0
    created_at: datetime
    updated_at: datetime
