"""자격증명 풀 도메인 모델.

자격증명은 캡티브 포털 접속용 username/password 쌍이며, 플랜마다 유한한 풀을 이룬다.
한 번 할당된 자격증명은 명시적으로 해제(관리자 해제, 환불, 롤백)되기 전까지 다른 주문에 할당되지 않는다.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class Credential(BaseModel):
    id: str | None = None
    plan_id: str
    username: str
    password: str
    is_assigned: bool = False
    assigned_to_order_id: str | None = None
    assigned_to_user_id: str | None = None
    assigned_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    def is_bound_to(self, order_id: str) -> bool:
        return self.is_assigned and self.assigned_to_order_id == order_id


class CredentialStats(BaseModel):
    """플랜별 재고 집계. available + assigned == total 이 항상 성립한다."""

    plan_id: str
    total: int
    available: int
    assigned: int


class CredentialInsertResult(BaseModel):
    """일괄 저장 결과. 유니크 인덱스에 걸린 username 은 duplicates 로 돌려준다."""

    inserted: list[Credential]
    duplicates: list[str]


class BulkImportResult(BaseModel):
    success_count: int
    errors: list[str]
