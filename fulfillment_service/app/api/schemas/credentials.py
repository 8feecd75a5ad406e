from __future__ import annotations

from pydantic import BaseModel

from common.types.datetime import OptionalUtcDateTime, UtcDateTime

from ...models.credential import Credential, CredentialStats


class ImportCredentialsRequest(BaseModel):
    plan_id: str
    text: str


class ImportCredentialsResponse(BaseModel):
    success: int
    errors: list[str]


class UnassignResponse(BaseModel):
    ok: bool


class CredentialStatsResponse(BaseModel):
    plan_id: str
    total: int
    available: int
    assigned: int

    @classmethod
    def from_domain(cls, stats: CredentialStats) -> "CredentialStatsResponse":
        return cls(
            plan_id=stats.plan_id,
            total=stats.total,
            available=stats.available,
            assigned=stats.assigned,
        )


class AdminCredentialResponse(BaseModel):
    """관리자 목록용. 비밀번호는 내보내지 않는다."""

    id: str | None
    plan_id: str
    username: str
    is_assigned: bool
    assigned_to_order_id: str | None
    assigned_to_user_id: str | None
    assigned_at: OptionalUtcDateTime
    created_at: UtcDateTime

    @classmethod
    def from_domain(cls, credential: Credential) -> "AdminCredentialResponse":
        return cls(
            id=credential.id,
            plan_id=credential.plan_id,
            username=credential.username,
            is_assigned=credential.is_assigned,
            assigned_to_order_id=credential.assigned_to_order_id,
            assigned_to_user_id=credential.assigned_to_user_id,
            assigned_at=credential.assigned_at,
            created_at=credential.created_at,
        )
