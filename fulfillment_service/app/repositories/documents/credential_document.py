"""자격증명 MongoDB 도큐먼트.

claim_token 은 도메인에 노출하지 않는 내부 필드로, 재시도 중 같은 할당을 다시 찾는 데 쓴다.
"""

from __future__ import annotations

from common.mongo.types import (
    BaseDocument,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.credential import Credential


class CredentialDocument(BaseDocument):
    """MongoDB credential_pools 컬렉션 도큐먼트 모델."""

    plan_id: str
    username: str
    password: str
    is_assigned: bool = False
    assigned_to_order_id: str | None = None
    assigned_to_user_id: str | None = None
    assigned_at: OptionalMongoDateTime = None
    claim_token: str | None = None

    @classmethod
    def from_domain(cls, credential: Credential) -> "CredentialDocument":
        data = build_document_data_from_domain(credential)
        return cls.model_validate(data)

    def to_domain(self) -> Credential:
        return Credential(
            id=from_object_id(self.id),
            plan_id=self.plan_id,
            username=self.username,
            password=self.password,
            is_assigned=self.is_assigned,
            assigned_to_order_id=self.assigned_to_order_id,
            assigned_to_user_id=self.assigned_to_user_id,
            assigned_at=self.assigned_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
