"""플랜 MongoDB 도큐먼트."""

from __future__ import annotations

from common.mongo.types import (
    BaseDocument,
    MongoDecimal,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.plan import Plan


class PlanDocument(BaseDocument):
    """MongoDB plans 컬렉션 도큐먼트 모델."""

    ship_id: str
    name: str
    data_limit_gb: int
    price_usd: MongoDecimal
    validity_days: int | None = None
    is_active: bool = True
    sort_order: int = 0

    @classmethod
    def from_domain(cls, plan: Plan) -> "PlanDocument":
        data = build_document_data_from_domain(plan)
        return cls.model_validate(data)

    def to_domain(self) -> Plan:
        return Plan(
            id=from_object_id(self.id),
            ship_id=self.ship_id,
            name=self.name,
            data_limit_gb=self.data_limit_gb,
            price_usd=self.price_usd,
            validity_days=self.validity_days,
            is_active=self.is_active,
            sort_order=self.sort_order,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
