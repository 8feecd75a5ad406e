"""쿠폰/쿠폰 사용 원장 MongoDB 도큐먼트."""

from __future__ import annotations

from typing import Any

from common.mongo.types import (
    BaseDocument,
    MongoDecimal,
    OptionalMongoDateTime,
    build_document_data_from_domain,
    from_object_id,
)

from ...models.coupon import (
    Coupon,
    CouponScope,
    CouponUsage,
    DiscountType,
    normalize_coupon_code,
)


class CouponDocument(BaseDocument):
    """MongoDB coupons 컬렉션 도큐먼트 모델.

    code 는 입력한 표기 그대로 두고, 조회와 유니크 제약은 code_key(대문자 정규화)로 한다.
    """

    code: str
    code_key: str
    discount_type: DiscountType
    discount_value: MongoDecimal
    min_order_amount: MongoDecimal | None = None
    max_uses: int | None = None
    used_count: int = 0
    valid_from: OptionalMongoDateTime = None
    valid_until: OptionalMongoDateTime = None
    scope: CouponScope = CouponScope.GENERAL
    applicable_ships: list[str] = []
    applicable_plans: list[str] = []
    single_use_only: bool = False
    is_active: bool = True
    description: str | None = None

    @classmethod
    def from_domain(cls, coupon: Coupon) -> "CouponDocument":
        data: dict[str, Any] = build_document_data_from_domain(coupon)
        data["code_key"] = normalize_coupon_code(coupon.code)
        return cls.model_validate(data)

    def to_mongo_record(self) -> dict[str, Any]:
        record = super().to_mongo_record()
        record["discount_type"] = str(self.discount_type)
        record["scope"] = str(self.scope)
        return record

    def to_domain(self) -> Coupon:
        return Coupon(
            id=from_object_id(self.id),
            code=self.code,
            discount_type=self.discount_type,
            discount_value=self.discount_value,
            min_order_amount=self.min_order_amount,
            max_uses=self.max_uses,
            used_count=self.used_count,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            scope=self.scope,
            applicable_ships=list(self.applicable_ships),
            applicable_plans=list(self.applicable_plans),
            single_use_only=self.single_use_only,
            is_active=self.is_active,
            description=self.description,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class CouponUsageDocument(BaseDocument):
    """MongoDB coupon_usages 컬렉션 도큐먼트 모델."""

    coupon_id: str
    user_id: str
    order_id: str
    discount_amount: MongoDecimal
    over_limit: bool = False

    @classmethod
    def from_domain(cls, usage: CouponUsage) -> "CouponUsageDocument":
        data = build_document_data_from_domain(usage)
        return cls.model_validate(data)

    def to_domain(self) -> CouponUsage:
        return CouponUsage(
            id=from_object_id(self.id),
            coupon_id=self.coupon_id,
            user_id=self.user_id,
            order_id=self.order_id,
            discount_amount=self.discount_amount,
            over_limit=self.over_limit,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
