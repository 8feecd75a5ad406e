"""쿠폰 레포지토리 구현체.

used_count 증가는 "읽은 값과 같을 때만 +1" 조건부 업데이트로 하고, 경합에 지면 다시 읽는다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from pymongo.database import Database
from pymongo.errors import AutoReconnect, DuplicateKeyError, OperationFailure

from common.mongo.retry import RetryExhaustedError, is_transient_error
from common.mongo.types import is_valid_object_id, to_object_id

from .documents.coupon_document import CouponDocument, CouponUsageDocument
from .interfaces import CouponRepositoryInterface
from ..exceptions import DuplicateCouponCodeError
from ..models.coupon import Coupon, CouponUsage, UsageClaim, normalize_coupon_code


logger = logging.getLogger(__name__)


class CouponRepository(CouponRepositoryInterface):
    """coupons / coupon_usages 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database, *, usage_max_retries: int = 5) -> None:
        self._db = database
        self._col = database["coupons"]
        self._usages = database["coupon_usages"]
        self._usage_max_retries = usage_max_retries

    def insert(self, coupon: Coupon) -> Coupon:
        doc = CouponDocument.from_domain(coupon)
        try:
            result = self._col.insert_one(doc.to_mongo_record())
        except DuplicateKeyError as exc:
            raise DuplicateCouponCodeError(coupon.code) from exc
        return coupon.model_copy(update={"id": str(result.inserted_id)})

    def find_by_id(self, coupon_id: str) -> Coupon | None:
        if not is_valid_object_id(coupon_id):
            return None
        raw = self._col.find_one({"_id": to_object_id(coupon_id)})
        if raw is None:
            return None
        return CouponDocument.model_validate(raw).to_domain()

    def find_by_code(self, code: str) -> Coupon | None:
        code_key = normalize_coupon_code(code)
        if not code_key:
            return None
        raw = self._col.find_one({"code_key": code_key})
        if raw is None:
            return None
        return CouponDocument.model_validate(raw).to_domain()

    def claim_usage_slot(self, coupon_id: str) -> UsageClaim:
        object_id = to_object_id(coupon_id)
        attempts = max(1, self._usage_max_retries)

        for attempt in range(1, attempts + 1):
            try:
                raw = self._col.find_one(
                    {"_id": object_id}, projection={"used_count": 1, "max_uses": 1}
                )
                if raw is None:
                    raise RetryExhaustedError(f"coupon disappeared: {coupon_id}")

                used_count = int(raw.get("used_count", 0))
                max_uses = raw.get("max_uses")
                if max_uses is not None and used_count >= max_uses:
                    return UsageClaim(
                        coupon_id=coupon_id,
                        used_count=used_count,
                        max_uses=max_uses,
                        over_limit=True,
                    )

                result = self._col.update_one(
                    {"_id": object_id, "used_count": used_count},
                    {
                        "$inc": {"used_count": 1},
                        "$set": {"updated_at": datetime.now(timezone.utc)},
                    },
                )
                if result.modified_count == 1:
                    return UsageClaim(
                        coupon_id=coupon_id,
                        used_count=used_count + 1,
                        max_uses=max_uses,
                        over_limit=False,
                    )
            except (AutoReconnect, OperationFailure) as exc:
                if not is_transient_error(exc):
                    raise
                logger.warning(
                    "transient mongo error on coupon usage (attempt %d/%d): %s",
                    attempt,
                    attempts,
                    exc,
                    extra={"coupon_id": coupon_id},
                )
                continue

            logger.info(
                "coupon usage version conflict (attempt %d/%d)",
                attempt,
                attempts,
                extra={"coupon_id": coupon_id},
            )

        raise RetryExhaustedError(
            f"coupon usage slot for {coupon_id} failed after {attempts} attempts"
        )

    def record_usage(self, usage: CouponUsage) -> CouponUsage:
        doc = CouponUsageDocument.from_domain(usage)
        try:
            result = self._usages.insert_one(doc.to_mongo_record())
        except DuplicateKeyError:
            raw = self._usages.find_one({"order_id": usage.order_id})
            if raw is None:
                raise
            return CouponUsageDocument.model_validate(raw).to_domain()
        return usage.model_copy(update={"id": str(result.inserted_id)})
