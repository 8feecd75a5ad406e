from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database

from common.mongo.types import is_valid_object_id, to_object_id

from .documents.order_document import OrderDocument, to_mongo_update_value
from .interfaces import OrderRepositoryInterface
from ..models.order import PURCHASED_STATUSES, Order, OrderStatus


class OrderRepository(OrderRepositoryInterface):
    """orders 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["orders"]

    def insert(self, order: Order) -> Order:
        doc = OrderDocument.from_domain(order)
        result = self._col.insert_one(doc.to_mongo_record())
        return order.model_copy(update={"id": str(result.inserted_id)})

    def find_by_id(self, order_id: str) -> Order | None:
        if not is_valid_object_id(order_id):
            return None
        raw = self._col.find_one({"_id": to_object_id(order_id)})
        if raw is None:
            return None
        return OrderDocument.model_validate(raw).to_domain()

    def update_if_status(
        self,
        order_id: str,
        expected: list[OrderStatus],
        updates: dict[str, Any],
        *,
        fulfillment_token: str | None = None,
        lease_expired_before: datetime | None = None,
    ) -> Order | None:
        """현재 status 가 expected 중 하나일 때만 updates 를 적용한다.

        fulfillment_token 을 주면 그 토큰으로 선점된 주문에만 적용한다.
        lease_expired_before 를 주면 선점이 없거나 그 시각 이전에 잡힌(만료된) 주문에만 적용한다.
        조건이 맞지 않으면(다른 요청이 먼저 전이했거나 주문이 없으면) None.
        """
        if not is_valid_object_id(order_id):
            return None

        query: dict[str, Any] = {
            "_id": to_object_id(order_id),
            "status": {"$in": [status.value for status in expected]},
        }
        if fulfillment_token is not None:
            query["fulfillment_token"] = fulfillment_token
        if lease_expired_before is not None:
            query["$or"] = [
                {"fulfillment_token": None},
                {"fulfillment_started_at": {"$lt": lease_expired_before}},
            ]

        fields = {key: to_mongo_update_value(value) for key, value in updates.items()}
        fields["updated_at"] = datetime.now(timezone.utc)

        raw = self._col.find_one_and_update(
            query,
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        return OrderDocument.model_validate(raw).to_domain()

    def detach_credential(
        self, order_id: str, credential_id: str, note: str
    ) -> Order | None:
        if not is_valid_object_id(order_id):
            return None
        raw = self._col.find_one_and_update(
            {"_id": to_object_id(order_id)},
            {
                "$pull": {"credential_ids": credential_id},
                "$set": {
                    "needs_reconciliation": True,
                    "reconciliation_note": note,
                    "updated_at": datetime.now(timezone.utc),
                },
            },
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        return OrderDocument.model_validate(raw).to_domain()

    def count_coupon_orders(
        self,
        user_id: str,
        coupon_id: str,
        exclude_statuses: list[OrderStatus],
        exclude_order_id: str | None = None,
    ) -> int:
        """쿠폰을 쓴 주문 수. exclude_statuses 는 결제된 적 없는 주문에만 적용된다."""
        query: dict[str, Any] = {
            "user_id": user_id,
            "coupon_id": coupon_id,
            "$or": [
                {"status": {"$nin": [status.value for status in exclude_statuses]}},
                {"paid_at": {"$ne": None}},
            ],
        }
        if exclude_order_id is not None and is_valid_object_id(exclude_order_id):
            query["_id"] = {"$ne": to_object_id(exclude_order_id)}
        return self._col.count_documents(query)

    def list_purchased_since(self, user_id: str, since: datetime) -> list[Order]:
        cursor = self._col.find(
            {
                "user_id": user_id,
                "status": {"$in": [status.value for status in PURCHASED_STATUSES]},
                "paid_at": {"$gte": since},
            }
        )
        return [OrderDocument.model_validate(raw).to_domain() for raw in cursor]

    def list_stale_pending(self, created_before: datetime, limit: int) -> list[Order]:
        cursor = self._col.find(
            {"status": OrderStatus.PENDING.value, "created_at": {"$lt": created_before}},
            sort=[("created_at", ASCENDING)],
            limit=limit,
        )
        return [OrderDocument.model_validate(raw).to_domain() for raw in cursor]

    def list_lapsed_purchases(self, expired_before: datetime, limit: int) -> list[Order]:
        """expires_at 이 지난 paid/fulfilled 주문을 오래된 만료 순으로."""
        cursor = self._col.find(
            {
                "status": {"$in": [status.value for status in PURCHASED_STATUSES]},
                "expires_at": {"$lt": expired_before},
            },
            sort=[("expires_at", ASCENDING)],
            limit=limit,
        )
        return [OrderDocument.model_validate(raw).to_domain() for raw in cursor]
