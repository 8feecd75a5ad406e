"""자격증명 풀 레포지토리 구현체.

할당은 find_one_and_update 한 번으로 "미할당일 때만 할당" 을 수행한다.
같은 도큐먼트를 두 요청이 동시에 잡으면 MongoDB 가 하나만 매칭시키므로 중복 할당이 없다.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import BulkWriteError

from common.mongo.retry import RetryExhaustedError, run_with_retry
from common.mongo.types import is_valid_object_id, to_object_id

from .documents.credential_document import CredentialDocument
from .interfaces import CredentialRepositoryInterface
from ..models.credential import Credential, CredentialInsertResult, CredentialStats


logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODE = 11000

# 해제 시 지우는 할당 필드
_CLEARED_ASSIGNMENT = {
    "is_assigned": False,
    "assigned_to_order_id": None,
    "assigned_to_user_id": None,
    "assigned_at": None,
    "claim_token": None,
}


class CredentialRepository(CredentialRepositoryInterface):
    """credential_pools 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database, *, claim_max_retries: int = 3) -> None:
        self._db = database
        self._col = database["credential_pools"]
        self._claim_max_retries = claim_max_retries

    def insert_many(self, credentials: list[Credential]) -> CredentialInsertResult:
        """유니크 인덱스(plan_id, username) 위반 건은 건너뛰고 나머지를 저장한다."""
        if not credentials:
            return CredentialInsertResult(inserted=[], duplicates=[])

        records = [CredentialDocument.from_domain(c).to_mongo_record() for c in credentials]
        failed_indexes: set[int] = set()
        try:
            result = self._col.insert_many(records, ordered=False)
            inserted_ids = list(result.inserted_ids)
        except BulkWriteError as exc:
            for error in exc.details.get("writeErrors", []):
                if error.get("code") != DUPLICATE_KEY_CODE:
                    raise
                failed_indexes.add(int(error["index"]))
            # insert_many 는 전달한 dict 에 _id 를 채워 넣는다.
            inserted_ids = [
                record.get("_id")
                for index, record in enumerate(records)
                if index not in failed_indexes
            ]

        inserted: list[Credential] = []
        duplicates: list[str] = []
        id_iter = iter(inserted_ids)
        for index, credential in enumerate(credentials):
            if index in failed_indexes:
                duplicates.append(credential.username)
                continue
            inserted.append(credential.model_copy(update={"id": str(next(id_iter))}))

        return CredentialInsertResult(inserted=inserted, duplicates=duplicates)

    def existing_usernames(self, plan_id: str, usernames: list[str]) -> set[str]:
        if not usernames:
            return set()
        cursor = self._col.find(
            {"plan_id": plan_id, "username": {"$in": usernames}},
            projection={"username": 1},
        )
        return {raw["username"] for raw in cursor}

    def claim_one(
        self, plan_id: str, order_id: str, user_id: str
    ) -> Credential | None:
        """가장 오래된 미할당 자격증명 하나를 원자적으로 할당한다.

        시도마다 claim_token 을 남기고, 네트워크 오류 뒤 재시도할 때는 먼저 그 토큰으로
        이미 반영된 할당이 있는지 찾는다. 응답만 유실된 경우 자격증명이 새지 않는다.
        """
        claim_token = uuid.uuid4().hex

        def _claim() -> dict | None:
            already = self._col.find_one({"claim_token": claim_token})
            if already is not None:
                return already

            now = datetime.now(timezone.utc)
            return self._col.find_one_and_update(
                {"plan_id": plan_id, "is_assigned": False},
                {
                    "$set": {
                        "is_assigned": True,
                        "assigned_to_order_id": order_id,
                        "assigned_to_user_id": user_id,
                        "assigned_at": now,
                        "claim_token": claim_token,
                        "updated_at": now,
                    }
                },
                sort=[("created_at", ASCENDING), ("_id", ASCENDING)],
                return_document=ReturnDocument.AFTER,
            )

        try:
            raw = run_with_retry(
                _claim,
                max_attempts=self._claim_max_retries,
                label=f"claim credential plan={plan_id}",
            )
        except RetryExhaustedError:
            logger.warning(
                "credential claim retries exhausted; treating as not available",
                extra={"plan_id": plan_id, "order_id": order_id},
            )
            return None

        if raw is None:
            return None
        return CredentialDocument.model_validate(raw).to_domain()

    def release(
        self, credential_id: str, expected_order_id: str | None = None
    ) -> Credential | None:
        if not is_valid_object_id(credential_id):
            return None

        query: dict = {"_id": to_object_id(credential_id), "is_assigned": True}
        if expected_order_id is not None:
            query["assigned_to_order_id"] = expected_order_id

        raw = self._col.find_one_and_update(
            query,
            {"$set": {**_CLEARED_ASSIGNMENT, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        if raw is None:
            return None
        return CredentialDocument.model_validate(raw).to_domain()

    def release_all_for_order(self, order_id: str) -> int:
        result = self._col.update_many(
            {"assigned_to_order_id": order_id, "is_assigned": True},
            {"$set": {**_CLEARED_ASSIGNMENT, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count

    def find_by_id(self, credential_id: str) -> Credential | None:
        if not is_valid_object_id(credential_id):
            return None
        raw = self._col.find_one({"_id": to_object_id(credential_id)})
        if raw is None:
            return None
        return CredentialDocument.model_validate(raw).to_domain()

    def find_by_ids(self, credential_ids: list[str]) -> list[Credential]:
        object_ids = [
            to_object_id(cid) for cid in credential_ids if is_valid_object_id(cid)
        ]
        if not object_ids:
            return []
        cursor = self._col.find({"_id": {"$in": object_ids}})
        return [CredentialDocument.model_validate(raw).to_domain() for raw in cursor]

    def list_for_order(self, order_id: str) -> list[Credential]:
        cursor = self._col.find(
            {"assigned_to_order_id": order_id, "is_assigned": True},
            sort=[("assigned_at", ASCENDING), ("_id", ASCENDING)],
        )
        return [CredentialDocument.model_validate(raw).to_domain() for raw in cursor]

    def list_by_plan(
        self, plan_id: str, page: int, page_size: int
    ) -> tuple[list[Credential], int]:
        if page <= 0:
            page = 1
        if page_size <= 0 or page_size > 100:
            page_size = 20

        skip = (page - 1) * page_size

        total = self._col.count_documents({"plan_id": plan_id})
        cursor = self._col.find(
            {"plan_id": plan_id},
            sort=[("created_at", ASCENDING), ("_id", ASCENDING)],
            skip=skip,
            limit=page_size,
        )
        items = [CredentialDocument.model_validate(raw).to_domain() for raw in cursor]
        return items, total

    def stats(self, plan_id: str) -> CredentialStats:
        """total/available/assigned 를 한 번의 집계로 계산한다."""
        rows = self._aggregate_stats({"plan_id": plan_id})
        if rows:
            return rows[0]
        return CredentialStats(plan_id=plan_id, total=0, available=0, assigned=0)

    def stats_all(self) -> list[CredentialStats]:
        return self._aggregate_stats({})

    def _aggregate_stats(self, match: dict) -> list[CredentialStats]:
        pipeline = [
            {"$match": match},
            {
                "$group": {
                    "_id": "$plan_id",
                    "total": {"$sum": 1},
                    "assigned": {"$sum": {"$cond": ["$is_assigned", 1, 0]}},
                }
            },
            {"$sort": {"_id": 1}},
        ]

        result: list[CredentialStats] = []
        for row in self._col.aggregate(pipeline):
            total = int(row["total"])
            assigned = int(row["assigned"])
            result.append(
                CredentialStats(
                    plan_id=row["_id"],
                    total=total,
                    available=total - assigned,
                    assigned=assigned,
                )
            )
        return result

    def delete_if_unassigned(self, credential_id: str) -> bool:
        if not is_valid_object_id(credential_id):
            return False
        result = self._col.delete_one(
            {"_id": to_object_id(credential_id), "is_assigned": False}
        )
        return result.deleted_count == 1
