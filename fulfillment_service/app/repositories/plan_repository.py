from __future__ import annotations

from pymongo import ASCENDING
from pymongo.database import Database

from common.mongo.types import is_valid_object_id, to_object_id

from .documents.plan_document import PlanDocument
from .interfaces import PlanRepositoryInterface
from ..models.plan import Plan


class PlanRepository(PlanRepositoryInterface):
    """plans 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["plans"]

    def insert(self, plan: Plan) -> Plan:
        doc = PlanDocument.from_domain(plan)
        result = self._col.insert_one(doc.to_mongo_record())
        return plan.model_copy(update={"id": str(result.inserted_id)})

    def find_by_id(self, plan_id: str) -> Plan | None:
        if not is_valid_object_id(plan_id):
            return None
        raw = self._col.find_one({"_id": to_object_id(plan_id)})
        if raw is None:
            return None
        return PlanDocument.model_validate(raw).to_domain()

    def find_by_ids(self, plan_ids: list[str]) -> dict[str, Plan]:
        object_ids = [to_object_id(pid) for pid in plan_ids if is_valid_object_id(pid)]
        if not object_ids:
            return {}

        plans: dict[str, Plan] = {}
        for raw in self._col.find({"_id": {"$in": object_ids}}):
            plan = PlanDocument.model_validate(raw).to_domain()
            if plan.id:
                plans[plan.id] = plan
        return plans

    def list_active_by_ship(self, ship_id: str) -> list[Plan]:
        cursor = self._col.find(
            {"ship_id": ship_id, "is_active": True},
            sort=[("sort_order", ASCENDING), ("_id", ASCENDING)],
        )
        return [PlanDocument.model_validate(raw).to_domain() for raw in cursor]
