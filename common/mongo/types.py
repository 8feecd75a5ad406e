from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from bson import Decimal128, ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_serializers import PlainSerializer
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


def ensure_utc_datetime(value: datetime) -> datetime:
    """datetime 값을 UTC 기준으로 정규화한다.

    - tzinfo 가 없으면 UTC 로 간주해 tzinfo=UTC 를 부여
    - tzinfo 가 있으면 UTC 로 변환
    """

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_optional_utc_datetime(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return ensure_utc_datetime(value)


def to_object_id(value: Any) -> ObjectId:
    """여러 타입(str, ObjectId 등)을 MongoDB ObjectId 로 변환한다."""

    if isinstance(value, ObjectId):
        return value
    if value is None:
        raise TypeError("ObjectId cannot be None")
    return ObjectId(str(value))


def from_object_id(value: Optional[ObjectId]) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def is_valid_object_id(value: str) -> bool:
    return ObjectId.is_valid(value)


def to_decimal(value: Any) -> Decimal:
    """Decimal128/str/int/float 를 Decimal 로 변환한다.

    float 는 str() 을 거쳐 이진 부동소수 오차가 금액에 섞이지 않게 한다.
    """

    if isinstance(value, Decimal):
        return value
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def to_decimal128(value: Decimal) -> Decimal128:
    return Decimal128(value)


PyObjectId = Annotated[ObjectId, BeforeValidator(to_object_id)]
MongoDateTime = Annotated[datetime, BeforeValidator(ensure_utc_datetime)]
OptionalMongoDateTime = Annotated[
    Optional[datetime], BeforeValidator(ensure_optional_utc_datetime)
]

# 금액 필드는 Mongo 에 Decimal128 로 저장하고, 읽을 때 Decimal 로 복원한다.
MongoDecimal = Annotated[
    Decimal,
    BeforeValidator(to_decimal),
    PlainSerializer(to_decimal128, return_type=Any, when_used="always"),
]


class BaseDocument(BaseModel):
    """MongoDB 도큐먼트용 공통 베이스 모델.

    - ObjectId/Decimal128 같은 임의 타입을 허용
    - alias 기반 직렬화(by_alias)를 사용할 수 있도록 한다.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    created_at: MongoDateTime
    updated_at: MongoDateTime

    def to_mongo_record(self) -> dict[str, Any]:
        """MongoDB 저장용 dict 로 직렬화한다.

        - by_alias=True 로 id -> _id 를 맞춘다.
        - _id 가 None 이면 빼서 Mongo 가 ObjectId 를 생성하게 한다.
        """

        record = self.model_dump(by_alias=True)
        if record.get("_id") is None:
            record.pop("_id", None)
        return record


def build_document_data_from_domain(domain_model: BaseModel) -> dict[str, Any]:
    """도메인 Pydantic 모델을 Mongo 도큐먼트 dict 로 변환하는 공통 유틸.

    도메인 모델의 id(str) 는 _id 로 옮기고, None 이면 제외한다.
    """

    data = domain_model.model_dump(by_alias=True)
    raw_id = data.pop("id", None)
    if raw_id is not None:
        data["_id"] = to_object_id(raw_id)
    return data
