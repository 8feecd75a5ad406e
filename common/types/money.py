from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from pydantic.functional_serializers import PlainSerializer


def serialize_usd_amount(value: Decimal) -> str:
    """금액을 센트 단위 문자열("12.50")로 직렬화한다. float 로 내보내지 않는다."""
    return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


UsdAmount = Annotated[
    Decimal,
    PlainSerializer(serialize_usd_amount, return_type=str, when_used="json"),
]
