from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class Event:
    """Kafka 로 나가는 메시지 봉투.

    key 는 파티션 키다. 같은 주문의 이벤트가 한 파티션에 순서대로 쌓이도록
    주문 ID 를 넣는다. 비어 있으면 이벤트 ID 로 대신한다.
    """

    id: str
    payload: dict[str, Any]
    key: str | None = None

    def partition_key(self) -> str:
        return self.key or self.id


@dataclass(frozen=True, slots=True)
class Topic:
    base: str
