from __future__ import annotations

from .core import Topic


# 주문 상태 전이와 쿠폰 정산 필요 이벤트를 함께 싣는다.
TOPIC_ORDER = Topic("maritime.order")
