from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict

from confluent_kafka import Producer

from .config import get_brokers, get_message_max_bytes
from .core import Event

logger = logging.getLogger(__name__)


class KafkaEventBus:
    """Kafka 발행 전용 EventBus.

    주문 상태 전이 이벤트를 JSON 으로 인코딩해 발행한다. 전달 실패는 delivery callback 에서 로그로 남긴다.
    """

    def __init__(self, brokers: str, *, message_max_bytes: int | None = None) -> None:
        conf: dict[str, object] = {"bootstrap.servers": brokers}
        if message_max_bytes is not None:
            conf["message.max.bytes"] = message_max_bytes
        self._producer = Producer(conf)
        self._brokers = brokers

    def close(self) -> None:
        self._producer.flush()

    def publish(self, topic: str, event: Event) -> None:
        payload = json.dumps(asdict(event), ensure_ascii=False, default=str).encode(
            "utf-8"
        )

        def _delivery_callback(err, msg) -> None:  # type: ignore[no-untyped-def]
            if err is not None:
                logger.error("failed to deliver message to %s: %s", msg.topic(), err)

        self._producer.produce(
            topic=topic,
            value=payload,
            key=event.partition_key().encode("utf-8"),
            callback=_delivery_callback,
        )
        self._producer.poll(0)


_bus: KafkaEventBus | None = None
_bus_lock = threading.Lock()


def get_kafka_event_bus() -> KafkaEventBus:
    """프로세스 전역 KafkaEventBus 싱글톤."""

    global _bus

    if _bus is not None:
        return _bus

    with _bus_lock:
        if _bus is None:
            _bus = KafkaEventBus(
                get_brokers(), message_max_bytes=get_message_max_bytes()
            )
    return _bus


def close_kafka_event_bus() -> None:
    global _bus

    with _bus_lock:
        if _bus is not None:
            _bus.close()
            _bus = None
