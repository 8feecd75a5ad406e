from __future__ import annotations

import os


KAFKA_BOOTSTRAP_SERVERS_ENV = "KAFKA_BOOTSTRAP_SERVERS"
KAFKA_MESSAGE_MAX_BYTES_ENV = "KAFKA_MESSAGE_MAX_BYTES"


def get_brokers() -> str:
    value = os.getenv(KAFKA_BOOTSTRAP_SERVERS_ENV)
    if not value:
        raise RuntimeError(f"{KAFKA_BOOTSTRAP_SERVERS_ENV} environment variable is required")
    return value


def get_optional_brokers() -> str | None:
    """브로커 주소가 설정되지 않았으면 None. 이벤트 발행을 끄는 용도로 쓴다."""

    value = os.getenv(KAFKA_BOOTSTRAP_SERVERS_ENV, "").strip()
    return value or None


def get_message_max_bytes() -> int | None:
    """producer 의 message.max.bytes 값.

    - 비어 있거나 0 이하이면 None (라이브러리 기본값 사용)
    - 정수가 아니면 설정 오류로 보고 RuntimeError 를 발생시킨다.
    """

    raw_value = os.getenv(KAFKA_MESSAGE_MAX_BYTES_ENV, "").strip()
    if not raw_value:
        return None

    try:
        value = int(raw_value)
    except ValueError as exc:  # noqa: TRY003
        raise RuntimeError(
            f"{KAFKA_MESSAGE_MAX_BYTES_ENV} must be an integer value, got: {raw_value!r}"
        ) from exc

    if value <= 0:
        return None

    return value
